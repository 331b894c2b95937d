from __future__ import annotations

from typing import Any

from parley.contracts import Speaker
from parley.translate.openai_compat import ChatCompletionsTranslator
from parley.translate.prompts import INTERPRETER_SYSTEM, interpreter_prompt, parse_interpreter_reply
from parley.translate.routing import ProviderId

GROQ_BASE_URL = "https://api.groq.com/openai/v1"


class GroqTranslator(ChatCompletionsTranslator):
    """Groq chat completions with the medical-interpreter prompt; replies carry a speaker guess."""

    provider = ProviderId.GROQ
    label = "Groq"

    def __init__(self, api_key: str | None, *, base_url: str = GROQ_BASE_URL, **kwargs: Any) -> None:
        super().__init__(api_key, base_url=base_url, **kwargs)

    def _messages(self, text: str, input_lang: str, output_lang: str) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": INTERPRETER_SYSTEM},
            {"role": "user", "content": interpreter_prompt(text, input_lang, output_lang)},
        ]

    def _request_options(self) -> dict[str, Any]:
        return {"temperature": 0.3, "max_tokens": 1024}

    def _parse(self, content: str) -> tuple[str, Speaker]:
        return parse_interpreter_reply(content)
