from __future__ import annotations

from typing import Any

from parley.contracts import Speaker
from parley.errors import ProviderError, ServiceUnavailable
from parley.translate.openai_compat import ChatCompletionsTranslator
from parley.translate.prompts import strip_quotes, translator_system_prompt, translator_user_prompt
from parley.translate.routing import ProviderId

TOGETHER_BASE_URL = "https://api.together.xyz/v1"


class TogetherTranslator(ChatCompletionsTranslator):
    """Together AI chat completions. Every failure is reported as temporarily unavailable."""

    provider = ProviderId.TOGETHER
    label = "Together AI"

    def __init__(self, api_key: str | None, *, base_url: str = TOGETHER_BASE_URL, **kwargs: Any) -> None:
        super().__init__(api_key, base_url=base_url, **kwargs)

    def _messages(self, text: str, input_lang: str, output_lang: str) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": translator_system_prompt(input_lang, output_lang)},
            {"role": "user", "content": translator_user_prompt(text, input_lang, output_lang)},
        ]

    def _request_options(self) -> dict[str, Any]:
        return {"temperature": 0.3, "max_tokens": 1024}

    def _parse(self, content: str) -> tuple[str, Speaker]:
        return strip_quotes(content), Speaker.UNKNOWN

    def _error_for(self, status: int | None, message: str) -> ProviderError:
        return ServiceUnavailable(message, status=503, provider=self.name)
