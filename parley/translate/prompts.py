from __future__ import annotations

import json
import re
from typing import Any

from parley.contracts import Speaker
from parley.languages import language_name

INTERPRETER_SYSTEM = "You are a professional medical interpreter."

_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def interpreter_prompt(text: str, input_lang: str, output_lang: str) -> str:
    source = language_name(input_lang)
    target = language_name(output_lang)
    return (
        "You are a professional medical interpreter working in a clinic. "
        f"Translate the following utterance from {source} to {target}. "
        "Preserve medical terminology and meaning exactly, keep the register of the speaker, "
        "and decide whether the speaker is the patient or the healthcare provider.\n\n"
        "Respond ONLY with a JSON array in this format:\n"
        '[{ "speaker": "patient" | "provider" | "unknown", "text": "<translation>" }]\n\n'
        f'Utterance: "{text}"'
    )


def translator_system_prompt(input_lang: str, output_lang: str) -> str:
    return (
        "You are a professional medical translator. "
        f"Translate the following text from {language_name(input_lang)} to {language_name(output_lang)}. "
        "Maintain medical accuracy and terminology. Only respond with the translation, nothing else."
    )


def translator_user_prompt(text: str, input_lang: str, output_lang: str) -> str:
    return f'Translate this text from {language_name(input_lang)} to {language_name(output_lang)}: "{text}"'


def _first_item(payload: Any) -> dict[str, Any] | None:
    if isinstance(payload, list) and payload and isinstance(payload[0], dict):
        return payload[0]
    if isinstance(payload, dict):
        return payload
    return None


def parse_interpreter_reply(content: str) -> tuple[str, Speaker]:
    """
    Read `[{"speaker": ..., "text": ...}]` leniently.
    Fenced JSON and a bare object are accepted; anything else is taken as the translation.
    """
    raw = str(content or "").strip()
    body = raw
    fenced = _FENCE.match(body)
    if fenced:
        body = fenced.group(1).strip()
    try:
        item = _first_item(json.loads(body))
    except ValueError:
        item = None
    if item is not None and str(item.get("text") or "").strip():
        return str(item["text"]).strip(), Speaker.parse(item.get("speaker"))
    return strip_quotes(body), Speaker.UNKNOWN


def strip_quotes(text: str) -> str:
    out = str(text or "").strip()
    if len(out) >= 2 and out[0] == out[-1] and out[0] in "\"'":
        out = out[1:-1].strip()
    return out
