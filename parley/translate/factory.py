from __future__ import annotations

import logging
from typing import Any, Dict

from parley.app.config import Credentials
from parley.translate.base import Translator
from parley.translate.groq import GroqTranslator
from parley.translate.routing import ProviderId
from parley.translate.together import TogetherTranslator


def get_translator(
    provider: str | ProviderId,
    credentials: Credentials,
    *,
    base_url: str | None = None,
    timeout: float = 15.0,
    logger: logging.Logger | None = None,
) -> Translator:
    provider = ProviderId(str(getattr(provider, "value", provider)).lower().strip())
    kwargs: Dict[str, Any] = {"timeout": timeout, "logger": logger}
    if base_url:
        kwargs["base_url"] = base_url
    if provider == ProviderId.GROQ:
        return GroqTranslator(credentials.groq_api_key, **kwargs)
    if provider == ProviderId.TOGETHER:
        return TogetherTranslator(credentials.together_api_key, **kwargs)
    raise ValueError(f"Unknown translator provider: {provider}")


def build_translators(args: Any, credentials: Credentials, logger: logging.Logger | None = None) -> Dict[ProviderId, Translator]:
    timeout = float(getattr(args, "http_timeout", 15.0))
    return {
        ProviderId.GROQ: get_translator(
            ProviderId.GROQ,
            credentials,
            base_url=getattr(args, "groq_base_url", None),
            timeout=timeout,
            logger=logger,
        ),
        ProviderId.TOGETHER: get_translator(
            ProviderId.TOGETHER,
            credentials,
            base_url=getattr(args, "together_base_url", None),
            timeout=timeout,
            logger=logger,
        ),
    }
