from __future__ import annotations

import re
from enum import Enum
from typing import Dict, Tuple


class ProviderId(str, Enum):
    GROQ = "groq"
    TOGETHER = "together"


DEFAULT_MODELS: Dict[ProviderId, str] = {
    ProviderId.GROQ: "llama3-8b-8192",
    ProviderId.TOGETHER: "meta-llama/Llama-3.1-70B-Instruct-Turbo",
}

GROQ_MODELS: Tuple[str, ...] = (
    "llama3-8b-8192",
    "llama3-70b-8192",
    "mixtral-8x7b-32768",
    "gemma-7b-it",
)

# First match wins. Namespaced ids ("org/model") are Together's naming scheme.
MODEL_ROUTES: Tuple[Tuple[re.Pattern[str], ProviderId], ...] = (
    (re.compile(r"^[\w.-]+/"), ProviderId.TOGETHER),
    (re.compile(r"^(llama|mixtral|gemma)", re.IGNORECASE), ProviderId.GROQ),
)


class ProviderRouter:
    """Maps model names to a provider once per model, falling back to the preference."""

    def __init__(self, preferred: ProviderId = ProviderId.GROQ) -> None:
        self.preferred = ProviderId(preferred)
        self._cache: Dict[str, ProviderId] = {}

    def set_preferred(self, preferred: ProviderId) -> None:
        self.preferred = ProviderId(preferred)
        self._cache.clear()

    def primary_for(self, model: str | None) -> ProviderId:
        if not model:
            return self.preferred
        cached = self._cache.get(model)
        if cached is not None:
            return cached
        chosen = self.preferred
        for pattern, provider in MODEL_ROUTES:
            if pattern.search(model):
                chosen = provider
                break
        self._cache[model] = chosen
        return chosen

    @staticmethod
    def secondary_for(provider: ProviderId) -> ProviderId:
        if provider == ProviderId.GROQ:
            return ProviderId.TOGETHER
        return ProviderId.GROQ

    @staticmethod
    def default_model(provider: ProviderId) -> str:
        return DEFAULT_MODELS[ProviderId(provider)]
