from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from parley.contracts import TranslationResult
from parley.translate.routing import ProviderId


@dataclass(frozen=True)
class CredentialStatus:
    valid: bool
    error: str | None = None


class Translator(ABC):
    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    @abstractmethod
    def provider_id(self) -> ProviderId: ...

    @property
    @abstractmethod
    def default_model(self) -> str: ...

    @abstractmethod
    async def translate(self, text: str, input_lang: str, output_lang: str, model: str) -> TranslationResult: ...

    @abstractmethod
    async def check(self) -> CredentialStatus: ...

    async def aclose(self) -> None:
        return None
