from __future__ import annotations

import logging
from abc import abstractmethod
from typing import Any

import httpx

from parley.app.logging_setup import log_event
from parley.contracts import Speaker, TranslationResult
from parley.errors import ProviderError, ServiceUnavailable
from parley.translate.base import CredentialStatus, Translator
from parley.translate.routing import DEFAULT_MODELS, ProviderId


def _error_detail(resp: httpx.Response) -> str:
    try:
        payload = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict):
            return str(err.get("message") or err)
        if err:
            return str(err)
    return str(payload)[:200]


class ChatCompletionsTranslator(Translator):
    """Translator backed by an OpenAI-compatible `/chat/completions` API."""

    provider: ProviderId
    label: str

    def __init__(
        self,
        api_key: str | None,
        *,
        base_url: str,
        model: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 15.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._model = model
        self.timeout = float(timeout)
        self._client = client
        self._owns_client = client is None
        self._logger = logger

    @property
    def name(self) -> str:
        return self.provider.value

    @property
    def provider_id(self) -> ProviderId:
        return self.provider

    @property
    def default_model(self) -> str:
        return self._model or DEFAULT_MODELS[self.provider]

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    @abstractmethod
    def _messages(self, text: str, input_lang: str, output_lang: str) -> list[dict[str, str]]: ...

    def _request_options(self) -> dict[str, Any]:
        return {}

    @abstractmethod
    def _parse(self, content: str) -> tuple[str, Speaker]: ...

    def _error_for(self, status: int | None, message: str) -> ProviderError:
        if status == 503:
            return ServiceUnavailable(message, status=status, provider=self.name)
        return ProviderError(message, status=status, provider=self.name)

    async def translate(self, text: str, input_lang: str, output_lang: str, model: str) -> TranslationResult:
        if not self.api_key:
            raise self._error_for(None, f"{self.label} API key is not configured")
        body: dict[str, Any] = {
            "model": model or self.default_model,
            "messages": self._messages(text, input_lang, output_lang),
        }
        body.update(self._request_options())
        try:
            resp = await self._get_client().post(
                f"{self.base_url}/chat/completions",
                json=body,
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            raise self._error_for(None, f"{self.label} request failed: {e or type(e).__name__}") from e

        if resp.status_code >= 400:
            detail = _error_detail(resp)
            log_event(
                self._logger,
                logging.WARNING,
                "provider_http_error",
                provider=self.name,
                status=resp.status_code,
                detail=detail,
            )
            raise self._error_for(resp.status_code, f"{self.label} returned HTTP {resp.status_code}: {detail}")

        try:
            content = resp.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProviderError(
                f"{self.label} returned an unexpected response", status=resp.status_code, provider=self.name
            ) from e
        translation, speaker = self._parse(str(content or ""))
        if not translation:
            raise ProviderError(f"{self.label} returned an empty translation", status=resp.status_code, provider=self.name)
        return TranslationResult(translation=translation, speaker=speaker, provider=self.name)

    async def check(self) -> CredentialStatus:
        if not self.api_key:
            return CredentialStatus(valid=False, error=f"{self.label} API key is not configured")
        try:
            resp = await self._get_client().get(f"{self.base_url}/models", headers=self._headers())
        except httpx.HTTPError as e:
            return CredentialStatus(valid=False, error=f"{self.label} is unreachable: {e or type(e).__name__}")
        if resp.status_code == 401:
            return CredentialStatus(valid=False, error=f"Invalid {self.label} API key")
        if resp.status_code >= 400:
            return CredentialStatus(valid=False, error=f"{self.label} returned HTTP {resp.status_code}")
        return CredentialStatus(valid=True)

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
