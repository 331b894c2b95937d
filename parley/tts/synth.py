from __future__ import annotations

import logging
from typing import Optional

import httpx
import numpy as np

from parley.app.logging_setup import log_event
from parley.audio.pcm import wav_to_float
from parley.errors import SpeechError

GROQ_SPEECH_URL = "https://api.groq.com/openai/v1/audio/speech"


class HttpSpeechSynthesizer:
    """OpenAI-compatible `/audio/speech` client returning mono float samples."""

    def __init__(
        self,
        api_key: str | None,
        *,
        url: str = GROQ_SPEECH_URL,
        model: str = "playai-tts",
        default_voice: str = "Fritz-PlayAI",
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self.api_key = api_key
        self.url = url
        self.model = model
        self.default_voice = default_voice
        self.timeout = float(timeout)
        self._client = client
        self._owns_client = client is None
        self._logger = logger

    def available(self) -> bool:
        return bool(self.api_key)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def synthesize(self, text: str, *, voice: Optional[str] = None) -> tuple[np.ndarray, int]:
        if not self.api_key:
            raise SpeechError("speech synthesis API key is not configured")
        body = {
            "model": self.model,
            "input": text,
            "voice": voice or self.default_voice,
            "response_format": "wav",
        }
        try:
            resp = await self._get_client().post(
                self.url,
                json=body,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except httpx.HTTPError as e:
            raise SpeechError(f"speech synthesis request failed: {e or type(e).__name__}") from e
        if resp.status_code >= 400:
            log_event(self._logger, logging.WARNING, "tts_http_error", status=resp.status_code)
            raise SpeechError(f"speech synthesis returned HTTP {resp.status_code}")
        try:
            return wav_to_float(resp.content)
        except Exception as e:
            raise SpeechError(f"speech synthesis returned unreadable audio: {e}") from e

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
