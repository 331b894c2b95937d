from __future__ import annotations

import asyncio
import logging

import httpx

from parley.app.logging_setup import log_event
from parley.asr.base import OnError, OnSegment, StrategyHandle, TranscriptionStrategy, close_handle, supervise
from parley.audio.mic import MicCapture
from parley.audio.pcm import pcm16_to_wav
from parley.contracts import TranscriptSegment
from parley.errors import TransportError
from parley.languages import base_code


class BatchStrategy(TranscriptionStrategy):
    """
    Records fixed-size chunks (~5 s) and uploads each one as a WAV file to an
    OpenAI-compatible transcription endpoint. Every response is a final segment.
    """

    def __init__(
        self,
        capture: MicCapture,
        *,
        endpoint: str,
        api_key: str | None,
        model: str = "whisper-1",
        chunk_seconds: float = 5.0,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        logger: logging.Logger | None = None,
    ) -> None:
        if chunk_seconds <= 0:
            raise ValueError("chunk_seconds must be > 0")
        self._capture = capture
        self.endpoint = endpoint
        self.api_key = api_key
        self.model = model
        self.chunk_seconds = float(chunk_seconds)
        self.timeout = float(timeout)
        self._client = client
        self._owns_client = client is None
        self._logger = logger

    @property
    def name(self) -> str:
        return "batch"

    def available(self) -> bool:
        return bool(self.endpoint and self.api_key)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def start(self, language: str, on_segment: OnSegment, on_error: OnError) -> StrategyHandle:
        if not self.available():
            raise TransportError("batch transcription is not configured", fallback=True)
        handle = StrategyHandle(strategy=self.name, language=language, frames=self._capture.subscribe())
        supervise(handle, self._run(handle, on_segment), on_error, self._logger)
        log_event(self._logger, logging.INFO, "batch_started", language=language, chunk_sec=self.chunk_seconds)
        return handle

    async def _run(self, handle: StrategyHandle, on_segment: OnSegment) -> None:
        assert handle.frames is not None
        uploads: asyncio.Queue[tuple[bytes, int] | None] = asyncio.Queue()
        uploader = asyncio.create_task(self._upload_loop(uploads, handle.language, on_segment))
        buf = bytearray()
        rate = 0
        try:
            while True:
                chunk = await handle.frames.get()
                if chunk is None:
                    break
                rate = chunk.sample_rate
                buf.extend(chunk.pcm16)
                if len(buf) >= int(self.chunk_seconds * rate) * 2:
                    uploads.put_nowait((bytes(buf), rate))
                    buf.clear()
                if uploader.done():
                    uploader.result()
                    return
            if buf and rate:
                uploads.put_nowait((bytes(buf), rate))
            uploads.put_nowait(None)
            await uploader
        finally:
            if not uploader.done():
                uploader.cancel()
                await asyncio.gather(uploader, return_exceptions=True)

    async def _upload_loop(
        self,
        uploads: "asyncio.Queue[tuple[bytes, int] | None]",
        language: str,
        on_segment: OnSegment,
    ) -> None:
        while True:
            item = await uploads.get()
            if item is None:
                return
            pcm16, rate = item
            text = await self.transcribe_chunk(pcm16, rate, language)
            if text:
                on_segment(TranscriptSegment(text=text, is_final=True))

    async def transcribe_chunk(self, pcm16: bytes, sample_rate: int, language: str) -> str:
        files = {"file": ("audio.wav", pcm16_to_wav(pcm16, sample_rate), "audio/wav")}
        data = {"model": self.model, "language": base_code(language), "response_format": "json"}
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            resp = await self._get_client().post(self.endpoint, headers=headers, data=data, files=files)
        except httpx.HTTPError as e:
            log_event(self._logger, logging.WARNING, "batch_chunk_failed", error=str(e) or type(e).__name__)
            return ""
        if resp.status_code in (401, 403):
            raise TransportError(
                f"batch transcription rejected credentials: HTTP {resp.status_code}",
                status=resp.status_code,
            )
        if resp.status_code >= 400:
            log_event(self._logger, logging.WARNING, "batch_chunk_failed", status=resp.status_code)
            return ""
        try:
            payload = resp.json()
        except ValueError:
            log_event(self._logger, logging.WARNING, "batch_chunk_unparsed", status=resp.status_code)
            return ""
        if not isinstance(payload, dict):
            return ""
        return str(payload.get("text") or "").strip()

    async def stop(self, handle: StrategyHandle) -> None:
        await close_handle(handle)
        if handle.frames is not None:
            self._capture.unsubscribe(handle.frames)
        log_event(self._logger, logging.INFO, "batch_stopped")

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
