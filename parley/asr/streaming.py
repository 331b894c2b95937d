from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, InvalidStatus, WebSocketException

from parley.app.logging_setup import log_event
from parley.asr.base import OnError, OnSegment, StrategyHandle, TranscriptionStrategy, close_handle, supervise
from parley.asr.negotiation import SessionNegotiator
from parley.audio.mic import MicCapture
from parley.contracts import TranscriptSegment
from parley.errors import TransportError
from parley.retry import RetryPolicy


def parse_message(raw: str | bytes) -> TranscriptSegment | None:
    """Parse `{"result": {"alternatives": [{"transcript": ...}], "final": bool}}`."""
    try:
        payload = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    result = payload.get("result")
    if not isinstance(result, dict):
        return None
    alternatives = result.get("alternatives") or []
    if not alternatives or not isinstance(alternatives[0], dict):
        return None
    text = str(alternatives[0].get("transcript") or "").strip()
    if not text:
        return None
    return TranscriptSegment(text=text, is_final=bool(result.get("final")))


class StreamingStrategy(TranscriptionStrategy):
    """Streams 16 kHz mono PCM16 over a negotiated websocket and reads JSON results back."""

    def __init__(
        self,
        capture: MicCapture,
        negotiator: SessionNegotiator | None,
        *,
        retry: RetryPolicy | None = None,
        connect: Callable[[str], Awaitable[Any]] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._capture = capture
        self._negotiator = negotiator
        self._retry = retry or RetryPolicy()
        self._connect = connect or ws_connect
        self._logger = logger

    @property
    def name(self) -> str:
        return "streaming"

    def available(self) -> bool:
        return self._negotiator is not None

    async def start(self, language: str, on_segment: OnSegment, on_error: OnError) -> StrategyHandle:
        return await self._open(language, on_segment, on_error, retry=True)

    async def restart(self, language: str, on_segment: OnSegment, on_error: OnError) -> StrategyHandle:
        return await self._open(language, on_segment, on_error, retry=False)

    async def _open(self, language: str, on_segment: OnSegment, on_error: OnError, *, retry: bool) -> StrategyHandle:
        if self._negotiator is None:
            raise TransportError("streaming transcription is not configured", fallback=True)
        negotiator = self._negotiator
        if retry:
            session = await self._retry.run(lambda: negotiator.negotiate(language))
        else:
            session = await negotiator.negotiate(language)
        try:
            ws = await self._connect(session.websocket_url)
        except InvalidStatus as e:
            raise TransportError(
                f"streaming handshake rejected: HTTP {e.response.status_code}",
                status=e.response.status_code,
            ) from e
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise TransportError(f"streaming connect failed: {e or type(e).__name__}") from e

        handle = StrategyHandle(strategy=self.name, language=language, frames=self._capture.subscribe())
        handle.extras["ws"] = ws
        handle.extras["session_id"] = session.session_id
        supervise(handle, self._run(handle, ws, on_segment), on_error, self._logger)
        log_event(self._logger, logging.INFO, "streaming_started", session_id=session.session_id, language=language)
        return handle

    async def _run(self, handle: StrategyHandle, ws: Any, on_segment: OnSegment) -> None:
        sender = asyncio.create_task(self._send(handle, ws))
        receiver = asyncio.create_task(self._receive(ws, on_segment))
        try:
            done, _ = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                task.result()
        finally:
            for task in (sender, receiver):
                task.cancel()
            await asyncio.gather(sender, receiver, return_exceptions=True)
            await ws.close()

    async def _send(self, handle: StrategyHandle, ws: Any) -> None:
        assert handle.frames is not None
        while True:
            chunk = await handle.frames.get()
            if chunk is None:
                return
            try:
                await ws.send(chunk.pcm16)
            except ConnectionClosed as e:
                raise TransportError(f"streaming connection closed while sending (code {_close_code(e)})") from e

    async def _receive(self, ws: Any, on_segment: OnSegment) -> None:
        try:
            async for message in ws:
                if isinstance(message, bytes):
                    continue
                segment = parse_message(message)
                if segment is not None:
                    on_segment(segment)
        except ConnectionClosed as e:
            raise TransportError(f"streaming connection closed abnormally (code {_close_code(e)})") from e

    async def stop(self, handle: StrategyHandle) -> None:
        await close_handle(handle)
        ws = handle.extras.pop("ws", None)
        if ws is not None:
            await ws.close()
        if handle.frames is not None:
            self._capture.unsubscribe(handle.frames)
        log_event(self._logger, logging.INFO, "streaming_stopped", session_id=handle.extras.get("session_id"))

    async def aclose(self) -> None:
        if self._negotiator is not None:
            await self._negotiator.aclose()


def _close_code(exc: ConnectionClosed) -> int | None:
    frame = exc.rcvd
    return frame.code if frame is not None else None
