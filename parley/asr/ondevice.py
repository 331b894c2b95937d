from __future__ import annotations

import asyncio
import logging
from typing import Callable

from parley.app.logging_setup import log_event
from parley.asr.base import OnError, OnSegment, StrategyHandle, TranscriptionStrategy, close_handle, supervise
from parley.asr.whisper_local import FasterWhisperRecognizer
from parley.audio.mic import MicCapture
from parley.audio.utterance import UtteranceChunker, UtteranceEvent
from parley.contracts import TranscriptSegment
from parley.errors import ParleyError, UnsupportedPlatform
from parley.languages import base_code


class OnDeviceStrategy(TranscriptionStrategy):
    """Local faster-whisper recognition over VAD-delimited utterances, with interim results."""

    def __init__(
        self,
        capture: MicCapture,
        recognizer: FasterWhisperRecognizer,
        *,
        chunker_factory: Callable[[], UtteranceChunker],
        logger: logging.Logger | None = None,
    ) -> None:
        self._capture = capture
        self._recognizer = recognizer
        self._chunker_factory = chunker_factory
        self._logger = logger

    @property
    def name(self) -> str:
        return "on_device"

    def available(self) -> bool:
        return self._recognizer.available()

    async def start(self, language: str, on_segment: OnSegment, on_error: OnError) -> StrategyHandle:
        try:
            await asyncio.to_thread(self._recognizer.load)
        except ParleyError:
            raise
        except Exception as e:
            raise UnsupportedPlatform(f"on-device recognizer failed to load: {e}") from e
        handle = StrategyHandle(strategy=self.name, language=language, frames=self._capture.subscribe())
        supervise(handle, self._run(handle, on_segment), on_error, self._logger)
        log_event(self._logger, logging.INFO, "on_device_started", language=language)
        return handle

    async def _run(self, handle: StrategyHandle, on_segment: OnSegment) -> None:
        assert handle.frames is not None
        chunker = self._chunker_factory()
        language = base_code(handle.language)
        while True:
            chunk = await handle.frames.get()
            events = chunker.flush() if chunk is None else chunker.push(chunk)
            for event in _latest_interim_only(events):
                text = await asyncio.to_thread(
                    self._recognizer.transcribe, event.pcm16, event.sample_rate, language
                )
                if text:
                    on_segment(TranscriptSegment(text=text, is_final=event.is_final))
            if chunk is None:
                return

    async def stop(self, handle: StrategyHandle) -> None:
        await close_handle(handle)
        if handle.frames is not None:
            self._capture.unsubscribe(handle.frames)
        log_event(self._logger, logging.INFO, "on_device_stopped")


def _latest_interim_only(events: list[UtteranceEvent]) -> list[UtteranceEvent]:
    # An interim is only worth recognizing if nothing newer follows it.
    out = []
    for i, event in enumerate(events):
        if not event.is_final and i < len(events) - 1:
            continue
        out.append(event)
    return out
