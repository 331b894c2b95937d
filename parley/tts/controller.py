from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Sequence

from parley.app.logging_setup import log_event
from parley.tts.engine import END_COMPLETED, END_INTERRUPTED, SpeechEngine, Utterance, Voice


def select_voice(voices: Sequence[Voice], lang: str) -> Optional[Voice]:
    wanted = str(lang or "").lower()
    for voice in voices:
        if wanted and voice.locale.lower().startswith(wanted):
            return voice
    if voices:
        return voices[0]
    return None


class SpeechController:
    """
    At-most-one-utterance speech playback.

    `speak` always cancels first. A watchdog checks once, `watchdog_delay` after
    starting, that the engine is speaking or still preparing; if not it retries once
    with cancel-then-speak. While speaking, a keep-alive task pulses pause/resume every
    `keepalive_interval` seconds until the utterance ends or `keepalive_ceiling` passes.
    Intentional interruptions are never reported through `on_error`.
    """

    def __init__(
        self,
        engine: SpeechEngine,
        *,
        on_error: Callable[[str], None] | None = None,
        watchdog_delay: float = 1.0,
        keepalive_interval: float = 5.0,
        keepalive_ceiling: float = 120.0,
        rate: float = 1.0,
        volume: float = 1.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self._engine = engine
        self.on_error = on_error
        self.watchdog_delay = float(watchdog_delay)
        self.keepalive_interval = float(keepalive_interval)
        self.keepalive_ceiling = float(keepalive_ceiling)
        self.rate = float(rate)
        self.volume = float(volume)
        self._logger = logger
        self._active: Utterance | None = None
        self._retried = False
        self._watchdog: asyncio.TimerHandle | None = None
        self._keepalive: asyncio.Task | None = None

    @property
    def is_speaking(self) -> bool:
        return self._active is not None

    @property
    def current(self) -> Utterance | None:
        return self._active

    def _make_utterance(self, text: str, lang: str) -> Utterance:
        utterance = Utterance(
            text=text,
            lang=lang,
            voice=select_voice(self._engine.voices(), lang),
            rate=self.rate,
            volume=self.volume,
        )
        utterance.on_end = lambda reason: self._handle_end(utterance, reason)
        return utterance

    def speak(self, text: str, lang: str) -> Utterance | None:
        self.cancel()
        text = str(text or "").strip()
        if not text:
            return None
        loop = asyncio.get_running_loop()
        utterance = self._make_utterance(text, lang)
        self._active = utterance
        self._retried = False
        self._engine.speak(utterance)
        self._watchdog = loop.call_later(self.watchdog_delay, self._check_started, utterance)
        self._keepalive = loop.create_task(self._keep_alive(), name="tts-keepalive")
        log_event(
            self._logger,
            logging.INFO,
            "tts_speak",
            lang=lang,
            voice=utterance.voice.name if utterance.voice else None,
            chars=len(text),
        )
        return utterance

    def _check_started(self, utterance: Utterance) -> None:
        self._watchdog = None
        if utterance is not self._active or self._retried:
            return
        if self._engine.speaking or self._engine.pending:
            return
        self._retried = True
        log_event(self._logger, logging.WARNING, "tts_stalled_retry", lang=utterance.lang)
        retry = self._make_utterance(utterance.text, utterance.lang)
        self._active = retry
        self._engine.cancel()
        self._engine.speak(retry)

    async def _keep_alive(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.keepalive_ceiling
        while True:
            await asyncio.sleep(self.keepalive_interval)
            if self._active is None or loop.time() >= deadline:
                return
            if self._engine.speaking:
                self._engine.pause()
                self._engine.resume()

    def _handle_end(self, utterance: Utterance, reason: str) -> None:
        if utterance is self._active:
            self._active = None
            self._stop_timers()
        if reason in (END_COMPLETED, END_INTERRUPTED):
            return
        log_event(self._logger, logging.WARNING, "tts_error", reason=reason)
        if self.on_error is not None:
            self.on_error(reason)

    def _stop_timers(self) -> None:
        watchdog, self._watchdog = self._watchdog, None
        if watchdog is not None:
            watchdog.cancel()
        keepalive, self._keepalive = self._keepalive, None
        if keepalive is not None and not keepalive.done() and keepalive is not asyncio.current_task():
            keepalive.cancel()

    def cancel(self) -> None:
        self._active = None
        self._stop_timers()
        self._engine.cancel()
