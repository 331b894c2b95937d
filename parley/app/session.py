from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from parley.app.diagnostics import describe_error
from parley.app.logging_setup import log_event
from parley.app.state import AppState, MicState, MicStateTracker
from parley.asr.base import TranscriptionStrategy
from parley.asr.manager import TranscriptionManager, TranscriptionState
from parley.audio.mic import MicCapture
from parley.contracts import Banner, BannerKind, TranscriptSegment, TranslationRequest, TranslationResult, TranslationSegment
from parley.languages import base_code, best_input_locale
from parley.retry import RetryPolicy
from parley.transcript import Transcript
from parley.translate.credentials import first_usable, probe_providers
from parley.translate.dispatcher import TranslationDispatcher
from parley.translate.routing import ProviderId
from parley.tts.controller import SpeechController

LANGUAGE_CHANGED = "Language changed, resetting..."
IDLE_STOPPED = "No speech detected for a while. Microphone turned off."

Listener = Callable[[str, Any], None]

_RESET_FIELDS = ("input_language", "output_language", "model", "provider")


@dataclass(frozen=True)
class SessionConfig:
    input_language: str = "en-US"
    output_language: str = "es"
    model: str = ""
    provider: ProviderId = ProviderId.GROQ
    auto_speak: bool = True


class TranslationSession:
    """
    Top-level lifecycle: microphone, transcription, translation and speech.

    Start/stop transitions are serialized by one lock. Results that arrive after the
    microphone is off, or for a configuration that has since changed, are dropped.
    Listeners receive `(event, payload)` for: transcript, translation, banner, mic,
    transcription_state, reset.
    """

    def __init__(
        self,
        *,
        capture: MicCapture,
        strategies: Sequence[TranscriptionStrategy],
        dispatcher: TranslationDispatcher,
        speech: SpeechController | None = None,
        config: SessionConfig | None = None,
        retry: RetryPolicy | None = None,
        idle_timeout: float | None = 120.0,
        banner_ttl: float = 3.0,
        settle_delay: float = 0.5,
        closers: Sequence[Callable[[], Awaitable[Any]]] = (),
        logger: logging.Logger | None = None,
    ) -> None:
        self.capture = capture
        self.dispatcher = dispatcher
        self.dispatcher.on_result = self._on_translation
        self.speech = speech
        self.config = config or SessionConfig()
        self.dispatcher.router.set_preferred(self.config.provider)
        self.banner_ttl = float(banner_ttl)
        self.settle_delay = float(settle_delay)
        self._closers = list(closers)
        self._logger = logger

        self.manager = TranscriptionManager(
            strategies,
            on_segment=self._on_segment,
            on_fatal=self._on_fatal,
            on_idle=self._on_idle,
            on_state=self._on_transcription_state,
            retry=retry,
            idle_timeout=idle_timeout,
            logger=logger,
        )
        if speech is not None and speech.on_error is None:
            speech.on_error = self._on_speech_error

        self.app_state = AppState.UNINITIALIZED
        self.mic = MicStateTracker()
        self.transcript = Transcript()
        self.translations: List[TranslationSegment] = []
        self.banner: Optional[Banner] = None
        self.banners: List[Banner] = []
        self._listeners: List[Listener] = []
        self._lifecycle = asyncio.Lock()
        self._banner_timer: asyncio.TimerHandle | None = None
        self._background: set[asyncio.Task] = set()

    # -- observation -------------------------------------------------------

    @property
    def mic_state(self) -> MicState:
        return self.mic.state

    @property
    def is_mic_active(self) -> bool:
        return self.mic.state == MicState.ON

    @property
    def volume_level(self) -> float:
        return self.capture.volume_level

    @property
    def is_speaking(self) -> bool:
        return self.speech is not None and self.speech.is_speaking

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: str, payload: Any = None) -> None:
        for listener in list(self._listeners):
            listener(event, payload)

    # -- banners -----------------------------------------------------------

    def _show_banner(self, kind: BannerKind, message: str) -> Banner:
        banner = Banner(kind=kind, message=message)
        self.banner = banner
        self.banners.append(banner)
        if self._banner_timer is not None:
            self._banner_timer.cancel()
            self._banner_timer = None
        if kind == BannerKind.INFO:
            loop = asyncio.get_running_loop()
            self._banner_timer = loop.call_later(self.banner_ttl, self.dismiss_banner, banner)
        log_event(self._logger, logging.INFO, "banner", kind=kind.value, text=message)
        self._emit("banner", banner)
        return banner

    def dismiss_banner(self, banner: Banner | None = None) -> None:
        if self.banner is None or (banner is not None and self.banner is not banner):
            return
        self.banner = None
        self._banner_timer = None
        self._emit("banner", None)

    def _clear_error_banner(self) -> None:
        if self.banner is not None and self.banner.kind == BannerKind.ERROR:
            self.dismiss_banner(self.banner)

    # -- initialization ----------------------------------------------------

    async def initialize(self) -> None:
        self.app_state = AppState.INITIALIZING
        self._clear_error_banner()
        router = self.dispatcher.router
        order = [self.config.provider, router.secondary_for(self.config.provider)]
        translators = [t for t in (self.dispatcher.translator_for(p) for p in order) if t is not None]
        results = await probe_providers(translators, logger=self._logger)
        usable = first_usable(results)
        if usable is None:
            reasons = "; ".join(r.status.error or r.translator.name for r in results) or "none configured"
            self._show_banner(BannerKind.ERROR, f"No translation provider is available ({reasons}).")
        else:
            provider = usable.provider_id
            model = self.config.model
            if not model or router.primary_for(model) != provider:
                model = usable.default_model
            self.config = replace(self.config, provider=provider, model=model)
            router.set_preferred(provider)
            log_event(self._logger, logging.INFO, "session_provider_selected", provider=provider.value, model=model)
        self.app_state = AppState.READY

    # -- microphone lifecycle ----------------------------------------------

    async def toggle_mic(self) -> None:
        if self.mic.state == MicState.OFF:
            await self.start_recording()
        else:
            await self.stop_recording()

    async def start_recording(self) -> bool:
        async with self._lifecycle:
            return await self._start_locked()

    async def stop_recording(self) -> None:
        async with self._lifecycle:
            await self._stop_locked()

    async def _start_locked(self) -> bool:
        if not self.mic.set_starting():
            return self.mic.state == MicState.ON
        self._clear_error_banner()
        self._emit("mic", MicState.STARTING)
        try:
            await self.capture.acquire()
            await self.manager.start(self.config.input_language)
        except Exception as exc:
            await self.manager.stop()
            self.capture.release()
            self.mic.set_failed(str(exc))
            log_event(self._logger, logging.ERROR, "mic_start_failed", error=str(exc), error_type=type(exc).__name__)
            self._show_banner(BannerKind.ERROR, describe_error(exc))
            self._emit("mic", MicState.OFF)
            return False
        self.mic.set_on()
        log_event(self._logger, logging.INFO, "mic_on", language=self.config.input_language)
        self._emit("mic", MicState.ON)
        return True

    async def _stop_locked(self) -> None:
        if not self.mic.set_stopping():
            return
        self._emit("mic", MicState.STOPPING)
        try:
            await self.manager.stop()
        finally:
            self.capture.release()
            self.dispatcher.clear_pending()
            self.mic.set_off()
            log_event(self._logger, logging.INFO, "mic_off")
            self._emit("mic", MicState.OFF)

    # -- configuration -----------------------------------------------------

    def _clear_pipeline(self) -> None:
        self.transcript.clear()
        self.translations.clear()
        self.dispatcher.reset()
        self._emit("reset", None)

    async def update_config(self, **changes: Any) -> None:
        if "provider" in changes:
            changes["provider"] = ProviderId(changes["provider"])
        new = replace(self.config, **changes)
        if new == self.config:
            return
        old, self.config = self.config, new
        if new.provider != old.provider:
            self.dispatcher.router.set_preferred(new.provider)
        if not any(getattr(new, f) != getattr(old, f) for f in _RESET_FIELDS):
            return

        log_event(
            self._logger,
            logging.INFO,
            "session_config_changed",
            input_language=new.input_language,
            output_language=new.output_language,
            model=new.model,
            provider=new.provider.value,
        )
        async with self._lifecycle:
            was_recording = self.mic.state in (MicState.ON, MicState.STARTING)
            if self.speech is not None:
                self.speech.cancel()
            self._clear_pipeline()
            self._show_banner(BannerKind.INFO, LANGUAGE_CHANGED)
            if was_recording:
                await self._stop_locked()
                await asyncio.sleep(self.settle_delay)
                await self._start_locked()

    async def set_input_language(self, lang: str) -> None:
        await self.update_config(input_language=lang)

    async def set_output_language(self, lang: str) -> None:
        await self.update_config(output_language=lang)

    async def set_model(self, model: str) -> None:
        await self.update_config(model=model)

    async def set_provider(self, provider: ProviderId) -> None:
        await self.update_config(provider=provider)

    async def set_auto_speak(self, enabled: bool) -> None:
        await self.update_config(auto_speak=bool(enabled))

    async def switch_languages(self) -> None:
        await self.update_config(
            input_language=best_input_locale(self.config.output_language),
            output_language=base_code(self.config.input_language),
        )

    async def reset(self) -> None:
        async with self._lifecycle:
            if self.speech is not None:
                self.speech.cancel()
            await self._stop_locked()
            self._clear_pipeline()
            self.dismiss_banner()
        log_event(self._logger, logging.INFO, "session_reset")

    async def aclose(self) -> None:
        await self.reset()
        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)
        await self.manager.aclose()
        await self.dispatcher.aclose()
        for closer in self._closers:
            await closer()

    # -- pipeline callbacks ------------------------------------------------

    def _on_segment(self, segment: TranscriptSegment) -> None:
        if not self.mic.active:
            return
        committed = self.transcript.apply(segment)
        self._emit("transcript", segment)
        if committed:
            cfg = self.config
            self.dispatcher.enqueue(segment.text, cfg.input_language, cfg.output_language, cfg.model)

    def _on_translation(self, request: TranslationRequest, result: TranslationResult) -> None:
        if self.mic.state not in (MicState.ON, MicState.STOPPING):
            return
        cfg = self.config
        if (request.input_lang, request.output_lang, request.model) != (
            cfg.input_language,
            cfg.output_language,
            cfg.model,
        ):
            return
        segment = TranslationSegment(text=result.translation, speaker=result.speaker)
        self.translations.append(segment)
        self._emit("translation", segment)
        if cfg.auto_speak and self.speech is not None and not result.degraded:
            self.speech.speak(result.translation, cfg.output_language)

    def _on_transcription_state(self, state: TranscriptionState) -> None:
        self._emit("transcription_state", state)

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _on_fatal(self, exc: BaseException) -> None:
        self._spawn(self._handle_fatal(exc))

    async def _handle_fatal(self, exc: BaseException) -> None:
        await self.stop_recording()
        self._show_banner(BannerKind.ERROR, describe_error(exc))

    def _on_idle(self) -> None:
        self._spawn(self._handle_idle())

    async def _handle_idle(self) -> None:
        if self.mic.state != MicState.ON:
            return
        await self.stop_recording()
        self._show_banner(BannerKind.INFO, IDLE_STOPPED)

    def _on_speech_error(self, reason: str) -> None:
        self._show_banner(BannerKind.INFO, f"Speech playback failed: {reason}")
