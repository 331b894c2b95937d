from __future__ import annotations

import asyncio

from parley.app.session import IDLE_STOPPED, LANGUAGE_CHANGED, SessionConfig, TranslationSession
from parley.app.state import AppState, MicState
from parley.asr.base import StrategyHandle, TranscriptionStrategy
from parley.asr.manager import TranscriptionState
from parley.contracts import BannerKind, Speaker, TranscriptSegment, TranslationResult
from parley.errors import PermissionDenied, ProviderError, TransportError
from parley.translate.base import CredentialStatus, Translator
from parley.translate.dispatcher import TranslationDispatcher
from parley.translate.routing import ProviderId, ProviderRouter
from parley.tts.controller import SpeechController
from parley.tts.engine import END_INTERRUPTED, Utterance


class FakeCapture:
    def __init__(self, *, error: Exception | None = None) -> None:
        self.error = error
        self.acquired = 0
        self.released = 0
        self.active = False

    @property
    def volume_level(self) -> float:
        return 0.25 if self.active else 0.0

    async def acquire(self) -> None:
        self.acquired += 1
        if self.error is not None:
            raise self.error
        self.active = True

    def release(self) -> None:
        self.released += 1
        self.active = False


class FakeStrategy(TranscriptionStrategy):
    def __init__(self) -> None:
        self.languages: list[str] = []
        self.stops = 0
        self.callbacks: list = []

    @property
    def name(self) -> str:
        return "fake"

    async def start(self, language, on_segment, on_error) -> StrategyHandle:
        self.languages.append(language)
        self.callbacks.append((on_segment, on_error))
        return StrategyHandle(strategy=self.name, language=language)

    async def stop(self, handle: StrategyHandle) -> None:
        self.stops += 1
        handle.closing = True

    def say(self, text: str, final: bool = True) -> None:
        self.callbacks[-1][0](TranscriptSegment(text, final))

    def fail(self, exc: BaseException) -> None:
        self.callbacks[-1][1](exc)


class FakeTranslator(Translator):
    def __init__(
        self,
        provider: ProviderId,
        default_model: str,
        *,
        phrases: dict[str, str] | None = None,
        valid: bool = True,
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self._provider = provider
        self._default_model = default_model
        self.phrases = phrases or {}
        self.valid = valid
        self.error = error
        self.delay = delay
        self.calls: list[str] = []

    @property
    def name(self) -> str:
        return self._provider.value

    @property
    def provider_id(self) -> ProviderId:
        return self._provider

    @property
    def default_model(self) -> str:
        return self._default_model

    async def translate(self, text, input_lang, output_lang, model) -> TranslationResult:
        self.calls.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return TranslationResult(
            translation=self.phrases.get(text, text.upper()),
            speaker=Speaker.UNKNOWN,
            provider=self.name,
        )

    async def check(self) -> CredentialStatus:
        if self.valid:
            return CredentialStatus(valid=True)
        return CredentialStatus(valid=False, error=f"Invalid {self.name} API key")


class FakeEngine:
    speaking = False
    pending = False

    def __init__(self) -> None:
        self.spoken: list[Utterance] = []
        self.current: Utterance | None = None

    def voices(self):
        return []

    def speak(self, utterance: Utterance) -> None:
        self.current = utterance
        self.spoken.append(utterance)
        self.speaking = True

    def cancel(self) -> None:
        utterance, self.current = self.current, None
        self.speaking = False
        if utterance is not None and utterance.on_end is not None:
            utterance.on_end(END_INTERRUPTED)

    def pause(self) -> None:
        pass

    def resume(self) -> None:
        pass


class Harness:
    def __init__(
        self,
        *,
        groq: FakeTranslator | None = None,
        together: FakeTranslator | None = None,
        capture: FakeCapture | None = None,
        config: SessionConfig | None = None,
        idle_timeout: float | None = None,
    ) -> None:
        self.groq = groq or FakeTranslator(ProviderId.GROQ, "llama3-8b-8192", phrases={"hello": "hola"})
        self.together = together or FakeTranslator(ProviderId.TOGETHER, "meta-llama/Llama-3.1-70B-Instruct-Turbo")
        self.capture = capture or FakeCapture()
        self.strategy = FakeStrategy()
        self.engine = FakeEngine()
        self.events: list[tuple[str, object]] = []
        dispatcher = TranslationDispatcher(
            {ProviderId.GROQ: self.groq, ProviderId.TOGETHER: self.together},
            router=ProviderRouter(ProviderId.GROQ),
            failure_delay=0.0,
        )
        self.session = TranslationSession(
            capture=self.capture,
            strategies=[self.strategy],
            dispatcher=dispatcher,
            speech=SpeechController(self.engine, watchdog_delay=5.0, keepalive_interval=5.0),
            config=config or SessionConfig(input_language="en-US", output_language="es", model="llama3-8b-8192"),
            idle_timeout=idle_timeout,
            banner_ttl=10.0,
            settle_delay=0.01,
        )
        self.session.add_listener(lambda event, payload: self.events.append((event, payload)))

    async def wait_for(self, predicate, timeout: float = 0.5) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            if predicate():
                return True
            await asyncio.sleep(0.005)
        return predicate()


def test_final_phrase_is_translated_and_spoken() -> None:
    async def scenario():
        h = Harness()
        assert await h.session.start_recording()
        assert h.session.mic_state == MicState.ON
        h.strategy.say("hel", final=False)
        h.strategy.say("hello")
        spoken = await h.wait_for(lambda: bool(h.engine.spoken), timeout=0.5)
        await h.session.aclose()
        return h, spoken

    h, spoken = asyncio.run(scenario())
    assert spoken
    assert [u.text for u in h.engine.spoken] == ["hola"]
    assert h.engine.spoken[0].lang == "es"
    assert h.groq.calls == ["hello"]
    transcripts = [p for e, p in h.events if e == "transcript"]
    assert [s.text for s in transcripts] == ["hel", "hello"]
    translations = [p for e, p in h.events if e == "translation"]
    assert [t.text for t in translations] == ["hola"]
    assert translations[0].speaker == Speaker.UNKNOWN


def test_auto_speak_off_keeps_translation_silent() -> None:
    async def scenario():
        h = Harness()
        await h.session.set_auto_speak(False)
        await h.session.start_recording()
        h.strategy.say("hello")
        await h.wait_for(lambda: bool(h.session.translations))
        await h.session.stop_recording()
        return h

    h = asyncio.run(scenario())
    assert [t.text for t in h.session.translations] == ["hola"]
    assert h.engine.spoken == []
    assert not any(b.message == LANGUAGE_CHANGED for b in h.session.banners)


def test_switch_languages_resets_pipeline_and_restarts() -> None:
    async def scenario():
        h = Harness()
        await h.session.start_recording()
        h.strategy.say("hello")
        await h.wait_for(lambda: bool(h.session.translations))
        assert len(h.session.dispatcher.cache) == 1
        await h.session.switch_languages()
        return h

    h = asyncio.run(scenario())
    cfg = h.session.config
    assert (cfg.input_language, cfg.output_language) == ("es-ES", "en")
    assert len(h.session.transcript) == 0
    assert h.session.translations == []
    assert len(h.session.dispatcher.cache) == 0
    assert h.session.banner is not None and h.session.banner.message == LANGUAGE_CHANGED
    assert h.session.banner.kind == BannerKind.INFO
    assert h.strategy.languages == ["en-US", "es-ES"]
    assert h.session.mic_state == MicState.ON
    assert ("reset", None) in h.events


def test_language_change_while_stopped_does_not_start_mic() -> None:
    async def scenario():
        h = Harness()
        await h.session.set_output_language("fr")
        return h

    h = asyncio.run(scenario())
    assert h.session.config.output_language == "fr"
    assert h.session.mic_state == MicState.OFF
    assert h.capture.acquired == 0
    assert h.session.banner.message == LANGUAGE_CHANGED


def test_results_after_stop_are_discarded() -> None:
    async def scenario():
        h = Harness(groq=FakeTranslator(ProviderId.GROQ, "llama3-8b-8192", delay=0.05))
        await h.session.start_recording()
        h.strategy.say("hello")
        await asyncio.sleep(0.01)
        await h.session.stop_recording()
        await asyncio.sleep(0.1)
        return h

    h = asyncio.run(scenario())
    assert h.groq.calls == ["hello"]
    assert h.session.translations == []
    assert h.engine.spoken == []


def test_degraded_translation_is_shown_but_not_spoken() -> None:
    async def scenario():
        h = Harness(
            groq=FakeTranslator(ProviderId.GROQ, "llama3-8b-8192", error=ProviderError("boom", status=500, provider="groq")),
            together=FakeTranslator(
                ProviderId.TOGETHER,
                "meta-llama/Llama-3.1-70B-Instruct-Turbo",
                error=ProviderError("down", status=503, provider="together"),
            ),
        )
        await h.session.start_recording()
        h.strategy.say("hello")
        await h.wait_for(lambda: bool(h.session.translations))
        await h.session.stop_recording()
        return h

    h = asyncio.run(scenario())
    assert [t.text for t in h.session.translations] == ["[Fallback Translation] hello"]
    assert h.engine.spoken == []


def test_idle_timeout_turns_mic_off_with_one_banner() -> None:
    async def scenario():
        h = Harness(idle_timeout=0.05)
        await h.session.start_recording()
        await h.wait_for(lambda: h.session.mic_state == MicState.OFF, timeout=1.0)
        await asyncio.sleep(0.05)
        return h

    h = asyncio.run(scenario())
    assert h.session.mic_state == MicState.OFF
    idle_banners = [b for b in h.session.banners if b.message == IDLE_STOPPED]
    assert len(idle_banners) == 1
    assert idle_banners[0].kind == BannerKind.INFO
    assert h.capture.released >= 1
    assert ("mic", MicState.OFF) in h.events


def test_mic_start_failure_shows_error_and_stays_off() -> None:
    async def scenario():
        h = Harness(capture=FakeCapture(error=PermissionDenied("Microphone permission denied")))
        started = await h.session.start_recording()
        return h, started

    h, started = asyncio.run(scenario())
    assert started is False
    assert h.session.mic_state == MicState.OFF
    assert h.session.mic.last_error
    assert h.session.banner is not None
    assert h.session.banner.kind == BannerKind.ERROR
    assert "Microphone access denied" in h.session.banner.message
    assert h.strategy.languages == []


def test_toggle_mic_turns_on_then_off() -> None:
    async def scenario():
        h = Harness()
        await h.session.toggle_mic()
        first = h.session.mic_state
        level = h.session.volume_level
        await h.session.toggle_mic()
        return h, first, level

    h, first, level = asyncio.run(scenario())
    assert first == MicState.ON
    assert level == 0.25
    assert h.session.mic_state == MicState.OFF
    assert h.capture.released == 1
    mic_events = [p for e, p in h.events if e == "mic"]
    assert mic_events == [MicState.STARTING, MicState.ON, MicState.STOPPING, MicState.OFF]


def test_initialize_without_usable_provider_reports_error() -> None:
    async def scenario():
        h = Harness(
            groq=FakeTranslator(ProviderId.GROQ, "llama3-8b-8192", valid=False),
            together=FakeTranslator(ProviderId.TOGETHER, "meta-llama/Llama-3.1-70B-Instruct-Turbo", valid=False),
        )
        await h.session.initialize()
        return h

    h = asyncio.run(scenario())
    assert h.session.app_state == AppState.READY
    assert h.session.banner is not None
    assert h.session.banner.kind == BannerKind.ERROR
    assert "Invalid groq API key" in h.session.banner.message


def test_initialize_falls_back_to_secondary_provider() -> None:
    async def scenario():
        h = Harness(groq=FakeTranslator(ProviderId.GROQ, "llama3-8b-8192", valid=False))
        await h.session.initialize()
        return h

    h = asyncio.run(scenario())
    assert h.session.app_state == AppState.READY
    assert h.session.config.provider == ProviderId.TOGETHER
    assert h.session.config.model == "meta-llama/Llama-3.1-70B-Instruct-Turbo"
    assert h.session.banner is None


def test_reset_clears_everything_and_turns_mic_off() -> None:
    async def scenario():
        h = Harness()
        await h.session.start_recording()
        h.strategy.say("hello")
        await h.wait_for(lambda: bool(h.engine.spoken))
        h.strategy.say("again", final=False)
        await h.wait_for(lambda: h.session.transcript.interim is not None)
        speaking_before = h.session.is_speaking
        await h.session.reset()
        await h.session.reset()
        return h, speaking_before

    h, speaking_before = asyncio.run(scenario())
    assert speaking_before
    assert not h.session.is_speaking
    assert h.engine.current is None
    assert h.session.mic_state == MicState.OFF
    assert len(h.session.transcript) == 0
    assert h.session.translations == []
    assert len(h.session.dispatcher.cache) == 0
    assert h.session.dispatcher.pending == 0
    assert h.capture.released == 1
    assert ("reset", None) in h.events


def test_fatal_transcription_error_surfaces_banner_and_stops_mic() -> None:
    async def scenario():
        h = Harness()
        await h.session.start_recording()
        h.strategy.fail(TransportError("session rejected", status=401))
        await h.wait_for(lambda: h.session.mic_state == MicState.OFF)
        await asyncio.sleep(0.01)
        return h

    h = asyncio.run(scenario())
    assert h.session.mic_state == MicState.OFF
    assert h.session.banner is not None
    assert h.session.banner.kind == BannerKind.ERROR
    assert "No transcription service" in h.session.banner.message
    assert h.session.manager.state == TranscriptionState.ERROR
    assert ("transcription_state", TranscriptionState.ERROR) in h.events
    assert h.strategy.stops == 1
    assert h.capture.released == 1
