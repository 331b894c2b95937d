from __future__ import annotations

import logging
from typing import Any, Dict, List

from parley.app.config import Credentials
from parley.app.session import SessionConfig, TranslationSession
from parley.asr.base import TranscriptionStrategy
from parley.asr.batch import BatchStrategy
from parley.asr.negotiation import SessionNegotiator
from parley.asr.ondevice import OnDeviceStrategy
from parley.asr.streaming import StreamingStrategy
from parley.asr.whisper_local import FasterWhisperRecognizer
from parley.audio.level import LevelMeter
from parley.audio.mic import MicCapture
from parley.audio.utterance import UtteranceChunker
from parley.audio.vad import EnergyVAD
from parley.retry import RetryPolicy
from parley.translate.dispatcher import TranslationDispatcher
from parley.translate.factory import build_translators
from parley.translate.routing import ProviderId, ProviderRouter
from parley.tts.controller import SpeechController
from parley.tts.engine import SoundDeviceSpeechEngine, Voice
from parley.tts.synth import HttpSpeechSynthesizer


def _child(logger: logging.Logger | None, suffix: str) -> logging.Logger | None:
    return logger.getChild(suffix) if logger is not None else None


def build_strategies(
    args: Any,
    capture: MicCapture,
    credentials: Credentials,
    retry: RetryPolicy,
    logger: logging.Logger | None = None,
) -> List[TranscriptionStrategy]:
    timeout = float(args.http_timeout)
    available: Dict[str, TranscriptionStrategy] = {}
    negotiator = None
    if args.session_url:
        negotiator = SessionNegotiator(str(args.session_url), timeout=timeout, logger=_child(logger, "asr"))
    available["streaming"] = StreamingStrategy(capture, negotiator, retry=retry, logger=_child(logger, "asr"))
    available["batch"] = BatchStrategy(
        capture,
        endpoint=str(args.transcribe_url or ""),
        api_key=credentials.openai_api_key,
        model=str(args.transcribe_model),
        chunk_seconds=float(args.batch_chunk_sec),
        timeout=max(timeout, 30.0),
        logger=_child(logger, "asr"),
    )
    vad = EnergyVAD(rms_threshold=float(args.rms_th))

    def _chunker() -> UtteranceChunker:
        return UtteranceChunker(
            vad,
            window_sec=float(args.window_sec),
            silence_chunks=int(args.silence_chunks),
            min_utter_sec=float(args.min_utter_sec),
            max_utter_sec=float(args.max_utter_sec),
            interim_every=int(args.interim_every),
        )

    available["on_device"] = OnDeviceStrategy(
        capture,
        FasterWhisperRecognizer(model_size=str(args.whisper_model)),
        chunker_factory=_chunker,
        logger=_child(logger, "asr"),
    )
    return [available[name] for name in args.strategies if name in available]


def build_session(
    args: Any,
    credentials: Credentials,
    logger: logging.Logger | None = None,
) -> TranslationSession:
    retry = RetryPolicy(max_attempts=int(args.retry_attempts), base_delay=float(args.retry_base_delay))
    capture = MicCapture(
        sample_rate=int(args.sr),
        channels=int(args.channels),
        blocksize=int(args.blocksize),
        device=args.device,
        meter=LevelMeter(),
        logger=_child(logger, "audio"),
    )
    strategies = build_strategies(args, capture, credentials, retry, logger)

    provider = ProviderId(str(args.provider))
    dispatcher = TranslationDispatcher(
        build_translators(args, credentials, logger=_child(logger, "translate")),
        router=ProviderRouter(provider),
        failure_delay=float(args.translate_failure_delay),
        logger=_child(logger, "translate"),
    )

    synthesizer = HttpSpeechSynthesizer(
        credentials.groq_api_key,
        url=str(args.tts_url),
        model=str(args.tts_model),
        timeout=max(float(args.http_timeout), 30.0),
        logger=_child(logger, "tts"),
    )
    voices = [Voice(name=str(name), locale=str(locale)) for name, locale in dict(args.tts_voices).items()]
    if voices:
        synthesizer.default_voice = voices[0].name
    speech = SpeechController(
        SoundDeviceSpeechEngine(synthesizer, voices=voices, logger=_child(logger, "tts")),
        watchdog_delay=float(args.tts_watchdog_sec),
        keepalive_interval=float(args.tts_keepalive_sec),
        keepalive_ceiling=float(args.tts_ceiling_sec),
        rate=float(args.tts_rate),
        volume=float(args.tts_volume),
        logger=_child(logger, "tts"),
    )

    config = SessionConfig(
        input_language=str(args.input_language),
        output_language=str(args.output_language),
        model=str(args.model or ""),
        provider=provider,
        auto_speak=bool(args.auto_speak),
    )
    return TranslationSession(
        capture=capture,
        strategies=strategies,
        dispatcher=dispatcher,
        speech=speech if synthesizer.available() else None,
        config=config,
        retry=retry,
        idle_timeout=float(args.idle_timeout_sec),
        banner_ttl=float(args.banner_sec),
        settle_delay=float(args.settle_sec),
        closers=[synthesizer.aclose],
        logger=_child(logger, "session"),
    )
