from __future__ import annotations

import json
from pathlib import Path

from parley.app import services as app_services
from parley.app.config import Credentials, resolve_args
from parley.asr.batch import BatchStrategy
from parley.asr.ondevice import OnDeviceStrategy
from parley.asr.streaming import StreamingStrategy
from parley.audio.mic import MicCapture
from parley.retry import RetryPolicy
from parley.translate.routing import ProviderId


def _args(tmp_path: Path, *extra: str):
    cfg_path = tmp_path / "app.json"
    cfg_path.write_text(json.dumps({}), encoding="utf-8")
    return resolve_args(["--config", str(cfg_path), *extra])


def test_build_strategies_follows_configured_order(tmp_path: Path) -> None:
    args = _args(tmp_path, "--strategies", "on_device,batch,streaming")
    strategies = app_services.build_strategies(args, MicCapture(), Credentials(), RetryPolicy())
    assert [type(s) for s in strategies] == [OnDeviceStrategy, BatchStrategy, StreamingStrategy]


def test_build_strategies_availability_depends_on_configuration(tmp_path: Path) -> None:
    args = _args(tmp_path)
    plain = app_services.build_strategies(args, MicCapture(), Credentials(), RetryPolicy())
    assert [s.available() for s in plain[:2]] == [False, False]

    args = _args(tmp_path, "--session-url", "https://asr.example/session")
    configured = app_services.build_strategies(
        args, MicCapture(), Credentials(openai_api_key="sk-test"), RetryPolicy()
    )
    assert [s.available() for s in configured[:2]] == [True, True]


def test_build_session_without_groq_key_has_no_speech(tmp_path: Path) -> None:
    args = _args(tmp_path, "--provider", "together", "--output-language", "fr")
    session = app_services.build_session(args, Credentials(together_api_key="tk-test"))
    assert session.speech is None
    assert session.config.provider == ProviderId.TOGETHER
    assert session.config.output_language == "fr"
    assert session.dispatcher.translator_for(ProviderId.TOGETHER) is not None


def test_build_session_with_groq_key_wires_speech(tmp_path: Path) -> None:
    args = _args(tmp_path)
    session = app_services.build_session(args, Credentials(groq_api_key="gsk-test"))
    assert session.speech is not None
    assert session.config.input_language == "en-US"
    assert session.config.auto_speak is True
