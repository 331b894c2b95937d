from __future__ import annotations

import argparse
import copy
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from platformdirs import user_config_dir

DEFAULTS: dict[str, Any] = {
    "list_devices": False,
    "device": None,
    "sr": 48000,
    "channels": 1,
    "blocksize": 1024,
    "debug": False,
    "input_language": "en-US",
    "output_language": "es",
    "model": None,
    "provider": "groq",
    "auto_speak": True,
    "strategies": ["streaming", "batch", "on_device"],
    "session_url": None,
    "transcribe_url": "https://api.openai.com/v1/audio/transcriptions",
    "transcribe_model": "whisper-1",
    "batch_chunk_sec": 5.0,
    "groq_base_url": "https://api.groq.com/openai/v1",
    "together_base_url": "https://api.together.xyz/v1",
    "whisper_model": "tiny",
    "rms_th": 250.0,
    "window_sec": 0.5,
    "silence_chunks": 2,
    "min_utter_sec": 0.6,
    "max_utter_sec": 6.0,
    "interim_every": 2,
    "tts_url": "https://api.groq.com/openai/v1/audio/speech",
    "tts_model": "playai-tts",
    "tts_voices": {"Fritz-PlayAI": "en-US", "Celeste-PlayAI": "en-US"},
    "tts_rate": 1.0,
    "tts_volume": 1.0,
    "idle_timeout_sec": 120.0,
    "settle_sec": 0.5,
    "banner_sec": 3.0,
    "retry_attempts": 3,
    "retry_base_delay": 1.0,
    "tts_watchdog_sec": 1.0,
    "tts_keepalive_sec": 5.0,
    "tts_ceiling_sec": 120.0,
    "translate_failure_delay": 1.0,
    "http_timeout": 15.0,
    "print_console": True,
}
CONFIG_KEYS: tuple[str, ...] = tuple(DEFAULTS.keys())
STRATEGY_NAMES: tuple[str, ...] = ("streaming", "batch", "on_device")


@dataclass(frozen=True)
class AppPaths:
    config_dir: Path
    config_path: Path


@dataclass(frozen=True)
class Credentials:
    groq_api_key: str | None = None
    together_api_key: str | None = None
    openai_api_key: str | None = None


def app_paths() -> AppPaths:
    config_dir = Path(user_config_dir("Parley", "Parley"))
    return AppPaths(config_dir=config_dir, config_path=config_dir / "config.json")


def load_credentials(environ: dict[str, str] | None = None) -> Credentials:
    env = os.environ if environ is None else environ

    def _get(key: str) -> str | None:
        value = str(env.get(key, "") or "").strip()
        return value or None

    return Credentials(
        groq_api_key=_get("GROQ_API_KEY"),
        together_api_key=_get("TOGETHER_API_KEY"),
        openai_api_key=_get("OPENAI_API_KEY"),
    )


def _load_json_dict(path: Path) -> dict[str, Any]:
    # Accept UTF-8 with or without BOM for Windows-edited config files.
    with path.open("r", encoding="utf-8-sig") as f:
        loaded = json.load(f)
    if not isinstance(loaded, dict):
        raise ValueError(f"config must be a JSON object: {path}")
    return loaded


def _write_json_dict(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)
        f.write("\n")


def _known_only(payload: dict[str, Any]) -> dict[str, Any]:
    return {key: payload[key] for key in CONFIG_KEYS if key in payload}


def load_default_config() -> dict[str, Any]:
    return copy.deepcopy(DEFAULTS)


def ensure_user_config_exists(defaults: dict[str, Any] | None = None) -> Path:
    paths = app_paths()
    if paths.config_path.exists():
        return paths.config_path
    _write_json_dict(paths.config_path, defaults or load_default_config())
    return paths.config_path


def load_user_config(config_path: str | None = None) -> tuple[dict[str, Any], Path]:
    defaults = load_default_config()
    if config_path:
        chosen = Path(config_path)
        if not chosen.exists():
            raise SystemExit(f"Config file not found: {chosen}")
    else:
        chosen = ensure_user_config_exists(defaults)
    merged = dict(defaults)
    merged.update(_known_only(_load_json_dict(chosen)))
    return merged, chosen


def save_user_config(values: dict[str, Any], config_path: str | None = None) -> Path:
    path = Path(config_path) if config_path else ensure_user_config_exists()
    existing = _known_only(_load_json_dict(path)) if path.exists() else {}
    merged = load_default_config()
    merged.update(existing)
    merged.update(_known_only(values))
    _write_json_dict(path, merged)
    return path


def resolve_defaults(config_path: str | None = None) -> tuple[dict[str, Any], Path]:
    return load_user_config(config_path=config_path)


def _strategy_list(value: str) -> list[str]:
    names = [part.strip() for part in value.split(",") if part.strip()]
    unknown = [n for n in names if n not in STRATEGY_NAMES]
    if unknown:
        raise argparse.ArgumentTypeError(f"unknown strategies: {', '.join(unknown)}")
    return names


def parser_with_defaults(defaults: dict[str, Any]) -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="parley", description="Live speech translation aid")
    p.add_argument("--config", default=None, help="JSON config path (CLI flags override config)")
    p.add_argument("--list-devices", action="store_true", help="print audio devices and exit")
    p.add_argument("--device", type=int, default=defaults["device"], help="sounddevice input device id")
    p.add_argument("--sr", type=int, default=defaults["sr"], help="capture sample rate (Hz)")
    p.add_argument("--channels", type=int, default=defaults["channels"], help="input channels")
    p.add_argument("--blocksize", type=int, default=defaults["blocksize"], help="capture block size (frames)")
    p.add_argument("--debug", action="store_true", help="log at DEBUG level")
    p.add_argument("--input-language", default=defaults["input_language"], help="spoken locale, e.g. en-US")
    p.add_argument("--output-language", default=defaults["output_language"], help="translation language code")
    p.add_argument("--model", default=defaults["model"], help="translation model (default: provider default)")
    p.add_argument(
        "--provider",
        default=defaults["provider"],
        choices=["groq", "together"],
        help="preferred translation provider",
    )
    p.add_argument(
        "--auto-speak",
        action=argparse.BooleanOptionalAction,
        default=defaults["auto_speak"],
        help="speak translations aloud",
    )
    p.add_argument(
        "--strategies",
        type=_strategy_list,
        default=list(defaults["strategies"]),
        help="comma separated transcription strategy order",
    )
    p.add_argument("--session-url", default=defaults["session_url"], help="streaming session negotiation URL")
    p.add_argument("--transcribe-url", default=defaults["transcribe_url"], help="batch transcription endpoint")
    p.add_argument("--whisper-model", default=defaults["whisper_model"], help="faster-whisper model size")
    p.add_argument("--rms-th", type=float, default=defaults["rms_th"], help="RMS threshold for speech VAD")
    p.add_argument(
        "--idle-timeout-sec",
        type=float,
        default=defaults["idle_timeout_sec"],
        help="auto-stop after this many seconds without speech",
    )
    p.add_argument(
        "--print-console",
        action=argparse.BooleanOptionalAction,
        default=defaults["print_console"],
        help="print transcript and translation lines to console",
    )
    return p


def resolve_args(argv: list[str] | None = None) -> argparse.Namespace:
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config", default=None)
    pre_args, _ = pre.parse_known_args(argv)
    defaults, _ = resolve_defaults(config_path=pre_args.config)
    parser = parser_with_defaults(defaults)
    args = parser.parse_args(argv)
    # Settings without a CLI flag still come from the config file.
    for key, value in defaults.items():
        if not hasattr(args, key):
            setattr(args, key, value)
    if defaults.get("list_devices"):
        args.list_devices = True
    if defaults.get("debug"):
        args.debug = True
    return args
