from __future__ import annotations

import json
from pathlib import Path

from parley.app import config as app_config


def test_load_default_config_contains_expected_keys() -> None:
    cfg = app_config.load_default_config()
    assert cfg["provider"] in {"groq", "together"}
    assert cfg["strategies"] == ["streaming", "batch", "on_device"]
    assert cfg["idle_timeout_sec"] == 120.0
    assert "output_language" in cfg


def test_load_default_config_returns_independent_copy() -> None:
    cfg = app_config.load_default_config()
    cfg["strategies"].append("bogus")
    assert app_config.load_default_config()["strategies"] == ["streaming", "batch", "on_device"]


def test_resolve_defaults_uses_explicit_config(tmp_path: Path) -> None:
    cfg_path = tmp_path / "explicit.json"
    cfg_path.write_text(json.dumps({"sr": 16000, "output_language": "fr"}), encoding="utf-8")
    defaults, used = app_config.resolve_defaults(str(cfg_path))
    assert used == cfg_path
    assert defaults["sr"] == 16000
    assert defaults["output_language"] == "fr"
    assert defaults["input_language"] == "en-US"


def test_ensure_user_config_exists_creates_file(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(app_config, "user_config_dir", lambda appname, appauthor=None: str(tmp_path))
    created = app_config.ensure_user_config_exists({"provider": "together", "sr": 16000})
    assert created.exists()
    assert created.parent == tmp_path
    loaded = json.loads(created.read_text(encoding="utf-8"))
    assert loaded["provider"] == "together"
    assert loaded["sr"] == 16000


def test_load_user_config_ignores_unknown_keys(tmp_path: Path) -> None:
    cfg_path = tmp_path / "user.json"
    cfg_path.write_text(
        json.dumps({"sr": 44100, "provider": "together", "unexpected": 1}),
        encoding="utf-8",
    )
    loaded, used = app_config.load_user_config(str(cfg_path))
    assert used == cfg_path
    assert loaded["sr"] == 44100
    assert loaded["provider"] == "together"
    assert "unexpected" not in loaded


def test_load_user_config_accepts_bom(tmp_path: Path) -> None:
    cfg_path = tmp_path / "bom.json"
    cfg_path.write_text("\ufeff" + json.dumps({"output_language": "de"}), encoding="utf-8")
    loaded, _ = app_config.load_user_config(str(cfg_path))
    assert loaded["output_language"] == "de"


def test_save_user_config_merges_and_filters_keys(tmp_path: Path) -> None:
    cfg_path = tmp_path / "user.json"
    cfg_path.write_text(
        json.dumps({"sr": 16000, "provider": "groq", "debug": False}),
        encoding="utf-8",
    )
    saved = app_config.save_user_config(
        {"provider": "together", "auto_speak": False, "junk": "x"},
        config_path=str(cfg_path),
    )
    assert saved == cfg_path
    loaded = json.loads(cfg_path.read_text(encoding="utf-8"))
    assert loaded["sr"] == 16000
    assert loaded["provider"] == "together"
    assert loaded["auto_speak"] is False
    assert "junk" not in loaded


def test_load_credentials_reads_environment_only() -> None:
    creds = app_config.load_credentials(
        {"GROQ_API_KEY": " gsk-1 ", "TOGETHER_API_KEY": "", "OPENAI_API_KEY": "sk-2"}
    )
    assert creds.groq_api_key == "gsk-1"
    assert creds.together_api_key is None
    assert creds.openai_api_key == "sk-2"
