from __future__ import annotations

from pathlib import Path

from gridchat.engine.config import DEFAULT_SYSTEM_PROMPT, EngineConfig


def test_defaults() -> None:
    config = EngineConfig()
    assert config.session_name_max_length == 40
    assert config.follow_mode is True
    assert config.autosave_enabled is True
    assert config.system_prompt == DEFAULT_SYSTEM_PROMPT
    assert config.sessions_dir == config.data_dir / "sessions"
    assert config.provider_config_path.name == "provider.yaml"


def test_from_env_overrides(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("GRIDCHAT_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("GRIDCHAT_LOG_LEVEL", "debug")
    monkeypatch.setenv("GRIDCHAT_SESSION_NAME_MAX", "2")
    monkeypatch.setenv("GRIDCHAT_FOLLOW_MODE", "off")
    monkeypatch.setenv("GRIDCHAT_AUTOSAVE", "0")

    config = EngineConfig.from_env()

    assert config.data_dir == tmp_path
    assert config.log_level == "DEBUG"
    # Clamped so the ellipsis always fits.
    assert config.session_name_max_length == 4
    assert config.follow_mode is False
    assert config.autosave_enabled is False
    assert config.log_dir == tmp_path / "logs"


def test_from_env_blank_flag_uses_default(monkeypatch) -> None:
    monkeypatch.setenv("GRIDCHAT_FOLLOW_MODE", "  ")
    monkeypatch.delenv("GRIDCHAT_AUTOSAVE", raising=False)
    config = EngineConfig.from_env()
    assert config.follow_mode is True
    assert config.autosave_enabled is True
