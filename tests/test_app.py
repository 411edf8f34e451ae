from __future__ import annotations

import logging
from pathlib import Path

import pytest

from gridchat.adapters.dirty_ranges import DirtyRange
from gridchat.app import main
from gridchat.engine.models import ToolCallStatus, TurnRole
from gridchat.engine.yaml_config import ProviderConfig, save_provider_config
from gridchat.shared.models.message import TextPart, ToolCallPart, Turn
from gridchat.shared.services.persistence import SessionStore


@pytest.fixture(autouse=True)
def _restore_logging(monkeypatch):
    monkeypatch.setenv("COLUMNS", "200")
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def _seed(tmp_path: Path) -> str:
    store = SessionStore(tmp_path / "sessions")
    session = store.create_session("ws-1")
    turns = [
        Turn(id="user-0-1", role=TurnRole.USER, parts=[TextPart(text="Fill A1")], timestamp=1),
        Turn(
            id="assistant-1-2",
            role=TurnRole.ASSISTANT,
            parts=[
                ToolCallPart(
                    id="t1",
                    name="write_cells",
                    status=ToolCallStatus.COMPLETE,
                    dirty_ranges=[DirtyRange(1, "A1")],
                ),
                TextPart(text="Done filling"),
            ],
            timestamp=2,
        ),
    ]
    store.commit(session.id, turns, [], [])
    return session.id


def _run(args: list[str]) -> int:
    with pytest.raises(SystemExit) as exc:
        main(args)
    return exc.value.code


def test_list_sessions(tmp_path: Path, capsys) -> None:
    _seed(tmp_path)
    assert _run(["--data-dir", str(tmp_path), "--list"]) == 0
    out = capsys.readouterr().out
    assert "Fill A1" in out
    assert (tmp_path / "logs" / "gridchat.log").exists()


def test_list_empty(tmp_path: Path, capsys) -> None:
    assert _run(["--data-dir", str(tmp_path)]) == 0
    assert "No saved sessions." in capsys.readouterr().out


def test_show_session(tmp_path: Path, capsys) -> None:
    session_id = _seed(tmp_path)
    assert _run(["--data-dir", str(tmp_path), "--show", session_id]) == 0
    out = capsys.readouterr().out
    assert "Done filling" in out
    assert "write_cells" in out
    assert "→ A1" in out


def test_show_missing_session(tmp_path: Path, capsys) -> None:
    assert _run(["--data-dir", str(tmp_path), "--show", "nope"]) == 1
    assert "not found" in capsys.readouterr().out


def test_show_provider_masks_key(tmp_path: Path, capsys) -> None:
    save_provider_config(
        ProviderConfig(provider="anthropic", api_key="sk-ant-secret-value", model="m"),
        tmp_path / "provider.yaml",
    )
    assert _run(["--data-dir", str(tmp_path), "--provider"]) == 0
    out = capsys.readouterr().out
    assert "sk-a…alue" in out
    assert "secret" not in out
