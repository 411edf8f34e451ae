from __future__ import annotations

import json
import os
import time
from pathlib import Path

import pytest

from gridchat.engine.errors import PersistenceError
from gridchat.engine.models import TurnRole
from gridchat.shared.models.message import TextPart, Turn
from gridchat.shared.models.session import DEFAULT_SESSION_NAME
from gridchat.shared.services.persistence import SESSION_FILE, SessionStore
from gridchat.shared.services.workspace import WorkspaceFile


def _turns(text: str = "Summarize the Q3 numbers") -> list[Turn]:
    return [
        Turn(id="user-0-1", role=TurnRole.USER, parts=[TextPart(text=text)], timestamp=1),
        Turn(id="assistant-1-2", role=TurnRole.ASSISTANT, parts=[TextPart(text="Sure.")], timestamp=2),
    ]


def _files() -> list[WorkspaceFile]:
    return [
        WorkspaceFile(path="/home/user/uploads/.keep", data=b""),
        WorkspaceFile(path="/home/user/uploads/q3.csv", data=b"a,b\n1,2\n"),
    ]


def _context() -> list[dict]:
    return [{"role": "user", "content": "Summarize the Q3 numbers", "timestamp": 1}]


def test_create_and_get_session(tmp_path: Path) -> None:
    store = SessionStore(tmp_path)
    session = store.create_session("ws-1")

    loaded = store.get_session(session.id)
    assert loaded is not None
    assert loaded.workspace_id == "ws-1"
    assert loaded.name == DEFAULT_SESSION_NAME
    assert loaded.conversation == []
    assert store.load_workspace_files(session.id) == []


def test_get_missing_session_returns_none(tmp_path: Path) -> None:
    store = SessionStore(tmp_path)
    assert store.get_session("does-not-exist") is None
    with pytest.raises(PersistenceError):
        store.get_session("../escape")


def test_commit_writes_conversation_and_workspace_together(tmp_path: Path) -> None:
    store = SessionStore(tmp_path)
    session = store.create_session("ws-1")

    updated = store.commit(session.id, _turns(), _context(), _files())

    loaded = store.get_session(session.id)
    assert loaded.conversation == _turns()
    assert loaded.context == _context()
    assert loaded.updated_at == updated.updated_at
    assert loaded.updated_at > session.updated_at
    files = store.load_workspace_files(session.id)
    assert files == _files()
    assert not [p for p in tmp_path.iterdir() if p.name.startswith(".")]


def test_commit_auto_names_default_session(tmp_path: Path) -> None:
    store = SessionStore(tmp_path)
    session = store.create_session("ws-1")

    updated = store.commit(session.id, _turns(), [], [])
    assert updated.name == "Summarize the Q3 numbers"

    # An existing name is never replaced.
    updated = store.commit(session.id, _turns("Something else"), [], [])
    assert updated.name == "Summarize the Q3 numbers"


def test_auto_name_is_truncated(tmp_path: Path) -> None:
    store = SessionStore(tmp_path, session_name_max_length=20)
    session = store.create_session("ws-1")

    updated = store.save_session(session.id, _turns("Please reconcile every invoice in the ledger"))
    assert updated.name == "Please reconcile ..."
    assert len(updated.name) == 20


def test_failed_commit_keeps_previous_pair(tmp_path: Path, monkeypatch) -> None:
    store = SessionStore(tmp_path)
    session = store.create_session("ws-1")
    store.commit(session.id, _turns(), _context(), _files())

    def broken_write(target, session, files):
        (target / "partial").write_text("x")
        raise OSError("disk full")

    monkeypatch.setattr(store, "_write_pair", broken_write)
    with pytest.raises(PersistenceError, match="disk full"):
        store.commit(session.id, [], [], [])

    loaded = store.get_session(session.id)
    assert loaded.conversation == _turns()
    assert store.load_workspace_files(session.id) == _files()
    assert sorted(p.name for p in tmp_path.iterdir()) == [session.id]


def test_unserializable_context_raises_persistence_error(tmp_path: Path) -> None:
    store = SessionStore(tmp_path)
    session = store.create_session("ws-1")

    with pytest.raises(PersistenceError):
        store.commit(session.id, _turns(), [{"bad": object()}], [])

    assert store.get_session(session.id).conversation == []
    assert sorted(p.name for p in tmp_path.iterdir()) == [session.id]


def test_recovery_restores_interrupted_commit(tmp_path: Path) -> None:
    store = SessionStore(tmp_path)
    session = store.create_session("ws-1")
    store.commit(session.id, _turns(), _context(), _files())

    # Crash after moving the current pair aside, before publishing the new one.
    os.replace(tmp_path / session.id, tmp_path / f".old-{session.id}-deadbeef")
    (tmp_path / f".tmp-{session.id}-cafebabe").mkdir()

    reopened = SessionStore(tmp_path)

    assert reopened.get_session(session.id).conversation == _turns()
    assert reopened.load_workspace_files(session.id) == _files()
    assert sorted(p.name for p in tmp_path.iterdir()) == [session.id]


def test_recovery_drops_stale_backup(tmp_path: Path) -> None:
    store = SessionStore(tmp_path)
    session = store.create_session("ws-1")
    store.commit(session.id, _turns(), [], [])
    stale = tmp_path / f".old-{session.id}-deadbeef"
    stale.mkdir()
    (stale / SESSION_FILE).write_text("{}")
    (tmp_path / f".del-{session.id}-0badf00d").mkdir()

    SessionStore(tmp_path)

    assert sorted(p.name for p in tmp_path.iterdir()) == [session.id]


def test_list_sessions_sorted_and_scoped(tmp_path: Path) -> None:
    store = SessionStore(tmp_path)
    first = store.create_session("ws-1")
    second = store.create_session("ws-1")
    other = store.create_session("ws-2")
    time.sleep(0.01)
    store.save_session(first.id, _turns())

    listed = store.list_sessions("ws-1")
    assert [s.id for s in listed] == [first.id, second.id]
    assert {s.id for s in store.list_sessions()} == {first.id, second.id, other.id}


def test_list_sessions_skips_corrupt_records(tmp_path: Path) -> None:
    store = SessionStore(tmp_path)
    good = store.create_session("ws-1")
    bad = tmp_path / "broken"
    bad.mkdir()
    (bad / SESSION_FILE).write_text("{not json")

    assert [s.id for s in store.list_sessions("ws-1")] == [good.id]


def test_get_or_create_current_session(tmp_path: Path) -> None:
    store = SessionStore(tmp_path)
    created = store.get_or_create_current_session("ws-1")
    assert store.get_or_create_current_session("ws-1").id == created.id


def test_save_session_leaves_workspace_alone(tmp_path: Path) -> None:
    store = SessionStore(tmp_path)
    session = store.create_session("ws-1")
    store.commit(session.id, _turns(), _context(), _files())

    store.save_session(session.id, [], [])

    assert store.get_session(session.id).conversation == []
    assert store.load_workspace_files(session.id) == _files()


def test_rename_and_delete(tmp_path: Path) -> None:
    store = SessionStore(tmp_path)
    session = store.create_session("ws-1")

    renamed = store.rename_session(session.id, "  Budget  ")
    assert renamed.name == "Budget"
    payload = json.loads((tmp_path / session.id / SESSION_FILE).read_text())
    assert payload["name"] == "Budget"

    assert store.delete_session(session.id) is True
    assert store.get_session(session.id) is None
    assert store.delete_session(session.id) is False
    assert list(tmp_path.iterdir()) == []
