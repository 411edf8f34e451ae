from __future__ import annotations

import json
from pathlib import Path

import pytest

from gridchat.shared.services.durable_write import atomic_write_bytes, atomic_write_json


def test_write_json_replaces_file(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "session.json"
    atomic_write_json(path, {"b": 1, "a": [1, 2]}, sort_keys=True)
    atomic_write_json(path, {"b": 2, "a": []}, sort_keys=True)

    assert json.loads(path.read_text()) == {"a": [], "b": 2}
    assert path.read_text().startswith('{\n  "a"')
    assert [p.name for p in path.parent.iterdir()] == ["session.json"]


def test_unserializable_json_leaves_old_content(tmp_path: Path) -> None:
    path = tmp_path / "session.json"
    atomic_write_json(path, {"ok": True})

    with pytest.raises(TypeError):
        atomic_write_json(path, {"bad": object()})

    assert json.loads(path.read_text()) == {"ok": True}
    assert [p.name for p in tmp_path.iterdir()] == ["session.json"]


def test_failed_replace_removes_temp_file(tmp_path: Path, monkeypatch) -> None:
    path = tmp_path / "blob.bin"
    atomic_write_bytes(path, b"old")

    def broken_replace(src, dst):
        raise OSError("rename refused")

    monkeypatch.setattr("gridchat.shared.services.durable_write.os.replace", broken_replace)
    with pytest.raises(OSError, match="rename refused"):
        atomic_write_bytes(path, b"new")

    assert path.read_bytes() == b"old"
    assert [p.name for p in tmp_path.iterdir()] == ["blob.bin"]
