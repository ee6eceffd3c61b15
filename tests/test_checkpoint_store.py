"""Unit tests for the file-backed checkpoint store."""

from __future__ import annotations

import json
import os
import time
from pathlib import Path

import pytest

from contracts.errors import CheckpointLockError, CheckpointStoreError
from pipeline.checkpoint_store import CheckpointRecord, FileCheckpointStore
from version import CHECKPOINT_FORMAT_VERSION, ENGINE_NAME


def test_load_without_file_returns_none(tmp_path: Path) -> None:
    assert FileCheckpointStore(tmp_path / "cp.json").load() is None


def test_save_then_load(tmp_path: Path) -> None:
    store = FileCheckpointStore(tmp_path / "state" / "cp.json")

    store.save("20240101000000")

    assert store.load() == "20240101000000"
    payload = json.loads(store.path.read_text(encoding="utf-8"))
    assert payload["checkpoint"] == "20240101000000"
    assert payload["engine_name"] == ENGINE_NAME
    assert payload["format_version"] == CHECKPOINT_FORMAT_VERSION
    assert payload["updated_at"].endswith("Z")
    assert list(store.path.parent.glob("*.tmp")) == []


def test_save_rejects_blank_checkpoint(tmp_path: Path) -> None:
    with pytest.raises(CheckpointStoreError):
        FileCheckpointStore(tmp_path / "cp.json").save("  ")


def test_unreadable_file_raises(tmp_path: Path) -> None:
    path = tmp_path / "cp.json"
    path.write_text("{broken", encoding="utf-8")

    with pytest.raises(CheckpointStoreError):
        FileCheckpointStore(path).load()


def test_newer_format_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "cp.json"
    path.write_text(json.dumps({"checkpoint": "1", "format_version": CHECKPOINT_FORMAT_VERSION + 1}), encoding="utf-8")

    with pytest.raises(CheckpointStoreError):
        FileCheckpointStore(path).load()


def test_record_from_dict_fills_defaults() -> None:
    record = CheckpointRecord.from_dict({"checkpoint": " 7 "})
    assert record.checkpoint == "7"
    assert record.format_version == CHECKPOINT_FORMAT_VERSION


def test_lock_is_exclusive_and_released(tmp_path: Path) -> None:
    store = FileCheckpointStore(tmp_path / "cp.json")

    with store.lock(ttl_seconds=60):
        assert store.lock_path.exists()
        with pytest.raises(CheckpointLockError):
            with FileCheckpointStore(tmp_path / "cp.json").lock(ttl_seconds=60):
                pass

    assert not store.lock_path.exists()


def test_stale_lock_is_reclaimed(tmp_path: Path) -> None:
    store = FileCheckpointStore(tmp_path / "cp.json")
    store.lock_path.write_text("other", encoding="utf-8")
    old = time.time() - 3600
    os.utime(store.lock_path, (old, old))

    with store.lock(ttl_seconds=60) as token:
        assert store.lock_path.read_text(encoding="utf-8") == token


def test_release_keeps_foreign_lock(tmp_path: Path) -> None:
    store = FileCheckpointStore(tmp_path / "cp.json")

    with store.lock(ttl_seconds=60):
        store.lock_path.write_text("someone-else", encoding="utf-8")

    assert store.lock_path.read_text(encoding="utf-8") == "someone-else"


def test_refreshed_lock_is_not_reclaimed(tmp_path: Path) -> None:
    holder = FileCheckpointStore(tmp_path / "cp.json")
    contender = FileCheckpointStore(tmp_path / "cp.json")

    with holder.lock(ttl_seconds=60) as token:
        old = time.time() - 120
        os.utime(holder.lock_path, (old, old))
        holder.refresh(token)

        with pytest.raises(CheckpointLockError):
            with contender.lock(ttl_seconds=60):
                pass
        assert holder.lock_path.read_text(encoding="utf-8") == token


def test_refresh_rejects_lost_lock(tmp_path: Path) -> None:
    store = FileCheckpointStore(tmp_path / "cp.json")

    with store.lock(ttl_seconds=60) as token:
        store.lock_path.write_text("someone-else", encoding="utf-8")
        with pytest.raises(CheckpointLockError):
            store.refresh(token)
        store.lock_path.unlink()
        with pytest.raises(CheckpointLockError):
            store.refresh(token)
