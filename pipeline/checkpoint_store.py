"""File-backed checkpoint persistence.

The incremental source owns no state; the caller persists the checkpoint it
returns. This store keeps it in a small JSON document written atomically
(tmp file + replace), and offers an exclusive lock file so only one writer
advances a given checkpoint at a time.
"""

from __future__ import annotations

import json
import os
import time
import uuid
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Iterator, Optional

from contracts.errors import CheckpointLockError, CheckpointStoreError
from contracts.incremental import normalize_checkpoint
from version import CHECKPOINT_FORMAT_VERSION, ENGINE_NAME, ENGINE_VERSION


def _utc_now_iso() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class CheckpointRecord:
    """Persisted checkpoint document."""

    checkpoint: str
    updated_at: str = ""
    engine_name: str = ENGINE_NAME
    engine_version: str = ENGINE_VERSION
    format_version: int = CHECKPOINT_FORMAT_VERSION

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        if not d.get("updated_at"):
            d["updated_at"] = _utc_now_iso()
        return d

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> CheckpointRecord:
        return cls(
            checkpoint=str(payload.get("checkpoint") or "").strip(),
            updated_at=str(payload.get("updated_at") or "").strip(),
            engine_name=str(payload.get("engine_name") or ENGINE_NAME),
            engine_version=str(payload.get("engine_version") or ENGINE_VERSION),
            format_version=int(payload.get("format_version") or CHECKPOINT_FORMAT_VERSION),
        )


class FileCheckpointStore:
    """Checkpoint kept in a JSON file next to an optional lock file."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def lock_path(self) -> Path:
        return self._path.with_suffix(self._path.suffix + ".lock")

    def load(self) -> Optional[str]:
        """Return the persisted checkpoint, or None when none was saved yet."""
        record = self.load_record()
        return None if record is None else normalize_checkpoint(record.checkpoint)

    def load_record(self) -> Optional[CheckpointRecord]:
        if not self._path.exists():
            return None
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise CheckpointStoreError(f"Unreadable checkpoint file {self._path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise CheckpointStoreError(f"Invalid checkpoint file (expected object): {self._path}")
        if int(payload.get("format_version") or CHECKPOINT_FORMAT_VERSION) > CHECKPOINT_FORMAT_VERSION:
            raise CheckpointStoreError(
                f"Checkpoint file {self._path} was written by a newer format "
                f"({payload.get('format_version')!r} > {CHECKPOINT_FORMAT_VERSION})"
            )
        return CheckpointRecord.from_dict(payload)

    def save(self, checkpoint: str) -> None:
        """Persist *checkpoint* (atomically best-effort)."""
        value = normalize_checkpoint(checkpoint)
        if value is None:
            raise CheckpointStoreError("Refusing to persist an empty checkpoint")

        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + f".{uuid.uuid4().hex}.tmp")
        payload = CheckpointRecord(checkpoint=value).to_dict()
        try:
            tmp.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
            tmp.replace(self._path)
        except OSError as exc:
            raise CheckpointStoreError(f"Cannot write checkpoint file {self._path}: {exc}") from exc
        finally:
            if tmp.exists():
                tmp.unlink()

    @contextmanager
    def lock(self, ttl_seconds: int = 1800) -> Iterator[str]:
        """Hold the single-writer lock; a lock older than *ttl_seconds* is reclaimed."""
        token = f"{os.getpid()}:{uuid.uuid4().hex}"
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._acquire(token, ttl_seconds)
        try:
            yield token
        finally:
            self._release(token)

    def refresh(self, token: str) -> None:
        """Re-touch a held lock so it does not age past its TTL.

        Raises CheckpointLockError when the lock is no longer held by *token*.
        """
        try:
            held = self.lock_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            held = None
        if held != token:
            raise CheckpointLockError(f"Checkpoint lock {self.lock_path} is no longer held by this writer")
        os.utime(self.lock_path)

    def _acquire(self, token: str, ttl_seconds: int) -> None:
        for _ in range(2):
            try:
                fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            except FileExistsError:
                if self._lock_is_stale(ttl_seconds):
                    self.lock_path.unlink(missing_ok=True)
                    continue
                raise CheckpointLockError(f"Checkpoint {self._path} is locked by another writer") from None
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(token)
            return
        raise CheckpointLockError(f"Could not acquire checkpoint lock {self.lock_path}")

    def _lock_is_stale(self, ttl_seconds: int) -> bool:
        try:
            age = time.time() - self.lock_path.stat().st_mtime
        except FileNotFoundError:
            return True
        return age > ttl_seconds

    def _release(self, token: str) -> None:
        try:
            held = self.lock_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return
        if held == token:
            self.lock_path.unlink(missing_ok=True)
