"""Read-only view of a source table's commit timeline.

The timeline is a directory of commit files, one per completed instant. Each
commit lists the data files (relative to the table root) it wrote. Instants
are compared as plain strings, which matches time order for the fixed-width
timestamps the writers use.

Nothing is cached: every call re-lists the directory so that repeated
resolution against an unchanged directory gives the same answer and new
commits are picked up on the next call.
"""

from __future__ import annotations

import json
import logging
from bisect import bisect_left, bisect_right
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Tuple

from contracts.errors import RangeResolutionError
from infra.pipeline_paths import SourcePaths

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommitMetadata:
    """Content of one completed commit file."""

    instant: str
    files: Tuple[str, ...]


def _parse_commit(path: Path, instant: str) -> CommitMetadata:
    try:
        payload: Any = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise RangeResolutionError(f"Unreadable commit file {path}: {exc}") from exc

    if not isinstance(payload, dict):
        raise RangeResolutionError(f"Invalid commit file (expected object): {path}")

    recorded = str(payload.get("instant") or instant).strip()
    if recorded != instant:
        raise RangeResolutionError(
            f"Commit file {path.name} records instant {recorded!r}, expected {instant!r}"
        )

    files = payload.get("files") or []
    if not isinstance(files, list):
        raise RangeResolutionError(f"Invalid 'files' in commit file {path}")
    return CommitMetadata(instant=instant, files=tuple(str(f) for f in files if str(f).strip()))


class FileTimeline:
    """Completed instants of the table rooted at ``src_path``."""

    def __init__(self, src_path: str | Path) -> None:
        self._paths = SourcePaths.for_source(src_path)

    @property
    def paths(self) -> SourcePaths:
        return self._paths

    def completed_instants(self) -> List[str]:
        timeline_dir = self._paths.timeline_dir()
        if not timeline_dir.is_dir():
            raise RangeResolutionError(f"Timeline not found: {timeline_dir}")

        try:
            entries = list(timeline_dir.iterdir())
        except OSError as exc:
            raise RangeResolutionError(f"Cannot list timeline {timeline_dir}: {exc}") from exc

        instants = []
        for entry in entries:
            if not entry.is_file():
                continue
            instant = self._paths.instant_from_commit_file(entry)
            if instant is not None:
                instants.append(instant)
        return sorted(set(instants))

    def first_instant(self) -> Optional[str]:
        instants = self.completed_instants()
        return instants[0] if instants else None

    def last_instant(self) -> Optional[str]:
        instants = self.completed_instants()
        return instants[-1] if instants else None

    def is_before_timeline_starts(self, instant: str) -> bool:
        first = self.first_instant()
        return first is not None and instant < first

    def find_instants_after(self, instant: str, limit: int) -> List[str]:
        if limit < 1:
            return []
        instants = self.completed_instants()
        idx = bisect_right(instants, instant)
        return instants[idx: idx + limit]

    def instant_before(self, instant: str) -> Optional[str]:
        """Latest completed instant strictly before *instant*, if any."""
        instants = self.completed_instants()
        idx = bisect_left(instants, instant)
        return instants[idx - 1] if idx > 0 else None

    def commits_in_range(self, start_exclusive: str, end_inclusive: str) -> List[CommitMetadata]:
        """Commit metadata for completed instants in ``(start, end]``, ascending."""
        out: List[CommitMetadata] = []
        for instant in self.completed_instants():
            if start_exclusive < instant <= end_inclusive:
                out.append(_parse_commit(self._paths.commit_file(instant), instant))
        logger.debug("Timeline commits in (%s, %s]: %d", start_exclusive, end_inclusive, len(out))
        return out
