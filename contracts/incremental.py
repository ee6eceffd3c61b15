"""Value types of the incremental fetch protocol.

Everything here is immutable and created fresh for one ``fetch_next_batch``
call, except the checkpoint string itself which the caller persists between
calls.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    import pyarrow as pa

logger = logging.getLogger(__name__)

# Sorts before every real instant; used as the exclusive start when the whole
# retained timeline must be read.
DEFAULT_BEGIN_INSTANT = "000"


class MissingCheckpointStrategy(str, Enum):
    """Where to start when no usable checkpoint exists."""

    FROM_EARLIEST_RETAINED = "FROM_EARLIEST_RETAINED"
    FROM_LATEST = "FROM_LATEST"


class QueryType(str, Enum):
    """How the metadata table is read for a range."""

    INCREMENTAL = "incremental"
    SNAPSHOT = "snapshot"


class FileFormat(str, Enum):
    """File formats understood for the metadata table and fetched objects."""

    PARQUET = "parquet"
    JSON = "json"
    CSV = "csv"


class FetchState(str, Enum):
    """States of one fetch cycle. ``DONE*`` members are terminal."""

    INIT = "init"
    RESOLVE = "resolve"
    DONE_NO_PROGRESS = "done_no_progress"
    SCAN = "scan"
    DONE_EMPTY = "done_empty"
    FETCH = "fetch"
    DONE = "done"

    @property
    def is_terminal(self) -> bool:
        return self in (FetchState.DONE_NO_PROGRESS, FetchState.DONE_EMPTY, FetchState.DONE)


def normalize_checkpoint(checkpoint: Optional[str]) -> Optional[str]:
    """Return the checkpoint, or None when it is absent or blank."""
    if checkpoint is None:
        return None
    text = str(checkpoint).strip()
    return text or None


@dataclass(frozen=True)
class QueryInfo:
    """Resolved ``(start, end]`` instant range plus how to query it."""

    query_type: QueryType
    start_instant: str
    end_instant: str

    def __post_init__(self) -> None:
        if not self.start_instant or not self.end_instant:
            raise ValueError("QueryInfo instants must be non-empty")
        if self.end_instant < self.start_instant:
            raise ValueError(
                f"end instant {self.end_instant!r} is before start instant {self.start_instant!r}"
            )

    def is_caught_up(self) -> bool:
        return self.start_instant == self.end_instant

    def is_snapshot(self) -> bool:
        return self.query_type is QueryType.SNAPSHOT

    def log_details(self) -> None:
        logger.debug(
            "query_type=%s start_instant=%s end_instant=%s",
            self.query_type.value,
            self.start_instant,
            self.end_instant,
        )


@dataclass(frozen=True)
class CloudObjectMetadata:
    """Reference to one object in the blob store."""

    uri: str
    size: int
    exists: Optional[bool] = None  # None when not checked


@dataclass(frozen=True)
class FetchResult:
    """Outcome of one ``fetch_next_batch`` call.

    Unpacks as ``payload, next_checkpoint`` so callers can treat it as the
    plain pair.
    """

    payload: Optional["pa.Table"]
    next_checkpoint: str
    state: FetchState
    query_info: Optional[QueryInfo] = None
    num_objects: int = 0

    def __post_init__(self) -> None:
        if not self.state.is_terminal:
            raise ValueError(f"FetchResult requires a terminal state, got {self.state.value}")

    def __iter__(self) -> Iterator[Any]:
        yield self.payload
        yield self.next_checkpoint

    @property
    def num_rows(self) -> int:
        return 0 if self.payload is None else int(self.payload.num_rows)
