"""
Protocol definitions for dependency injection.

This module defines the narrow capability interfaces the fetch orchestrator
depends on, enabling:
- Deterministic fakes in tests (no storage engine required)
- Clear contracts between the resolver, scanner, fetcher and blob store

Usage:
    from contracts.interfaces import BlobStoreProtocol, TimelineProtocol

    # In production, use pipeline.timeline.FileTimeline / services.blob_store
    # In tests, use the fakes from tests/aws_mocks.py and tests/factories.py
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    import pyarrow as pa

    from contracts.incremental import CloudObjectMetadata, QueryInfo

# -----------------------------------------------------------------------------
# AWS Service Protocols
# -----------------------------------------------------------------------------

@runtime_checkable
class S3ClientProtocol(Protocol):
    """Protocol for the S3 client calls used by the blob store."""

    def head_object(self, *, Bucket: str, Key: str) -> dict[str, Any]:
        """Return object metadata; raises ClientError (404) when missing."""
        ...

    def get_object(self, *, Bucket: str, Key: str) -> dict[str, Any]:
        """Return the object; ``Body`` is a streaming body with ``read()``."""
        ...


# -----------------------------------------------------------------------------
# Storage Protocols
# -----------------------------------------------------------------------------

@runtime_checkable
class BlobStoreProtocol(Protocol):
    """Protocol for reading objects by URI."""

    def exists(self, uri: str) -> bool:
        """Return True when the object is present."""
        ...

    def read_bytes(self, uri: str) -> bytes:
        """Return the full object content."""
        ...


@runtime_checkable
class TimelineProtocol(Protocol):
    """Read access to the completed instants of the source timeline."""

    def completed_instants(self) -> list[str]:
        """All retained completed instants in ascending order."""
        ...

    def last_instant(self) -> str | None:
        """Latest completed instant, or None for an empty timeline."""
        ...

    def is_before_timeline_starts(self, instant: str) -> bool:
        """True when *instant* is older than the earliest retained instant."""
        ...

    def instant_before(self, instant: str) -> str | None:
        """Latest completed instant strictly before *instant*, if any."""
        ...

    def find_instants_after(self, instant: str, limit: int) -> list[str]:
        """Up to *limit* completed instants strictly after *instant*, ascending."""
        ...


# -----------------------------------------------------------------------------
# Fetch stage Protocols
# -----------------------------------------------------------------------------

class MetadataScannerProtocol(Protocol):
    """Scans the metadata table for objects changed in a range."""

    def scan(self, query_info: QueryInfo) -> Any:
        """Return a (possibly lazy) relation of metadata rows for the range."""
        ...

    def is_empty(self, relation: Any) -> bool:
        """Check emptiness without materializing the relation."""
        ...

    def list_objects(self, relation: Any, check_if_exists: bool) -> list[CloudObjectMetadata]:
        """Turn metadata rows into object references."""
        ...


class ObjectDataFetcherProtocol(Protocol):
    """Reads object content into one table."""

    def fetch(self, objects: Sequence[CloudObjectMetadata], source_limit: int) -> pa.Table | None:
        """Return the merged rows, or None when nothing was produced."""
        ...


# -----------------------------------------------------------------------------
# Caller-side Protocols
# -----------------------------------------------------------------------------

class CheckpointStoreProtocol(Protocol):
    """Persists the last committed checkpoint between invocations."""

    def load(self) -> str | None:
        """Return the persisted checkpoint, or None when there is none."""
        ...

    def save(self, checkpoint: str) -> None:
        """Persist *checkpoint*."""
        ...
