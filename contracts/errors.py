"""Error taxonomy for the incremental source.

Collaborators raise these (chaining the underlying library error); the fetch
orchestrator lets them propagate untouched so that no checkpoint is returned
for a failed invocation.
"""

from __future__ import annotations


class IncrSourceError(RuntimeError):
    """Base class for all incremental source failures."""


class ConfigurationError(IncrSourceError):
    """A required option is missing or invalid. Not retryable."""


class RangeResolutionError(IncrSourceError):
    """The timeline is unreachable or inconsistent."""


class ScanError(IncrSourceError):
    """Reading the metadata table failed."""


class FetchError(IncrSourceError):
    """Checking or reading an object from the blob store failed."""


class CheckpointStoreError(IncrSourceError):
    """The persisted checkpoint could not be read or written."""


class CheckpointLockError(CheckpointStoreError):
    """Another writer holds the checkpoint lock."""
