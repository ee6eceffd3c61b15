"""Contracts and canonical schema.

The contracts package defines:
- the value types of the incremental fetch protocol
- the error taxonomy raised by collaborators
- the Arrow schema of the cloud object metadata table
- Protocol definitions for dependency injection

Main exports:
- QueryInfo, CloudObjectMetadata, FetchResult, FetchState
- MissingCheckpointStrategy, QueryType, FileFormat
- ConfigurationError, RangeResolutionError, ScanError, FetchError
"""

from contracts import errors
from contracts import incremental

# Explicit re-exports to satisfy ruff F401
__all__ = [
    "DEFAULT_BEGIN_INSTANT",
    "CloudObjectMetadata",
    "ConfigurationError",
    "FetchError",
    "FetchResult",
    "FetchState",
    "FileFormat",
    "IncrSourceError",
    "MissingCheckpointStrategy",
    "QueryInfo",
    "QueryType",
    "RangeResolutionError",
    "ScanError",
    "normalize_checkpoint",
]

# Re-export for convenience
DEFAULT_BEGIN_INSTANT = incremental.DEFAULT_BEGIN_INSTANT
CloudObjectMetadata = incremental.CloudObjectMetadata
FetchResult = incremental.FetchResult
FetchState = incremental.FetchState
FileFormat = incremental.FileFormat
MissingCheckpointStrategy = incremental.MissingCheckpointStrategy
QueryInfo = incremental.QueryInfo
QueryType = incremental.QueryType
normalize_checkpoint = incremental.normalize_checkpoint

ConfigurationError = errors.ConfigurationError
FetchError = errors.FetchError
IncrSourceError = errors.IncrSourceError
RangeResolutionError = errors.RangeResolutionError
ScanError = errors.ScanError
