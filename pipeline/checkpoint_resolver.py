"""Turn a prior checkpoint (or its absence) into a concrete instant range.

The resolver never counts instants itself: the timeline answers "which
instants follow X" and its answer is authoritative for the end of the range.

Start of the range (exclusive):
  - a non-blank checkpoint is used as-is;
  - FROM_LATEST starts just below the latest completed instant, so the first
    batch holds exactly that instant;
  - FROM_EARLIEST_RETAINED starts at DEFAULT_BEGIN_INSTANT, so the earliest
    retained instant is part of the first batch.

A start older than the earliest retained instant (an expired checkpoint, or
the sentinel) is read with a snapshot query, since the commits that would
name its files are gone.
"""

from __future__ import annotations

import logging
from typing import Optional

from contracts.errors import ConfigurationError, RangeResolutionError
from contracts.incremental import (
    DEFAULT_BEGIN_INSTANT,
    MissingCheckpointStrategy,
    QueryInfo,
    QueryType,
    normalize_checkpoint,
)
from contracts.interfaces import TimelineProtocol

logger = logging.getLogger(__name__)


def strictly_lower_instant(instant: str, timeline: TimelineProtocol) -> str:
    """Return an instant that sorts immediately below *instant*.

    All-digit instants are decremented keeping their width; anything else
    falls back to the preceding completed instant on the timeline.
    """
    if instant.isdigit():
        value = int(instant)
        if value > 0:
            return str(value - 1).zfill(len(instant))
        return DEFAULT_BEGIN_INSTANT

    return timeline.instant_before(instant) or DEFAULT_BEGIN_INSTANT


class CheckpointResolver:
    """Resolve ``(checkpoint, max_instants, strategy)`` against a timeline."""

    def __init__(self, timeline: TimelineProtocol) -> None:
        self._timeline = timeline

    def resolve(
        self,
        prior_checkpoint: Optional[str],
        max_instants: int,
        strategy: Optional[MissingCheckpointStrategy],
    ) -> QueryInfo:
        if max_instants < 1:
            raise ConfigurationError(f"num_instants_per_fetch must be >= 1 (got {max_instants})")

        begin = self._begin_instant(normalize_checkpoint(prior_checkpoint), strategy)

        if strategy is MissingCheckpointStrategy.FROM_LATEST or not self._timeline.is_before_timeline_starts(begin):
            query_type = QueryType.INCREMENTAL
        else:
            query_type = QueryType.SNAPSHOT

        following = self._timeline.find_instants_after(begin, max_instants)
        end = following[-1] if following else begin
        if end < begin:
            raise RangeResolutionError(f"Timeline returned end instant {end!r} before start {begin!r}")

        try:
            query_info = QueryInfo(query_type=query_type, start_instant=begin, end_instant=end)
        except ValueError as exc:
            raise RangeResolutionError(str(exc)) from exc

        if logger.isEnabledFor(logging.DEBUG):
            query_info.log_details()
        return query_info

    def _begin_instant(
        self,
        checkpoint: Optional[str],
        strategy: Optional[MissingCheckpointStrategy],
    ) -> str:
        if checkpoint is not None:
            return checkpoint

        if strategy is None:
            raise ConfigurationError(
                "Missing begin instant for incremental pull. Set "
                "SOURCE__MISSING_CHECKPOINT_STRATEGY to FROM_EARLIEST_RETAINED or FROM_LATEST."
            )

        if strategy is MissingCheckpointStrategy.FROM_LATEST:
            latest = self._timeline.last_instant()
            if latest is None:
                return DEFAULT_BEGIN_INSTANT
            return strictly_lower_instant(latest, self._timeline)

        return DEFAULT_BEGIN_INSTANT
