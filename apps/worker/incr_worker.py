"""
apps.worker.incr_worker

Drive the incremental source one tick at a time: load the checkpoint, fetch
the next batch, write it to Parquet, then persist the new checkpoint.

The checkpoint is saved only after the batch is safely written, so a failure
anywhere in a tick leaves the previous checkpoint in place and the next tick
retries the identical range.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from contracts.incremental import FetchState
from contracts.interfaces import CheckpointStoreProtocol
from infra.logging_config import set_tick_context, tick_context
from pipeline.incr_source import CloudObjectsIncrSource
from pipeline.writer_parquet import BatchParquetWriter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchOutcome:
    """Summary of one worker tick."""

    state: FetchState
    previous_checkpoint: Optional[str]
    checkpoint: str
    rows: int
    files: tuple[str, ...] = ()

    @property
    def advanced(self) -> bool:
        return self.checkpoint != self.previous_checkpoint


def run_once(
    source: CloudObjectsIncrSource,
    store: CheckpointStoreProtocol,
    writer: BatchParquetWriter,
    *,
    source_limit: int,
) -> BatchOutcome:
    """Run one fetch cycle and commit its checkpoint."""
    previous = store.load()
    set_tick_context(checkpoint=previous)
    result = source.fetch_next_batch(previous, source_limit)

    files: List[str] = []
    if result.payload is not None:
        files = writer.write(result.payload, result.next_checkpoint)

    if result.next_checkpoint != previous:
        store.save(result.next_checkpoint)

    outcome = BatchOutcome(
        state=result.state,
        previous_checkpoint=previous,
        checkpoint=result.next_checkpoint,
        rows=result.num_rows,
        files=tuple(files),
    )
    logger.info(
        "Tick %s: checkpoint %s -> %s, %d row(s) in %d file(s)",
        outcome.state.value,
        previous,
        outcome.checkpoint,
        outcome.rows,
        len(outcome.files),
    )
    return outcome


def run_continuous(
    source: CloudObjectsIncrSource,
    store: CheckpointStoreProtocol,
    writer: BatchParquetWriter,
    *,
    source_limit: int,
    min_sync_interval_seconds: float,
    max_iterations: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
    heartbeat: Optional[Callable[[], None]] = None,
) -> List[BatchOutcome]:
    """Run ticks sequentially, at most one per ``min_sync_interval_seconds``.

    A tick that fails raises; ticks never overlap, which keeps a single writer
    on the checkpoint. ``heartbeat`` runs before every tick; the CLI uses it
    to refresh the checkpoint lock so a long run never looks stale.
    """
    outcomes: List[BatchOutcome] = []
    iteration = 0
    while max_iterations is None or iteration < max_iterations:
        iteration += 1
        started = clock()
        if heartbeat is not None:
            heartbeat()
        with tick_context(src_path=source.src_path, iteration=iteration):
            outcomes.append(run_once(source, store, writer, source_limit=source_limit))

        if max_iterations is not None and iteration >= max_iterations:
            break
        remaining = min_sync_interval_seconds - (clock() - started)
        if remaining > 0:
            sleep(remaining)
    return outcomes
