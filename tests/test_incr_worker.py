"""Tests for the worker tick loop."""

from __future__ import annotations

from pathlib import Path

import pyarrow.parquet as pq
import pytest

from apps.worker.incr_worker import run_continuous, run_once
from contracts.errors import CheckpointStoreError, FetchError
from contracts.incremental import FetchState, MissingCheckpointStrategy
from infra.config import SourceConfig
from pipeline.checkpoint_store import FileCheckpointStore
from pipeline.incr_source import CloudObjectsIncrSource
from pipeline.writer_parquet import BatchParquetWriter, BatchWriterConfig
from tests.factories import metadata_row, write_commit, write_parquet_object


def _setup(tmp_path: Path, instants: list[str]) -> tuple[CloudObjectsIncrSource, FileCheckpointStore, BatchParquetWriter]:
    meta, objects = tmp_path / "meta", tmp_path / "objects"
    for instant in instants:
        size = write_parquet_object(objects, f"{instant}.parquet", [{"instant": instant}])
        write_commit(meta, instant, [metadata_row(objects.as_posix(), f"{instant}.parquet", size=size)])
    source = CloudObjectsIncrSource(
        SourceConfig(
            src_path=str(meta),
            object_scheme="file",
            num_instants_per_fetch=2,
            missing_checkpoint_strategy=MissingCheckpointStrategy.FROM_EARLIEST_RETAINED,
        )
    )
    store = FileCheckpointStore(tmp_path / "cp.json")
    writer = BatchParquetWriter(BatchWriterConfig(base_dir=str(tmp_path / "out")))
    return source, store, writer


def test_run_once_writes_batch_and_saves_checkpoint(tmp_path: Path) -> None:
    source, store, writer = _setup(tmp_path, ["1", "2", "3"])

    outcome = run_once(source, store, writer, source_limit=1 << 20)

    assert outcome.state is FetchState.DONE
    assert outcome.previous_checkpoint is None
    assert outcome.checkpoint == "2"
    assert outcome.advanced
    assert store.load() == "2"
    assert outcome.rows == 2
    assert sorted(v for f in outcome.files for v in pq.read_table(f).column("instant").to_pylist()) == ["1", "2"]


def test_run_once_caught_up_keeps_checkpoint(tmp_path: Path) -> None:
    source, store, writer = _setup(tmp_path, ["1"])
    store.save("1")

    outcome = run_once(source, store, writer, source_limit=1 << 20)

    assert outcome.state is FetchState.DONE_NO_PROGRESS
    assert not outcome.advanced
    assert outcome.files == ()


class _FailingSource:
    src_path = "x"

    def fetch_next_batch(self, last_checkpoint: str | None, source_limit: int) -> None:
        raise FetchError("boom")


def test_failed_tick_leaves_checkpoint_untouched(tmp_path: Path) -> None:
    _, store, writer = _setup(tmp_path, ["1"])
    store.save("1")

    with pytest.raises(FetchError):
        run_once(_FailingSource(), store, writer, source_limit=10)  # type: ignore[arg-type]

    assert store.load() == "1"


def test_run_continuous_drains_then_holds(tmp_path: Path) -> None:
    source, store, writer = _setup(tmp_path, ["1", "2", "3", "4", "5"])
    sleeps: list[float] = []

    outcomes = run_continuous(
        source,
        store,
        writer,
        source_limit=1 << 20,
        min_sync_interval_seconds=5.0,
        max_iterations=4,
        sleep=sleeps.append,
        clock=lambda: 100.0,
    )

    assert [o.checkpoint for o in outcomes] == ["2", "4", "5", "5"]
    assert outcomes[-1].state is FetchState.DONE_NO_PROGRESS
    assert sleeps == [5.0, 5.0, 5.0]
    assert store.load() == "5"


def test_run_continuous_calls_heartbeat_before_each_tick(tmp_path: Path) -> None:
    source, store, writer = _setup(tmp_path, ["1", "2", "3"])
    events: list[str] = []
    real_load = store.load

    def _load() -> object:
        events.append("tick")
        return real_load()

    store.load = _load  # type: ignore[method-assign]

    run_continuous(
        source,
        store,
        writer,
        source_limit=1 << 20,
        min_sync_interval_seconds=0.0,
        max_iterations=3,
        sleep=lambda _s: None,
        heartbeat=lambda: events.append("heartbeat"),
    )

    assert events == ["heartbeat", "tick"] * 3


def test_retry_after_failed_save_does_not_duplicate_rows(tmp_path: Path) -> None:
    source, store, writer = _setup(tmp_path, ["1", "2"])
    real_save = store.save

    def _failing_save(checkpoint: str) -> None:
        raise CheckpointStoreError("read-only volume")

    store.save = _failing_save  # type: ignore[method-assign]
    with pytest.raises(CheckpointStoreError):
        run_once(source, store, writer, source_limit=1 << 20)
    assert store.load() is None

    store.save = real_save  # type: ignore[method-assign]
    outcome = run_once(source, store, writer, source_limit=1 << 20)

    assert outcome.checkpoint == "2"
    assert pq.read_table(str(tmp_path / "out" / "checkpoint=2")).num_rows == 2
