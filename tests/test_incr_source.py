"""Tests for the incremental source fetch cycle.

The first half drives the state machine with in-memory collaborators; the
second half runs whole cycles against an on-disk timeline and local objects.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Sequence

import pyarrow as pa
import pytest

from contracts.errors import ConfigurationError, FetchError, ScanError
from contracts.incremental import (
    DEFAULT_BEGIN_INSTANT,
    CloudObjectMetadata,
    FetchState,
    MissingCheckpointStrategy,
    QueryInfo,
    QueryType,
)
from infra.config import SourceConfig
from pipeline.incr_source import CloudObjectsIncrSource
from tests.factories import ListTimeline, archive_commit, metadata_row, write_commit, write_parquet_object

EARLIEST = MissingCheckpointStrategy.FROM_EARLIEST_RETAINED


class FakeScanner:
    def __init__(self, rows: list[CloudObjectMetadata] | None = None, *, error: Exception | None = None) -> None:
        self.rows = rows or []
        self.error = error
        self.scanned: list[QueryInfo] = []
        self.listed: list[bool] = []

    def scan(self, query_info: QueryInfo) -> Any:
        self.scanned.append(query_info)
        if self.error is not None:
            raise self.error
        return list(self.rows)

    def is_empty(self, relation: Any) -> bool:
        return not relation

    def list_objects(self, relation: Any, check_if_exists: bool) -> list[CloudObjectMetadata]:
        self.listed.append(check_if_exists)
        return [r for r in relation if not check_if_exists or r.exists is not False]


class FakeFetcher:
    def __init__(self, *, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[tuple[list[str], int]] = []

    def fetch(self, objects: Sequence[CloudObjectMetadata], source_limit: int) -> Optional[pa.Table]:
        self.calls.append(([o.uri for o in objects], source_limit))
        if self.error is not None:
            raise self.error
        if not objects:
            return None
        return pa.table({"uri": [o.uri for o in objects]})


def _source(
    instants: list[str],
    *,
    scanner: FakeScanner | None = None,
    fetcher: FakeFetcher | None = None,
    **config: Any,
) -> CloudObjectsIncrSource:
    cfg = SourceConfig(src_path="unused", **config)
    return CloudObjectsIncrSource(
        cfg,
        timeline=ListTimeline(instants),
        scanner=scanner or FakeScanner(),
        fetcher=fetcher or FakeFetcher(),
    )


def _obj(name: str, exists: Optional[bool] = None) -> CloudObjectMetadata:
    return CloudObjectMetadata(uri=f"s3://b/{name}", size=5, exists=exists)


# -------------------------
# State machine
# -------------------------


def test_missing_src_path_is_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        CloudObjectsIncrSource(SourceConfig(), timeline=ListTimeline([]), scanner=FakeScanner(), fetcher=FakeFetcher())


def test_missing_checkpoint_without_strategy_fails_before_scanning() -> None:
    scanner = FakeScanner([_obj("a")])
    source = _source(["1"], scanner=scanner)

    with pytest.raises(ConfigurationError):
        source.fetch_next_batch(None, 100)
    assert scanner.scanned == []


def test_caught_up_returns_start_without_scanning() -> None:
    scanner = FakeScanner([_obj("a")])
    fetcher = FakeFetcher()
    source = _source(["1", "2"], scanner=scanner, fetcher=fetcher)

    result = source.fetch_next_batch("2", 100)

    assert result.state is FetchState.DONE_NO_PROGRESS
    assert tuple(result) == (None, "2")
    assert scanner.scanned == []
    assert fetcher.calls == []


def test_empty_metadata_advances_to_end_without_fetching() -> None:
    fetcher = FakeFetcher()
    source = _source(["1", "2", "3"], scanner=FakeScanner([]), fetcher=fetcher, num_instants_per_fetch=5)

    result = source.fetch_next_batch("1", 100)

    assert result.state is FetchState.DONE_EMPTY
    assert tuple(result) == (None, "3")
    assert fetcher.calls == []


def test_nonempty_metadata_fetches_and_advances() -> None:
    scanner = FakeScanner([_obj("a"), _obj("b")])
    fetcher = FakeFetcher()
    source = _source(["1", "2", "3"], scanner=scanner, fetcher=fetcher, num_instants_per_fetch=1)

    payload, checkpoint = source.fetch_next_batch("1", 1234)

    assert checkpoint == "2"
    assert payload is not None and payload.num_rows == 2
    assert fetcher.calls == [(["s3://b/a", "s3://b/b"], 1234)]
    assert scanner.scanned == [QueryInfo(QueryType.INCREMENTAL, "1", "2")]


def test_all_objects_filtered_out_still_advances() -> None:
    scanner = FakeScanner([_obj("a", exists=False)])
    source = _source(["1", "2"], scanner=scanner, check_if_file_exists=True)

    result = source.fetch_next_batch("1", 100)

    assert result.state is FetchState.DONE
    assert tuple(result) == (None, "2")
    assert result.num_objects == 0
    assert scanner.listed == [True]


def test_first_run_from_earliest_starts_at_sentinel() -> None:
    scanner = FakeScanner([_obj("a")])
    source = _source(["1", "2", "3", "4", "5"], scanner=scanner, missing_checkpoint_strategy=EARLIEST,
                     num_instants_per_fetch=3)

    result = source.fetch_next_batch(None, 100)

    assert result.next_checkpoint == "3"
    assert scanner.scanned[0].start_instant == DEFAULT_BEGIN_INSTANT
    assert scanner.scanned[0].query_type is QueryType.SNAPSHOT


def test_scan_errors_propagate() -> None:
    source = _source(["1", "2"], scanner=FakeScanner(error=ScanError("boom")))

    with pytest.raises(ScanError):
        source.fetch_next_batch("1", 100)


def test_fetch_errors_propagate() -> None:
    source = _source(["1", "2"], scanner=FakeScanner([_obj("a")]), fetcher=FakeFetcher(error=FetchError("boom")))

    with pytest.raises(FetchError):
        source.fetch_next_batch("1", 100)


def test_resolve_does_not_scan() -> None:
    scanner = FakeScanner([_obj("a")])
    source = _source(["1", "2", "3"], scanner=scanner, num_instants_per_fetch=1)

    assert source.resolve("1") == QueryInfo(QueryType.INCREMENTAL, "1", "2")
    assert scanner.scanned == []


def test_checkpoint_never_moves_backwards() -> None:
    source = _source(["1", "2", "3", "4"], scanner=FakeScanner([_obj("a")]), num_instants_per_fetch=2)

    checkpoint = "1"
    seen = [checkpoint]
    for _ in range(4):
        checkpoint = source.fetch_next_batch(checkpoint, 100).next_checkpoint
        seen.append(checkpoint)

    assert seen == ["1", "3", "4", "4", "4"]


# -------------------------
# On-disk scenarios
# -------------------------


def _objects_root(tmp_path: Path) -> Path:
    root = tmp_path / "objects"
    root.mkdir(exist_ok=True)
    return root


def _commit_with_objects(meta: Path, objects: Path, instant: str, names: list[str]) -> None:
    rows = []
    for name in names:
        size = write_parquet_object(objects, name, [{"instant": instant, "name": name}])
        rows.append(metadata_row(objects.as_posix(), name, size=size))
    write_commit(meta, instant, rows)


def _disk_source(meta: Path, **config: Any) -> CloudObjectsIncrSource:
    cfg = SourceConfig(src_path=str(meta), object_scheme="file", **config)
    return CloudObjectsIncrSource(cfg)


def test_first_run_reads_earliest_retained_instants(tmp_path: Path) -> None:
    meta, objects = tmp_path / "meta", _objects_root(tmp_path)
    for instant in ["1", "2", "3", "4", "5"]:
        _commit_with_objects(meta, objects, instant, [f"obj-{instant}.parquet"])
    source = _disk_source(meta, missing_checkpoint_strategy=EARLIEST, num_instants_per_fetch=3)

    result = source.fetch_next_batch(None, 1 << 20)
    source.close()

    assert result.next_checkpoint == "3"
    assert result.query_info is not None and result.query_info.is_snapshot()
    assert result.payload is not None
    assert sorted(result.payload.column("instant").to_pylist()) == ["1", "2", "3"]


def test_checkpoint_at_latest_holds(tmp_path: Path) -> None:
    meta, objects = tmp_path / "meta", _objects_root(tmp_path)
    for instant in ["1", "2", "3", "4"]:
        _commit_with_objects(meta, objects, instant, [f"obj-{instant}.parquet"])
    source = _disk_source(meta)

    assert tuple(source.fetch_next_batch("4", 1 << 20)) == (None, "4")


def test_new_instant_without_rows_advances(tmp_path: Path) -> None:
    meta, objects = tmp_path / "meta", _objects_root(tmp_path)
    for instant in ["1", "2", "3", "4"]:
        _commit_with_objects(meta, objects, instant, [f"obj-{instant}.parquet"])
    write_commit(meta, "5", [])
    source = _disk_source(meta)

    result = source.fetch_next_batch("4", 1 << 20)

    assert result.state is FetchState.DONE_EMPTY
    assert tuple(result) == (None, "5")


def test_deleted_objects_still_advance(tmp_path: Path) -> None:
    meta, objects = tmp_path / "meta", _objects_root(tmp_path)
    for instant in ["1", "2", "3", "4", "5", "6", "7"]:
        _commit_with_objects(meta, objects, instant, [f"obj-{instant}.parquet"])
    (objects / "obj-6.parquet").unlink()
    (objects / "obj-7.parquet").unlink()
    source = _disk_source(meta, check_if_file_exists=True)

    result = source.fetch_next_batch("5", 1 << 20)

    assert result.state is FetchState.DONE
    assert tuple(result) == (None, "7")


def test_incremental_range_reads_only_new_objects(tmp_path: Path) -> None:
    meta, objects = tmp_path / "meta", _objects_root(tmp_path)
    for instant in ["1", "2", "3"]:
        _commit_with_objects(meta, objects, instant, [f"a-{instant}.parquet", f"b-{instant}.parquet"])
    source = _disk_source(meta, num_instants_per_fetch=1)

    result = source.fetch_next_batch("1", 1 << 20)

    assert result.next_checkpoint == "2"
    assert result.payload is not None
    assert result.payload.column("name").to_pylist() == ["a-2.parquet", "b-2.parquet"]


def test_expired_checkpoint_falls_back_to_snapshot(tmp_path: Path) -> None:
    meta, objects = tmp_path / "meta", _objects_root(tmp_path)
    for instant in ["1", "2", "3", "4"]:
        _commit_with_objects(meta, objects, instant, [f"obj-{instant}.parquet"])
    archive_commit(meta, "1")
    archive_commit(meta, "2")
    source = _disk_source(meta, num_instants_per_fetch=1)

    result = source.fetch_next_batch("1", 1 << 20)

    assert result.query_info is not None and result.query_info.is_snapshot()
    assert result.next_checkpoint == "3"
    assert result.payload is not None
    assert sorted(result.payload.column("instant").to_pylist()) == ["2", "3"]
