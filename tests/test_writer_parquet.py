"""Unit tests for the batch Parquet writer."""

from __future__ import annotations

from pathlib import Path

import pyarrow as pa
import pyarrow.parquet as pq
import pytest

from contracts.errors import IncrSourceError
from pipeline.writer_parquet import BatchParquetWriter, BatchWriterConfig, ParquetWriteError


def test_write_single_file_under_checkpoint_dir(tmp_path: Path) -> None:
    writer = BatchParquetWriter(BatchWriterConfig(base_dir=str(tmp_path)))

    paths = writer.write(pa.table({"id": [1, 2, 3]}), "20240101000000")

    assert len(paths) == 1
    assert Path(paths[0]).parent.name == "checkpoint=20240101000000"
    assert pq.read_table(paths[0]).column("id").to_pylist() == [1, 2, 3]
    assert writer.stats.batches == 1
    assert writer.stats.written == 3


def test_write_splits_by_max_rows(tmp_path: Path) -> None:
    writer = BatchParquetWriter(BatchWriterConfig(base_dir=str(tmp_path), max_rows_per_file=2))

    paths = writer.write(pa.table({"id": list(range(5))}), "7")

    assert len(paths) == 3
    rows = sorted(v for p in paths for v in pq.read_table(p).column("id").to_pylist())
    assert rows == [0, 1, 2, 3, 4]


def test_empty_table_writes_nothing(tmp_path: Path) -> None:
    writer = BatchParquetWriter(BatchWriterConfig(base_dir=str(tmp_path)))

    assert writer.write(pa.table({"id": pa.array([], type=pa.int64())}), "1") == []
    assert writer.stats.batches == 0


def test_unsafe_checkpoint_characters_are_replaced(tmp_path: Path) -> None:
    writer = BatchParquetWriter(BatchWriterConfig(base_dir=str(tmp_path)))

    paths = writer.write(pa.table({"id": [1]}), "a/b c")

    assert Path(paths[0]).parent.name == "checkpoint=a_b_c"


def test_rejects_invalid_max_rows(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        BatchParquetWriter(BatchWriterConfig(base_dir=str(tmp_path), max_rows_per_file=0))


def test_rewriting_a_checkpoint_replaces_its_previous_parts(tmp_path: Path) -> None:
    writer = BatchParquetWriter(BatchWriterConfig(base_dir=str(tmp_path)))
    first = writer.write(pa.table({"id": [1, 2]}), "5")

    second = writer.write(pa.table({"id": [1, 2]}), "5")

    out_dir = tmp_path / "checkpoint=5"
    assert sorted(str(p) for p in out_dir.glob("part-*.parquet")) == sorted(second)
    assert not Path(first[0]).exists()
    assert pq.read_table(str(out_dir)).num_rows == 2


def test_rewrite_leaves_other_checkpoints_alone(tmp_path: Path) -> None:
    writer = BatchParquetWriter(BatchWriterConfig(base_dir=str(tmp_path)))
    kept = writer.write(pa.table({"id": [1]}), "4")

    writer.write(pa.table({"id": [2]}), "5")
    writer.write(pa.table({"id": [3]}), "5")

    assert Path(kept[0]).exists()


def test_write_failure_is_an_incr_source_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def _fail(*args: object, **kwargs: object) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(pq, "write_table", _fail)
    writer = BatchParquetWriter(BatchWriterConfig(base_dir=str(tmp_path)))

    with pytest.raises(ParquetWriteError, match="disk full") as excinfo:
        writer.write(pa.table({"id": [1]}), "1")
    assert isinstance(excinfo.value, IncrSourceError)
