"""Parquet writer for fetched batches.

This is the downstream storage boundary: every non-empty payload returned by
the incremental source is written under a directory named after the
checkpoint it advanced to. Writing a checkpoint again first clears the parts
left in its directory, so a tick retried after a failed save replaces the
earlier batch instead of duplicating its rows.
"""

from __future__ import annotations

import glob
import os
import re
import uuid
from dataclasses import dataclass, field
from typing import List

import pyarrow as pa
import pyarrow.parquet as pq

from contracts.errors import IncrSourceError


class ParquetWriteError(IncrSourceError):
    """Raised when Parquet writing fails."""


_UNSAFE_DIR_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def _safe_partition_value(value: str) -> str:
    return _UNSAFE_DIR_CHARS.sub("_", value) or "_"


@dataclass
class BatchWriterConfig:
    """
    Writer config for the batch output layout.
    """
    base_dir: str

    partition_field: str = "checkpoint"

    # Write behavior
    compression: str = "zstd"
    use_dictionary: bool = True

    max_rows_per_file: int = 200_000     # adjust based on row width


@dataclass
class BatchWriterStats:
    batches: int = 0
    written: int = 0
    files: List[str] = field(default_factory=list)


class BatchParquetWriter:
    """
    Writes fetched Arrow tables to Parquet.

    Layout:
      {base_dir}/checkpoint=<instant>/part-<uuid>.parquet
    """

    def __init__(self, config: BatchWriterConfig) -> None:
        if config.max_rows_per_file < 1:
            raise ValueError("max_rows_per_file must be >= 1")
        self._cfg = config
        self.stats = BatchWriterStats()

        os.makedirs(self._cfg.base_dir, exist_ok=True)

    def write(self, table: pa.Table, checkpoint: str) -> List[str]:
        """
        Write one batch, splitting by max_rows_per_file. Returns the written paths.

        Parts already present for the same checkpoint are removed first.
        """
        if table.num_rows == 0:
            return []

        out_dir = os.path.join(
            self._cfg.base_dir,
            f"{self._cfg.partition_field}={_safe_partition_value(checkpoint)}",
        )
        os.makedirs(out_dir, exist_ok=True)
        for stale in glob.glob(os.path.join(out_dir, "part-*.parquet")):
            try:
                os.remove(stale)
            except OSError as exc:
                raise ParquetWriteError(f"Cannot clear previous batch file {stale}: {exc}") from exc

        written: List[str] = []
        start = 0
        total = table.num_rows
        while start < total:
            length = min(self._cfg.max_rows_per_file, total - start)
            chunk = table.slice(start, length)

            out_path = os.path.join(out_dir, f"part-{uuid.uuid4().hex}.parquet")
            try:
                pq.write_table(
                    chunk,
                    out_path,
                    compression=self._cfg.compression,
                    use_dictionary=self._cfg.use_dictionary,
                    write_statistics=True,
                )
            except (OSError, pa.ArrowException) as exc:
                raise ParquetWriteError(f"Parquet write failed for {out_path}: {exc}") from exc

            written.append(out_path)
            self.stats.written += length
            start += length

        self.stats.batches += 1
        self.stats.files.extend(written)
        return written
