"""Read cloud objects and merge their rows into one Arrow table.

Objects are read concurrently (bounded), parsed with pyarrow according to the
configured data file format and concatenated in input order, so the same
object list always produces the same table.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple
from urllib.parse import urlparse

import pyarrow as pa
import pyarrow.csv as pa_csv
import pyarrow.json as pa_json
import pyarrow.parquet as pq

from contracts.errors import FetchError
from contracts.incremental import CloudObjectMetadata, FileFormat
from contracts.interfaces import BlobStoreProtocol

logger = logging.getLogger(__name__)


def _parse(data: bytes, fmt: FileFormat) -> pa.Table:
    buf = pa.BufferReader(data)
    if fmt is FileFormat.PARQUET:
        return pq.read_table(buf)
    if fmt is FileFormat.JSON:
        return pa_json.read_json(buf)
    if fmt is FileFormat.CSV:
        return pa_csv.read_csv(buf)
    raise FetchError(f"Unsupported data file format: {fmt!r}")


def partition_values_from_path(uri: str, fields: Sequence[str]) -> dict[str, Optional[str]]:
    """Extract ``field=value`` path segments for the requested fields."""
    segments = urlparse(uri).path.split("/")
    found: dict[str, Optional[str]] = {name: None for name in fields}
    for seg in segments:
        if "=" not in seg:
            continue
        name, value = seg.split("=", 1)
        if name in found and found[name] is None:
            found[name] = value
    return found


def _loop_is_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


@dataclass
class FetchStats:
    objects: int = 0
    empty_objects: int = 0
    rows: int = 0
    total_bytes: int = 0
    samples: List[str] = field(default_factory=list)


class CloudObjectDataFetcher:
    """Fetch object content through a blob store.

    ``fetch`` is synchronous and drives its own event loop, so it must be
    called from plain (non-async) code. Async callers should run it in a
    worker thread, e.g. ``await asyncio.to_thread(fetcher.fetch, objects, limit)``.
    """

    def __init__(
        self,
        blob_store: BlobStoreProtocol,
        *,
        datafile_format: FileFormat,
        partition_fields_from_path: Sequence[str] = (),
        max_concurrency: int = 8,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self._blob_store = blob_store
        self._format = datafile_format
        self._partition_fields = tuple(partition_fields_from_path)
        self._max_concurrency = max_concurrency
        self.last_stats = FetchStats()

    def fetch(self, objects: Sequence[CloudObjectMetadata], source_limit: int) -> Optional[pa.Table]:
        """Read *objects* and return their rows, or None for an empty list.

        Raises FetchError when called while an event loop is running in this
        thread.
        """
        stats = FetchStats(
            objects=len(objects),
            total_bytes=sum(int(o.size) for o in objects),
            samples=[o.uri for o in objects[:10]],
        )
        self.last_stats = stats
        logger.debug("Extracted %d distinct object(s), samples: %s", stats.objects, stats.samples)
        if not objects:
            return None
        if _loop_is_running():
            raise FetchError(
                "CloudObjectDataFetcher.fetch cannot run inside a running event loop; "
                "call it from a worker thread (asyncio.to_thread)"
            )

        if source_limit and stats.total_bytes > source_limit:
            logger.warning(
                "Batch of %d object(s) totals %d bytes, above source limit %d; reading all of them",
                stats.objects,
                stats.total_bytes,
                source_limit,
            )

        tables = asyncio.run(self._read_many(objects))

        non_empty = [t for t in tables if t.num_rows > 0]
        stats.empty_objects = len(tables) - len(non_empty)
        if not non_empty:
            logger.info("No rows produced from %d object(s)", stats.objects)
            return None

        try:
            merged = pa.concat_tables(non_empty, promote_options="default")
        except (pa.ArrowInvalid, pa.ArrowTypeError) as exc:
            raise FetchError(f"Objects have incompatible schemas: {exc}") from exc

        stats.rows = merged.num_rows
        return merged

    async def _read_many(self, objects: Sequence[CloudObjectMetadata]) -> List[pa.Table]:
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _read_one(obj: CloudObjectMetadata) -> pa.Table:
            async with semaphore:
                return await asyncio.to_thread(self._read_object, obj)

        # gather keeps input order regardless of completion order
        return list(await asyncio.gather(*(_read_one(o) for o in objects)))

    def _read_object(self, obj: CloudObjectMetadata) -> pa.Table:
        data = self._blob_store.read_bytes(obj.uri)
        if not data:
            return pa.table({})

        try:
            table = _parse(data, self._format)
        except (pa.ArrowInvalid, pa.ArrowTypeError, OSError) as exc:
            raise FetchError(f"Cannot parse {obj.uri} as {self._format.value}: {exc}") from exc

        return self._with_partition_columns(table, obj.uri)

    def _with_partition_columns(self, table: pa.Table, uri: str) -> pa.Table:
        if not self._partition_fields:
            return table
        for name, value in partition_values_from_path(uri, self._partition_fields).items():
            if name in table.column_names:
                continue
            table = table.append_column(name, pa.array([value] * table.num_rows, type=pa.string()))
        return table


def summarize(objects: Sequence[CloudObjectMetadata]) -> Tuple[int, int]:
    """Return ``(count, total_bytes)`` for logging."""
    return len(objects), sum(int(o.size) for o in objects)
