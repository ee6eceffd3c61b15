"""DuckDB scan over the cloud object metadata table.

``scan`` returns a lazy :class:`duckdb.DuckDBPyRelation`; nothing is read until
the orchestrator asks whether it is empty (``LIMIT 1``) or the object list is
extracted from it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import duckdb

from contracts.errors import RangeResolutionError, ScanError
from contracts.incremental import CloudObjectMetadata, FileFormat, QueryInfo
from contracts.interfaces import BlobStoreProtocol
from contracts.schema import (
    BUCKET_FIELD,
    CLOUD_OBJECT_METADATA_DUCKDB_TYPES,
    COMMIT_TIME_FIELD,
    KEY_FIELD,
    SIZE_FIELD,
)
from pipeline.timeline import FileTimeline

logger = logging.getLogger(__name__)

_READERS = {
    FileFormat.PARQUET: "read_parquet({files}, union_by_name=true)",
    FileFormat.JSON: "read_json_auto({files}, union_by_name=true)",
    FileFormat.CSV: "read_csv_auto({files}, union_by_name=true, header=true)",
}


def _qident(name: str) -> str:
    """Quote an identifier for DuckDB SQL (double quotes)."""
    return '"' + name.replace('"', '""') + '"'


def _qstr(value: str) -> str:
    """Quote a string literal for DuckDB SQL (single quotes)."""
    return "'" + str(value).replace("'", "''") + "'"


def _files_literal(files: Sequence[Path]) -> str:
    return "[" + ", ".join(_qstr(f.as_posix()) for f in files) + "]"


@dataclass(frozen=True)
class ObjectFilter:
    """Key filters applied when turning metadata rows into object references."""

    file_extension: str
    select_relpath_prefix: Optional[str] = None
    ignore_relpath_prefix: Optional[str] = None
    ignore_relpath_substring: Optional[str] = None

    def to_sql(self) -> str:
        key = _qident(KEY_FIELD)
        clauses = [f"{_qident(SIZE_FIELD)} > 0"]
        if self.select_relpath_prefix:
            clauses.append(f"starts_with({key}, {_qstr(self.select_relpath_prefix)})")
        if self.ignore_relpath_prefix:
            clauses.append(f"NOT starts_with({key}, {_qstr(self.ignore_relpath_prefix)})")
        if self.ignore_relpath_substring:
            clauses.append(f"NOT contains({key}, {_qstr(self.ignore_relpath_substring)})")
        clauses.append(f"ends_with({key}, {_qstr(self.file_extension)})")
        return " AND ".join(clauses)


def object_uri(scheme: str, bucket: str, key: str) -> str:
    """Build ``<scheme>://<bucket>/<key>`` without doubling separators."""
    return f"{scheme}://{bucket.rstrip('/')}/{key.lstrip('/')}"


class CloudObjectMetadataScanner:
    """Scans metadata rows for a resolved range and lists the referenced objects."""

    def __init__(
        self,
        timeline: FileTimeline,
        *,
        source_file_format: FileFormat,
        object_filter: ObjectFilter,
        blob_store: BlobStoreProtocol,
        object_scheme: str = "s3",
        threads: int = 4,
    ) -> None:
        self._timeline = timeline
        self._format = source_file_format
        self._filter = object_filter
        self._blob_store = blob_store
        self._scheme = object_scheme
        self._con = duckdb.connect(":memory:")
        self._con.execute(f"PRAGMA threads={int(threads)};")

    def close(self) -> None:
        self._con.close()

    # -------------------------
    # Scan
    # -------------------------

    def scan(self, query_info: QueryInfo) -> duckdb.DuckDBPyRelation:
        files = self._files_for(query_info)
        logger.info(
            "Scanning %d metadata file(s) for %s range (%s, %s]",
            len(files),
            query_info.query_type.value,
            query_info.start_instant,
            query_info.end_instant,
        )
        if not files:
            return self._empty_relation()

        source = _READERS[self._format].format(files=_files_literal(files))
        commit_time = _qident(COMMIT_TIME_FIELD)
        sql = (
            f"SELECT * FROM {source} "
            f"WHERE {commit_time} > {_qstr(query_info.start_instant)} "
            f"AND {commit_time} <= {_qstr(query_info.end_instant)}"
        )
        try:
            return self._con.sql(sql)
        except duckdb.Error as exc:
            raise ScanError(f"Metadata scan failed for {query_info}: {exc}") from exc

    def is_empty(self, relation: duckdb.DuckDBPyRelation) -> bool:
        try:
            return relation.limit(1).fetchone() is None
        except duckdb.Error as exc:
            raise ScanError(f"Metadata emptiness check failed: {exc}") from exc

    def list_objects(
        self,
        relation: duckdb.DuckDBPyRelation,
        check_if_exists: bool,
    ) -> List[CloudObjectMetadata]:
        predicate = self._filter.to_sql()
        logger.info("Adding filter string to metadata relation: %s", predicate)
        columns = ", ".join(_qident(c) for c in (BUCKET_FIELD, KEY_FIELD, SIZE_FIELD))
        try:
            rows = (
                relation.filter(predicate)
                .project(columns)
                .distinct()
                .order(f"{_qident(BUCKET_FIELD)}, {_qident(KEY_FIELD)}")
                .fetchall()
            )
        except duckdb.Error as exc:
            raise ScanError(f"Listing objects from metadata failed: {exc}") from exc

        return list(self._to_objects(rows, check_if_exists))

    # -------------------------
    # Internal helpers
    # -------------------------

    def _files_for(self, query_info: QueryInfo) -> List[Path]:
        paths = self._timeline.paths
        if query_info.is_snapshot():
            return paths.list_data_files(self._format.value)

        try:
            commits = self._timeline.commits_in_range(query_info.start_instant, query_info.end_instant)
        except RangeResolutionError as exc:
            raise ScanError(f"Cannot read commit metadata: {exc}") from exc

        files: List[Path] = []
        for commit in commits:
            for rel in commit.files:
                try:
                    files.append(paths.data_file(rel))
                except ValueError as exc:
                    raise ScanError(f"Commit {commit.instant} lists invalid file: {exc}") from exc
        return sorted(set(files))

    def _empty_relation(self) -> duckdb.DuckDBPyRelation:
        cols = ", ".join(f"NULL::{typ} AS {_qident(name)}" for name, typ in CLOUD_OBJECT_METADATA_DUCKDB_TYPES)
        return self._con.sql(f"SELECT {cols} WHERE false")

    def _to_objects(self, rows: Iterable[tuple], check_if_exists: bool) -> Iterable[CloudObjectMetadata]:
        for bucket, key, size in rows:
            uri = object_uri(self._scheme, str(bucket), str(key))
            if check_if_exists and not self._blob_store.exists(uri):
                logger.warning("Ignoring object %s as it does not exist", uri)
                continue
            yield CloudObjectMetadata(uri=uri, size=int(size or 0), exists=True if check_if_exists else None)
