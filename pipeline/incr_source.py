"""Incremental source over a cloud object metadata table.

Detects new rows in a source table holding metadata about objects in a blob
store (S3 or local files), reads the content of those objects and returns it
as one Arrow table together with the checkpoint to persist.

Fetch cycle
-----------
    INIT -> RESOLVE -> DONE_NO_PROGRESS                     (start == end)
                    -> SCAN -> DONE_EMPTY                   (no metadata rows)
                            -> FETCH -> DONE                (checkpoint = end)

- DONE_NO_PROGRESS returns the start instant: the checkpoint is held.
- DONE_EMPTY and DONE return the end instant: the range was examined, so the
  checkpoint advances even when no rows came back.
- Nothing is retried here. Collaborator errors propagate before a checkpoint
  is returned, so the caller's persisted checkpoint stays untouched.

Usage:
    source = CloudObjectsIncrSource.from_settings(get_settings())
    payload, checkpoint = source.fetch_next_batch(store.load(), source_limit)
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from contracts.errors import ConfigurationError
from contracts.incremental import FetchResult, FetchState, QueryInfo, normalize_checkpoint
from contracts.interfaces import (
    BlobStoreProtocol,
    MetadataScannerProtocol,
    ObjectDataFetcherProtocol,
    TimelineProtocol,
)
from infra.config import AWSConfig, Settings, SourceConfig
from pipeline.checkpoint_resolver import CheckpointResolver
from pipeline.metadata_scan import CloudObjectMetadataScanner, ObjectFilter
from pipeline.object_fetch import CloudObjectDataFetcher, summarize
from pipeline.timeline import FileTimeline
from services.blob_store import build_blob_store

logger = logging.getLogger(__name__)


class CloudObjectsIncrSource:
    """Checkpoint-driven incremental fetch of cloud object content."""

    def __init__(
        self,
        config: SourceConfig,
        *,
        timeline: Optional[TimelineProtocol] = None,
        scanner: Optional[MetadataScannerProtocol] = None,
        fetcher: Optional[ObjectDataFetcherProtocol] = None,
        blob_store: Optional[BlobStoreProtocol] = None,
        s3_client_factory: Optional[Callable[[], Any]] = None,
    ) -> None:
        if not config.src_path:
            raise ConfigurationError("Missing required option: src_path (SOURCE__SRC_PATH)")

        self._config = config
        self.src_path = config.src_path
        self.check_if_file_exists = bool(config.check_if_file_exists)
        self.num_instants_per_fetch = int(config.num_instants_per_fetch)
        self.missing_checkpoint_strategy = config.missing_checkpoint_strategy

        file_timeline: Optional[FileTimeline] = None
        if timeline is None or scanner is None:
            file_timeline = FileTimeline(config.src_path)
        self._timeline: TimelineProtocol = timeline if timeline is not None else file_timeline

        if (scanner is None or fetcher is None) and blob_store is None:
            blob_store = build_blob_store(config.object_scheme, s3_client_factory=s3_client_factory)

        self._scanner: MetadataScannerProtocol = scanner or CloudObjectMetadataScanner(
            file_timeline,
            source_file_format=config.source_file_format,
            object_filter=ObjectFilter(
                file_extension=config.file_extension(),
                select_relpath_prefix=config.select_relpath_prefix,
                ignore_relpath_prefix=config.ignore_relpath_prefix,
                ignore_relpath_substring=config.ignore_relpath_substring,
            ),
            blob_store=blob_store,
            object_scheme=config.object_scheme,
        )
        self._fetcher: ObjectDataFetcherProtocol = fetcher or CloudObjectDataFetcher(
            blob_store,
            datafile_format=config.datafile_format,
            partition_fields_from_path=config.partition_fields_from_path,
            max_concurrency=config.fetch_concurrency,
        )
        self._resolver = CheckpointResolver(self._timeline)

        logger.info("srcPath: %s", self.src_path)
        logger.info(
            "missingCheckpointStrategy: %s",
            self.missing_checkpoint_strategy.value if self.missing_checkpoint_strategy else None,
        )
        logger.info("numInstantsPerFetch: %s", self.num_instants_per_fetch)
        logger.info("checkIfFileExists: %s", self.check_if_file_exists)

    @classmethod
    def from_settings(cls, settings: Settings) -> "CloudObjectsIncrSource":
        """Build a source wired to real collaborators (S3 client created lazily)."""
        aws: AWSConfig = settings.aws

        def _s3_client() -> Any:
            from infra.aws_config import build_s3_client

            return build_s3_client(aws)

        return cls(settings.source, s3_client_factory=_s3_client)

    def close(self) -> None:
        close = getattr(self._scanner, "close", None)
        if callable(close):
            close()

    def resolve(self, last_checkpoint: Optional[str]) -> QueryInfo:
        """Resolve the next range without scanning anything."""
        return self._resolver.resolve(
            normalize_checkpoint(last_checkpoint),
            self.num_instants_per_fetch,
            self.missing_checkpoint_strategy,
        )

    def fetch_next_batch(self, last_checkpoint: Optional[str], source_limit: int) -> FetchResult:
        state = FetchState.INIT
        logger.debug("Fetch cycle %s: last checkpoint %r", state.value, last_checkpoint)

        state = FetchState.RESOLVE
        query_info = self.resolve(last_checkpoint)

        if query_info.is_caught_up():
            logger.info("Already caught up. Begin checkpoint was: %s", query_info.start_instant)
            return FetchResult(
                payload=None,
                next_checkpoint=query_info.start_instant,
                state=FetchState.DONE_NO_PROGRESS,
                query_info=query_info,
            )

        state = FetchState.SCAN
        metadata = self._scanner.scan(query_info)

        if self._scanner.is_empty(metadata):
            logger.info(
                "Source of file names is empty. Returning empty result and end instant: %s",
                query_info.end_instant,
            )
            return FetchResult(
                payload=None,
                next_checkpoint=query_info.end_instant,
                state=FetchState.DONE_EMPTY,
                query_info=query_info,
            )

        state = FetchState.FETCH
        objects = self._scanner.list_objects(metadata, self.check_if_file_exists)
        count, total_bytes = summarize(objects)
        logger.info("Fetching %d object(s), %d bytes, for range ending at %s", count, total_bytes, query_info.end_instant)
        payload = self._fetcher.fetch(objects, source_limit)

        result = FetchResult(
            payload=payload,
            next_checkpoint=query_info.end_instant,
            state=FetchState.DONE,
            query_info=query_info,
            num_objects=count,
        )
        logger.info(
            "Fetch cycle %s -> %s: %d row(s), next checkpoint %s",
            state.value,
            result.state.value,
            result.num_rows,
            result.next_checkpoint,
        )
        return result
