"""
cloudincr CLI (flat-layout friendly).

Usage
-----
cloudincr fetch --src-path data/meta --strategy FROM_EARLIEST_RETAINED
cloudincr run --src-path data/meta --min-sync-interval-seconds 60
cloudincr show-range --src-path data/meta

Every flag falls back to the matching setting (see infra/config.py), e.g.
SOURCE__SRC_PATH, WORKER__CHECKPOINT_PATH, WORKER__OUT_DIR.
"""

from __future__ import annotations

import argparse
import logging
from typing import List, Optional

from contracts.errors import ConfigurationError, IncrSourceError
from infra.config import Settings, ValidationError, get_settings
from infra.logging_config import setup_logging, tick_context

logger = logging.getLogger(__name__)


def _settings_from_args(args: argparse.Namespace) -> Settings:
    try:
        settings = get_settings(reload=True)
        settings = settings.with_source(
            src_path=args.src_path,
            missing_checkpoint_strategy=args.strategy,
            num_instants_per_fetch=args.num_instants,
            check_if_file_exists=True if args.check_exists else None,
            datafile_format=args.datafile_format,
            source_file_format=args.source_file_format,
        )
        settings = settings.with_worker(
            checkpoint_path=getattr(args, "checkpoint", None),
            out_dir=getattr(args, "out", None),
            source_limit=getattr(args, "source_limit", None),
            min_sync_interval_seconds=getattr(args, "min_sync_interval_seconds", None),
        )
    except ValidationError as exc:
        raise SystemExit(f"Invalid configuration: {exc}") from None
    return settings


def _build(settings: Settings):
    from pipeline.checkpoint_store import FileCheckpointStore
    from pipeline.incr_source import CloudObjectsIncrSource
    from pipeline.writer_parquet import BatchParquetWriter, BatchWriterConfig

    try:
        source = CloudObjectsIncrSource.from_settings(settings)
    except ConfigurationError as exc:
        raise SystemExit(str(exc)) from None
    store = FileCheckpointStore(settings.worker.checkpoint_path)
    writer = BatchParquetWriter(
        BatchWriterConfig(
            base_dir=settings.worker.out_dir,
            max_rows_per_file=settings.worker.max_rows_per_file,
        )
    )
    return source, store, writer


def cmd_fetch(args: argparse.Namespace) -> None:
    from apps.worker.incr_worker import run_once

    settings = _settings_from_args(args)
    source, store, writer = _build(settings)
    try:
        with store.lock(settings.worker.checkpoint_lock_ttl_seconds), tick_context(src_path=source.src_path):
            outcome = run_once(source, store, writer, source_limit=settings.worker.source_limit)
    except IncrSourceError as exc:
        raise SystemExit(f"fetch failed: {exc}") from exc
    finally:
        source.close()
    print(f"{outcome.state.value}: checkpoint={outcome.checkpoint} rows={outcome.rows} files={len(outcome.files)}")


def cmd_run(args: argparse.Namespace) -> None:
    from apps.worker.incr_worker import run_continuous

    settings = _settings_from_args(args)
    source, store, writer = _build(settings)
    try:
        with store.lock(settings.worker.checkpoint_lock_ttl_seconds) as token, tick_context(src_path=source.src_path):
            run_continuous(
                source,
                store,
                writer,
                source_limit=settings.worker.source_limit,
                min_sync_interval_seconds=settings.worker.min_sync_interval_seconds,
                max_iterations=args.max_iterations,
                heartbeat=lambda: store.refresh(token),
            )
    except IncrSourceError as exc:
        raise SystemExit(f"run failed: {exc}") from exc
    except KeyboardInterrupt:
        logger.info("Interrupted; last committed checkpoint is kept.")
    finally:
        source.close()


def cmd_show_range(args: argparse.Namespace) -> None:
    from pipeline.checkpoint_store import FileCheckpointStore
    from pipeline.incr_source import CloudObjectsIncrSource

    settings = _settings_from_args(args)
    try:
        checkpoint = args.from_checkpoint or FileCheckpointStore(settings.worker.checkpoint_path).load()
        source = CloudObjectsIncrSource.from_settings(settings)
    except IncrSourceError as exc:
        raise SystemExit(str(exc)) from None
    try:
        query_info = source.resolve(checkpoint)
    except IncrSourceError as exc:
        raise SystemExit(str(exc)) from None
    finally:
        source.close()
    print(
        f"{query_info.query_type.value}: ({query_info.start_instant}, {query_info.end_instant}]"
        f"{' caught up' if query_info.is_caught_up() else ''}"
    )


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="cloudincr", description="Incremental cloud object source")
    p.add_argument("--log-level", default=None, help="Override CLOUDINCR_LOG_LEVEL.")
    p.add_argument("--json-logs", action="store_true", help="Emit JSON logs.")
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_source_args(sp: argparse.ArgumentParser) -> None:
        sp.add_argument("--src-path", default=None, help="Metadata table root (or SOURCE__SRC_PATH).")
        sp.add_argument(
            "--strategy",
            default=None,
            help="Missing checkpoint strategy: FROM_EARLIEST_RETAINED | FROM_LATEST.",
        )
        sp.add_argument("--num-instants", type=int, default=None, help="Instants per fetch.")
        sp.add_argument("--check-exists", action="store_true", help="Skip objects that no longer exist.")
        sp.add_argument("--datafile-format", default=None, help="parquet | json | csv")
        sp.add_argument("--source-file-format", default=None, help="Format of the metadata table files.")
        sp.add_argument("--checkpoint", default=None, help="Checkpoint file (or WORKER__CHECKPOINT_PATH).")

    def add_worker_args(sp: argparse.ArgumentParser) -> None:
        sp.add_argument("--out", default=None, help="Batch output directory (or WORKER__OUT_DIR).")
        sp.add_argument("--source-limit", type=int, default=None, help="Advisory byte limit per batch.")

    sp = sub.add_parser("fetch", help="Fetch one batch and advance the checkpoint.")
    add_source_args(sp)
    add_worker_args(sp)
    sp.set_defaults(func=cmd_fetch)

    sp = sub.add_parser("run", help="Fetch batches continuously.")
    add_source_args(sp)
    add_worker_args(sp)
    sp.add_argument("--min-sync-interval-seconds", type=float, default=None)
    sp.add_argument("--max-iterations", type=int, default=None, help="Stop after N ticks.")
    sp.set_defaults(func=cmd_run)

    sp = sub.add_parser("show-range", help="Print the range the next fetch would read.")
    add_source_args(sp)
    sp.add_argument("--from-checkpoint", default=None, help="Resolve from this checkpoint instead of the file.")
    sp.set_defaults(func=cmd_show_range)

    return p


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(level=args.log_level, json_logs=True if args.json_logs else None)
    args.func(args)


if __name__ == "__main__":
    main()
