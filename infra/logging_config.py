"""Logging setup for the CLI and the worker.

Two output shapes are supported: one-line text logs for terminals and JSON
lines for log shippers. Both carry the current worker tick context (source
path, iteration, checkpoint) when one is set.

Root handlers installed by an embedding application are left alone unless
``override_root_handlers`` is set.
"""

from __future__ import annotations

import json
import logging
import sys
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

from infra.config import LoggingSettings, get_settings
from version import ENGINE_NAME, ENGINE_VERSION

# Attributes every LogRecord has; anything else came in through `extra=`.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

# Libraries that log every request at INFO/DEBUG.
_NOISY_LOGGERS = ("boto3", "botocore", "s3transfer", "urllib3")

_tick_ctx: ContextVar[Mapping[str, Any]] = ContextVar("cloudincr_tick_ctx", default={})


def get_tick_context() -> dict[str, Any]:
    """Copy of the fields attached to every log line of the current tick."""
    return dict(_tick_ctx.get())


def set_tick_context(**fields: Any) -> None:
    """Add fields to the current tick context."""
    _tick_ctx.set({**_tick_ctx.get(), **fields})


@contextmanager
def tick_context(**fields: Any) -> Iterator[None]:
    """Scope a fresh tick context to a ``with`` block."""
    token = _tick_ctx.set(dict(fields))
    try:
        yield
    finally:
        _tick_ctx.reset(token)


def _record_extras(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS}


class JsonFormatter(logging.Formatter):
    """One JSON object per line. Values that are not JSON types are rendered with str()."""

    def __init__(self, *, static_fields: Mapping[str, Any] | None = None) -> None:
        super().__init__()
        self._static = {"engine": ENGINE_NAME, "engine_version": ENGINE_VERSION, **(static_fields or {})}

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, UTC).isoformat(timespec="milliseconds")
        doc: dict[str, Any] = {
            "ts": ts.replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        # Explicit extras beat tick context, which beats static fields.
        for source in (_record_extras(record), _tick_ctx.get(), self._static):
            for k, v in source.items():
                doc.setdefault(k, v)
        if record.exc_info:
            doc["exc"] = self.formatException(record.exc_info)
        return json.dumps(doc, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """``<utc time> LEVEL logger: message [k=v ...]``."""

    converter = time.gmtime

    def __init__(self) -> None:
        super().__init__("%(asctime)sZ %(levelname)-7s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        ctx = _tick_ctx.get()
        if not ctx:
            return line
        suffix = " ".join(f"{k}={v}" for k, v in ctx.items())
        head, sep, tail = line.partition("\n")
        return f"{head} [{suffix}]{sep}{tail}"


def setup_logging(
    *,
    level: str | None = None,
    json_logs: bool | None = None,
    override_root_handlers: bool | None = None,
    settings: LoggingSettings | None = None,
) -> logging.Handler | None:
    """Configure the root logger from settings, with keyword overrides.

    Settings come from LOGGING__LEVEL / CLOUDINCR_LOG_LEVEL,
    LOGGING__JSON_LOGS / CLOUDINCR_LOG_JSON and
    LOGGING__OVERRIDE_ROOT_HANDLERS / CLOUDINCR_LOG_OVERRIDE.

    Returns the installed handler, or None when existing root handlers were
    kept.
    """
    cfg = settings or get_settings(reload=True).logging
    level_name = (level or cfg.level).upper()
    use_json = cfg.json_logs if json_logs is None else json_logs
    override = cfg.override_root_handlers if override_root_handlers is None else override_root_handlers

    root = logging.getLogger()
    root.setLevel(logging.getLevelName(level_name) if level_name in logging.getLevelNamesMapping() else logging.INFO)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if root.handlers and not override:
        return None

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if use_json else TextFormatter())
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    return handler
