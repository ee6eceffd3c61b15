"""Settings for the incremental source, the AWS client, logging and the worker.

Values come from environment variables layered over an optional ``.env``
file. Each setting accepts its nested name (``SOURCE__SRC_PATH``) and, for
existing deployments, an older flat name (``INCR_SRC_PATH``); the nested
name wins when both are set.
"""

from __future__ import annotations

import os
from collections import ChainMap
from collections.abc import Mapping
from pathlib import Path
from threading import Lock

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from contracts.incremental import FileFormat, MissingCheckpointStrategy

_STRATEGY_ALIASES = {
    "READ_UPTO_LATEST_COMMIT": MissingCheckpointStrategy.FROM_EARLIEST_RETAINED,
    "READ_LATEST": MissingCheckpointStrategy.FROM_LATEST,
}


def _parse_bool(value: object, default: bool) -> bool:
    if value is None or isinstance(value, bool):
        return default if value is None else value
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "y", "on"}:
        return True
    if text in {"0", "false", "no", "n", "off"}:
        return False
    if text == "":
        return default
    raise ValueError(f"invalid boolean value: {value!r}")


def _optional_text(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class SourceConfig(BaseModel):
    """Options of the incremental cloud-object source."""

    model_config = ConfigDict(frozen=True)

    src_path: str | None = Field(default=None, description="Root of the metadata table and its timeline")
    check_if_file_exists: bool = Field(default=False)
    num_instants_per_fetch: int = Field(default=5, ge=1)
    missing_checkpoint_strategy: MissingCheckpointStrategy | None = Field(default=None)
    source_file_format: FileFormat = Field(default=FileFormat.PARQUET)
    datafile_format: FileFormat = Field(default=FileFormat.PARQUET)

    select_file_extension: str | None = Field(default=None)
    select_relpath_prefix: str | None = Field(default=None)
    ignore_relpath_prefix: str | None = Field(default=None)
    ignore_relpath_substring: str | None = Field(default=None)
    partition_fields_from_path: list[str] = Field(default_factory=list)
    object_scheme: str = Field(default="s3")
    fetch_concurrency: int = Field(default=8, ge=1, le=128)

    @field_validator("check_if_file_exists", mode="before")
    @classmethod
    def _normalize_exists_check(cls, value: object) -> bool:
        return _parse_bool(value, False)

    @field_validator("missing_checkpoint_strategy", mode="before")
    @classmethod
    def _normalize_strategy(cls, value: object) -> object:
        """Accept enum members, their names, and the legacy READ_* names."""
        if value is None or isinstance(value, MissingCheckpointStrategy):
            return value
        text = str(value).strip().upper()
        if not text:
            return None
        if text in _STRATEGY_ALIASES:
            return _STRATEGY_ALIASES[text]
        return text

    @field_validator("source_file_format", "datafile_format", mode="before")
    @classmethod
    def _normalize_format(cls, value: object) -> object:
        if isinstance(value, FileFormat):
            return value
        return str(value or "").strip().lower() or FileFormat.PARQUET

    @field_validator(
        "src_path",
        "select_file_extension",
        "select_relpath_prefix",
        "ignore_relpath_prefix",
        "ignore_relpath_substring",
        mode="before",
    )
    @classmethod
    def _normalize_optional_text(cls, value: object) -> str | None:
        return _optional_text(value)

    @field_validator("partition_fields_from_path", mode="before")
    @classmethod
    def _normalize_fields(cls, value: object) -> list[str]:
        """Accept list or comma-separated string and normalize to unique ordered list."""
        if value is None:
            return []
        if isinstance(value, str):
            items = [part.strip() for part in value.split(",") if part.strip()]
        elif isinstance(value, (list, tuple)):
            items = [str(part).strip() for part in value if str(part).strip()]
        else:
            raise TypeError("partition_fields_from_path must be a list[str] or comma-separated string")
        return list(dict.fromkeys(items))

    @field_validator("object_scheme", mode="before")
    @classmethod
    def _normalize_scheme(cls, value: object) -> str:
        text = str(value or "").strip().lower()
        if text.endswith("://"):
            text = text[:-3]
        return text or "s3"

    def file_extension(self) -> str:
        """Extension object keys must end with (defaults to the data file format)."""
        ext = self.select_file_extension or self.datafile_format.value
        return ext if ext.startswith(".") else f".{ext}"


class AWSConfig(BaseModel):
    """AWS client defaults used by the S3 blob store."""

    model_config = ConfigDict(frozen=True)

    region: str = Field(default="us-east-1")
    endpoint_url: str | None = Field(default=None)
    max_retries: int = Field(default=10, ge=1, le=25)
    timeout: int = Field(default=60, ge=1, le=300)
    connect_timeout: int = Field(default=5, ge=1, le=60)

    @field_validator("endpoint_url", mode="before")
    @classmethod
    def _normalize_endpoint(cls, value: object) -> str | None:
        return _optional_text(value)


class LoggingSettings(BaseModel):
    """Repository-wide logging settings."""

    model_config = ConfigDict(frozen=True)

    level: str = Field(default="INFO")
    json_logs: bool = Field(default=False)
    override_root_handlers: bool = Field(default=False)

    @field_validator("level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        text = str(value or "").strip().upper()
        if text in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            return text
        return "INFO"


class WorkerConfig(BaseModel):
    """Worker/CLI runtime defaults."""

    model_config = ConfigDict(frozen=True)

    checkpoint_path: str = Field(default="data/checkpoint.json")
    out_dir: str = Field(default="data/incr_batches")
    source_limit: int = Field(default=1 << 30, ge=1)
    min_sync_interval_seconds: float = Field(default=60.0, ge=0.0)
    checkpoint_lock_ttl_seconds: int = Field(default=1800, ge=1)
    max_rows_per_file: int = Field(default=200_000, ge=1)

    @field_validator("checkpoint_path", "out_dir", mode="before")
    @classmethod
    def _normalize_required_text(cls, value: object) -> str:
        return str(value or "").strip()


class Settings(BaseModel):
    """Every setting of the CLI and worker, grouped by section."""

    model_config = ConfigDict(frozen=True)

    source: SourceConfig = Field(default_factory=SourceConfig)
    aws: AWSConfig = Field(default_factory=AWSConfig)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    worker: WorkerConfig = Field(default_factory=WorkerConfig)

    @classmethod
    def from_env(
        cls,
        *,
        env: Mapping[str, str] | None = None,
        env_file: str = ".env",
    ) -> Settings:
        """Validate settings from *env* (default: the process env) layered over *env_file*."""
        layered = ChainMap(dict(os.environ if env is None else env), _read_env_file(Path(env_file)))
        return cls.model_validate(_sections_from_env(layered))

    def with_source(self, **overrides: object) -> Settings:
        """Return a copy with validated source overrides (None values are ignored)."""
        return self._with_section("source", overrides)

    def with_worker(self, **overrides: object) -> Settings:
        """Return a copy with validated worker overrides (None values are ignored)."""
        return self._with_section("worker", overrides)

    def _with_section(self, section: str, overrides: Mapping[str, object]) -> Settings:
        current: BaseModel = getattr(self, section)
        data = current.model_dump()
        data.update({k: v for k, v in overrides.items() if v is not None})
        return self.model_copy(update={section: type(current).model_validate(data)})


# Accepted env names per setting. The nested ``SECTION__FIELD`` name is always
# accepted and wins; the names listed here are older flat spellings.
_ENV_NAMES: dict[str, dict[str, tuple[str, ...]]] = {
    "source": {
        name: (f"INCR_{name.upper()}",)
        for name in (
            "src_path",
            "check_if_file_exists",
            "num_instants_per_fetch",
            "missing_checkpoint_strategy",
            "source_file_format",
            "datafile_format",
            "select_file_extension",
            "select_relpath_prefix",
            "ignore_relpath_prefix",
            "ignore_relpath_substring",
            "partition_fields_from_path",
            "object_scheme",
            "fetch_concurrency",
        )
    },
    "aws": {
        "region": ("AWS_REGION", "AWS_DEFAULT_REGION"),
        "endpoint_url": ("AWS_ENDPOINT_URL",),
        "max_retries": ("AWS_MAX_RETRIES",),
        "timeout": ("AWS_TIMEOUT",),
        "connect_timeout": ("AWS_CONNECT_TIMEOUT",),
    },
    "logging": {
        "level": ("CLOUDINCR_LOG_LEVEL",),
        "json_logs": ("CLOUDINCR_LOG_JSON",),
        "override_root_handlers": ("CLOUDINCR_LOG_OVERRIDE",),
    },
    "worker": {
        name: (name.upper(),)
        for name in (
            "checkpoint_path",
            "out_dir",
            "source_limit",
            "min_sync_interval_seconds",
            "checkpoint_lock_ttl_seconds",
            "max_rows_per_file",
        )
    },
}


def _read_env_file(path: Path) -> dict[str, str]:
    """``KEY=VALUE`` lines of a dotenv file; comments, blanks and malformed lines are skipped."""
    if not path.is_file():
        return {}
    values: dict[str, str] = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        key, sep, value = line.strip().partition("=")
        key, value = key.strip(), value.strip()
        if not sep or not key or key.startswith("#"):
            continue
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
            value = value[1:-1]
        values[key] = value
    return values


def _sections_from_env(env: Mapping[str, str]) -> dict[str, dict[str, str]]:
    sections: dict[str, dict[str, str]] = {}
    for section, fields in _ENV_NAMES.items():
        found: dict[str, str] = {}
        for field_name, legacy in fields.items():
            names = (f"{section.upper()}__{field_name.upper()}", *legacy)
            value = next((v for v in (str(env.get(n, "")).strip() for n in names) if v), None)
            if value is not None:
                found[field_name] = value
        sections[section] = found
    return sections


_cache_lock = Lock()
_cached: Settings | None = None


def get_settings(*, reload: bool = False) -> Settings:
    """Process-wide settings, built from the environment on first use or on *reload*."""
    global _cached
    with _cache_lock:
        if reload or _cached is None:
            _cached = Settings.from_env()
        return _cached


def clear_settings_cache() -> None:
    global _cached
    with _cache_lock:
        _cached = None


__all__ = [
    "AWSConfig",
    "LoggingSettings",
    "Settings",
    "SourceConfig",
    "WorkerConfig",
    "clear_settings_cache",
    "get_settings",
    "ValidationError",
]
