"""
services/blob_store.py

Blob store access by URI
========================

Goals:
- One small interface (``exists`` / ``read_bytes``) for every object source
- S3 through a boto3 client; local files through ``file://`` URIs
- Not-found is an answer (``exists`` -> False); every other failure is a
  FetchError carrying the original exception

Minimal IAM permissions for S3:
- s3:GetObject (head_object needs it too)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import unquote, urlparse

from botocore.exceptions import BotoCoreError, ClientError

from contracts.errors import ConfigurationError, FetchError
from contracts.interfaces import BlobStoreProtocol, S3ClientProtocol

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound", "NoSuchBucket"}


def split_uri(uri: str) -> Tuple[str, str, str]:
    """Split ``scheme://bucket/key`` into its parts."""
    parsed = urlparse(uri)
    if not parsed.scheme:
        raise FetchError(f"Object URI has no scheme: {uri!r}")
    return parsed.scheme.lower(), parsed.netloc, parsed.path.lstrip("/")


def _error_code(exc: ClientError) -> str:
    return str(((exc.response or {}).get("Error") or {}).get("Code") or "")


class S3BlobStore:
    """Read objects from S3 with a boto3 client."""

    def __init__(self, client: S3ClientProtocol) -> None:
        self._client = client

    def exists(self, uri: str) -> bool:
        _, bucket, key = split_uri(uri)
        try:
            self._client.head_object(Bucket=bucket, Key=key)
        except ClientError as exc:
            if _error_code(exc) in _NOT_FOUND_CODES:
                return False
            raise FetchError(f"Existence check failed for {uri}: {exc}") from exc
        except BotoCoreError as exc:
            raise FetchError(f"Existence check failed for {uri}: {exc}") from exc
        return True

    def read_bytes(self, uri: str) -> bytes:
        _, bucket, key = split_uri(uri)
        try:
            resp = self._client.get_object(Bucket=bucket, Key=key)
            return resp["Body"].read()
        except (ClientError, BotoCoreError) as exc:
            raise FetchError(f"Read failed for {uri}: {exc}") from exc


class LocalBlobStore:
    """Read objects from the local filesystem (``file://`` URIs)."""

    @staticmethod
    def _path(uri: str) -> Path:
        parsed = urlparse(uri)
        # file://<root>/<key> where root may itself be absolute (file:///data/x)
        return Path(unquote(parsed.netloc + parsed.path))

    def exists(self, uri: str) -> bool:
        return self._path(uri).is_file()

    def read_bytes(self, uri: str) -> bytes:
        path = self._path(uri)
        try:
            return path.read_bytes()
        except OSError as exc:
            raise FetchError(f"Read failed for {uri}: {exc}") from exc


class RoutingBlobStore:
    """Dispatch to a blob store by URI scheme."""

    def __init__(self, stores: Mapping[str, BlobStoreProtocol]) -> None:
        self._stores: Dict[str, BlobStoreProtocol] = {k.lower(): v for k, v in stores.items()}

    def _store_for(self, uri: str) -> BlobStoreProtocol:
        scheme = split_uri(uri)[0]
        store = self._stores.get(scheme)
        if store is None:
            raise FetchError(f"No blob store configured for scheme {scheme!r} ({uri})")
        return store

    def exists(self, uri: str) -> bool:
        return self._store_for(uri).exists(uri)

    def read_bytes(self, uri: str) -> bytes:
        return self._store_for(uri).read_bytes(uri)


def build_blob_store(
    object_scheme: str,
    *,
    s3_client_factory: Optional[Any] = None,
) -> BlobStoreProtocol:
    """Return the blob store for the configured object scheme.

    ``s3_client_factory`` is a zero-arg callable returning an S3 client; it is
    only invoked when S3 access is actually needed.
    """
    scheme = object_scheme.lower()
    if scheme == "file":
        return RoutingBlobStore({"file": LocalBlobStore()})
    if scheme in {"s3", "s3a"}:
        if s3_client_factory is None:
            raise ConfigurationError("An S3 client factory is required for s3:// objects")
        store = S3BlobStore(s3_client_factory())
        return RoutingBlobStore({"s3": store, "s3a": store, "file": LocalBlobStore()})
    raise ConfigurationError(f"Unsupported object scheme: {object_scheme!r}")
