"""
Per-tenant blob storage for catalogs and sales files.

Two backends share one interface: a local directory (default) and an
S3-compatible bucket accessed through boto3. Catalogs live under
`<tenant>/prices.json`; writes replace the whole blob.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from gestock.utils.config import ROOT_DIR, AppConfig, StorageSettings

logger = logging.getLogger(__name__)

CATALOG_BLOB = "prices.json"


class CatalogStoreError(RuntimeError):
    """Raised when the backing storage cannot be read or written."""


def catalog_key(tenant: str) -> str:
    tenant = (tenant or "").strip().strip("/")
    if not tenant or "/" in tenant or tenant in {".", ".."}:
        raise ValueError(f"Invalid tenant id: {tenant!r}")
    return f"{tenant}/{CATALOG_BLOB}"


class BlobStore(Protocol):
    def get_bytes(self, key: str) -> Optional[bytes]:
        ...

    def put_bytes(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        ...


class CatalogStore:
    """JSON catalog blobs on top of a `BlobStore`."""

    def __init__(self, blobs: BlobStore) -> None:
        self.blobs = blobs

    def get_catalog(self, tenant: str) -> Optional[Dict[str, Any]]:
        raw = self.blobs.get_bytes(catalog_key(tenant))
        if raw is None:
            return None
        try:
            payload = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise CatalogStoreError(f"Stored catalog for '{tenant}' is not valid JSON: {exc}") from exc
        return payload if isinstance(payload, dict) else None

    def put_catalog(self, tenant: str, payload: Dict[str, Any]) -> None:
        body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        self.blobs.put_bytes(catalog_key(tenant), body, content_type="application/json")


class LocalBlobStore:
    def __init__(self, root_dir: Path) -> None:
        self.root_dir = Path(root_dir)

    def _path(self, key: str) -> Path:
        path = (self.root_dir / key).resolve()
        if self.root_dir.resolve() not in path.parents:
            raise CatalogStoreError(f"Key escapes storage root: {key}")
        return path

    def get_bytes(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return path.read_bytes()
        except OSError as exc:
            raise CatalogStoreError(f"Could not read {path}: {exc}") from exc

    def put_bytes(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp_name, path)
        except OSError as exc:
            raise CatalogStoreError(f"Could not write {path}: {exc}") from exc
        logger.debug("stored %d bytes at %s", len(data), path)


class S3BlobStore:
    def __init__(self, settings: StorageSettings, client: Any = None) -> None:
        if not settings.bucket:
            raise CatalogStoreError("S3 storage selected but no bucket is configured")
        self.bucket = settings.bucket
        self._client = client if client is not None else self._make_client(settings)

    @staticmethod
    def _make_client(settings: StorageSettings):
        # v4 signatures and path addressing keep MinIO-style endpoints working.
        bc = Config(signature_version="s3v4", s3={"addressing_style": "path"})
        return boto3.client(
            "s3",
            endpoint_url=settings.endpoint_url or None,
            aws_access_key_id=settings.access_key_id or None,
            aws_secret_access_key=settings.secret_access_key or None,
            region_name=settings.region or "us-east-1",
            use_ssl=settings.use_ssl,
            config=bc,
        )

    def get_bytes(self, key: str) -> Optional[bytes]:
        try:
            res = self._client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            code = (exc.response.get("Error") or {}).get("Code")
            if code in {"NoSuchKey", "404", "NotFound"}:
                return None
            raise CatalogStoreError(f"S3 get {key} failed: {exc}") from exc
        except BotoCoreError as exc:
            raise CatalogStoreError(f"S3 get {key} failed: {exc}") from exc
        return res["Body"].read()

    def put_bytes(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data or b"",
                ContentType=content_type or "application/octet-stream",
            )
        except (BotoCoreError, ClientError) as exc:
            raise CatalogStoreError(f"S3 put {key} failed: {exc}") from exc


def build_blob_store(config: AppConfig) -> BlobStore:
    storage = config.storage
    backend = (storage.backend or "local").strip().lower()
    if backend == "s3":
        return S3BlobStore(storage)
    if backend != "local":
        raise CatalogStoreError(f"Unknown storage backend: {storage.backend}")
    root = Path(storage.root_dir)
    if not root.is_absolute():
        root = ROOT_DIR / root
    return LocalBlobStore(root)


class CatalogCache:
    """
    Short-lived per-tenant cache of read catalogs.

    Every `invalidate` bumps the tenant version so a read that started before
    an upload cannot repopulate the cache with the old catalog.
    """

    def __init__(self, ttl_seconds: float = 120, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, Tuple[float, int, Any]] = {}
        self._versions: Dict[str, int] = {}

    def version(self, tenant: str) -> int:
        with self._lock:
            return self._versions.get(tenant, 0)

    def get(self, tenant: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(tenant)
            if entry is None:
                return None
            stored_at, version, value = entry
            if version != self._versions.get(tenant, 0) or self._clock() - stored_at > self.ttl_seconds:
                del self._entries[tenant]
                return None
            return value

    def set(self, tenant: str, value: Any, version: Optional[int] = None) -> None:
        with self._lock:
            current = self._versions.get(tenant, 0)
            if version is not None and version != current:
                return
            self._entries[tenant] = (self._clock(), current, value)

    def invalidate(self, tenant: str) -> None:
        with self._lock:
            self._versions[tenant] = self._versions.get(tenant, 0) + 1
            self._entries.pop(tenant, None)


__all__ = [
    "BlobStore",
    "CatalogCache",
    "CatalogStore",
    "CatalogStoreError",
    "LocalBlobStore",
    "S3BlobStore",
    "build_blob_store",
    "catalog_key",
]
