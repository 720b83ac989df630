"""Content-addressed archive storage.

Objects are keyed ``archives/<category>/<sha256>.<ext>`` with a JSON sidecar at
``archives/<category>/<sha256>.meta.json``. Writing an existing key is a no-op.
"""
from __future__ import annotations

import hashlib
import mimetypes
import re
from pathlib import Path
from typing import Any, Protocol

import structlog

from continuous_scraper.config import StorageConfig
from continuous_scraper.fs import atomic_write, atomic_write_json, json_bytes

logger = structlog.get_logger(__name__)

_EXT_OVERRIDES = {
    "text/html": "html",
    "application/json": "json",
    "application/pdf": "pdf",
    "image/jpeg": "jpg",
    "text/plain": "txt",
}


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def extension_for(content_type: str | None) -> str:
    mime = (content_type or "").split(";")[0].strip().lower()
    if mime in _EXT_OVERRIDES:
        return _EXT_OVERRIDES[mime]
    guessed = mimetypes.guess_extension(mime) if mime else None
    return guessed.lstrip(".") if guessed else "bin"


def archive_key(category: str, sha256_hex: str, content_type: str | None) -> str:
    safe = re.sub(r"[^a-z0-9_\-]", "_", (category or "generic").lower())
    return f"archives/{safe}/{sha256_hex}.{extension_for(content_type)}"


def sidecar_key(storage_key: str) -> str:
    stem = storage_key.rsplit(".", 1)[0]
    return f"{stem}.meta.json"


class ObjectStore(Protocol):
    def exists(self, key: str) -> bool: ...

    def put(self, key: str, data: bytes, content_type: str | None = None) -> None: ...

    def get(self, key: str) -> bytes: ...

    def put_metadata(self, key: str, metadata: dict[str, Any]) -> None: ...


class LocalObjectStore:
    """Archive objects under a local directory."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        return self.root / key

    def exists(self, key: str) -> bool:
        return self._path(key).exists()

    def put(self, key: str, data: bytes, content_type: str | None = None) -> None:
        if not atomic_write(self._path(key), data, overwrite=False):
            logger.debug("archive.exists", key=key)
            return
        logger.info("archive.saved", key=key, size=len(data))

    def get(self, key: str) -> bytes:
        return self._path(key).read_bytes()

    def put_metadata(self, key: str, metadata: dict[str, Any]) -> None:
        atomic_write_json(self._path(sidecar_key(key)), metadata)


class S3ObjectStore:
    """Archive objects in an S3-compatible bucket."""

    def __init__(self, config: StorageConfig, client: Any | None = None) -> None:
        if not config.bucket:
            raise ValueError("S3ObjectStore needs a bucket")
        self.bucket = config.bucket
        if client is None:
            import boto3

            client = boto3.client(
                "s3",
                region_name=config.region,
                aws_access_key_id=config.key,
                aws_secret_access_key=config.secret,
            )
        self._client = client

    def exists(self, key: str) -> bool:
        from botocore.exceptions import ClientError

        try:
            self._client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise
        return True

    def put(self, key: str, data: bytes, content_type: str | None = None) -> None:
        if self.exists(key):
            logger.debug("archive.exists", key=key, bucket=self.bucket)
            return
        extra = {"ContentType": content_type} if content_type else {}
        self._client.put_object(Bucket=self.bucket, Key=key, Body=data, **extra)
        logger.info("archive.saved", key=key, bucket=self.bucket, size=len(data))

    def get(self, key: str) -> bytes:
        return self._client.get_object(Bucket=self.bucket, Key=key)["Body"].read()

    def put_metadata(self, key: str, metadata: dict[str, Any]) -> None:
        self._client.put_object(
            Bucket=self.bucket,
            Key=sidecar_key(key),
            Body=json_bytes(metadata),
            ContentType="application/json",
        )


def build_object_store(config: StorageConfig) -> ObjectStore:
    if config.uses_bucket:
        return S3ObjectStore(config)
    return LocalObjectStore(config.local_root)
