"""
Blob storage for archived execution payloads and trace snapshots.

Keys are plain slash-separated strings (``logs/1/2025-01-31/...``). Writes are
idempotent overwrites; there is no versioning at this layer.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional, Protocol

from prompt_telemetry.config import settings

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"


class BlobStore(Protocol):
    async def put(
        self, key: str, body: str, content_type: str = JSON_CONTENT_TYPE
    ) -> None: ...

    async def get(self, key: str) -> Optional[str]: ...


class LocalBlobStore:
    """Filesystem-backed store rooted at a directory, used for local runs and tests."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def _path_for(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Blob key escapes storage root: {key}")
        return path

    def _write(self, key: str, body: str) -> None:
        path = self._path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(body, encoding="utf-8")

    def _read(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8")

    async def put(
        self, key: str, body: str, content_type: str = JSON_CONTENT_TYPE
    ) -> None:
        await asyncio.to_thread(self._write, key, body)

    async def get(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._read, key)


class S3BlobStore:
    """S3 (or S3-compatible, e.g. R2/MinIO) bucket accessed through boto3."""

    def __init__(
        self,
        bucket: str,
        region_name: str | None = None,
        endpoint_url: str | None = None,
        client=None,
    ):
        if client is None:
            import boto3

            client = boto3.client(
                "s3", region_name=region_name, endpoint_url=endpoint_url
            )
        self.bucket = bucket
        self.client = client

    def _read(self, key: str) -> Optional[str]:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
        except self.client.exceptions.NoSuchKey:
            return None
        return response["Body"].read().decode("utf-8")

    async def put(
        self, key: str, body: str, content_type: str = JSON_CONTENT_TYPE
    ) -> None:
        await asyncio.to_thread(
            self.client.put_object,
            Bucket=self.bucket,
            Key=key,
            Body=body.encode("utf-8"),
            ContentType=content_type,
        )

    async def get(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._read, key)


_blob_store: Optional[BlobStore] = None


def get_blob_store() -> BlobStore:
    """
    Get or create the configured blob store.
    Returns a singleton so the boto3 client and its connection pool are reused.
    """
    global _blob_store

    if _blob_store is None:
        if settings.blob_backend == "s3":
            _blob_store = S3BlobStore(
                bucket=settings.blob_bucket,
                region_name=settings.aws_region,
                endpoint_url=settings.blob_endpoint_url,
            )
        elif settings.blob_backend == "local":
            _blob_store = LocalBlobStore(settings.blob_local_root)
        else:
            raise ValueError(f"Unknown blob backend: {settings.blob_backend}")
        logger.info(f"Using {settings.blob_backend} blob store")

    return _blob_store
