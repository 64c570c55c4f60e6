"""Durable blob storage adapters — S3 via boto3, local filesystem for dev."""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path
from typing import BinaryIO, Protocol
from urllib.parse import quote

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from app.exceptions import TransferError

logger = logging.getLogger(__name__)


class BlobStorage(Protocol):
    """transfer() is called exactly once per upload; retries are the SDK's business."""

    async def transfer(self, stream: BinaryIO, key: str) -> str: ...

    async def delete(self, key: str) -> None: ...


class S3BlobStorage:
    """Streams uploads into one S3 bucket and returns the object URL."""

    def __init__(
        self,
        bucket_name: str,
        region: str = "us-east-1",
        endpoint_url: str | None = None,
        client=None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
    ):
        if not bucket_name:
            raise ValueError("S3 bucket name is not set")
        self._bucket = bucket_name
        self._region = region
        self._endpoint_url = endpoint_url.rstrip("/") if endpoint_url else None
        self._client = client or boto3.client(
            "s3",
            region_name=region,
            endpoint_url=self._endpoint_url,
            aws_access_key_id=access_key_id or None,
            aws_secret_access_key=secret_access_key or None,
        )

    def object_url(self, key: str) -> str:
        quoted = quote(key)
        if self._endpoint_url:
            # MinIO / LocalStack only serve path-style
            return f"{self._endpoint_url}/{self._bucket}/{quoted}"
        return f"https://{self._bucket}.s3.{self._region}.amazonaws.com/{quoted}"

    async def transfer(self, stream: BinaryIO, key: str) -> str:
        logger.info("Uploading '%s' to bucket '%s'", key, self._bucket)
        try:
            await asyncio.to_thread(self._client.upload_fileobj, stream, self._bucket, key)
        except (BotoCoreError, ClientError) as exc:
            logger.error("Error uploading to S3: %s", exc)
            raise TransferError(f"error uploading file to S3: {exc}") from exc
        return self.object_url(key)

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._client.delete_object, Bucket=self._bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            logger.error("Error deleting '%s' from S3: %s", key, exc)
            raise TransferError(f"error deleting object from S3: {exc}") from exc
        logger.info("Deleted '%s' from bucket '%s'", key, self._bucket)


class LocalBlobStorage:
    """Writes uploads under a directory; locators are URLs below public_base_url."""

    CHUNK_SIZE = 64 * 1024  # 64 KB

    def __init__(self, root: str | Path, public_base_url: str):
        self._root = Path(root)
        self._base_url = public_base_url.rstrip("/")

    def path_for(self, key: str) -> Path:
        path = (self._root / key).resolve()
        if self._root.resolve() not in path.parents:
            raise TransferError(f"Invalid object key: {key}")
        return path

    def _write(self, stream: BinaryIO, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            shutil.copyfileobj(stream, f, self.CHUNK_SIZE)

    async def transfer(self, stream: BinaryIO, key: str) -> str:
        path = self.path_for(key)
        try:
            await asyncio.to_thread(self._write, stream, path)
        except OSError as exc:
            logger.error("Error writing blob %s: %s", path, exc)
            raise TransferError(f"error writing file to storage: {exc}") from exc
        logger.info("Stored blob %s", path)
        return f"{self._base_url}/{quote(key)}"

    async def delete(self, key: str) -> None:
        path = self.path_for(key)
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as exc:
            raise TransferError(f"error deleting file from storage: {exc}") from exc
        logger.info("Deleted blob %s", path)
