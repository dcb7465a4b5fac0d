"""Object storage for model files (S3-compatible: AWS, R2, MinIO).

boto3 is blocking, so calls run in a worker thread via asyncio.to_thread.
"""

import asyncio
import logging
from collections.abc import Sequence
from typing import Any, Protocol

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from apps.catalog.config import CatalogConfig, config as default_config

logger = logging.getLogger(__name__)

# S3 DeleteObjects accepts at most 1000 keys per request.
DELETE_BATCH_SIZE = 1000


class StorageError(Exception):
    """Object store call failed."""

    pass


class Storage(Protocol):
    async def generate_download_url(self, storage_key: str, bucket: str | None, expiry_minutes: int) -> str: ...

    async def delete_objects(self, storage_keys: Sequence[str], bucket: str | None = None) -> list[str]: ...

    async def key_exists(self, storage_key: str, bucket: str | None = None) -> bool: ...


def build_s3_client(settings: CatalogConfig) -> Any:
    session = boto3.session.Session()
    return session.client(
        "s3",
        endpoint_url=settings.storage_endpoint_url,
        region_name=settings.storage_region,
        aws_access_key_id=settings.storage_access_key or None,
        aws_secret_access_key=settings.storage_secret_key or None,
        config=BotoConfig(signature_version="s3v4", s3={"addressing_style": "path"}),
    )


class S3Storage:
    """Presigned GET URLs, batched deletes and existence checks against one default bucket."""

    def __init__(self, client: Any | None = None, settings: CatalogConfig | None = None) -> None:
        self.settings = settings or default_config
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = build_s3_client(self.settings)
        return self._client

    async def generate_download_url(self, storage_key: str, bucket: str | None, expiry_minutes: int) -> str:
        params = {"Bucket": bucket or self.settings.storage_bucket_name, "Key": storage_key}
        try:
            return await asyncio.to_thread(
                self.client.generate_presigned_url,
                "get_object",
                Params=params,
                ExpiresIn=expiry_minutes * 60,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"presign failed for {storage_key}: {exc}") from exc

    async def delete_objects(self, storage_keys: Sequence[str], bucket: str | None = None) -> list[str]:
        """Delete keys in batches. Returns keys the store reported as failed."""
        bucket = bucket or self.settings.storage_bucket_name
        keys = list(dict.fromkeys(storage_keys))
        failed: list[str] = []
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[start : start + DELETE_BATCH_SIZE]
            try:
                response = await asyncio.to_thread(
                    self.client.delete_objects,
                    Bucket=bucket,
                    Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
                )
            except (BotoCoreError, ClientError) as exc:
                logger.error("delete_objects failed for %d keys in %s: %s", len(batch), bucket, exc)
                failed.extend(batch)
                continue
            for err in response.get("Errors", []):
                logger.warning("object delete failed: %s (%s)", err.get("Key"), err.get("Code"))
                failed.append(err.get("Key"))
        return failed

    async def key_exists(self, storage_key: str, bucket: str | None = None) -> bool:
        try:
            await asyncio.to_thread(
                self.client.head_object,
                Bucket=bucket or self.settings.storage_bucket_name,
                Key=storage_key,
            )
            return True
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in ("404", "NoSuchKey", "NotFound"):
                return False
            raise StorageError(f"head_object failed for {storage_key}: {exc}") from exc
