"""S3-compatible blob storage for mirrored activity payloads.

Works against any S3-compatible endpoint (Google Cloud Storage interop,
Cloudflare R2, MinIO, AWS).  Objects are opaque gzip blobs; they are only
read back to compare digests during read-repair, never parsed.

boto3 is synchronous, so every call runs in a worker thread to keep the
event loop free for the job harness.
"""

from __future__ import annotations

import asyncio
import logging

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from activities.config_loader import StorageConfig
from activities.errors import StorageError

logger = logging.getLogger("activities.blobstore")

_MISSING_CODES = {"NoSuchKey", "404", "NotFound"}


def create_s3_client(config: StorageConfig):
    """Build a boto3 S3 client for the configured endpoint."""
    return boto3.client(
        "s3",
        endpoint_url=config.endpoint_url,
        aws_access_key_id=config.access_key_id,
        aws_secret_access_key=config.secret_access_key,
        config=BotoConfig(
            signature_version="s3v4",
            retries={"max_attempts": 3, "mode": "standard"},
        ),
        region_name=config.region,
    )


def _is_missing(exc: ClientError) -> bool:
    code = str(exc.response.get("Error", {}).get("Code", ""))
    return code in _MISSING_CODES


class BlobStore:
    """Thin async wrapper over one bucket.

    Usage::

        store = BlobStore(bucket="my-activities", client=create_s3_client(cfg))
        await store.put_object("activities/original/1.fit.gz", data)
        data = await store.get_object("activities/original/1.fit.gz")
    """

    def __init__(self, bucket: str, client=None, config: StorageConfig | None = None) -> None:
        """Initialize the store.

        Args:
            bucket: Bucket name.
            client: Optional pre-built boto3 S3 client (for testing).
            config: Storage config used to build a client lazily.
        """
        self._bucket = bucket
        self._client = client
        self._config = config

    @classmethod
    def from_config(cls, config: StorageConfig) -> "BlobStore":
        return cls(bucket=config.bucket, config=config)

    @property
    def bucket(self) -> str:
        return self._bucket

    def _get_client(self):
        if self._client is None:
            if self._config is None:
                raise StorageError("BlobStore has neither a client nor a storage config")
            self._client = create_s3_client(self._config)
        return self._client

    async def put_object(self, key: str, data: bytes) -> None:
        """Write one complete object.

        A single PUT either replaces the object entirely or fails, so the
        key never holds a partial payload.

        Raises:
            StorageError: On any S3 error.
        """
        client = self._get_client()
        try:
            await asyncio.to_thread(
                client.put_object,
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType="application/gzip",
            )
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"failed to write s3://{self._bucket}/{key}: {exc}") from exc

        logger.info("Uploaded %d bytes to key=%s", len(data), key)

    async def get_object(self, key: str) -> bytes | None:
        """Read one object, returning None if it does not exist.

        Raises:
            StorageError: On any S3 error other than a missing key.
        """
        client = self._get_client()
        try:
            response = await asyncio.to_thread(
                client.get_object, Bucket=self._bucket, Key=key
            )
            body = response["Body"]
            try:
                return await asyncio.to_thread(body.read)
            finally:
                body.close()
        except ClientError as exc:
            if _is_missing(exc):
                return None
            raise StorageError(f"failed to read s3://{self._bucket}/{key}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"failed to read s3://{self._bucket}/{key}: {exc}") from exc
