"""S3-backed blob storage for compressed images."""

from __future__ import annotations

from typing import Any, Optional, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from image_processor.core.config import Settings, settings
from image_processor.core.errors import BlobStoreError
from image_processor.core.logging import get_logger

logger = get_logger(__name__)


class BlobStore(Protocol):
    def upload(self, key: str, data: bytes, content_type: str) -> str: ...

    def download(self, key: str) -> bytes: ...


class S3BlobStore:
    """Stores objects in a single S3 bucket and reports their public URI."""

    def __init__(self, client: Any, bucket: str, public_base_url: Optional[str] = None) -> None:
        if not bucket:
            raise ValueError("An S3 bucket name is required for blob storage.")
        self._client = client
        self._bucket = bucket
        self._public_base_url = public_base_url.rstrip("/") if public_base_url else None

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "S3BlobStore":
        """Build a store using the configured bucket and AWS credentials."""

        client = boto3.client(
            "s3",
            region_name=config.aws_region,
            aws_access_key_id=config.aws_access_key_id,
            aws_secret_access_key=config.aws_secret_access_key,
            endpoint_url=config.aws_endpoint_url,
        )
        return cls(client, config.image_storage_bucket or "", config.storage_public_base_url)

    def upload(self, key: str, data: bytes, content_type: str) -> str:
        try:
            self._client.put_object(Bucket=self._bucket, Key=key, Body=data, ContentType=content_type)
        except (BotoCoreError, ClientError) as exc:
            logger.error("blob_upload_failed", bucket=self._bucket, key=key, error=str(exc))
            raise BlobStoreError(f"Upload of {key} failed: {exc}") from exc

        logger.debug("blob_uploaded", bucket=self._bucket, key=key, bytes=len(data))
        return self.uri_for(key)

    def download(self, key: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=key)
            return response["Body"].read()
        except (BotoCoreError, ClientError) as exc:
            logger.error("blob_download_failed", bucket=self._bucket, key=key, error=str(exc))
            raise BlobStoreError(f"Download of {key} failed: {exc}") from exc

    def uri_for(self, key: str) -> str:
        """Return the URI readers use to fetch ``key``."""

        if self._public_base_url:
            return f"{self._public_base_url}/{key}"
        return f"https://{self._bucket}.s3.amazonaws.com/{key}"
