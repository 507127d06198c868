"""S3/MinIO adapter implementing MediaStoragePort.

Layer: Infrastructure

Stores chat attachments in one bucket under ``<prefix>/<kind>/<uuid>.<ext>``.
The object key doubles as the attachment ``public_id``; the public URL is
built from ``public_base_url`` (CDN or MinIO gateway in front of the bucket).

boto3 is synchronous, so calls run in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any
from uuid import uuid4

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from src.ports.media_storage_port import MediaStoragePort
from src.shared.errors import PortUnavailableError
from src.shared.types import UploadedMedia

logger = logging.getLogger(__name__)


def _extension(filename: str) -> str:
    return filename.rsplit(".", 1)[-1].lower() if "." in filename else "bin"


class S3MediaStorage(MediaStoragePort):
    """MediaStoragePort implementation using S3/MinIO.

    Args:
        bucket: Target bucket name.
        endpoint_url: S3 endpoint. Falls back to MINIO_ENDPOINT.
        access_key: Falls back to MINIO_ACCESS_KEY / AWS_ACCESS_KEY_ID.
        secret_key: Falls back to MINIO_SECRET_KEY / AWS_SECRET_ACCESS_KEY.
        public_base_url: Prefix for public URLs. Defaults to ``<endpoint>/<bucket>``.
        key_prefix: Folder all chat media is stored under.
        client: Pre-built boto3 client (tests inject a fake).
    """

    def __init__(
        self,
        *,
        bucket: str,
        endpoint_url: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        public_base_url: str | None = None,
        key_prefix: str = "chat",
        region: str = "us-east-1",
        client: Any = None,
    ) -> None:
        self._bucket = bucket
        self._endpoint_url = endpoint_url or os.environ.get(
            "MINIO_ENDPOINT", "http://localhost:9000"
        )
        self._access_key = access_key or os.environ.get(
            "MINIO_ACCESS_KEY", os.environ.get("AWS_ACCESS_KEY_ID", "")
        )
        self._secret_key = secret_key or os.environ.get(
            "MINIO_SECRET_KEY", os.environ.get("AWS_SECRET_ACCESS_KEY", "")
        )
        self._public_base_url = (
            public_base_url or f"{self._endpoint_url.rstrip('/')}/{bucket}"
        ).rstrip("/")
        self._key_prefix = key_prefix.strip("/")
        self._region = region
        self._client: Any = client

    def connect(self) -> None:
        """Create the boto3 S3 client."""
        self._client = boto3.client(
            "s3",
            endpoint_url=self._endpoint_url,
            aws_access_key_id=self._access_key,
            aws_secret_access_key=self._secret_key,
            region_name=self._region,
            config=Config(signature_version="s3v4"),
        )
        logger.info("S3 media storage connected: %s bucket=%s", self._endpoint_url, self._bucket)

    @property
    def client(self) -> Any:
        if self._client is None:
            msg = "S3 not connected. Call connect() first."
            raise RuntimeError(msg)
        return self._client

    def public_url(self, public_id: str) -> str:
        return f"{self._public_base_url}/{public_id}"

    async def upload(
        self,
        data: bytes,
        filename: str,
        kind: str,
        content_type: str = "application/octet-stream",
    ) -> UploadedMedia:
        """Upload one attachment and return its durable reference."""
        key = f"{self._key_prefix}/{kind}/{uuid4().hex}.{_extension(filename)}"
        try:
            await asyncio.to_thread(
                self.client.put_object,
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                Metadata={"original-name": filename},
            )
        except (BotoCoreError, ClientError) as exc:
            logger.warning("S3 upload failed key=%s: %s", key, exc)
            raise PortUnavailableError("media_storage", f"Upload failed: {exc}") from exc

        logger.info("Uploaded %s (%d bytes) as %s", filename, len(data), key)
        # Duration and dimensions need media probing, which S3 does not do.
        return UploadedMedia(
            url=self.public_url(key),
            public_id=key,
            size=len(data),
            kind=kind,
            original_name=filename,
        )

    async def delete(self, public_id: str, kind: str) -> bool:
        """Delete an attachment. Returns False if the store refused or is unreachable."""
        try:
            await asyncio.to_thread(self.client.delete_object, Bucket=self._bucket, Key=public_id)
        except ClientError as exc:
            error_code = exc.response.get("Error", {}).get("Code", "")
            logger.warning("S3 delete failed key=%s kind=%s code=%s", public_id, kind, error_code)
            return False
        except BotoCoreError as exc:
            logger.warning("S3 delete failed key=%s kind=%s: %s", public_id, kind, exc)
            return False
        return True
