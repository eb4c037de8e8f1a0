import asyncio
import logging
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

import boto3
import httpx

from config import (
    AWS_REGION, OUTPUT_CONTENT_TYPE, OUTPUT_EXTENSION, S3_BUCKET,
    UPLOAD_TIMEOUT_SECONDS, UPLOAD_URL_EXPIRES,
)
from core.errors import UploadError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WriteTarget:
    url: str
    key: str


def durable_reference(url: str) -> str:
    """Strips the query (signature) and fragment from a write URL."""
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


class S3StorageSink:
    """Issues presigned, single-object PUT URLs with a fixed content type."""

    def __init__(
        self,
        bucket: str = S3_BUCKET,
        region: str = AWS_REGION,
        expires_in: int = UPLOAD_URL_EXPIRES,
    ):
        self.bucket = bucket
        self.region = region
        self.expires_in = expires_in
        self._client = None

    @property
    def client(self):
        if self._client is None:
            logger.info(f"Connecting to S3 bucket: {self.bucket} (region: {self.region})")
            self._client = boto3.client("s3", region_name=self.region)
        return self._client

    def _presign(self, key: str) -> str:
        # Runs in a worker thread; the first call also builds the boto3 client
        return self.client.generate_presigned_url(
            "put_object",
            Params={"Bucket": self.bucket, "Key": key, "ContentType": OUTPUT_CONTENT_TYPE},
            ExpiresIn=self.expires_in,
        )

    async def request_write_target(self) -> WriteTarget:
        key = f"{secrets.token_hex(16)}{OUTPUT_EXTENSION}"
        url = await asyncio.to_thread(self._presign, key)
        return WriteTarget(url=url, key=key)


class ArtifactUploader:
    """Hands a local artifact to the storage sink in one full-body PUT."""

    def __init__(
        self,
        sink,
        timeout: float = UPLOAD_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.sink = sink
        self.timeout = timeout
        self._transport = transport

    async def upload(self, artifact_path: Path) -> str:
        try:
            target = await self.sink.request_write_target()
            data = await asyncio.to_thread(artifact_path.read_bytes)
        except Exception as e:
            raise UploadError(f"Could not prepare upload of {artifact_path.name}: {e}") from e

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.put(
                    target.url,
                    content=data,
                    headers={"Content-Type": OUTPUT_CONTENT_TYPE},
                )
        except httpx.HTTPError as e:
            raise UploadError(f"Upload transfer failed: {e}") from e

        if not response.is_success:
            raise UploadError(
                f"Upload failed with status {response.status_code}: {response.text[:300]}"
            )

        logger.info(f"Uploaded {len(data)} bytes as {target.key}")
        return durable_reference(target.url)
