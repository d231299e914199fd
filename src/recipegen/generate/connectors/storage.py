"""S3-compatible object store connector for recipe images."""

import asyncio
import re
import uuid
from typing import Any

import boto3
import httpx
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from recipegen.config import get_settings
from recipegen.generate.connectors.base import ObjectStoreClient, StorageError
from recipegen.logging_config import get_logger

logger = get_logger(__name__)

MAX_SLUG_LENGTH = 60


def slugify(label: str) -> str:
    """Lowercase ``label`` and reduce it to ``a-z0-9`` words joined by hyphens."""
    slug = re.sub(r"[^a-z0-9]+", "-", label.lower()).strip("-")
    return slug[:MAX_SLUG_LENGTH].rstrip("-") or "recipe"


def build_object_key(label: str, prefix: str = "recipes") -> str:
    """Build a unique object key such as ``recipes/thai-green-curry_1a2b3c4d.png``."""
    return f"{prefix.strip('/')}/{slugify(label)}_{uuid.uuid4().hex[:8]}.png"


class S3ObjectStore(ObjectStoreClient):
    """Copies images from temporary URLs into an S3-compatible bucket.

    Works with AWS S3 and DigitalOcean Spaces. The image is downloaded with
    httpx and written with boto3 ``put_object`` in a worker thread, with a
    public-read ACL so the returned URL can be served directly.
    """

    DOWNLOAD_TIMEOUT = 30.0
    MAX_RETRIES = 3

    def __init__(
        self,
        bucket: str | None = None,
        public_base_url: str | None = None,
        key_prefix: str | None = None,
        s3_client: Any = None,
    ):
        settings = get_settings()
        self.bucket = bucket or settings.s3_bucket
        self.public_base_url = (public_base_url or settings.object_base_url).rstrip("/")
        self.key_prefix = key_prefix or settings.s3_key_prefix
        self.s3_client = s3_client or boto3.client(
            "s3",
            region_name=settings.s3_region,
            endpoint_url=settings.s3_endpoint_url or None,
            aws_access_key_id=settings.s3_access_key_id or None,
            aws_secret_access_key=settings.s3_secret_access_key or None,
            config=Config(signature_version="s3v4"),
        )
        self._http: httpx.AsyncClient | None = None

    async def _get_http(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                timeout=httpx.Timeout(self.DOWNLOAD_TIMEOUT),
                follow_redirects=True,
            )
        return self._http

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http and not self._http.is_closed:
            await self._http.aclose()
            self._http = None

    async def _download(self, url: str) -> tuple[bytes, str]:
        client = await self._get_http()

        @retry(
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
            stop=stop_after_attempt(self.MAX_RETRIES),
            wait=wait_exponential(multiplier=1, max=10),
            reraise=True,
        )
        async def _do_request() -> httpx.Response:
            return await client.get(url)

        try:
            response = await _do_request()
        except (RetryError, httpx.HTTPError) as e:
            raise StorageError(f"Failed to download temporary image: {e}") from e

        if response.status_code >= 400:
            raise StorageError(
                f"Temporary image download failed with status {response.status_code}",
                status_code=response.status_code,
            )
        if not response.content:
            raise StorageError("Temporary image is empty")

        content_type = response.headers.get("content-type", "image/png").split(";")[0]
        return response.content, content_type

    def _put_object(self, key: str, body: bytes, content_type: str) -> None:
        self.s3_client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=body,
            ContentType=content_type,
            ACL="public-read",
            CacheControl="public, max-age=31536000",
        )

    async def upload(self, temporary_url: str, label: str) -> str:
        """Download the temporary image and store it permanently."""
        body, content_type = await self._download(temporary_url)
        key = build_object_key(label, self.key_prefix)

        try:
            await asyncio.to_thread(self._put_object, key, body, content_type)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"put_object failed for {key}: {e}")
            raise StorageError(f"Failed to store image {key}: {e}") from e

        permanent_url = f"{self.public_base_url}/{key}"
        logger.debug(f"Stored {len(body)} bytes at {permanent_url}")
        return permanent_url

    async def __aenter__(self) -> "S3ObjectStore":
        await self._get_http()
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()
