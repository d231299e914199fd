"""Perceptual image hashing for near-duplicate detection.

Uses a 64-bit difference hash (dHash): the image is reduced to a 9x8
grayscale thumbnail and each bit records whether a pixel is brighter than
its right-hand neighbour. Visually similar images produce hashes that differ
in only a few bits, so similarity is measured as Hamming distance.
"""

import asyncio
from io import BytesIO

import httpx
from PIL import Image, UnidentifiedImageError
from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from recipegen.generate.connectors.base import ImageHashError, ImageHasher
from recipegen.logging_config import get_logger

logger = get_logger(__name__)

HASH_SIZE = 8


def difference_hash(image: Image.Image, hash_size: int = HASH_SIZE) -> str:
    """
    Compute the difference hash of an image.

    Args:
        image: Any PIL image.
        hash_size: Number of comparisons per row (hash has hash_size**2 bits).

    Returns:
        Hash as a zero-padded lowercase hex string.
    """
    width = hash_size + 1
    thumbnail = image.convert("L").resize((width, hash_size), Image.Resampling.LANCZOS)
    pixels = thumbnail.tobytes()

    bits = 0
    for row in range(hash_size):
        offset = row * width
        for col in range(hash_size):
            left = pixels[offset + col]
            right = pixels[offset + col + 1]
            bits = (bits << 1) | int(left > right)

    return f"{bits:0{hash_size * hash_size // 4}x}"


def hash_image_bytes(data: bytes, hash_size: int = HASH_SIZE) -> str:
    """Decode image bytes and return their difference hash."""
    try:
        with Image.open(BytesIO(data)) as image:
            return difference_hash(image, hash_size)
    except (UnidentifiedImageError, OSError) as e:
        raise ImageHashError(f"Could not decode image: {e}") from e


def hamming_distance(first: str, second: str) -> int:
    """Number of differing bits between two hex hashes of equal length."""
    if len(first) != len(second):
        raise ValueError(f"Hash length mismatch: {len(first)} != {len(second)}")
    return (int(first, 16) ^ int(second, 16)).bit_count()


class PerceptualHasher(ImageHasher):
    """Downloads images over HTTP and fingerprints them with dHash."""

    DEFAULT_TIMEOUT = 30.0
    MAX_RETRIES = 3

    def __init__(self, timeout: float | None = None, hash_size: int = HASH_SIZE):
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self.hash_size = hash_size
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _download(self, image_url: str) -> bytes:
        client = await self._get_client()

        @retry(
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
            stop=stop_after_attempt(self.MAX_RETRIES),
            wait=wait_exponential(multiplier=1, max=10),
            reraise=True,
        )
        async def _do_request() -> httpx.Response:
            return await client.get(image_url)

        try:
            response = await _do_request()
        except (RetryError, httpx.HTTPError) as e:
            raise ImageHashError(f"Failed to download image: {e}") from e

        if response.status_code >= 400:
            raise ImageHashError(
                f"Image download failed with status {response.status_code}",
                status_code=response.status_code,
            )
        return response.content

    async def hash(self, image_url: str) -> str:
        """Download the image and return its perceptual hash."""
        data = await self._download(image_url)
        image_hash = await asyncio.to_thread(hash_image_bytes, data, self.hash_size)
        logger.debug(f"Hashed image {image_url[:60]} -> {image_hash}")
        return image_hash

    async def __aenter__(self) -> "PerceptualHasher":
        await self._get_client()
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()
