"""Tests for perceptual image hashing."""

from io import BytesIO
from unittest.mock import AsyncMock, patch

import pytest
from PIL import Image

from recipegen.generate.connectors.base import ImageHashError
from recipegen.generate.hashing import (
    PerceptualHasher,
    difference_hash,
    hamming_distance,
    hash_image_bytes,
)


def gradient_image(width: int = 9, height: int = 8, reverse: bool = False) -> Image.Image:
    """Horizontal grayscale gradient, brightening left to right unless reversed.

    The default 9x8 size is the dHash thumbnail size, so no resampling happens.
    """
    image = Image.new("L", (width, height))
    for x in range(width):
        shade = int(255 * x / (width - 1))
        if reverse:
            shade = 255 - shade
        for y in range(height):
            image.putpixel((x, y), shade)
    return image


def to_png(image: Image.Image) -> bytes:
    buffer = BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


class TestDifferenceHash:
    """Tests for dHash computation."""

    def test_hash_is_64_bit_hex(self):
        image_hash = difference_hash(gradient_image())

        assert len(image_hash) == 16
        int(image_hash, 16)

    def test_brightening_gradient_is_all_zero(self):
        """Test no pixel is brighter than its right neighbour."""
        assert difference_hash(gradient_image()) == "0" * 16

    def test_darkening_gradient_is_all_ones(self):
        assert difference_hash(gradient_image(reverse=True)) == "f" * 16

    def test_resized_image_keeps_hash(self):
        """Test the same picture at another resolution hashes alike."""
        small = difference_hash(gradient_image(90, 80, reverse=True))
        large = difference_hash(gradient_image(360, 320, reverse=True))

        assert hamming_distance(small, large) <= 4
        assert hamming_distance(small, difference_hash(gradient_image(90, 80))) > 32

    def test_colour_images_are_supported(self):
        image = gradient_image().convert("RGB")

        assert difference_hash(image) == "0" * 16


class TestHashImageBytes:
    """Tests for hashing encoded images."""

    def test_png_bytes(self):
        assert hash_image_bytes(to_png(gradient_image(reverse=True))) == "f" * 16

    def test_invalid_bytes_raise(self):
        with pytest.raises(ImageHashError):
            hash_image_bytes(b"not an image")


class TestHammingDistance:
    """Tests for bit distance between hashes."""

    def test_identical(self):
        assert hamming_distance("abcd", "abcd") == 0

    def test_counts_differing_bits(self):
        assert hamming_distance("0000", "000f") == 4
        assert hamming_distance("0" * 16, "f" * 16) == 64

    def test_length_mismatch(self):
        with pytest.raises(ValueError):
            hamming_distance("00", "0000")


class TestPerceptualHasher:
    """Tests for the downloading hasher."""

    @pytest.mark.asyncio
    async def test_hash_downloads_and_fingerprints(self):
        hasher = PerceptualHasher()

        with patch.object(
            hasher, "_download", new=AsyncMock(return_value=to_png(gradient_image()))
        ) as mock_download:
            image_hash = await hasher.hash("https://images.example.com/a.png")

        mock_download.assert_called_once_with("https://images.example.com/a.png")
        assert image_hash == "0" * 16

    @pytest.mark.asyncio
    async def test_download_error_propagates(self):
        hasher = PerceptualHasher()

        with patch.object(
            hasher, "_download", new=AsyncMock(side_effect=ImageHashError("status 404"))
        ):
            with pytest.raises(ImageHashError):
                await hasher.hash("https://images.example.com/missing.png")

    @pytest.mark.asyncio
    async def test_context_manager_closes_client(self):
        async with PerceptualHasher() as hasher:
            assert hasher._client is not None

        assert hasher._client is None
