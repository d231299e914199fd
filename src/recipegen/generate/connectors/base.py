"""Base interfaces and errors for the external services used by the pipeline."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from recipegen.schemas import GeneratedRecipe, RecipeConcept


@dataclass
class ConnectorResponse:
    """Standardized response from connector API calls."""

    data: Any
    status_code: int
    headers: dict[str, str]

    @property
    def is_success(self) -> bool:
        """Check if response indicates success."""
        return 200 <= self.status_code < 300

    @property
    def is_rate_limited(self) -> bool:
        """Check if response indicates rate limiting."""
        return self.status_code == 429

    @property
    def retry_after(self) -> int | None:
        """Get retry-after seconds from headers, if present."""
        retry_after = self.headers.get("retry-after") or self.headers.get("Retry-After")
        if retry_after:
            try:
                return int(retry_after)
            except ValueError:
                return None
        return None


class ConnectorError(Exception):
    """Base exception for connector errors."""

    def __init__(self, message: str, status_code: int | None = None, response: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class RateLimitError(ConnectorError):
    """Raised when API rate limit is exceeded."""

    def __init__(self, message: str, retry_after: int | None = None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class GenerationError(ConnectorError):
    """Raised when a generation service returns no usable content."""


class StorageError(ConnectorError):
    """Raised when an object cannot be written to durable storage."""


class ImageHashError(ConnectorError):
    """Raised when an image cannot be fetched or fingerprinted."""


class TextGenerationClient(ABC):
    """Produces full recipe content from a recipe concept."""

    @abstractmethod
    async def generate(self, concept: RecipeConcept) -> GeneratedRecipe:
        """
        Generate a recipe for the given concept.

        Args:
            concept: The recipe concept with tags and target nutrition.

        Returns:
            GeneratedRecipe with estimated nutrition.
        """
        pass


class ImageGenerationClient(ABC):
    """Produces a temporary image URL from a text prompt."""

    @abstractmethod
    async def generate(self, prompt: str) -> str:
        """
        Generate one image.

        Args:
            prompt: Text description of the image.

        Returns:
            Temporary URL of the generated image.
        """
        pass


class ObjectStoreClient(ABC):
    """Copies an image at a temporary URL into long-term storage."""

    @abstractmethod
    async def upload(self, temporary_url: str, label: str) -> str:
        """
        Upload the image found at ``temporary_url``.

        Args:
            temporary_url: URL the image can currently be downloaded from.
            label: Human readable label used to name the stored object.

        Returns:
            Permanent public URL of the stored image.
        """
        pass


class ImageHasher(ABC):
    """Computes a perceptual fingerprint of an image."""

    @abstractmethod
    async def hash(self, image_url: str) -> str:
        """Return the perceptual hash of the image at ``image_url``."""
        pass
