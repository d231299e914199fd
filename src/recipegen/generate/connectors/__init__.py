"""Connector interfaces for the text, image and storage services."""

from recipegen.generate.connectors.base import (
    ConnectorError,
    ConnectorResponse,
    GenerationError,
    ImageGenerationClient,
    ImageHasher,
    ImageHashError,
    ObjectStoreClient,
    RateLimitError,
    StorageError,
    TextGenerationClient,
)
from recipegen.generate.connectors.openai import OpenAIImageConnector, OpenAITextConnector
from recipegen.generate.connectors.storage import S3ObjectStore

__all__ = [
    "ConnectorError",
    "ConnectorResponse",
    "GenerationError",
    "ImageGenerationClient",
    "ImageHashError",
    "ImageHasher",
    "ObjectStoreClient",
    "OpenAIImageConnector",
    "OpenAITextConnector",
    "RateLimitError",
    "S3ObjectStore",
    "StorageError",
    "TextGenerationClient",
]
