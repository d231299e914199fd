"""Chunked, bounded-concurrency copying of temporary images to durable storage."""

import asyncio
import time
from typing import Any

from recipegen.config import get_settings
from recipegen.generate.agents.base import AgentResponse, AgentType, BaseAgent
from recipegen.generate.connectors.base import ObjectStoreClient
from recipegen.generate.types import ImageUploadRequest, ImageUploadResult, StorageBatchResult
from recipegen.logging_config import LoggingContext, get_logger

logger = get_logger(__name__)


class ImageStorageAgent(BaseAgent):
    """Uploads temporary images to the object store.

    Images are processed in fixed-size chunks: uploads inside a chunk run
    concurrently, chunks run one after another, so at most ``chunk_size``
    uploads are ever in flight. A failed or timed-out upload falls back to
    the temporary URL and never fails the batch.
    """

    agent_type = AgentType.STORAGE

    def __init__(
        self,
        object_store: ObjectStoreClient,
        chunk_size: int | None = None,
        upload_timeout: float | None = None,
    ):
        super().__init__()
        settings = get_settings()
        self.object_store = object_store
        self.chunk_size = chunk_size or settings.storage_chunk_size
        self.upload_timeout = upload_timeout or settings.storage_upload_timeout

        self._total_uploaded = 0
        self._total_failed = 0
        self._total_upload_time_ms = 0.0

    async def process(
        self,
        request: dict[str, Any],
        correlation_id: str | None = None,
    ) -> AgentResponse[StorageBatchResult]:
        """Generic agent entry point taking ``images`` and ``batch_id``."""
        return await self.upload_batch_images(
            request.get("images", []),
            request.get("batch_id", ""),
            correlation_id,
        )

    async def upload_batch_images(
        self,
        images: list[ImageUploadRequest],
        batch_id: str,
        correlation_id: str | None = None,
    ) -> AgentResponse[StorageBatchResult]:
        """
        Upload a batch of temporary images.

        Args:
            images: Images to copy, each with its recipe id and temporary URL.
            batch_id: Batch the images belong to.
            correlation_id: Optional id carried into the response.

        Returns:
            AgentResponse wrapping a StorageBatchResult with one upload result
            per image, in input order.
        """

        async def _upload() -> StorageBatchResult:
            return await self._upload_all(images, batch_id)

        return await self.execute_with_metrics(_upload, correlation_id)

    async def _upload_all(
        self,
        images: list[ImageUploadRequest],
        batch_id: str,
    ) -> StorageBatchResult:
        result = StorageBatchResult(batch_id=batch_id)
        if not images:
            return result

        for start in range(0, len(images), self.chunk_size):
            chunk = images[start : start + self.chunk_size]
            outcomes = await asyncio.gather(
                *(self._upload_traced(image) for image in chunk),
                return_exceptions=True,
            )

            for image, outcome in zip(chunk, outcomes, strict=True):
                if isinstance(outcome, Exception):
                    logger.error(f"Upload task crashed for recipe {image.recipe_id}: {outcome}")
                    result.errors.append(f"{image.recipe_id}: {outcome}")
                    outcome = self._fallback(image, 0.0, str(outcome))
                result.uploads.append(outcome)

        for upload in result.uploads:
            if upload.was_uploaded:
                result.total_uploaded += 1
            else:
                result.total_failed += 1

        self._total_uploaded += result.total_uploaded
        self._total_failed += result.total_failed
        self._total_upload_time_ms += sum(u.upload_duration_ms for u in result.uploads)

        logger.info(
            f"Stored images for batch {batch_id}: {result.total_uploaded} uploaded, "
            f"{result.total_failed} using temporary URL"
        )
        return result

    async def _upload_traced(self, image: ImageUploadRequest) -> ImageUploadResult:
        with LoggingContext(correlation_id=image.correlation_id):
            return await self._upload_one(image)

    async def _upload_one(self, image: ImageUploadRequest) -> ImageUploadResult:
        start = time.perf_counter()
        try:
            permanent_url = await asyncio.wait_for(
                self.object_store.upload(image.temporary_image_url, image.recipe_name),
                timeout=self.upload_timeout,
            )
        except asyncio.TimeoutError:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.warning(
                f"Upload timed out for recipe {image.recipe_id} after {self.upload_timeout}s"
            )
            return self._fallback(image, duration_ms, "upload timed out")
        except Exception as e:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.warning(f"Upload failed for recipe {image.recipe_id}: {e}")
            return self._fallback(image, duration_ms, str(e))

        logger.debug(f"Uploaded image for recipe {image.recipe_id} to {permanent_url}")
        return ImageUploadResult(
            recipe_id=image.recipe_id,
            recipe_name=image.recipe_name,
            batch_id=image.batch_id,
            temporary_image_url=image.temporary_image_url,
            permanent_image_url=permanent_url,
            was_uploaded=True,
            upload_duration_ms=(time.perf_counter() - start) * 1000,
            correlation_id=image.correlation_id,
        )

    @staticmethod
    def _fallback(image: ImageUploadRequest, duration_ms: float, error: str) -> ImageUploadResult:
        return ImageUploadResult(
            recipe_id=image.recipe_id,
            recipe_name=image.recipe_name,
            batch_id=image.batch_id,
            temporary_image_url=image.temporary_image_url,
            permanent_image_url=image.temporary_image_url,
            was_uploaded=False,
            upload_duration_ms=duration_ms,
            error=error,
            correlation_id=image.correlation_id,
        )

    def get_upload_stats(self) -> dict[str, Any]:
        """Lifetime upload counters for this agent."""
        metrics = self.get_metrics()
        total_items = self._total_uploaded + self._total_failed
        return {
            "total_operations": metrics.operation_count,
            "total_uploaded": self._total_uploaded,
            "total_failed": self._total_failed,
            "success_rate": (
                metrics.success_count / metrics.operation_count if metrics.operation_count else 0.0
            ),
            "average_upload_time_ms": (
                self._total_upload_time_ms / total_items if total_items else 0.0
            ),
        }
