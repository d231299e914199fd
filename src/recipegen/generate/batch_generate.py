"""Batch pipeline: concept -> recipe -> validation -> image -> storage."""

import asyncio
import dataclasses
import time
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any

from recipegen.config import get_settings
from recipegen.generate.agents.base import AgentResponse, AgentStatus, AgentType, BaseAgent
from recipegen.generate.agents.image_generation import ImageGenerationAgent
from recipegen.generate.agents.image_storage import ImageStorageAgent
from recipegen.generate.agents.validator import NutritionalValidatorAgent
from recipegen.generate.connectors.base import TextGenerationClient
from recipegen.generate.hash_store import HashStoreUnavailableError, SqlHashStore
from recipegen.generate.types import BatchItem, BatchResult, Degradation, ItemStatus
from recipegen.logging_config import LoggingContext, get_logger
from recipegen.schemas import RecipeConcept

logger = get_logger(__name__)

ProgressCallback = Callable[[str, dict[str, Any]], None]


class StageError(Exception):
    """Raised when a whole pipeline stage returns an unsuccessful response."""

    def __init__(self, stage: str, message: str | None):
        super().__init__(f"{stage} stage failed: {message or 'unknown error'}")
        self.stage = stage


def new_batch_id() -> str:
    return f"batch-{uuid.uuid4().hex[:12]}"


class BatchOrchestrator(BaseAgent):
    """Runs every concept of a batch through all four pipeline stages.

    Items are never dropped or reordered: an item that fails a stage stays in
    ``BatchResult.items`` with its failure recorded and is simply not sent to
    later stages. Only an error that takes down a whole stage (such as an
    unreachable hash store) fails the batch, and that is reported in the
    returned result rather than raised.
    """

    agent_type = AgentType.COORDINATOR

    def __init__(
        self,
        text_client: TextGenerationClient,
        validator: NutritionalValidatorAgent,
        image_agent: ImageGenerationAgent,
        storage_agent: ImageStorageAgent,
        progress: ProgressCallback | None = None,
        text_generation_concurrency: int | None = None,
        text_generation_timeout: float | None = None,
    ):
        super().__init__()
        settings = get_settings()
        self.text_client = text_client
        self.validator = validator
        self.image_agent = image_agent
        self.storage_agent = storage_agent
        self.progress = progress
        self.text_generation_concurrency = (
            text_generation_concurrency or settings.text_generation_concurrency
        )
        self.text_generation_timeout = (
            text_generation_timeout or settings.text_generation_timeout
        )

    async def run_batch(
        self,
        concepts: list[RecipeConcept],
        batch_id: str | None = None,
    ) -> BatchResult:
        """
        Run one batch to completion.

        Args:
            concepts: Recipe concepts, one output item per concept.
            batch_id: Optional batch identifier; generated when omitted.

        Returns:
            BatchResult with status ``completed`` when every item completed
            (possibly degraded), ``partial`` when some items failed, or
            ``failed`` when a stage-wide error stopped the batch.
        """
        batch_id = batch_id or new_batch_id()
        result = BatchResult(
            batch_id=batch_id,
            status="running",
            items=[
                BatchItem(index=index, correlation_id=uuid.uuid4().hex, concept=concept)
                for index, concept in enumerate(concepts)
            ],
        )
        start = time.perf_counter()

        with LoggingContext(batch_id=batch_id):
            logger.info(f"Starting recipe batch {batch_id} with {len(concepts)} concepts")
            self._report("started", result)

            try:
                await self._generate_recipes(result)
                await self._validate(result)
                await self._generate_images(result)
                await self._store_images(result)
                self._apply_final_image_urls(result)
                result.status = self._final_status(result)
            except (HashStoreUnavailableError, StageError) as e:
                logger.error(f"Batch {batch_id} failed: {e}")
                result.status = "failed"
                result.error = str(e)
            except Exception as e:
                logger.exception(f"Batch {batch_id} failed unexpectedly: {e}")
                result.status = "failed"
                result.error = str(e)

            result.completed_at = datetime.utcnow()
            result.duration_ms = self._record(start, success=result.status != "failed")
            self.status = AgentStatus.ERROR if result.status == "failed" else AgentStatus.COMPLETE

            logger.info(
                f"Batch {batch_id} {result.status}: "
                f"{result.total_recipes_generated}/{result.total_input} recipes, "
                f"{result.passed} passed validation, {result.total_generated} images, "
                f"{result.placeholder_count} placeholders, {result.total_uploaded} uploaded"
            )
            self._report(result.status, result)

        return result

    async def _generate_recipes(self, result: BatchResult) -> None:
        semaphore = asyncio.Semaphore(self.text_generation_concurrency)

        async def _generate(item: BatchItem) -> None:
            async with semaphore:
                with LoggingContext(correlation_id=item.correlation_id):
                    try:
                        item.recipe = await asyncio.wait_for(
                            self.text_client.generate(item.concept),
                            timeout=self.text_generation_timeout,
                        )
                        # Model output may repeat or invent ids; each item owns its recipe id
                        item.recipe.recipe_id = uuid.uuid4().hex
                    except asyncio.TimeoutError:
                        logger.warning(f"Recipe generation timed out for '{item.concept.name}'")
                        item.generation_error = "recipe generation timed out"
                        item.degradations.append(Degradation.GENERATION_FAILED)
                    except Exception as e:
                        logger.warning(f"Recipe generation failed for '{item.concept.name}': {e}")
                        item.generation_error = str(e)
                        item.degradations.append(Degradation.GENERATION_FAILED)

        await asyncio.gather(*(_generate(item) for item in result.items))
        self._report("recipes_generated", result)

    async def _validate(self, result: BatchResult) -> None:
        generated = [item for item in result.items if item.recipe is not None]

        response = await self.validator.validate_batch(
            [item.recipe for item in generated],
            [item.concept for item in generated],
            result.batch_id,
            correlation_id=result.batch_id,
            item_correlation_ids=[item.correlation_id for item in generated],
        )
        validation = self._unwrap("validation", response)

        # Issue indexes refer to the generated subset; map them back to batch positions
        validation.issues = [
            dataclasses.replace(issue, recipe_index=generated[issue.recipe_index].index)
            for issue in validation.issues
        ]
        for issue in validation.issues:
            result.items[issue.recipe_index].issues.append(issue)

        for item, validated in zip(generated, validation.validated_recipes, strict=True):
            item.validation = validated
            if not validated.usable:
                item.degradations.append(Degradation.VALIDATION_FAILED)
                item.degradations.append(Degradation.IMAGE_SKIPPED)
                continue
            if validated.auto_fixes_applied:
                item.degradations.append(Degradation.NUTRITION_AUTO_FIXED)
            if not validated.nutrition_accurate:
                item.degradations.append(Degradation.NUTRITION_INACCURATE)

        result.validation = validation
        self._report("validated", result)

    async def _generate_images(self, result: BatchResult) -> None:
        usable = [
            item for item in result.items if item.validation is not None and item.validation.usable
        ]

        response = await self.image_agent.process(
            [item.validation for item in usable],
            result.batch_id,
            correlation_id=result.batch_id,
            item_correlation_ids=[item.correlation_id for item in usable],
        )
        images = self._unwrap("image", response)

        for item, image in zip(usable, images.images, strict=True):
            item.image = image
            if item.image.metadata.is_placeholder:
                item.degradations.append(Degradation.PLACEHOLDER_IMAGE)

        result.images = images
        self._report("images_generated", result)

    async def _store_images(self, result: BatchResult) -> None:
        to_store = [
            item
            for item in result.items
            if item.image is not None and not item.image.metadata.is_placeholder
        ]

        response = await self.storage_agent.upload_batch_images(
            [item.image.to_upload_request() for item in to_store],
            result.batch_id,
            correlation_id=result.batch_id,
        )
        storage = self._unwrap("storage", response)

        for item, upload in zip(to_store, storage.uploads, strict=True):
            item.upload = upload
            if not item.upload.was_uploaded:
                item.degradations.append(Degradation.FALLBACK_STORAGE_URL)

        result.storage = storage
        self._report("images_stored", result)

    @staticmethod
    def _apply_final_image_urls(result: BatchResult) -> None:
        for item in result.items:
            if item.recipe is not None and item.image is not None:
                item.recipe.image_url = item.final_image_url

    @staticmethod
    def _unwrap(stage: str, response: AgentResponse) -> Any:
        if not response.success or response.data is None:
            raise StageError(stage, response.error)
        return response.data

    @staticmethod
    def _final_status(result: BatchResult) -> str:
        failed = {ItemStatus.GENERATION_FAILED, ItemStatus.VALIDATION_FAILED}
        if any(item.status in failed for item in result.items):
            return "partial"
        return "completed"

    def _report(self, stage: str, result: BatchResult) -> None:
        if self.progress is None:
            return
        payload = {
            "batch_id": result.batch_id,
            "stage": stage,
            "status": result.status,
            "total_input": result.total_input,
            "total_recipes_generated": result.total_recipes_generated,
            "total_validated": result.total_validated,
            "passed": result.passed,
            "failed": result.failed,
            "auto_fixed": result.auto_fixed,
            "total_generated": result.total_generated,
            "placeholder_count": result.placeholder_count,
            "total_uploaded": result.total_uploaded,
            "total_failed": result.total_failed,
            "error": result.error,
        }
        try:
            self.progress(stage, payload)
        except Exception as e:
            logger.warning(f"Progress callback failed at stage {stage}: {e}")


async def run_recipe_batch(
    concepts: list[RecipeConcept],
    batch_id: str | None = None,
    progress: ProgressCallback | None = None,
) -> BatchResult:
    """
    Main entry point for generating a batch with the production services.

    Builds the OpenAI, S3 and hashing connectors plus the SQL hash store
    from settings and runs the batch through a BatchOrchestrator.

    Args:
        concepts: Recipe concepts to generate.
        batch_id: Optional batch identifier.
        progress: Optional callback receiving ``(stage, payload)`` updates.

    Returns:
        The BatchResult, with status ``failed`` if the hash store is unreachable.
    """
    from recipegen.generate.connectors.openai import OpenAIImageConnector, OpenAITextConnector
    from recipegen.generate.connectors.storage import S3ObjectStore
    from recipegen.generate.hashing import PerceptualHasher

    batch_id = batch_id or new_batch_id()
    hash_store = SqlHashStore()

    try:
        hash_store.create_tables()
    except HashStoreUnavailableError as e:
        logger.error(f"Hash store unavailable, batch {batch_id} not started: {e}")
        return BatchResult(
            batch_id=batch_id,
            status="failed",
            items=[
                BatchItem(index=index, correlation_id=uuid.uuid4().hex, concept=concept)
                for index, concept in enumerate(concepts)
            ],
            error=str(e),
            completed_at=datetime.utcnow(),
        )

    async with (
        OpenAITextConnector() as text_client,
        OpenAIImageConnector() as image_client,
        PerceptualHasher() as hasher,
        S3ObjectStore() as object_store,
    ):
        orchestrator = BatchOrchestrator(
            text_client=text_client,
            validator=NutritionalValidatorAgent(),
            image_agent=ImageGenerationAgent(
                image_client=image_client,
                hasher=hasher,
                hash_store=hash_store,
            ),
            storage_agent=ImageStorageAgent(object_store=object_store),
            progress=progress,
        )
        return await orchestrator.run_batch(concepts, batch_id=batch_id)
