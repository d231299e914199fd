"""Image generation with perceptual-hash duplicate avoidance.

Each recipe goes through a bounded loop::

    generate -> hash -> check (batch set, then hash store)
        accepted   -> record hash, return image
        duplicate  -> regenerate, up to ``max_duplicate_retries`` times
        exhausted  -> placeholder
    any hard error -> placeholder

The check and the record happen under one lock so two recipes processed
concurrently can never both accept the same image.
"""

import asyncio
from datetime import datetime
from typing import Any

from recipegen.config import get_settings
from recipegen.generate.agents.base import AgentResponse, AgentType, BaseAgent
from recipegen.generate.connectors.base import (
    GenerationError,
    ImageGenerationClient,
    ImageHasher,
)
from recipegen.generate.hash_store import HashStore, is_near_duplicate
from recipegen.generate.types import (
    GeneratedImage,
    ImageBatchResult,
    ImageGenerationRequest,
    ImageMetadata,
    ValidatedRecipe,
)
from recipegen.logging_config import LoggingContext, get_logger

logger = get_logger(__name__)

MAX_DESCRIPTION_CHARS = 1000
FIRST_ATTEMPT_QUALITY = 100
RETRY_QUALITY_PENALTY = 10
RETRIES_EXHAUSTED = "duplicate retries exhausted"
RECIPE_NOT_USABLE = "recipe not usable"

VARIATION_HINTS = (
    "Shown from a slightly higher overhead angle with a linen napkin beside the plate.",
    "Close-up framing with fresh herbs scattered on the table.",
    "Wider composition with a glass of water and cutlery in soft focus.",
    "Morning light from the opposite side with a small bowl of garnish.",
)


def build_image_prompt(request: ImageGenerationRequest, variation: int = 0) -> str:
    """
    Build the food-photography prompt for one recipe.

    Args:
        request: The recipe to illustrate.
        variation: Retry number; values above 0 append a composition hint so
            the regenerated image differs from the previous attempt.

    Returns:
        Prompt text for the image generation service.
    """
    meal_type = request.meal_types[0].lower() if request.meal_types else "meal"
    description = request.recipe_description[:MAX_DESCRIPTION_CHARS]

    prompt = (
        f"Ultra-realistic, high-resolution photograph of {request.recipe_name}, "
        f"a {meal_type} dish. {description} "
        "Served on a white ceramic plate on a rustic wooden table, "
        "natural side lighting, shallow depth of field, shot at a 45° angle "
        "with a 50mm lens at f/2.8. Professional editorial food photography, "
        "photorealistic, appetizing, no text or watermarks."
    )
    if variation > 0:
        prompt = f"{prompt} {VARIATION_HINTS[(variation - 1) % len(VARIATION_HINTS)]}"
    return prompt


class ImageGenerationAgent(BaseAgent):
    """Generates one verified-unique image per recipe, or a placeholder."""

    agent_type = AgentType.ARTIST

    def __init__(
        self,
        image_client: ImageGenerationClient,
        hasher: ImageHasher,
        hash_store: HashStore,
        max_duplicate_retries: int | None = None,
        generation_timeout: float | None = None,
        concurrency: int | None = None,
        placeholder_url: str | None = None,
    ):
        super().__init__()
        settings = get_settings()
        self.image_client = image_client
        self.hasher = hasher
        self.hash_store = hash_store
        self.max_duplicate_retries = (
            max_duplicate_retries
            if max_duplicate_retries is not None
            else settings.image_max_duplicate_retries
        )
        self.generation_timeout = generation_timeout or settings.image_generation_timeout
        self.concurrency = concurrency or settings.image_generation_concurrency
        self.placeholder_url = placeholder_url or settings.placeholder_image_url

        self._hash_lock = asyncio.Lock()
        self._hash_cache: set[str] = set()
        self._total_generated = 0
        self._placeholders_used = 0
        self._duplicates_detected = 0

    async def process(
        self,
        recipes: list[ValidatedRecipe],
        batch_id: str,
        correlation_id: str | None = None,
        item_correlation_ids: list[str] | None = None,
    ) -> AgentResponse[ImageBatchResult]:
        """
        Generate one image entry per validated recipe, in input order.

        Unusable recipes are not sent to the image service; their entry is a
        placeholder with error ``recipe not usable``.

        ``item_correlation_ids``, when given, tags each recipe's requests and
        logs with the id of the batch item it belongs to.
        """
        requests = [
            ImageGenerationRequest(
                recipe_id=validated.recipe_id,
                recipe_name=validated.recipe.name,
                recipe_description=validated.recipe.description,
                meal_types=list(validated.recipe.meal_types),
                batch_id=batch_id,
                correlation_id=item_correlation_ids[position] if item_correlation_ids else None,
                skip=not validated.usable,
            )
            for position, validated in enumerate(recipes)
        ]
        return await self.generate_batch_images(requests, batch_id, correlation_id)

    async def generate_batch_images(
        self,
        requests: list[ImageGenerationRequest],
        batch_id: str,
        correlation_id: str | None = None,
    ) -> AgentResponse[ImageBatchResult]:
        """
        Generate images for a list of requests.

        Returns one image per request, in request order. Placeholders count
        toward ``placeholder_count``; only accepted images toward
        ``total_generated``.

        Raises:
            HashStoreUnavailableError: If the hash store cannot be queried or written.
        """

        async def _generate() -> ImageBatchResult:
            return await self._generate_all(requests, batch_id)

        return await self.execute_with_metrics(_generate, correlation_id)

    async def _generate_all(
        self,
        requests: list[ImageGenerationRequest],
        batch_id: str,
    ) -> ImageBatchResult:
        result = ImageBatchResult(batch_id=batch_id)
        if not requests:
            return result

        batch_hashes: set[str] = set()
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _bounded(request: ImageGenerationRequest) -> GeneratedImage:
            if request.skip:
                return self._placeholder(request, "", 0, RECIPE_NOT_USABLE)
            async with semaphore:
                with LoggingContext(correlation_id=request.correlation_id):
                    return await self._generate_for_recipe(request, batch_hashes)

        tasks = [asyncio.create_task(_bounded(r)) for r in requests]
        try:
            result.images = list(await asyncio.gather(*tasks))
        except BaseException:
            # A batch-fatal error stops every recipe still in flight
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        for image in result.images:
            if image.metadata.is_placeholder:
                result.placeholder_count += 1
                if image.metadata.error:
                    result.errors.append(f"{image.recipe_name}: {image.metadata.error}")
                    if image.metadata.error not in (RETRIES_EXHAUSTED, RECIPE_NOT_USABLE):
                        result.total_failed += 1
            else:
                result.total_generated += 1

        logger.info(
            f"Generated images for batch {batch_id}: {result.total_generated} unique, "
            f"{result.placeholder_count} placeholders"
        )
        return result

    async def _generate_for_recipe(
        self,
        request: ImageGenerationRequest,
        batch_hashes: set[str],
    ) -> GeneratedImage:
        retry_count = 0
        while True:
            prompt = build_image_prompt(request, variation=retry_count)

            try:
                image_url, image_hash = await asyncio.wait_for(
                    self._attempt(prompt), timeout=self.generation_timeout
                )
            except asyncio.TimeoutError:
                logger.warning(
                    f"Image generation timed out for recipe {request.recipe_id} "
                    f"after {self.generation_timeout}s"
                )
                return self._placeholder(request, prompt, retry_count, "generation timed out")
            except Exception as e:
                logger.warning(f"Image generation failed for recipe {request.recipe_id}: {e}")
                return self._placeholder(request, prompt, retry_count, str(e))

            async with self._hash_lock:
                duplicate = self._seen_in_batch(image_hash, batch_hashes)
                if not duplicate:
                    duplicate = await self.hash_store.exists(image_hash)
                if not duplicate:
                    await self.hash_store.record(image_hash, request.recipe_id, request.batch_id)
                    batch_hashes.add(image_hash)
                    self._hash_cache.add(image_hash)

            if not duplicate:
                logger.debug(
                    f"Accepted image for recipe {request.recipe_id} after {retry_count} retries"
                )
                return GeneratedImage(
                    recipe_id=request.recipe_id,
                    recipe_name=request.recipe_name,
                    batch_id=request.batch_id,
                    correlation_id=request.correlation_id,
                    metadata=ImageMetadata(
                        image_url=image_url,
                        prompt=prompt,
                        similarity_hash=image_hash,
                        generation_timestamp=datetime.utcnow(),
                        quality_score=max(
                            FIRST_ATTEMPT_QUALITY - RETRY_QUALITY_PENALTY * retry_count,
                            RETRY_QUALITY_PENALTY,
                        ),
                        is_placeholder=False,
                        retry_count=retry_count,
                    ),
                )

            self._duplicates_detected += 1
            if retry_count >= self.max_duplicate_retries:
                logger.warning(
                    f"Duplicate image retries exhausted for recipe {request.recipe_id} "
                    f"after {retry_count} retries"
                )
                return self._placeholder(
                    request,
                    prompt,
                    retry_count,
                    RETRIES_EXHAUSTED,
                    similarity_hash=image_hash,
                )

            retry_count += 1
            logger.info(
                f"Duplicate image for recipe {request.recipe_id}, "
                f"retry {retry_count}/{self.max_duplicate_retries}"
            )

    async def _attempt(self, prompt: str) -> tuple[str, str]:
        image_url = await self.image_client.generate(prompt)
        if not image_url:
            raise GenerationError("Image generation returned no image URL")
        self._total_generated += 1
        image_hash = await self.hasher.hash(image_url)
        return image_url, image_hash

    def _seen_in_batch(self, image_hash: str, batch_hashes: set[str]) -> bool:
        threshold = self.hash_store.distance_threshold
        return any(is_near_duplicate(image_hash, seen, threshold) for seen in batch_hashes)

    def _placeholder(
        self,
        request: ImageGenerationRequest,
        prompt: str,
        retry_count: int,
        error: str,
        similarity_hash: str | None = None,
    ) -> GeneratedImage:
        self._placeholders_used += 1
        return GeneratedImage(
            recipe_id=request.recipe_id,
            recipe_name=request.recipe_name,
            batch_id=request.batch_id,
            correlation_id=request.correlation_id,
            metadata=ImageMetadata(
                image_url=self.placeholder_url,
                prompt=prompt,
                similarity_hash=similarity_hash,
                generation_timestamp=datetime.utcnow(),
                quality_score=0,
                is_placeholder=True,
                retry_count=retry_count,
                error=error,
            ),
        )

    def get_image_stats(self) -> dict[str, Any]:
        """Lifetime image counters for this agent."""
        return {
            "total_generated": self._total_generated,
            "unique_images": len(self._hash_cache),
            "placeholders_used": self._placeholders_used,
            "duplicates_detected": self._duplicates_detected,
        }

    def clear_hash_cache(self) -> None:
        """Forget the hashes this agent has accepted. The hash store is untouched."""
        self._hash_cache.clear()
