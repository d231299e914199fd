"""API routes for recipe content generation batches.

Provides endpoints to queue a batch, monitor its progress and inspect the
perceptual hash store used for image deduplication.
"""

from typing import Any

from celery.result import AsyncResult
from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from recipegen.generate.hash_store import HashStoreUnavailableError, SqlHashStore
from recipegen.generate.progress import get_progress
from recipegen.logging_config import get_logger
from recipegen.schemas import RecipeConcept
from recipegen.tasks.generation import generate_recipe_batch_task

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1/generation", tags=["generation"])

MAX_CONCEPTS_PER_BATCH = 50


# Request/Response schemas
class BatchRequest(BaseModel):
    """Request to generate a batch of recipes."""

    concepts: list[RecipeConcept] = Field(
        ...,
        min_length=1,
        max_length=MAX_CONCEPTS_PER_BATCH,
        description="Recipe concepts to generate, one recipe per concept.",
    )
    batch_id: str | None = Field(
        default=None,
        description="Optional batch identifier. Generated when omitted.",
    )


class BatchJobResponse(BaseModel):
    """Response after queueing a batch."""

    task_id: str
    status: str
    message: str


class BatchStatusResponse(BaseModel):
    """Current status of a generation batch."""

    task_id: str
    status: str
    stage: str | None = None
    batch_id: str | None = None
    updated_at: str | None = None
    total_input: int = 0
    total_recipes_generated: int = 0
    total_validated: int = 0
    passed: int = 0
    failed: int = 0
    auto_fixed: int = 0
    total_generated: int = 0
    placeholder_count: int = 0
    total_uploaded: int = 0
    total_failed: int = 0
    error: str | None = None
    result: dict[str, Any] | None = None


class HashStatsResponse(BaseModel):
    """Size of the perceptual hash store."""

    stored_hashes: int
    distance_threshold: int


@router.post("/batches", response_model=BatchJobResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_batch(request: BatchRequest) -> BatchJobResponse:
    """
    Queue a recipe generation batch.

    Each concept is turned into a recipe, validated against its target
    nutrition, illustrated with a unique image and stored. Use the returned
    task_id to monitor progress via /batches/{task_id}.
    """
    logger.info(f"Queueing generation batch with {len(request.concepts)} concepts")

    try:
        task = generate_recipe_batch_task.delay(
            concepts=[concept.model_dump(mode="json") for concept in request.concepts],
            batch_id=request.batch_id,
        )
    except Exception as e:
        logger.error(f"Failed to queue generation batch: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to queue generation batch: {e}",
        ) from e

    return BatchJobResponse(
        task_id=task.id,
        status="queued",
        message="Generation batch queued. Use /batches/{task_id} to monitor progress.",
    )


@router.get("/batches/{task_id}", response_model=BatchStatusResponse)
async def get_batch_status(task_id: str) -> BatchStatusResponse:
    """
    Get the progress of a generation batch.

    Returns per-stage counts while the batch runs and the full batch result
    once the task has finished.
    """
    progress = get_progress(task_id)
    task_result = AsyncResult(task_id)

    if not progress:
        if task_result.state == "PENDING":
            return BatchStatusResponse(task_id=task_id, status="pending")
        if task_result.state == "FAILURE":
            return BatchStatusResponse(
                task_id=task_id,
                status="failed",
                error=str(task_result.result) if task_result.result else "Unknown error",
            )
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No generation batch found with task_id: {task_id}",
        )

    fields = {name: progress[name] for name in BatchStatusResponse.model_fields if name in progress}
    fields["task_id"] = progress.get("task_id", task_id)
    fields.setdefault("status", "unknown")

    if task_result.state == "SUCCESS" and isinstance(task_result.result, dict):
        fields["result"] = task_result.result

    return BatchStatusResponse(**fields)


@router.get("/hashes/stats", response_model=HashStatsResponse)
async def get_hash_stats() -> HashStatsResponse:
    """Report how many image fingerprints are stored for deduplication."""
    store = SqlHashStore()
    try:
        count = await store.count()
    except HashStoreUnavailableError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Hash store unavailable: {e}",
        ) from e

    return HashStatsResponse(stored_hashes=count, distance_threshold=store.distance_threshold)
