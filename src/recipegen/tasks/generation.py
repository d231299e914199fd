"""Celery tasks for recipe content generation."""

import asyncio
from datetime import datetime
from typing import Any

from celery.exceptions import SoftTimeLimitExceeded
from pydantic import ValidationError

from recipegen.celery_app import celery_app
from recipegen.generate.batch_generate import run_recipe_batch
from recipegen.generate.progress import RedisProgressReporter, get_progress, save_progress
from recipegen.logging_config import LoggingContext, configure_logging, get_logger
from recipegen.schemas import RecipeConcept

# Configure logging for Celery workers
configure_logging()
logger = get_logger(__name__)


def run_async(coro: Any) -> Any:
    """Run an async coroutine in a synchronous context."""
    try:
        loop = asyncio.get_event_loop()
        if loop.is_running():
            import concurrent.futures

            with concurrent.futures.ThreadPoolExecutor() as executor:
                future = executor.submit(asyncio.run, coro)
                return future.result()
        return loop.run_until_complete(coro)
    except RuntimeError:
        return asyncio.run(coro)


@celery_app.task(
    bind=True,
    name="recipegen.tasks.generation.generate_recipe_batch_task",
    max_retries=0,
    soft_time_limit=3600,
    time_limit=3900,
    acks_late=True,
    reject_on_worker_lost=True,
)
def generate_recipe_batch_task(
    self,
    concepts: list[dict[str, Any]],
    batch_id: str | None = None,
) -> dict[str, Any]:
    """
    Background task to generate one batch of recipes.

    Progress is written to Redis after every pipeline stage so the API can
    report it while the batch runs.

    Args:
        concepts: Recipe concepts as JSON dictionaries.
        batch_id: Optional batch identifier.

    Returns:
        The serialized BatchResult.
    """
    task_id = self.request.id

    with LoggingContext(task_id=task_id, batch_id=batch_id):
        logger.info(f"Starting recipe batch task {task_id} with {len(concepts)} concepts")

        try:
            parsed = [RecipeConcept.model_validate(concept) for concept in concepts]
        except ValidationError as e:
            logger.error(f"Rejected batch task {task_id}: invalid concepts")
            progress_data = {
                "task_id": task_id,
                "status": "rejected",
                "error": str(e)[:500],
            }
            save_progress(task_id, progress_data)
            return progress_data

        try:
            result = run_async(
                run_recipe_batch(
                    parsed,
                    batch_id=batch_id,
                    progress=RedisProgressReporter(task_id),
                )
            )
        except SoftTimeLimitExceeded:
            logger.warning(f"Batch task {task_id} hit its time limit")
            progress_data = get_progress(task_id) or {"task_id": task_id}
            progress_data["status"] = "timeout"
            progress_data["error"] = "Task exceeded time limit"
            save_progress(task_id, progress_data)
            return progress_data
        except Exception as e:
            logger.exception(f"Batch task {task_id} failed: {e}")
            progress_data = get_progress(task_id) or {"task_id": task_id}
            progress_data["status"] = "failed"
            progress_data["error"] = str(e)[:500]
            progress_data["failed_at"] = datetime.utcnow().isoformat()
            save_progress(task_id, progress_data)
            raise

        logger.info(f"Batch task {task_id} finished with status {result.status}")
        return {"task_id": task_id, **result.to_dict()}
