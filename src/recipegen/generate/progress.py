"""Redis-backed progress tracking for recipe generation batches."""

import json
from datetime import datetime
from typing import Any

import redis

from recipegen.config import get_settings

BATCH_PROGRESS_KEY = "generation:batch:progress:{task_id}"
PROGRESS_TTL_SECONDS = 86400 * 7


def get_redis_client() -> redis.Redis:
    """Get Redis client for progress tracking."""
    return redis.from_url(get_settings().redis_url)


def save_progress(task_id: str, progress_data: dict[str, Any]) -> None:
    """Save batch progress to Redis.

    Args:
        task_id: Celery task ID.
        progress_data: Progress dictionary to save.
    """
    redis_client = get_redis_client()
    key = BATCH_PROGRESS_KEY.format(task_id=task_id)
    progress_data["updated_at"] = datetime.utcnow().isoformat()
    redis_client.setex(key, PROGRESS_TTL_SECONDS, json.dumps(progress_data, default=str))


def get_progress(task_id: str) -> dict[str, Any] | None:
    """Get batch progress from Redis.

    Args:
        task_id: Celery task ID.

    Returns:
        Progress dictionary or None if not found.
    """
    redis_client = get_redis_client()
    data = redis_client.get(BATCH_PROGRESS_KEY.format(task_id=task_id))
    if data:
        return json.loads(data)
    return None


class RedisProgressReporter:
    """Progress callback for BatchOrchestrator that writes each update to Redis."""

    def __init__(self, task_id: str):
        self.task_id = task_id
        self.stages: list[str] = []

    def __call__(self, stage: str, payload: dict[str, Any]) -> None:
        self.stages.append(stage)
        save_progress(self.task_id, {"task_id": self.task_id, **payload, "stages": self.stages})
