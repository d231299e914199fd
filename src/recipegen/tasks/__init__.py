"""Celery tasks for background job processing."""

from recipegen.tasks.generation import generate_recipe_batch_task

__all__ = [
    "generate_recipe_batch_task",
]
