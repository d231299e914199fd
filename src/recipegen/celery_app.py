"""Celery application configuration for background batch generation."""

import os

from celery import Celery

# Redis broker URL from environment or default
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

# Database URL for result backend (use sync driver)
DATABASE_URL = os.getenv("DATABASE_URL", "postgresql://localhost/recipegen")
RESULT_BACKEND_URL = DATABASE_URL.replace("+asyncpg", "").replace(
    "postgresql://", "db+postgresql://"
)

celery_app = Celery(
    "recipegen",
    broker=REDIS_URL,
    backend=RESULT_BACKEND_URL,
    include=["recipegen.tasks.generation"],
)

celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # A batch holds many external calls, so run one at a time per worker
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    result_expires=86400 * 7,
    task_default_retry_delay=60,
    task_max_retries=3,
    # Queue routing
    task_routes={
        "recipegen.tasks.generation.*": {"queue": "generation"},
    },
    worker_hijack_root_logger=False,
)

if os.name == "nt":
    celery_app.conf.update(
        worker_pool="solo",
    )
