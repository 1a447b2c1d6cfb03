"""
Celery application configuration for detection tasks.
"""
import os
import logging
from celery import Celery

# Redis URL for broker and backend
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

# Create Celery app
celery_app = Celery(
    "detection_tasks",
    broker=REDIS_URL,
    backend=REDIS_URL,
    include=["tasks.detection_tasks"],
)

# Celery configuration
celery_app.conf.update(
    # Task result settings
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],

    # Timezone
    timezone="UTC",
    enable_utc=True,

    # Task settings
    task_track_started=True,
    task_time_limit=600,  # 10 minutes max per run
    task_soft_time_limit=540,

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,
)


if __name__ == "__main__":
    celery_app.start()
