"""Celery app and task registration.

No beat schedule: tasks run only when enqueued by the API or the CLI.
"""

from celery import Celery

from app.config import settings

celery_app = Celery(
    "fxjournal",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
)

# Import tasks so Celery discovers them
from app.tasks import email_tasks  # noqa: F401, E402
