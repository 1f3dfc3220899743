"""Celery configuration."""

from celery import Celery

from waterpoint.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "waterpoint_tasks",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "waterpoint.tasks.reconciliation",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    result_expires=3600,
    task_routes={
        "reconciliation.*": {"queue": "reconciliation"},
    },
    beat_schedule={
        "sweep-expired": {
            "task": "reconciliation.sweep",
            "schedule": float(settings.sweep_interval_seconds),
        },
    },
)
