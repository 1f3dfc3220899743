"""Waterpoint Tasks Module."""

from waterpoint.tasks.celery_app import celery_app
from waterpoint.tasks.reconciliation import sweep

__all__ = [
    "celery_app",
    "sweep",
]
