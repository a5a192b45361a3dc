"""
Celery application for the notification worker.

Run with::

    celery -A storefront.worker worker --loglevel=info
"""

from celery import Celery

from storefront.core.config import get_settings
from storefront.core.logging import configure_logging

settings = get_settings()

configure_logging()

celery_app = Celery(
    "storefront",
    broker=settings.celery_broker_url,
    include=["storefront.services.notifications.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_ignore_result=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    timezone="UTC",
    enable_utc=True,
)
