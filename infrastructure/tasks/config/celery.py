"""Celery application configuration"""
from __future__ import annotations

import os

from celery import Celery
from kombu import Exchange, Queue

from core.config import settings
from core.logging_config import get_logger
from .beat import CELERY_BEAT_SCHEDULE


TASK_PACKAGES = (
    "infrastructure.tasks.tasks",
)

PAYMENTS_QUEUE = "payments"
DEFAULT_QUEUE = "default"


celery_app = Celery("payment_reconciliation")

celery_app.conf.update(
    broker_url=settings.redis.url or os.getenv("CELERY_BROKER_URL"),
    result_backend=settings.redis.url or os.getenv("CELERY_RESULT_BACKEND"),
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # 任务执行完再 ack，worker 崩溃时扫描任务会被重新投递
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    result_expires=3600,
    worker_prefetch_multiplier=1,
    # 单次扫描超过过期周期就没有意义了
    task_soft_time_limit=120,
    task_time_limit=180,
    task_default_queue=DEFAULT_QUEUE,
    task_default_retry_delay=5,
    task_queues=(
        Queue(PAYMENTS_QUEUE, Exchange(PAYMENTS_QUEUE), routing_key=PAYMENTS_QUEUE),
        Queue(DEFAULT_QUEUE, Exchange(DEFAULT_QUEUE), routing_key=DEFAULT_QUEUE),
    ),
    task_routes={
        "payments.*": {"queue": PAYMENTS_QUEUE, "routing_key": PAYMENTS_QUEUE},
    },
    beat_schedule=CELERY_BEAT_SCHEDULE,
)

celery_app.conf.imports = TASK_PACKAGES

environment = (settings.ENVIRONMENT or "production").lower()
if environment in {"development", "dev", "test", "testing"}:
    celery_app.conf.task_always_eager = True

celery_app.autodiscover_tasks(packages=TASK_PACKAGES)


logger = get_logger(__name__)


@celery_app.on_after_configure.connect
def _log_configuration(sender, **kwargs):
    logger.info(
        "celery_configured",
        broker=sender.conf.broker_url,
        queues=[q.name for q in sender.conf.task_queues],
        beat_jobs=sorted(sender.conf.beat_schedule),
    )
