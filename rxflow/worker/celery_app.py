from celery import Celery
from celery.signals import setup_logging

from rxflow.core.config import settings
from rxflow.core.logging_config import configure_logging

BROKER_URL = settings.broker_url
RESULT_BACKEND = settings.result_backend or BROKER_URL

# IMPORTANT: the variable name MUST be `celery_app`
celery_app = Celery(
    "rxflow",
    broker=BROKER_URL,
    backend=RESULT_BACKEND,
    include=["rxflow.worker.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    task_track_started=True,
    enable_utc=True,
    timezone="UTC",
    # at-least-once: ack only after the task body returns, requeue if the worker dies
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    # one job in flight per worker process
    worker_prefetch_multiplier=1,
    task_default_delivery_mode="persistent",
    task_soft_time_limit=settings.task_soft_time_limit,
    task_time_limit=settings.task_soft_time_limit + 60,
    # unacked messages come back after this long (redis broker)
    broker_transport_options={"visibility_timeout": settings.task_soft_time_limit * 4},
    beat_schedule={
        "archive-sweep": {
            "task": "archive.sweep_pending",
            "schedule": float(settings.archive_sweep_seconds),
        },
    },
)

if settings.is_test:
    celery_app.conf.update(task_always_eager=True, task_store_eager_result=False)


@setup_logging.connect
def _configure_worker_logging(**kwargs) -> None:
    # keep Celery from replacing our handlers
    configure_logging()


__all__ = ["celery_app"]
