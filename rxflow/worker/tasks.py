from __future__ import annotations

from celery.utils.log import get_task_logger

from rxflow.core.config import settings
from rxflow.core.errors import TransientExternalError
from rxflow.db.session import SessionLocal
from rxflow.services.llm.openai_client import OpenAIExtractor
from rxflow.services.storage import ArchiveStorage
from rxflow.worker.celery_app import celery_app
from rxflow.worker.messages import QueuedTask
from rxflow.worker.processor import JobProcessor

logger = get_task_logger(__name__)

RETRY_BASE_COUNTDOWN_SEC = 5

# Process-wide collaborators, built on first use in each worker process.
_processor: JobProcessor | None = None


def build_processor() -> JobProcessor:
    return JobProcessor(
        session_factory=SessionLocal,
        extractor=OpenAIExtractor.from_settings(settings),
        storage=ArchiveStorage.from_settings(settings),
        upload_dir=settings.upload_dir,
        min_pdf_text_chars=settings.min_pdf_text_chars,
    )


def get_processor() -> JobProcessor:
    global _processor
    if _processor is None:
        _processor = build_processor()
    return _processor


def set_processor(processor: JobProcessor | None) -> None:
    global _processor
    _processor = processor


@celery_app.task(name="jobs.process_job", bind=True, max_retries=settings.task_max_retries)
def process_job(self, message: dict) -> dict:
    """
    Consume one queued prescription job.

    success / falha / human all return normally (and get acked). Only a
    transient external failure on a non-final attempt is retried.
    """
    task = QueuedTask.from_message(message)
    final_attempt = self.request.retries >= (self.max_retries or 0)

    try:
        status = get_processor().handle(task, final_attempt=final_attempt)
    except TransientExternalError as e:
        countdown = RETRY_BASE_COUNTDOWN_SEC * (2 ** self.request.retries)
        logger.warning(
            "job %s: retry %d/%d in %ds: %s",
            task.job_id,
            self.request.retries + 1,
            self.max_retries,
            countdown,
            e,
        )
        raise self.retry(exc=e, countdown=countdown)

    return {"ok": True, "job_id": task.job_id, "status": status}


@celery_app.task(name="archive.sweep_pending")
def sweep_pending_archives(limit: int = 500) -> dict:
    return get_processor().sweep_pending_archives(limit=limit)


def enqueue(task: QueuedTask):
    """
    Put a job on the queue. The Celery task id is the job id.
    Returns celery result object (EagerResult or AsyncResult).
    """
    # IMPORTANT: use task.apply_async (not celery_app.send_task) so ENV=test eager mode works
    return process_job.apply_async(kwargs={"message": task.to_message()}, task_id=task.job_id)
