from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from celery.exceptions import SoftTimeLimitExceeded
from sqlalchemy.orm import Session

from rxflow.core.errors import PermanentJobFailure, RxflowError, TransientExternalError
from rxflow.models.job_metric import (
    STATUS_FAILURE,
    STATUS_HUMAN,
    STATUS_PROCESSING,
    STATUS_SUCCESS,
    TERMINAL_STATUSES,
)
from rxflow.services.jobs import (
    get_job_metric,
    list_pending_archive,
    mark_uploaded,
    truncate_error,
    upsert_job_metric,
    utcnow,
)
from rxflow.services.llm.results import HumanReview
from rxflow.services.pdf_text import extract_pdf_text
from rxflow.services.recipe_lines import discard_unprocessed_lines, insert_recipe_lines, mark_lines_processed
from rxflow.services.storage import archive_key
from rxflow.worker.messages import QueuedTask

logger = logging.getLogger(__name__)

IMAGE_EXTS = ("jpg", "jpeg", "png")
PDF_EXT = "pdf"

REASON_LOW_TEXT = "illegible/low text"
REASON_NO_MEDICATIONS = "no medications extracted"
REASON_TIMEOUT = "processing timed out"


def _error_message(e: BaseException) -> str:
    if isinstance(e, RxflowError):
        return truncate_error(e.message) or type(e).__name__
    return truncate_error(f"{type(e).__name__}: {e}") or type(e).__name__


class JobProcessor:
    """
    Runs one queued job through classify -> extract -> persist.

        pending -> processing -> sucesso | falha | human

    Collaborators are built once per worker process and injected:
    - session_factory: SQLAlchemy sessionmaker
    - extractor: classify_and_extract_image / extract_from_text
    - storage: upload(local_path, key, ext)

    handle() never raises for a bad job; it records `falha` instead. The
    only exception that escapes is TransientExternalError on a non-final
    attempt, so the queue can redeliver it.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        extractor: Any,
        storage: Any,
        *,
        upload_dir: str | Path = "uploads",
        min_pdf_text_chars: int = 30,
    ) -> None:
        self.session_factory = session_factory
        self.extractor = extractor
        self.storage = storage
        self.upload_dir = Path(upload_dir)
        self.min_pdf_text_chars = min_pdf_text_chars

    # ----------------------------
    # State machine
    # ----------------------------

    def handle(self, task: QueuedTask, final_attempt: bool = True) -> str:
        db = self.session_factory()
        started_at = utcnow()
        keep_file = False
        logger.info("job %s: processing (client=%s ext=%s)", task.job_id, task.client_id, task.ext)

        try:
            return self._run(db, task, started_at)

        except TransientExternalError as e:
            if not final_attempt:
                keep_file = True
                logger.warning("job %s: transient error, leaving for redelivery: %s", task.job_id, e)
                raise
            logger.error("job %s: transient error on final attempt: %s", task.job_id, e)
            return self._finish(db, task, STATUS_FAILURE, _error_message(e), started_at)

        except PermanentJobFailure as e:
            logger.warning("job %s: %s", task.job_id, e.message)
            return self._finish(db, task, STATUS_FAILURE, _error_message(e), started_at)

        except SoftTimeLimitExceeded:
            logger.error("job %s: soft time limit exceeded", task.job_id)
            return self._finish(db, task, STATUS_FAILURE, REASON_TIMEOUT, started_at)

        except Exception as e:
            logger.exception("job %s: unexpected error", task.job_id)
            return self._finish(db, task, STATUS_FAILURE, _error_message(e), started_at)

        finally:
            try:
                if not keep_file:
                    self._archive(db, task)
            finally:
                db.close()

    def _run(self, db: Session, task: QueuedTask, started_at: datetime) -> str:
        # 0) Redelivered after the job already finished: terminal states are final
        metric = get_job_metric(db, task.job_id)
        if metric is not None and metric.status in TERMINAL_STATUSES:
            logger.info("job %s: already %s, redelivery ignored", task.job_id, metric.status)
            return metric.status

        # 1) Source file must still be on local disk
        path = Path(task.filepath)
        if not path.is_file():
            raise PermanentJobFailure(f"file not found at {task.filepath}")

        # 2) Claim
        upsert_job_metric(
            db,
            task.job_id,
            client_id=task.client_id,
            status=STATUS_PROCESSING,
            file_type=task.ext,
            started_at=started_at,
        )

        # 3) Classify + extract
        ext = (task.ext or path.suffix.lstrip(".")).lower()
        if ext in IMAGE_EXTS:
            outcome = self.extractor.classify_and_extract_image(path, task.credential)
        elif ext == PDF_EXT:
            text = extract_pdf_text(path)
            if len(text.strip()) < self.min_pdf_text_chars:
                return self._finish(db, task, STATUS_HUMAN, REASON_LOW_TEXT, started_at)
            outcome = self.extractor.extract_from_text(text, task.credential)
        else:
            raise PermanentJobFailure(f"unsupported format: {ext}")

        # 4) Model asked for a human
        if isinstance(outcome, HumanReview):
            return self._finish(db, task, STATUS_HUMAN, outcome.reason, started_at)

        # 5) Persist lines (idempotent on redelivery)
        written = insert_recipe_lines(
            db,
            job_id=task.job_id,
            client_id=task.client_id,
            filename=task.filename,
            result=outcome,
        )
        if written == 0:
            return self._finish(db, task, STATUS_HUMAN, REASON_NO_MEDICATIONS, started_at)

        # 6) Lines become visible + sucesso in the same commit
        mark_lines_processed(db, task.job_id)
        status = self._finish(db, task, STATUS_SUCCESS, None, started_at)
        logger.info("job %s: %d recipe line(s) stored", task.job_id, written)
        return status

    def _finish(
        self,
        db: Session,
        task: QueuedTask,
        status: str,
        error_type: str | None,
        started_at: datetime,
    ) -> str:
        if status != STATUS_SUCCESS:
            # drop whatever a failed step left half-done in this session, and
            # lines an earlier step committed; they go out with the status row
            db.rollback()
            discard_unprocessed_lines(db, task.job_id)

        upsert_job_metric(
            db,
            task.job_id,
            client_id=task.client_id,
            status=status,
            file_type=task.ext,
            error_type=error_type,
            started_at=started_at,
            ended_at=utcnow(),
        )
        if error_type:
            logger.info("job %s: %s (%s)", task.job_id, status, error_type)
        else:
            logger.info("job %s: %s", task.job_id, status)
        return status

    # ----------------------------
    # Archive
    # ----------------------------

    def _archive_one(self, db: Session, job_id: str, path: Path, filename: str, ext: str | None) -> bool:
        try:
            self.storage.upload(path, archive_key(job_id, filename), ext=ext)
        except TransientExternalError as e:
            logger.error("job %s: archive failed, local file kept for sweep: %s", job_id, e)
            return False

        mark_uploaded(db, job_id)
        path.unlink(missing_ok=True)
        logger.info("job %s: temporary file removed: %s", job_id, path)
        return True

    def _archive(self, db: Session, task: QueuedTask) -> None:
        """Best effort; never changes the job's terminal status."""
        path = Path(task.filepath)
        if not path.is_file():
            return
        try:
            self._archive_one(db, task.job_id, path, task.filename, task.ext)
        except Exception:
            db.rollback()
            logger.exception("job %s: archive bookkeeping failed", task.job_id)

    def sweep_pending_archives(self, limit: int = 500) -> dict[str, Any]:
        """Retry archival for terminal jobs whose file is still on local disk."""
        db = self.session_factory()
        archived = failed = missing = 0
        try:
            jobs = list_pending_archive(db, limit=limit)
            for job in jobs:
                filename = f"{job.job_id}.{job.file_type}"
                path = self.upload_dir / filename
                if not path.is_file():
                    missing += 1
                    continue
                try:
                    ok = self._archive_one(db, job.job_id, path, filename, job.file_type)
                except Exception:
                    db.rollback()
                    logger.exception("job %s: archive sweep failed", job.job_id)
                    ok = False
                if ok:
                    archived += 1
                else:
                    failed += 1

            summary = {"candidates": len(jobs), "archived": archived, "failed": failed, "missing": missing}
            logger.info("archive sweep: %s", summary)
            return {"ok": True, **summary}
        finally:
            db.close()
