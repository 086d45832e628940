from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import httpx
from sqlalchemy.orm import Session

from rxflow.core.config import settings
from rxflow.core.errors import AuthorizationError, TransientExternalError, ValidationError
from rxflow.models.client import Client
from rxflow.models.job_metric import STATUS_FAILURE, STATUS_PENDING
from rxflow.services.jobs import upsert_job_metric, utcnow
from rxflow.worker import tasks as worker_tasks
from rxflow.worker.messages import QueuedTask

logger = logging.getLogger(__name__)

ALLOWED_EXTS = ("pdf", "jpg", "jpeg", "png")

CONTENT_TYPE_EXTS = {
    "application/pdf": "pdf",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/pjpeg": "jpg",
    "image/png": "png",
}

_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class UploadedFile:
    filename: str
    content: bytes


@dataclass(frozen=True)
class SubmitResult:
    job_id: str
    status: str = "processing"


def _ext_from_filename(filename: str) -> str:
    ext = Path(filename or "").suffix.lstrip(".").lower()
    if ext not in ALLOWED_EXTS:
        raise ValidationError("invalid file format (allowed: pdf, jpg, jpeg, png)")
    return ext


def ext_from_content_type(content_type: str | None) -> str:
    """File type of a remote document, from its Content-Type header."""
    if not content_type:
        raise ValidationError("remote file has no Content-Type")
    mime = content_type.split(";", 1)[0].strip().lower()
    ext = CONTENT_TYPE_EXTS.get(mime)
    if not ext:
        raise ValidationError(f"unsupported Content-Type: {mime}")
    return ext


def download_file(url: str, *, max_bytes: int, timeout: float) -> tuple[bytes, str]:
    """Stream a remote document. Returns (content, ext)."""
    if not url.lower().startswith(("http://", "https://")):
        raise ValidationError("file_url must be an http(s) URL")

    try:
        with httpx.Client(timeout=timeout, follow_redirects=True) as client:
            with client.stream("GET", url) as r:
                r.raise_for_status()
                ext = ext_from_content_type(r.headers.get("content-type"))

                buf = bytearray()
                for chunk in r.iter_bytes(_CHUNK_SIZE):
                    buf.extend(chunk)
                    if len(buf) > max_bytes:
                        raise ValidationError(f"file exceeds {max_bytes} bytes")
    except httpx.HTTPStatusError as e:
        raise ValidationError(f"could not download file_url (HTTP {e.response.status_code})") from e
    except httpx.HTTPError as e:
        raise ValidationError(f"could not download file_url: {e}") from e

    return bytes(buf), ext


def submit_upload(
    db: Session,
    client: Client,
    *,
    upload: UploadedFile | None = None,
    file_url: str | None = None,
    enqueue: Callable[[QueuedTask], Any] | None = None,
    upload_dir: str | Path | None = None,
) -> SubmitResult:
    """
    Intake one prescription: store bytes, create the pending job row, enqueue.

    The four steps behave as a unit. If the queue refuses the task the row is
    moved to `falha`, the temporary file is removed and TransientExternalError
    is raised, so no job is left pending without a task behind it.
    """
    if client.is_global:
        raise AuthorizationError("global API key is not allowed to upload")

    file_url = (file_url or "").strip() or None
    if upload is not None and upload.content:
        ext = _ext_from_filename(upload.filename)
        if len(upload.content) > settings.max_upload_bytes:
            raise ValidationError(f"file exceeds {settings.max_upload_bytes} bytes")
        content = upload.content
    elif file_url:
        content, ext = download_file(
            file_url,
            max_bytes=settings.max_upload_bytes,
            timeout=settings.download_timeout_sec,
        )
    else:
        raise ValidationError("no file sent (expected multipart 'file' or 'file_url')")

    enqueue = enqueue or worker_tasks.enqueue

    job_id = uuid.uuid4().hex
    filename = f"{job_id}.{ext}"
    target_dir = Path(upload_dir or settings.upload_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    filepath = target_dir / filename
    filepath.write_bytes(content)

    try:
        upsert_job_metric(db, job_id, client_id=client.id, status=STATUS_PENDING, file_type=ext)
    except Exception:
        # no metric row means no sweep will ever find this file
        filepath.unlink(missing_ok=True)
        raise

    task = QueuedTask(
        job_id=job_id,
        client_id=client.id,
        filepath=str(filepath),
        ext=ext,
        filename=filename,
        credential=client.openai_key,
    )

    try:
        enqueue(task)
    except Exception as e:
        logger.exception("job %s: enqueue failed", job_id)
        upsert_job_metric(
            db,
            job_id,
            client_id=client.id,
            status=STATUS_FAILURE,
            error_type=f"enqueue failed: {e}",
            ended_at=utcnow(),
        )
        filepath.unlink(missing_ok=True)
        raise TransientExternalError("job queue unavailable") from e

    logger.info("job %s: queued (client=%s ext=%s bytes=%d)", job_id, client.id, ext, len(content))
    return SubmitResult(job_id=job_id)
