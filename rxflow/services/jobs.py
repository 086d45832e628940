from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rxflow.models.job_metric import ERROR_TYPE_MAX_LEN, TERMINAL_STATUSES, JobMetric


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def truncate_error(message: str | None, limit: int = ERROR_TYPE_MAX_LEN) -> str | None:
    if message is None:
        return None
    message = " ".join(str(message).split())
    return message[:limit]


def get_job_metric(db: Session, job_id: str, client_id: int | None = None) -> JobMetric | None:
    q = db.query(JobMetric).filter(JobMetric.job_id == job_id)
    if client_id is not None:
        q = q.filter(JobMetric.client_id == client_id)
    return q.first()


def _apply(
    row: JobMetric,
    *,
    status: str,
    error_type: str | None,
    started_at: datetime | None,
    ended_at: datetime | None,
    file_type: str | None,
) -> None:
    row.status = status
    row.error_type = truncate_error(error_type)
    row.ended_at = ended_at
    if started_at is not None:
        row.started_at = started_at
    if file_type and not row.file_type:
        row.file_type = file_type


def upsert_job_metric(
    db: Session,
    job_id: str,
    *,
    client_id: int,
    status: str,
    file_type: str | None = None,
    error_type: str | None = None,
    started_at: datetime | None = None,
    ended_at: datetime | None = None,
) -> JobMetric:
    """
    The single write path for a job's status row.

    Looks the job up first and updates it; inserts only when missing. Intake
    and worker (and redelivered tasks) all go through here, so a job id never
    gets a second row. If a concurrent writer inserts first, the unique
    constraint fires and we fall back to updating its row.
    """
    fields = dict(
        status=status,
        error_type=error_type,
        started_at=started_at,
        ended_at=ended_at,
        file_type=file_type,
    )

    row = get_job_metric(db, job_id)
    if row is not None:
        _apply(row, **fields)
        db.commit()
        db.refresh(row)
        return row

    row = JobMetric(job_id=job_id, client_id=client_id, uploaded=False)
    _apply(row, **fields)
    db.add(row)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        row = get_job_metric(db, job_id)
        if row is None:
            raise
        _apply(row, **fields)
        db.commit()

    db.refresh(row)
    return row


def mark_uploaded(db: Session, job_id: str) -> JobMetric | None:
    row = get_job_metric(db, job_id)
    if row is None:
        return None
    row.uploaded = True
    db.commit()
    db.refresh(row)
    return row


def list_pending_archive(db: Session, limit: int = 100) -> list[JobMetric]:
    """Terminal jobs whose source file has not reached the archive yet."""
    return (
        db.query(JobMetric)
        .filter(JobMetric.status.in_(TERMINAL_STATUSES), JobMetric.uploaded.is_(False))
        .order_by(JobMetric.id.asc())
        .limit(limit)
        .all()
    )
