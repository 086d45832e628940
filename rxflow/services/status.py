from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from rxflow.models.job_metric import (
    STATUS_FAILURE,
    STATUS_HUMAN,
    STATUS_PENDING,
    STATUS_PROCESSING,
    STATUS_SUCCESS,
)
from rxflow.services.jobs import get_job_metric
from rxflow.services.recipe_lines import get_job_lines, group_medications


@dataclass(frozen=True)
class StatusLabels:
    processing: str
    success: str
    not_found: str
    human: str
    failed: str


EN_LABELS = StatusLabels(
    processing="in processing",
    success="success",
    not_found="not found",
    human="human",
    failed="failed",
)

PT_LABELS = StatusLabels(
    processing="em processamento",
    success="concluído",
    not_found="não encontrado",
    human="human",
    failed="falha",
)


def _label_for(status: str, labels: StatusLabels) -> str:
    if status in (STATUS_PENDING, STATUS_PROCESSING):
        return labels.processing
    if status == STATUS_HUMAN:
        return labels.human
    if status == STATUS_FAILURE:
        return labels.failed
    if status == STATUS_SUCCESS:
        return labels.success
    return status


def build_job_report(db: Session, job_id: str, client_id: int, labels: StatusLabels = EN_LABELS) -> dict[str, Any]:
    """
    Polling view of a job, scoped to the calling client.

    Unknown job ids answer with the "not found" label rather than an error.
    A job recorded as falha or human reports that outcome whatever lines
    exist; otherwise lines still flagged unprocessed mean the job is in
    processing.
    """
    metric = get_job_metric(db, job_id, client_id=client_id)
    if metric is not None and metric.status in (STATUS_FAILURE, STATUS_HUMAN):
        report: dict[str, Any] = {"job_id": job_id, "status": _label_for(metric.status, labels)}
        if metric.error_type:
            report["reason"] = metric.error_type
        return report

    rows = get_job_lines(db, job_id, client_id)

    if not rows:
        if metric is None:
            return {"job_id": job_id, "status": labels.not_found}
        return {"job_id": job_id, "status": _label_for(metric.status, labels)}

    if any(not r.processed for r in rows):
        return {"job_id": job_id, "status": labels.processing}

    return {
        "job_id": job_id,
        "status": labels.success,
        "patient": rows[0].patient,
        "doctor": rows[0].doctor,
        "medications": group_medications(rows),
    }
