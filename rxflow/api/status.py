from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from rxflow.api.deps import get_current_client
from rxflow.db.session import get_db
from rxflow.models.client import Client
from rxflow.services.status import EN_LABELS, PT_LABELS, build_job_report

router = APIRouter(tags=["status"])


class RawMaterialOut(BaseModel):
    active: str
    dose: float | None = None
    unity: str | None = None


class MedicationOut(BaseModel):
    raw_materials: list[RawMaterialOut]
    form: str | None = None
    type: str | None = None
    posology: str | None = None
    quantity: int | None = None


class JobReportResponse(BaseModel):
    job_id: str
    status: str
    reason: str | None = None
    patient: str | None = None
    doctor: str | None = None
    medications: dict[str, MedicationOut] | None = None


def _report(db: Session, job_id: str, client: Client, labels) -> dict[str, Any]:
    return build_job_report(db, job_id, client.id, labels)


@router.get("/status/{job_id}", response_model=JobReportResponse, response_model_exclude_none=True)
def get_status(
    job_id: str,
    client: Client = Depends(get_current_client),
    db: Session = Depends(get_db),
):
    """in processing | success | not found | human | failed"""
    return _report(db, job_id, client, EN_LABELS)


@router.get("/estimate/{job_id}", response_model=JobReportResponse, response_model_exclude_none=True)
def get_estimate(
    job_id: str,
    client: Client = Depends(get_current_client),
    db: Session = Depends(get_db),
):
    """em processamento | concluído | não encontrado | human | falha"""
    if client.is_global:
        raise HTTPException(status_code=403, detail="Global API key is not allowed to read estimates")
    return _report(db, job_id, client, PT_LABELS)
