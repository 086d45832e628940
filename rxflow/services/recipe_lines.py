from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from rxflow.models.recipe_line import RecipeLine
from rxflow.services.llm.results import ExtractionResult
from rxflow.services.text_parser import (
    estimate_quantity,
    normalize_text,
    parse_dose,
    parse_quantity,
    strip_professional_title,
)

logger = logging.getLogger(__name__)


def _fmt_dose(dose: float | None) -> str:
    return "" if dose is None else f"{dose:g}"


def insert_recipe_lines(
    db: Session,
    *,
    job_id: str,
    client_id: int,
    filename: str | None,
    result: ExtractionResult,
) -> int:
    """
    Write one unprocessed row per (formula, raw material) and commit.

    Unprocessed rows already stored for the job can only come from an attempt
    that crashed before finalizing, so they are replaced, never merged: every
    line of a formula comes from the same extraction. Within one extraction,
    (formula, active, dose, unity) appears at most once. Returns the number
    of rows written.
    """
    patient = normalize_text(result.patient) or None
    doctor = strip_professional_title(result.doctor)

    seen: set[tuple[Any, ...]] = set()
    new_rows: list[RecipeLine] = []

    for formula_raw, med in result.medications.items():
        formula = " ".join((formula_raw or "").split())
        if not formula:
            continue

        form = normalize_text(med.form) or None
        med_type = normalize_text(med.type) or None
        posology = normalize_text(med.posology) or None
        quantity = parse_quantity(med.quantity)
        if quantity is None:
            quantity = estimate_quantity(med.posology)

        for rm in med.raw_materials:
            active = normalize_text(rm.active)
            if not active:
                logger.warning("job %s: raw material without active in formula %r skipped", job_id, formula)
                continue

            dose = parse_dose(rm.dose)
            unity = (rm.unity or "").strip().lower() or None

            key = (formula, active, dose, unity)
            if key in seen:
                continue
            seen.add(key)

            new_rows.append(
                RecipeLine(
                    job_id=job_id,
                    client_id=client_id,
                    filename=filename,
                    formula=formula,
                    text_block=f"{formula} - {active} {_fmt_dose(dose)}{unity or ''} {form or ''}".strip(),
                    classification="formula",
                    form=form,
                    type=med_type,
                    posology=posology,
                    quantity=quantity,
                    active=active,
                    dose=dose,
                    unity=unity,
                    patient=patient,
                    doctor=doctor,
                    processed=False,
                    reviewed=False,
                )
            )

    stale = discard_unprocessed_lines(db, job_id)
    if stale:
        logger.info("job %s: %d unprocessed line(s) from an earlier attempt replaced", job_id, stale)

    db.add_all(new_rows)
    db.commit()
    return len(new_rows)


def discard_unprocessed_lines(db: Session, job_id: str) -> int:
    """Delete lines never finalized for the job. Does NOT commit."""
    return (
        db.query(RecipeLine)
        .filter(RecipeLine.job_id == job_id, RecipeLine.processed.is_(False))
        .delete(synchronize_session=False)
    )


def mark_lines_processed(db: Session, job_id: str) -> int:
    """
    Flag every line of the job as processed. Does NOT commit: the caller
    commits together with the terminal status so both land atomically.
    """
    return (
        db.query(RecipeLine)
        .filter(RecipeLine.job_id == job_id, RecipeLine.processed.is_(False))
        .update({RecipeLine.processed: True}, synchronize_session=False)
    )


def get_job_lines(db: Session, job_id: str, client_id: int) -> list[RecipeLine]:
    return (
        db.query(RecipeLine)
        .filter(RecipeLine.job_id == job_id, RecipeLine.client_id == client_id)
        .order_by(RecipeLine.id.asc())
        .all()
    )


def group_medications(rows: list[RecipeLine]) -> dict[str, dict[str, Any]]:
    """Rebuild the extraction shape (formula -> raw materials + shared fields)."""
    medications: dict[str, dict[str, Any]] = {}
    for r in rows:
        med = medications.get(r.formula)
        if med is None:
            med = {
                "raw_materials": [],
                "form": r.form,
                "type": r.type,
                "posology": r.posology,
                "quantity": r.quantity,
            }
            medications[r.formula] = med
        med["raw_materials"].append({"active": r.active, "dose": r.dose, "unity": r.unity})
    return medications
