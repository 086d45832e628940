from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from rxflow.core.errors import ParseError

DEFAULT_HUMAN_REASON = "needs human review"


class RawMaterial(BaseModel):
    model_config = ConfigDict(extra="ignore")

    active: str | None = None
    dose: float | str | None = None
    unity: str | None = None


class Medication(BaseModel):
    model_config = ConfigDict(extra="ignore")

    raw_materials: list[RawMaterial] = Field(default_factory=list)
    form: str | None = None
    type: str | None = None
    posology: str | None = None
    quantity: int | float | str | None = None


class ExtractionResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    patient: str | None = None
    doctor: str | None = None
    medications: dict[str, Medication] = Field(default_factory=dict)


@dataclass(frozen=True)
class HumanReview:
    reason: str = DEFAULT_HUMAN_REASON


ExtractionOutcome = Union[ExtractionResult, HumanReview]


def extract_json_object(text: str) -> dict[str, Any]:
    """
    JSON object embedded in free-form model output (first "{" to last "}").
    """
    text = (text or "").strip()
    if not text:
        raise ParseError("empty model response")

    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end <= start:
        raise ParseError(f"no JSON object in model response. First 200 chars: {text[:200]!r}")

    try:
        payload = json.loads(text[start : end + 1])
    except json.JSONDecodeError as e:
        raise ParseError(f"invalid JSON in model response: {e}") from e

    if not isinstance(payload, dict):
        raise ParseError("model response JSON is not an object")
    return payload


def parse_model_output(raw: str) -> ExtractionOutcome:
    """
    Map raw model text to ExtractionResult, or HumanReview for the
    {"status": "human"} sentinel. Anything unusable raises ParseError.
    """
    payload = extract_json_object(raw)

    if str(payload.get("status") or "").strip().lower() == "human":
        reason = payload.get("reason")
        return HumanReview(reason=str(reason) if reason else DEFAULT_HUMAN_REASON)

    try:
        return ExtractionResult.model_validate(payload)
    except PydanticValidationError as e:
        raise ParseError(f"unexpected extraction shape: {e.error_count()} error(s)") from e
