"""
Error taxonomy shared by the intake, the worker and the read path.

Human review is a business outcome, not an error, so it has no class here.
"""
from __future__ import annotations

from typing import Any


class RxflowError(Exception):
    """Base class for every domain error raised by rxflow."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(RxflowError):
    """Bad or missing caller input. Never retried."""


class AuthorizationError(RxflowError):
    """Caller identity is not allowed to perform the operation."""


class NotFoundError(RxflowError):
    """Unknown job id. The read path answers with a status instead of raising."""


class TransientExternalError(RxflowError):
    """LLM, object storage, broker or download endpoint unreachable. Retry later."""


class PermanentJobFailure(RxflowError):
    """Unsupported format, corrupt file. Recorded as `falha`, never retried."""


class ParseError(RxflowError):
    """Model output did not contain a usable JSON payload."""
