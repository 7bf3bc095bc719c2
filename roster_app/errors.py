"""
Error taxonomy shared by the importer, list generation, and review services.

Routes translate these into JSON responses via ``status_code`` and ``to_dict``.
"""

from __future__ import annotations

from dataclasses import dataclass
from http import HTTPStatus
from typing import Any, Mapping


class RosterError(Exception):
    """Base exception for donor roster failures."""

    status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR
    error_code: str = "roster_error"

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.error_code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(RosterError):
    """Rejected input; nothing was started and the caller may retry with corrected data."""

    status_code = HTTPStatus.BAD_REQUEST
    error_code = "validation_error"


class UnsupportedFormat(ValidationError):
    error_code = "unsupported_format"


class SizeLimitExceeded(ValidationError):
    error_code = "size_limit_exceeded"


class InvalidCriteria(ValidationError):
    error_code = "invalid_criteria"


class NotFoundError(RosterError):
    status_code = HTTPStatus.NOT_FOUND
    error_code = "not_found"


class ForbiddenError(RosterError):
    """Raised when a user touches an operation owned by someone else."""

    status_code = HTTPStatus.FORBIDDEN
    error_code = "forbidden"


class StateConflictError(RosterError):
    """The current state forbids the requested change; no side effect was applied."""

    status_code = HTTPStatus.CONFLICT
    error_code = "state_conflict"


class RegenerationRequiresConfirmation(StateConflictError):
    error_code = "regeneration_requires_confirmation"


class InvalidTransition(StateConflictError):
    error_code = "invalid_transition"


class EventNotEditable(StateConflictError):
    error_code = "event_not_editable"


class DonorInUse(StateConflictError):
    error_code = "donor_in_use"


class JobFatalError(RosterError):
    """Infrastructure failure that terminates an import job; never retried server-side."""

    error_code = "job_failed"


@dataclass(frozen=True, slots=True)
class RowError:
    """Per-row import failure accumulated in the job result, never raised across the job."""

    row: int
    error: str
    column: str | None = None
    unrecognized_columns: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"row": self.row, "error": self.error}
        if self.column:
            payload["column"] = self.column
        if self.unrecognized_columns:
            payload["unrecognized_columns"] = list(self.unrecognized_columns)
        return payload
