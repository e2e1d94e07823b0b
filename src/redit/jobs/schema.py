"""Typed records for job submission and progress reporting."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, ValidationError, field_validator


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


class ValidationInputError(ValueError):
    """Raised when a submission fails validation; carries the field errors."""

    def __init__(self, message: str, *, errors: Optional[List[Dict[str, Any]]] = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class RecordModel(BaseModel):
    """Base Pydantic model with strict field handling."""

    model_config = ConfigDict(extra="forbid", frozen=False)


class JobSubmission(RecordModel):
    """A request to edit a hosted repository."""

    repository_url: HttpUrl
    instruction: str = Field(min_length=5)

    @field_validator("instruction")
    @classmethod
    def _strip_instruction(cls, value: str) -> str:
        stripped = value.strip()
        if len(stripped) < 5:
            raise ValueError("instruction must contain at least 5 non-blank characters")
        return stripped

    @classmethod
    def parse(cls, payload: Dict[str, Any]) -> "JobSubmission":
        """Validate ``payload`` or raise :class:`ValidationInputError`."""
        try:
            return cls.model_validate(payload)
        except ValidationError as error:
            details = [
                {"loc": list(item.get("loc", ())), "msg": item.get("msg", ""), "type": item.get("type", "")}
                for item in error.errors()
            ]
            raise ValidationInputError("Invalid job submission", errors=details) from error


class SubmissionReceipt(RecordModel):
    """Acknowledgement returned once a job is queued."""

    success: bool = True
    job_id: str


class JobEventKind(str, Enum):
    """Progress states reported for a job."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    NOT_FOUND = "not_found"
    PING = "ping"


class JobEvent(RecordModel):
    """One progress report on the event stream of a job."""

    kind: JobEventKind
    job_id: str
    attempt: int = 0
    pr_url: Optional[str] = None
    reason: Optional[str] = None
    emitted_at: datetime = Field(default_factory=utc_now)

    @property
    def terminal(self) -> bool:
        return self.kind in (JobEventKind.COMPLETED, JobEventKind.FAILED, JobEventKind.NOT_FOUND)


__all__ = [
    "JobEvent",
    "JobEventKind",
    "JobSubmission",
    "RecordModel",
    "SubmissionReceipt",
    "ValidationInputError",
    "utc_now",
]
