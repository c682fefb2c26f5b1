"""Typed operation results returned across the public boundary."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from slotbook.errors import InvalidOrExpiredOtpError, RateLimitedError, SlotbookError


class DispatchStatus(str, Enum):
    """What happened to one notification during a booking."""
    SENT = "sent"
    FAILED = "failed"
    NOT_APPLICABLE = "not_applicable"
    ALREADY_SENT = "already_sent"


class DispatchOutcome(BaseModel):
    status: DispatchStatus = DispatchStatus.NOT_APPLICABLE
    error: Optional[str] = None

    @property
    def sent(self) -> bool:
        return self.status == DispatchStatus.SENT


class SweepStats(BaseModel):
    """Per-kind counters for one sweep run."""
    found: int = 0
    sent: int = 0
    failed: int = 0
    error: Optional[str] = None


class OperationResult(BaseModel):
    """
    Success or typed failure of one public operation.

    Failures carry the error ``code`` from ``slotbook.errors`` so callers
    can map them to status codes without string matching.
    """
    success: bool
    message: str = ""
    error: Optional[str] = None
    retry_after: Optional[int] = None
    attempts_left: Optional[int] = None
    data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(cls, message: str = "", **data: Any) -> "OperationResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def failure(cls, exc: SlotbookError) -> "OperationResult":
        result = cls(success=False, message=exc.message, error=exc.code)
        if isinstance(exc, RateLimitedError):
            result.retry_after = exc.retry_after
        if isinstance(exc, InvalidOrExpiredOtpError):
            result.attempts_left = exc.attempts_left
        return result
