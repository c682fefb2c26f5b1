"""OTP records, issuance log entries and the verified-phone marker."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from slotbook.clock import utc_now


class OtpRecord(BaseModel):
    """The single active code for a phone. Only the keyed hash is stored."""
    phone: str
    otp_hash: str
    expires_at: datetime
    attempts: int = 0
    created_at: datetime = Field(default_factory=utc_now)


class OtpIssue(BaseModel):
    """One successful issuance, kept for the rate-limit window."""
    phone: str
    issued_at: datetime


class VerifiedPhone(BaseModel):
    """Grace-window marker set after a successful verification."""
    phone: str
    verified_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class SendDecision:
    """Outcome of the resend/rate-limit check."""
    allowed: bool
    retry_after: Optional[int] = None
    message: str = ""
