"""Submission document, its per-step snapshots and notification flags."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from slotbook.clock import utc_now


class ApplicationStatus(str, Enum):
    """Forward-only lifecycle of a submission."""
    IN_PROGRESS = "in_progress"
    REGISTERED = "registered"
    COMPLETED = "completed"


class NotificationKind(str, Enum):
    """Time-triggered reminders tied to the booked slot."""
    REMINDER_4H = "reminder_4h"
    MEET_LINK_1H = "meet_link_1h"
    REMINDER_30M = "reminder_30m"

    @property
    def threshold_hours(self) -> float:
        return _THRESHOLD_HOURS[self]


_THRESHOLD_HOURS = {
    NotificationKind.REMINDER_4H: 4.0,
    NotificationKind.MEET_LINK_1H: 1.0,
    NotificationKind.REMINDER_30M: 0.5,
}


class NotificationFlag(BaseModel):
    """One-time send flag; ``claimed_at`` marks an in-flight send."""
    sent: bool = False
    sent_at: Optional[datetime] = None
    claimed_at: Optional[datetime] = None


class Step1Data(BaseModel):
    full_name: str
    whatsapp_number: str
    occupation: str
    completed_at: datetime


class Step2Data(BaseModel):
    otp_verified: bool = True
    completed_at: datetime


class Step3Data(BaseModel):
    selected_slot: str
    slot_date: datetime
    completed_at: datetime


class SurveyData(BaseModel):
    interest_level: int
    email: str
    completed_at: datetime


class Submission(BaseModel):
    """
    One registrant's form submission, unique on the normalized phone.

    Step snapshots are retained even when later steps overwrite the
    top-level fields. The notification flags belong to the scheduler;
    everything else belongs to the registration service.
    """
    phone: str
    full_name: str
    occupation: str
    current_step: int = 1
    application_status: ApplicationStatus = ApplicationStatus.IN_PROGRESS

    step1_data: Optional[Step1Data] = None
    step2_data: Optional[Step2Data] = None
    step3_data: Optional[Step3Data] = None
    survey_data: Optional[SurveyData] = None

    selected_slot: Optional[str] = None
    slot_date: Optional[datetime] = None
    is_registered: bool = False
    registered_at: Optional[datetime] = None

    email: Optional[str] = None
    interest_level: Optional[int] = None

    reminder_4h: NotificationFlag = Field(default_factory=NotificationFlag)
    meet_link_1h: NotificationFlag = Field(default_factory=NotificationFlag)
    reminder_30m: NotificationFlag = Field(default_factory=NotificationFlag)

    external_row_id: Optional[int] = None
    attribution: dict[str, Any] = Field(default_factory=dict)
    notes: Optional[str] = None
    follow_up_status: Optional[str] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def flag(self, kind: NotificationKind) -> NotificationFlag:
        return getattr(self, kind.value)


class RegistrationStatusView(BaseModel):
    """Read-only summary returned by the status check."""
    is_registered: bool = False
    registered_at: Optional[datetime] = None
    selected_slot: Optional[str] = None
    slot_date: Optional[datetime] = None
    survey_completed: bool = False
    application_status: Optional[ApplicationStatus] = None
    current_step: Optional[int] = None
