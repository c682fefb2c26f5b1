"""Template variable construction for booking SMS messages."""

from datetime import datetime
from typing import Optional

from slotbook.clock import to_civil
from slotbook.delivery.base import MessageTemplate, Recipient
from slotbook.schemas.submission_schema import NotificationKind, Submission
from slotbook.slots.catalog import slot_time_label

DEFAULT_NAME = "Counsellor"

KIND_TEMPLATES: dict[NotificationKind, MessageTemplate] = {
    NotificationKind.REMINDER_4H: MessageTemplate.REMINDER_4H,
    NotificationKind.MEET_LINK_1H: MessageTemplate.MEET_LINK_1H,
    NotificationKind.REMINDER_30M: MessageTemplate.REMINDER_30M,
}

# Kinds whose template has a ##var## placeholder for the meeting link.
LINK_KINDS = frozenset({NotificationKind.MEET_LINK_1H, NotificationKind.REMINDER_30M})


def ordinal(day: int) -> str:
    """``1`` -> ``1st``, ``12`` -> ``12th``, ``22`` -> ``22nd``."""
    if 11 <= day % 100 <= 13:
        return f"{day}th"
    suffix = {1: "st", 2: "nd", 3: "rd"}.get(day % 10, "th")
    return f"{day}{suffix}"


def format_slot_date(instant: datetime) -> str:
    """Civil date for SMS, e.g. ``Saturday, 15th Feb``."""
    local = to_civil(instant)
    return f"{local.strftime('%A')}, {ordinal(local.day)} {local.strftime('%b')}"


def build_variables(
    submission: Submission, meeting_link: Optional[str] = None,
) -> dict[str, str]:
    """Variables shared by every booking template: name, date, time."""
    name = submission.full_name
    if submission.step1_data is not None and submission.step1_data.full_name:
        name = submission.step1_data.full_name
    variables = {
        "name": name or DEFAULT_NAME,
        "date": format_slot_date(submission.slot_date) if submission.slot_date else "",
        "time": slot_time_label(submission.selected_slot or ""),
    }
    if meeting_link:
        variables["var"] = meeting_link
    return variables


def build_recipient(
    submission: Submission, kind: Optional[NotificationKind], meeting_link: str,
) -> Recipient:
    """Recipient for the confirmation (``kind=None``) or a reminder kind."""
    link = meeting_link if kind in LINK_KINDS else None
    return Recipient(phone=submission.phone, variables=build_variables(submission, link))
