"""
Repository interfaces the core depends on.

Any document store that can do atomic single-document conditional updates
(e.g. MongoDB ``find_one_and_update`` with a filter on the flag) can back
these. ``InMemoryStore`` is the reference implementation and ``SqlStore``
the persistent one.
"""

from datetime import date, datetime, timedelta
from typing import Any, Iterable, Optional, Protocol

from slotbook.schemas.otp_schema import OtpIssue, OtpRecord, VerifiedPhone
from slotbook.schemas.slot_schema import SlotConfig, SlotDateOverride
from slotbook.schemas.submission_schema import NotificationKind, Submission


class DuplicateKeyError(Exception):
    """Raised when an insert would violate the unique phone constraint."""


class SubmissionRepository(Protocol):
    def get(self, phone: str) -> Optional[Submission]: ...

    def insert(self, submission: Submission) -> Submission: ...

    def upsert(self, phone: str, changes: dict[str, Any]) -> Submission: ...

    def update(self, phone: str, changes: dict[str, Any]) -> Optional[Submission]: ...

    def find_due(
        self, kind: NotificationKind, start: datetime, end: datetime,
        now: datetime, lease: timedelta,
    ) -> list[Submission]: ...

    def claim_flag(
        self, phone: str, kind: NotificationKind, now: datetime, lease: timedelta,
    ) -> bool: ...

    def mark_flags_sent(
        self, phones: Iterable[str], kind: NotificationKind, sent_at: datetime,
    ) -> int: ...

    def release_flags(self, phones: Iterable[str], kind: NotificationKind) -> None: ...

    def reset_flags(self, phone: str, kinds: Iterable[NotificationKind]) -> bool: ...

    def list_booked(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None,
    ) -> list[Submission]: ...


class OtpRepository(Protocol):
    def latest(self, phone: str) -> Optional[OtpRecord]: ...

    def replace(self, record: OtpRecord) -> None: ...

    def delete(self, phone: str) -> None: ...

    def increment_attempts(self, phone: str) -> Optional[int]: ...

    def reserve_issue(
        self, issue: OtpIssue, since: datetime, cooldown: timedelta, limit: int,
    ) -> bool: ...

    def cancel_issue(self, issue: OtpIssue) -> None: ...

    def issues_since(self, phone: str, since: datetime) -> list[datetime]: ...

    def purge_expired(self, now: datetime, issue_window: timedelta) -> None: ...


class VerifiedPhoneRepository(Protocol):
    def mark_verified(self, marker: VerifiedPhone) -> None: ...

    def is_verified(self, phone: str, now: datetime) -> bool: ...

    def clear_verified(self, phone: str) -> None: ...


class SlotConfigRepository(Protocol):
    def get_config(self, slot_id: str) -> Optional[SlotConfig]: ...

    def configs_for(self, slot_ids: Iterable[str]) -> dict[str, bool]: ...

    def set_config(self, slot_id: str, enabled: bool, now: datetime) -> SlotConfig: ...

    def ensure_config(self, slot_id: str, now: datetime) -> SlotConfig: ...


class DateOverrideRepository(Protocol):
    def overrides_for(
        self, pairs: Iterable[tuple[date, str]],
    ) -> dict[tuple[date, str], bool]: ...

    def set_override(
        self, day: date, slot_id: str, enabled: bool, now: datetime,
    ) -> SlotDateOverride: ...
