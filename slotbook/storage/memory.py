"""
In-memory document store.

Implements every repository protocol from ``slotbook.storage.base`` behind
a single re-entrant lock, so each method is one atomic operation. Reads
and writes go through deep copies, matching document-store semantics
(callers never hold live references). OTP records, issuance entries and
verified markers are evicted once past their time-to-live.
"""

import logging
import threading
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Optional

from slotbook.schemas.otp_schema import OtpIssue, OtpRecord, VerifiedPhone
from slotbook.schemas.slot_schema import SlotConfig, SlotDateOverride
from slotbook.schemas.submission_schema import NotificationKind, Submission
from slotbook.storage.base import DuplicateKeyError

logger = logging.getLogger(__name__)


class InMemoryStore:
    """Thread-safe store for submissions, OTP state and slot configuration."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._submissions: dict[str, Submission] = {}
        self._otps: dict[str, OtpRecord] = {}
        self._issues: dict[str, list[datetime]] = defaultdict(list)
        self._verified: dict[str, VerifiedPhone] = {}
        self._slot_configs: dict[str, SlotConfig] = {}
        self._overrides: dict[tuple[date, str], SlotDateOverride] = {}

    # ------------------------------------------------------------------ #
    # Submissions
    # ------------------------------------------------------------------ #

    def get(self, phone: str) -> Optional[Submission]:
        with self._lock:
            doc = self._submissions.get(phone)
            return doc.model_copy(deep=True) if doc else None

    def insert(self, submission: Submission) -> Submission:
        with self._lock:
            if submission.phone in self._submissions:
                raise DuplicateKeyError(f"duplicate phone {submission.phone[-4:]}")
            self._submissions[submission.phone] = submission.model_copy(deep=True)
            return submission.model_copy(deep=True)

    def upsert(self, phone: str, changes: dict[str, Any]) -> Submission:
        with self._lock:
            existing = self._submissions.get(phone)
            if existing is None:
                doc = Submission(phone=phone, **changes)
            else:
                doc = existing.model_copy(update=changes, deep=True)
            self._submissions[phone] = doc
            return doc.model_copy(deep=True)

    def update(self, phone: str, changes: dict[str, Any]) -> Optional[Submission]:
        with self._lock:
            existing = self._submissions.get(phone)
            if existing is None:
                return None
            doc = existing.model_copy(update=changes, deep=True)
            self._submissions[phone] = doc
            return doc.model_copy(deep=True)

    def find_due(
        self, kind: NotificationKind, start: datetime, end: datetime,
        now: datetime, lease: timedelta,
    ) -> list[Submission]:
        with self._lock:
            due = []
            for doc in self._submissions.values():
                flag = doc.flag(kind)
                if not doc.is_registered or doc.slot_date is None or flag.sent:
                    continue
                if flag.claimed_at is not None and flag.claimed_at > now - lease:
                    continue
                if start <= doc.slot_date <= end:
                    due.append(doc.model_copy(deep=True))
            return due

    def claim_flag(
        self, phone: str, kind: NotificationKind, now: datetime, lease: timedelta,
    ) -> bool:
        with self._lock:
            doc = self._submissions.get(phone)
            if doc is None:
                return False
            flag = doc.flag(kind)
            if flag.sent:
                return False
            if flag.claimed_at is not None and flag.claimed_at > now - lease:
                return False
            flag.claimed_at = now
            return True

    def mark_flags_sent(
        self, phones: Iterable[str], kind: NotificationKind, sent_at: datetime,
    ) -> int:
        with self._lock:
            modified = 0
            for phone in phones:
                doc = self._submissions.get(phone)
                if doc is None:
                    continue
                flag = doc.flag(kind)
                if flag.sent:
                    continue
                flag.sent = True
                flag.sent_at = sent_at
                flag.claimed_at = None
                modified += 1
            return modified

    def release_flags(self, phones: Iterable[str], kind: NotificationKind) -> None:
        with self._lock:
            for phone in phones:
                doc = self._submissions.get(phone)
                if doc is not None and not doc.flag(kind).sent:
                    doc.flag(kind).claimed_at = None

    def reset_flags(self, phone: str, kinds: Iterable[NotificationKind]) -> bool:
        with self._lock:
            doc = self._submissions.get(phone)
            if doc is None:
                return False
            for kind in kinds:
                flag = doc.flag(kind)
                flag.sent = False
                flag.sent_at = None
                flag.claimed_at = None
            return True

    def list_booked(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None,
    ) -> list[Submission]:
        with self._lock:
            booked = []
            for doc in self._submissions.values():
                if doc.selected_slot is None or doc.slot_date is None:
                    continue
                if start is not None and doc.slot_date < start:
                    continue
                if end is not None and doc.slot_date >= end:
                    continue
                booked.append(doc.model_copy(deep=True))
            return booked

    # ------------------------------------------------------------------ #
    # OTP records and issuance log
    # ------------------------------------------------------------------ #

    def latest(self, phone: str) -> Optional[OtpRecord]:
        with self._lock:
            record = self._otps.get(phone)
            return record.model_copy() if record else None

    def replace(self, record: OtpRecord) -> None:
        with self._lock:
            self._otps[record.phone] = record.model_copy()

    def delete(self, phone: str) -> None:
        with self._lock:
            self._otps.pop(phone, None)

    def increment_attempts(self, phone: str) -> Optional[int]:
        with self._lock:
            record = self._otps.get(phone)
            if record is None:
                return None
            record.attempts += 1
            return record.attempts

    def reserve_issue(
        self, issue: OtpIssue, since: datetime, cooldown: timedelta, limit: int,
    ) -> bool:
        """Record ``issue`` unless the cooldown or the window limit forbids it."""
        with self._lock:
            issued = sorted(t for t in self._issues.get(issue.phone, []) if t >= since)
            if issued and issued[-1] + cooldown > issue.issued_at:
                return False
            if len(issued) >= limit:
                return False
            self._issues[issue.phone].append(issue.issued_at)
            return True

    def cancel_issue(self, issue: OtpIssue) -> None:
        with self._lock:
            issued = self._issues.get(issue.phone)
            if issued and issue.issued_at in issued:
                issued.remove(issue.issued_at)
                if not issued:
                    del self._issues[issue.phone]

    def issues_since(self, phone: str, since: datetime) -> list[datetime]:
        with self._lock:
            return sorted(t for t in self._issues.get(phone, []) if t >= since)

    def purge_expired(self, now: datetime, issue_window: timedelta) -> None:
        with self._lock:
            for phone in [p for p, r in self._otps.items() if r.expires_at < now]:
                del self._otps[phone]
            for phone in list(self._issues):
                kept = [t for t in self._issues[phone] if t > now - issue_window]
                if kept:
                    self._issues[phone] = kept
                else:
                    del self._issues[phone]
            for phone in [p for p, v in self._verified.items() if v.expires_at <= now]:
                del self._verified[phone]

    # ------------------------------------------------------------------ #
    # Verified-phone grace markers
    # ------------------------------------------------------------------ #

    def mark_verified(self, marker: VerifiedPhone) -> None:
        with self._lock:
            self._verified[marker.phone] = marker.model_copy()

    def is_verified(self, phone: str, now: datetime) -> bool:
        with self._lock:
            marker = self._verified.get(phone)
            if marker is None:
                return False
            if marker.expires_at <= now:
                del self._verified[phone]
                return False
            return True

    def clear_verified(self, phone: str) -> None:
        with self._lock:
            self._verified.pop(phone, None)

    # ------------------------------------------------------------------ #
    # Slot configuration
    # ------------------------------------------------------------------ #

    def get_config(self, slot_id: str) -> Optional[SlotConfig]:
        with self._lock:
            config = self._slot_configs.get(slot_id)
            return config.model_copy() if config else None

    def configs_for(self, slot_ids: Iterable[str]) -> dict[str, bool]:
        with self._lock:
            return {
                slot_id: self._slot_configs[slot_id].enabled
                for slot_id in slot_ids
                if slot_id in self._slot_configs
            }

    def set_config(self, slot_id: str, enabled: bool, now: datetime) -> SlotConfig:
        with self._lock:
            config = SlotConfig(slot_id=slot_id, enabled=enabled, updated_at=now)
            self._slot_configs[slot_id] = config
            return config.model_copy()

    def ensure_config(self, slot_id: str, now: datetime) -> SlotConfig:
        with self._lock:
            if slot_id not in self._slot_configs:
                self._slot_configs[slot_id] = SlotConfig(slot_id=slot_id, updated_at=now)
                logger.debug("Created default slot config for %s", slot_id)
            return self._slot_configs[slot_id].model_copy()

    def overrides_for(
        self, pairs: Iterable[tuple[date, str]],
    ) -> dict[tuple[date, str], bool]:
        with self._lock:
            return {
                pair: self._overrides[pair].enabled
                for pair in pairs
                if pair in self._overrides
            }

    def set_override(
        self, day: date, slot_id: str, enabled: bool, now: datetime,
    ) -> SlotDateOverride:
        with self._lock:
            override = SlotDateOverride(date=day, slot_id=slot_id, enabled=enabled, updated_at=now)
            self._overrides[(day, slot_id)] = override
            return override.model_copy()
