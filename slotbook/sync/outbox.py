"""
Spreadsheet mirror outbox.

Step transitions enqueue the phone; ``flush`` later pushes the current
submission snapshot to a ``SpreadsheetSink``. The first push appends a
row and stores its id on the submission as ``external_row_id``; later
pushes update that row. Failed messages stay queued with an attempt
count. Each enqueue bumps the message version, and a push only retires
the version it read, so a change made mid-push is never lost. Nothing in
registration waits on or reads from this outbox.
"""

import logging
import threading
from datetime import datetime
from typing import Optional, Protocol

from pydantic import BaseModel

from slotbook.clock import Clock, utc_now
from slotbook.schemas.submission_schema import Submission
from slotbook.storage.base import SubmissionRepository
from slotbook.utils import mask_phone

logger = logging.getLogger(__name__)

SHEET_COLUMNS = [
    "phone", "full_name", "occupation", "interest_level",
    "selected_slot", "application_status", "created_at",
]


class SpreadsheetSink(Protocol):
    """Row-oriented external mirror (e.g. a Google Sheet)."""

    def append_row(self, values: list[str]) -> int: ...

    def update_row(self, row_id: int, values: list[str]) -> None: ...


class SyncMessage(BaseModel):
    """A pending push for one phone; ``version`` grows with every enqueue."""
    phone: str
    reason: str
    enqueued_at: datetime
    version: int = 1
    attempts: int = 0
    last_error: Optional[str] = None


def to_row(submission: Submission) -> list[str]:
    """Flatten a submission into ``SHEET_COLUMNS`` order."""
    return [
        submission.phone,
        submission.full_name or "",
        submission.occupation or "",
        str(submission.interest_level) if submission.interest_level is not None else "",
        submission.selected_slot or "",
        submission.application_status.value,
        submission.created_at.isoformat(),
    ]


class SyncOutbox:
    """In-process queue of submissions awaiting a spreadsheet push."""

    def __init__(self, submissions: SubmissionRepository, clock: Clock = utc_now) -> None:
        self._submissions = submissions
        self._clock = clock
        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._pending: dict[str, SyncMessage] = {}

    def enqueue(self, phone: str, reason: str) -> None:
        """Queue a push; a phone already queued keeps its attempt count."""
        with self._lock:
            existing = self._pending.get(phone)
            if existing is not None:
                existing.reason = reason
                existing.version += 1
                return
            self._pending[phone] = SyncMessage(
                phone=phone, reason=reason, enqueued_at=self._clock(),
            )

    def pending(self) -> list[SyncMessage]:
        with self._lock:
            return [msg.model_copy() for msg in self._pending.values()]

    def flush(self, sink: SpreadsheetSink) -> dict[str, int]:
        """
        Push every queued snapshot. Returns ``{"flushed", "failed", "dropped"}``.

        Only one flush runs at a time; a concurrent call returns zero
        counts straight away. A message re-enqueued while its push was in
        flight stays queued for the next flush.
        """
        counts = {"flushed": 0, "failed": 0, "dropped": 0}
        if not self._flush_lock.acquire(blocking=False):
            logger.info("Sheet sync flush already in progress, skipping")
            return counts
        try:
            with self._lock:
                batch = [(msg.phone, msg.version) for msg in self._pending.values()]

            for phone, version in batch:
                submission = self._submissions.get(phone)
                if submission is None:
                    self._complete(phone, version)
                    counts["dropped"] += 1
                    continue

                try:
                    values = to_row(submission)
                    if submission.external_row_id is None:
                        row_id = sink.append_row(values)
                        self._submissions.update(phone, {"external_row_id": row_id})
                    else:
                        sink.update_row(submission.external_row_id, values)
                except Exception as exc:
                    error = str(exc) or exc.__class__.__name__
                    attempts = self._record_failure(phone, error)
                    counts["failed"] += 1
                    logger.warning(
                        "Sheet sync failed for %s (attempt %d): %s",
                        mask_phone(phone), attempts, error,
                    )
                    continue

                if not self._complete(phone, version):
                    logger.debug("Newer change for %s queued during push", mask_phone(phone))
                counts["flushed"] += 1
        finally:
            self._flush_lock.release()

        if batch:
            logger.info("Sheet sync flush: %s", counts)
        return counts

    def _complete(self, phone: str, version: int) -> bool:
        """Drop the message if no newer enqueue happened since ``version``."""
        with self._lock:
            message = self._pending.get(phone)
            if message is None or message.version != version:
                return False
            del self._pending[phone]
            return True

    def _record_failure(self, phone: str, error: str) -> int:
        with self._lock:
            message = self._pending.get(phone)
            if message is None:
                return 0
            message.attempts += 1
            message.last_error = error
            return message.attempts
