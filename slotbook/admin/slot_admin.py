"""
Admin operations on slot availability and booking data.

Slot switches here feed ``SlotResolver``; booking counts are aggregated
from the stored submissions the same way for the listing and for the
date-range report.
"""

import logging
from collections import Counter
from datetime import timedelta
from typing import Iterable, Optional

from slotbook.clock import Clock, civil_date, civil_midnight, parse_civil_date, utc_now
from slotbook.errors import NotFoundError, ValidationError
from slotbook.schemas.slot_schema import BookingCounts, SlotConfig, SlotConfigView, SlotDateOverride
from slotbook.schemas.submission_schema import NotificationKind
from slotbook.slots.catalog import SCHEDULED_SLOT_IDS, is_scheduled, parse_slot_id
from slotbook.storage.base import (
    DateOverrideRepository,
    SlotConfigRepository,
    SubmissionRepository,
)
from slotbook.utils import mask_phone

logger = logging.getLogger(__name__)


class SlotAdmin:
    """Slot switches, booking counts and the notification-flag reset."""

    def __init__(
        self,
        submissions: SubmissionRepository,
        configs: SlotConfigRepository,
        overrides: DateOverrideRepository,
        clock: Clock = utc_now,
    ) -> None:
        self._submissions = submissions
        self._configs = configs
        self._overrides = overrides
        self._clock = clock

    def list_slot_configs(self) -> list[SlotConfigView]:
        """Every scheduled slot with its switch and all-time booking count.

        Missing config rows are created (enabled) on the way.
        """
        now = self._clock()
        booked = Counter(doc.selected_slot for doc in self._submissions.list_booked())
        views = []
        for slot_id in SCHEDULED_SLOT_IDS:
            config = self._configs.ensure_config(slot_id, now)
            views.append(SlotConfigView(
                slot_id=slot_id,
                enabled=config.enabled,
                booked_count=booked.get(slot_id, 0),
            ))
        return views

    def set_slot_enabled(self, slot_id: str, enabled: bool) -> SlotConfig:
        if not is_scheduled(slot_id):
            raise ValidationError("Invalid slot ID")
        if not isinstance(enabled, bool):
            raise ValidationError("enabled must be a boolean")
        config = self._configs.set_config(slot_id, enabled, self._clock())
        logger.info("Slot %s %s", slot_id, "enabled" if enabled else "disabled")
        return config

    def set_date_override(self, date_str: str, slot_id: str, enabled: bool) -> SlotDateOverride:
        """Enable or disable one slot on one civil date; the slot must fall on that weekday."""
        day = parse_civil_date(date_str)
        if day is None:
            raise ValidationError("Invalid date format. Use YYYY-MM-DD.")
        if not is_scheduled(slot_id):
            raise ValidationError("Invalid slot ID")
        if not isinstance(enabled, bool):
            raise ValidationError("enabled must be a boolean")
        definition = parse_slot_id(slot_id)
        if definition is None or definition.weekday != day.weekday():
            raise ValidationError(f"{slot_id} does not fall on {date_str}")

        override = self._overrides.set_override(day, slot_id, enabled, self._clock())
        logger.info(
            "Override %s on %s -> %s", slot_id, date_str, "enabled" if enabled else "disabled",
        )
        return override

    def get_booking_counts(self, start_date: str, end_date: str) -> BookingCounts:
        """Bookings whose slot falls within the civil dates ``[start_date, end_date]``."""
        start = parse_civil_date(start_date)
        end = parse_civil_date(end_date)
        if start is None or end is None:
            raise ValidationError("Invalid date format. Use YYYY-MM-DD.")
        if end < start:
            raise ValidationError("end_date must not be before start_date")

        booked = self._submissions.list_booked(
            civil_midnight(start), civil_midnight(end + timedelta(days=1)),
        )
        by_slot = Counter(doc.selected_slot for doc in booked)
        by_date = Counter(civil_date(doc.slot_date).isoformat() for doc in booked)
        return BookingCounts(
            start_date=start,
            end_date=end,
            total=len(booked),
            by_slot=dict(by_slot),
            by_date=dict(sorted(by_date.items())),
        )

    def reset_notification_flags(
        self, phone: str, kinds: Optional[Iterable[NotificationKind]] = None,
    ) -> list[NotificationKind]:
        """Debug action: mark reminders unsent so the next sweep resends them."""
        selected = list(kinds) if kinds is not None else list(NotificationKind)
        if not self._submissions.reset_flags(phone, selected):
            raise NotFoundError("Submission not found")
        logger.warning(
            "Notification flags reset for %s: %s",
            mask_phone(phone), ", ".join(k.value for k in selected),
        )
        return selected
