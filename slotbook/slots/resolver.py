"""
Slot availability resolution.

Turns the weekly catalog into concrete bookable occurrences and applies the
two admin switches. Precedence for one (date, slot) pair is:
date override > global slot config > enabled by default.

Usage:
    resolver = SlotResolver(store, store)
    for slot in resolver.slots_for_now():
        print(slot.slot_id, slot.label)
"""

import logging
from datetime import date, datetime
from typing import Iterable, Optional

from slotbook.clock import Clock, civil_date, civil_instant, parse_civil_date, utc_now
from slotbook.errors import ValidationError
from slotbook.schemas.slot_schema import AvailableSlot
from slotbook.slots.catalog import (
    format_slot_label,
    is_scheduled,
    parse_slot_id,
    rolling_slot_ids,
    slots_on_weekday,
)
from slotbook.storage.base import DateOverrideRepository, SlotConfigRepository

logger = logging.getLogger(__name__)


class SlotResolver:
    """Answers "which slots can be booked" for now, for a date, or for one slot."""

    def __init__(
        self,
        configs: SlotConfigRepository,
        overrides: DateOverrideRepository,
        clock: Clock = utc_now,
    ) -> None:
        self._configs = configs
        self._overrides = overrides
        self._clock = clock

    def slots_for_now(self) -> list[AvailableSlot]:
        """Upcoming occurrences from the rolling window, disabled ones removed."""
        now = self._clock()
        occurrences: list[tuple[str, datetime]] = []
        for slot_id in rolling_slot_ids(now):
            definition = parse_slot_id(slot_id)
            if definition is not None:
                occurrences.append((slot_id, definition.next_after(now)))

        occurrences.sort(key=lambda item: item[1])
        return self._enabled_occurrences(occurrences)

    def slots_for_date(self, date_str: str) -> list[AvailableSlot]:
        """Scheduled slots on the weekday of ``date_str`` that are enabled that day.

        Raises:
            ValidationError: if the date is not a real ``YYYY-MM-DD`` date.
        """
        day = parse_civil_date(date_str)
        if day is None:
            raise ValidationError("Invalid date format. Use YYYY-MM-DD.")

        occurrences = [
            (d.slot_id, civil_instant(day, d.hour, d.minute))
            for d in slots_on_weekday(day.weekday())
        ]
        return self._enabled_occurrences(occurrences)

    def is_slot_open(self, slot_id: str, as_of: Optional[datetime] = None) -> bool:
        """Whether ``slot_id`` is bookable on the civil date of ``as_of``.

        Raises:
            ValidationError: if ``slot_id`` does not match the slot grammar.
        """
        if parse_slot_id(slot_id) is None:
            raise ValidationError("Invalid slot selection.")
        if not is_scheduled(slot_id):
            return False
        day = civil_date(as_of if as_of is not None else self._clock())
        return self._resolve([(day, slot_id)])[(day, slot_id)]

    def _enabled_occurrences(
        self, occurrences: list[tuple[str, datetime]],
    ) -> list[AvailableSlot]:
        keys = [(civil_date(instant), slot_id) for slot_id, instant in occurrences]
        enabled = self._resolve(keys)

        slots = []
        for (slot_id, instant), key in zip(occurrences, keys):
            if not enabled[key]:
                logger.debug("Slot %s on %s is disabled", slot_id, key[0])
                continue
            slots.append(AvailableSlot(
                slot_id=slot_id,
                label=format_slot_label(instant),
                iso_timestamp=instant.isoformat().replace("+00:00", "Z"),
                enabled=True,
            ))
        return slots

    def _resolve(self, keys: Iterable[tuple[date, str]]) -> dict[tuple[date, str], bool]:
        keys = list(keys)
        configs = self._configs.configs_for({slot_id for _, slot_id in keys})
        overrides = self._overrides.overrides_for(keys)

        resolved = {}
        for key in keys:
            if key in overrides:
                resolved[key] = overrides[key]
            else:
                resolved[key] = configs.get(key[1], True)
        return resolved
