"""
Weekly slot catalog.

A slot id is ``<WEEKDAY>_<TIME>`` (e.g. ``SATURDAY_7PM``); it is both the
lookup key for configuration and the source of the display label. The
rolling-window table decides which upcoming slots are offered at a given
civil weekday and hour.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from slotbook.clock import DAY_NAMES, next_occurrence, to_civil

SLOT_TIMES: dict[str, tuple[int, int]] = {
    "7PM": (19, 0),
    "11AM": (11, 0),
    "3PM": (15, 0),
}

SLOT_ID_PATTERN = re.compile(
    r"^(" + "|".join(DAY_NAMES) + r")_(" + "|".join(SLOT_TIMES) + r")$"
)

# Slots that actually run every week and can be configured by admins.
SCHEDULED_SLOT_IDS: list[str] = [
    "MONDAY_7PM", "TUESDAY_7PM", "WEDNESDAY_7PM", "THURSDAY_7PM",
    "FRIDAY_7PM", "SATURDAY_7PM", "SUNDAY_7PM", "SUNDAY_11AM",
]


@dataclass(frozen=True)
class SlotDefinition:
    """Parsed form of a slot id."""

    slot_id: str
    weekday: int
    time_key: str
    hour: int
    minute: int

    @property
    def day_name(self) -> str:
        return DAY_NAMES[self.weekday]

    def next_after(self, reference: datetime) -> datetime:
        return next_occurrence(reference, self.weekday, self.hour, self.minute)

    def matches(self, instant: datetime) -> bool:
        """True when the instant is this slot's weekday and start time in civil time."""
        local = to_civil(instant)
        return (
            local.weekday() == self.weekday
            and (local.hour, local.minute) == (self.hour, self.minute)
            and local.second == 0
        )


@dataclass(frozen=True)
class RollingWindow:
    """Slots offered on one weekday, before and after its same-day cutoff."""

    cutoff_hour: int
    before_cutoff: tuple[str, ...]
    after_cutoff: tuple[str, ...]


def _weekday_window(weekday: int) -> RollingWindow:
    """Mon-Thu: today and tomorrow at 7PM, shifting a day after 6PM."""
    day = DAY_NAMES
    return RollingWindow(
        cutoff_hour=18,
        before_cutoff=(f"{day[weekday]}_7PM", f"{day[(weekday + 1) % 7]}_7PM"),
        after_cutoff=(f"{day[(weekday + 1) % 7]}_7PM", f"{day[(weekday + 2) % 7]}_7PM"),
    )


ROLLING_WINDOWS: dict[int, RollingWindow] = {
    0: _weekday_window(0),
    1: _weekday_window(1),
    2: _weekday_window(2),
    3: _weekday_window(3),
    4: RollingWindow(
        cutoff_hour=18,
        before_cutoff=("FRIDAY_7PM", "SATURDAY_7PM"),
        after_cutoff=("SATURDAY_7PM", "SUNDAY_11AM", "SUNDAY_7PM"),
    ),
    5: RollingWindow(
        cutoff_hour=18,
        before_cutoff=("SATURDAY_7PM", "SUNDAY_11AM", "SUNDAY_7PM"),
        after_cutoff=("SUNDAY_11AM", "SUNDAY_7PM", "MONDAY_7PM"),
    ),
    6: RollingWindow(
        cutoff_hour=10,
        before_cutoff=("SUNDAY_11AM", "SUNDAY_7PM", "MONDAY_7PM"),
        after_cutoff=("SUNDAY_7PM", "MONDAY_7PM"),
    ),
}


def is_valid_slot_id(value: object) -> bool:
    """Check a value against the ``WEEKDAY_TIME`` grammar."""
    return isinstance(value, str) and SLOT_ID_PATTERN.match(value) is not None


def is_scheduled(slot_id: str) -> bool:
    return slot_id in SCHEDULED_SLOT_IDS


def parse_slot_id(slot_id: str) -> Optional[SlotDefinition]:
    """Parse a slot id; None when it does not match the grammar."""
    match = SLOT_ID_PATTERN.match(slot_id) if isinstance(slot_id, str) else None
    if not match:
        return None
    day_name, time_key = match.groups()
    hour, minute = SLOT_TIMES[time_key]
    return SlotDefinition(
        slot_id=slot_id,
        weekday=DAY_NAMES.index(day_name),
        time_key=time_key,
        hour=hour,
        minute=minute,
    )


def slots_on_weekday(weekday: int) -> list[SlotDefinition]:
    """Scheduled slots falling on a civil weekday, in time order."""
    defs = [parse_slot_id(slot_id) for slot_id in SCHEDULED_SLOT_IDS]
    return sorted(
        (d for d in defs if d is not None and d.weekday == weekday),
        key=lambda d: (d.hour, d.minute),
    )


def rolling_slot_ids(reference: datetime) -> list[str]:
    """Slot ids offered at ``reference`` per the weekday cutoff table."""
    local = to_civil(reference)
    window = ROLLING_WINDOWS[local.weekday()]
    if local.hour < window.cutoff_hour:
        return list(window.before_cutoff)
    return list(window.after_cutoff)


def format_time(hour: int, minute: int) -> str:
    """``19, 0`` -> ``7:00 PM``."""
    suffix = "AM" if hour < 12 else "PM"
    display_hour = hour % 12 or 12
    return f"{display_hour}:{minute:02d} {suffix}"


def format_slot_label(instant: datetime) -> str:
    """Display label for a slot occurrence, e.g. ``Saturday, 15 Feb at 7:00 PM``."""
    local = to_civil(instant)
    return f"{local.strftime('%A')}, {local.day} {local.strftime('%b')} at {format_time(local.hour, local.minute)}"


def slot_time_label(slot_id: str) -> str:
    """``FRIDAY_7PM`` -> ``7:00 PM``; unknown ids fall back to the raw time part."""
    definition = parse_slot_id(slot_id)
    if definition is None:
        return slot_id.rsplit("_", 1)[-1] if slot_id else ""
    return format_time(definition.hour, definition.minute)
