"""Slot configuration documents and availability views."""

from datetime import date, datetime

from pydantic import BaseModel, Field

from slotbook.clock import utc_now


class SlotConfig(BaseModel):
    """Global on/off switch for every future occurrence of a weekly slot."""
    slot_id: str
    enabled: bool = True
    updated_at: datetime = Field(default_factory=utc_now)


class SlotDateOverride(BaseModel):
    """On/off switch for one slot on one civil calendar date."""
    date: date
    slot_id: str
    enabled: bool
    updated_at: datetime = Field(default_factory=utc_now)


class AvailableSlot(BaseModel):
    """A concrete bookable occurrence offered to a registrant."""
    slot_id: str
    label: str
    iso_timestamp: str
    enabled: bool = True


class SlotConfigView(BaseModel):
    """Admin listing row."""
    slot_id: str
    enabled: bool
    booked_count: int = 0


class BookingCounts(BaseModel):
    """Bookings in a civil date range, grouped two ways."""
    start_date: date
    end_date: date
    total: int = 0
    by_slot: dict[str, int] = Field(default_factory=dict)
    by_date: dict[str, int] = Field(default_factory=dict)
