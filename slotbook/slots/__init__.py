from slotbook.slots.catalog import (
    SCHEDULED_SLOT_IDS,
    SlotDefinition,
    is_valid_slot_id,
    parse_slot_id,
)
from slotbook.slots.resolver import SlotResolver

__all__ = [
    "SCHEDULED_SLOT_IDS",
    "SlotDefinition",
    "SlotResolver",
    "is_valid_slot_id",
    "parse_slot_id",
]
