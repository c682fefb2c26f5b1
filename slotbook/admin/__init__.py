from slotbook.admin.slot_admin import SlotAdmin

__all__ = ["SlotAdmin"]
