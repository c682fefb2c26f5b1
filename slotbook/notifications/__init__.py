from slotbook.notifications.runner import SweepTrigger
from slotbook.notifications.scheduler import NotificationScheduler

__all__ = ["NotificationScheduler", "SweepTrigger"]
