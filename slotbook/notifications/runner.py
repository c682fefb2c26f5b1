"""
Sweep trigger.

``run`` is what an external cron caller hits (shared-secret protected).
The scheduled alternative is the arq cron job in ``slotbook.worker``.
"""

import logging
from typing import Optional

from slotbook.notifications.scheduler import NotificationScheduler
from slotbook.schemas.result_schema import SweepStats
from slotbook.security import require_shared_secret

logger = logging.getLogger(__name__)


class SweepTrigger:
    """Authenticated entry point to the notification sweep."""

    def __init__(self, scheduler: NotificationScheduler, cron_secret: str) -> None:
        self._scheduler = scheduler
        self._cron_secret = cron_secret

    def run(self, key: Optional[str]) -> dict[str, SweepStats]:
        """
        Run one sweep if ``key`` matches ``CRON_SECRET``.

        Returns:
            ``{kind: SweepStats}`` keyed by the notification kind value.

        Raises:
            ConfigurationError: CRON_SECRET is not configured.
            UnauthorizedError: the key is missing or wrong.
        """
        require_shared_secret(key, self._cron_secret, "CRON_SECRET")
        logger.info("Sweep triggered by external caller")
        return {kind.value: stats for kind, stats in self._scheduler.sweep().items()}
