"""
Time-triggered booking notifications.

Two paths deliver the same three reminders (4h, 1h and 30m before the
slot):

- the fast path runs inside the booking call for reminders whose
  threshold has already been reached;
- the sweep runs periodically and batches every due reminder of a kind
  into one gateway call.

Both paths gate on the persisted flag. A flag is claimed atomically
before sending, marked sent only after a confirmed send, and released on
failure so the next sweep retries it. Overlapping sweeps and a
concurrent fast path therefore never send the same reminder twice.
"""

import logging
import threading
from datetime import timedelta

from slotbook.clock import Clock, hours_until, utc_now
from slotbook.config import NotificationConfig
from slotbook.delivery.base import DeliveryGateway, DeliveryResult, MessageTemplate, Recipient
from slotbook.notifications.templates import KIND_TEMPLATES, build_recipient
from slotbook.schemas.result_schema import DispatchOutcome, DispatchStatus, SweepStats
from slotbook.schemas.submission_schema import NotificationKind, Submission
from slotbook.storage.base import SubmissionRepository
from slotbook.utils import mask_phone

logger = logging.getLogger(__name__)

SWEEP_SKIPPED = "sweep already running"


class NotificationScheduler:
    """Sends booking confirmations and reminder notifications exactly once."""

    def __init__(
        self,
        submissions: SubmissionRepository,
        gateway: DeliveryGateway,
        config: NotificationConfig,
        clock: Clock = utc_now,
    ) -> None:
        self._submissions = submissions
        self._gateway = gateway
        self._config = config
        self._clock = clock
        self._lease = timedelta(seconds=config.claim_lease_seconds)
        self._sweep_lock = threading.Lock()

    def send_confirmation(self, submission: Submission) -> DispatchOutcome:
        """Booking confirmation SMS. Not flagged; failure is reported, not raised."""
        recipient = build_recipient(submission, None, self._config.meeting_link)
        result = self._deliver(MessageTemplate.SLOT_CONFIRMATION, [recipient])
        if not result.success:
            logger.warning(
                "Slot confirmation failed for %s: %s", mask_phone(submission.phone), result.error,
            )
            return DispatchOutcome(status=DispatchStatus.FAILED, error=result.error)
        return DispatchOutcome(status=DispatchStatus.SENT)

    def dispatch_at_booking(
        self, submission: Submission,
    ) -> dict[NotificationKind, DispatchOutcome]:
        """Fast path: send every reminder whose threshold the slot is already inside."""
        now = self._clock()
        outcomes: dict[NotificationKind, DispatchOutcome] = {}
        if submission.slot_date is None:
            return {kind: DispatchOutcome() for kind in NotificationKind}

        hours = hours_until(submission.slot_date, now)
        for kind in NotificationKind:
            if not 0 < hours <= kind.threshold_hours:
                outcomes[kind] = DispatchOutcome(status=DispatchStatus.NOT_APPLICABLE)
                continue
            outcomes[kind] = self._send_one(submission, kind)

        sent = [kind.value for kind, outcome in outcomes.items() if outcome.sent]
        if sent:
            logger.info(
                "Immediate reminders for %s (%.2fh out): %s",
                mask_phone(submission.phone), hours, ", ".join(sent),
            )
        return outcomes

    def sweep(self) -> dict[NotificationKind, SweepStats]:
        """Periodic path: batch-send every due reminder, one gateway call per kind.

        Returns immediately with ``error`` set on every kind when another
        sweep in this process is still running.
        """
        if not self._sweep_lock.acquire(blocking=False):
            logger.info("Notification sweep already in progress, skipping")
            return {kind: SweepStats(error=SWEEP_SKIPPED) for kind in NotificationKind}
        try:
            results = {kind: self._sweep_kind(kind) for kind in NotificationKind}
        finally:
            self._sweep_lock.release()

        logger.info(
            "Sweep finished: %s",
            ", ".join(f"{k.value}={s.sent}/{s.found}" for k, s in results.items()),
        )
        return results

    def _sweep_kind(self, kind: NotificationKind) -> SweepStats:
        now = self._clock()
        window_end = now + timedelta(hours=kind.threshold_hours)
        due = self._submissions.find_due(kind, now, window_end, now, self._lease)
        stats = SweepStats(found=len(due))
        if not due:
            return stats

        claimed = [doc for doc in due if self._submissions.claim_flag(doc.phone, kind, now, self._lease)]
        if not claimed:
            return stats

        recipients = [build_recipient(doc, kind, self._config.meeting_link) for doc in claimed]
        phones = [doc.phone for doc in claimed]
        result = self._deliver(KIND_TEMPLATES[kind], recipients)

        if result.success:
            stats.sent = self._submissions.mark_flags_sent(phones, kind, self._clock())
        else:
            # Whole batch failed; release so the next sweep retries.
            self._submissions.release_flags(phones, kind)
            stats.failed = len(claimed)
            stats.error = result.error
            logger.warning("%s batch of %d failed: %s", kind.value, len(claimed), result.error)
        return stats

    def _send_one(self, submission: Submission, kind: NotificationKind) -> DispatchOutcome:
        phone = submission.phone
        if not self._submissions.claim_flag(phone, kind, self._clock(), self._lease):
            return DispatchOutcome(status=DispatchStatus.ALREADY_SENT)

        recipient = build_recipient(submission, kind, self._config.meeting_link)
        result = self._deliver(KIND_TEMPLATES[kind], [recipient])
        if result.success:
            self._submissions.mark_flags_sent([phone], kind, self._clock())
            return DispatchOutcome(status=DispatchStatus.SENT)

        self._submissions.release_flags([phone], kind)
        logger.warning("Immediate %s failed for %s: %s", kind.value, mask_phone(phone), result.error)
        return DispatchOutcome(status=DispatchStatus.FAILED, error=result.error)

    def _deliver(self, template: MessageTemplate, recipients: list[Recipient]) -> DeliveryResult:
        try:
            return self._gateway.send_template(template, recipients)
        except Exception as exc:
            logger.exception("Gateway raised while sending %s", template.value)
            return DeliveryResult(
                success=False, failed_count=len(recipients), error=exc.__class__.__name__,
            )
