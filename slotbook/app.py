"""
Application wiring and the public operation boundary.

``SlotbookApp`` is what an HTTP layer or CLI calls. Every method validates
its input with the request structs, runs one operation under a fresh
request id, and returns an ``OperationResult``. Expected failures come
back as typed results with an error code. Anything unexpected is logged
with its traceback and returned as a generic failure.

Usage:
    app = build_app()
    result = app.send_otp("+91 98765 43210", "Asha", "Engineer")
    if not result.success:
        print(result.error, result.retry_after)
"""

from typing import Any, Callable, Iterable, Optional, Union

from slotbook.admin.slot_admin import SlotAdmin
from slotbook.clock import Clock, utc_now
from slotbook.config import AppConfig, require_database, require_secrets, settings
from slotbook.delivery.base import DeliveryGateway
from slotbook.delivery.msg91 import Msg91Gateway
from slotbook.errors import SlotbookError, UpstreamError, ValidationError
from slotbook.logging_context import get_request_logger, set_request_id
from slotbook.notifications.runner import SweepTrigger
from slotbook.notifications.scheduler import NotificationScheduler
from slotbook.otp.engine import OtpEngine
from slotbook.registration.service import RegistrationService
from slotbook.schemas.request_schema import (
    PhoneRequest,
    SendOtpRequest,
    Step1Request,
    Step2Request,
    Step3Request,
    Step4Request,
    VerifyOtpRequest,
    parse_request,
)
from slotbook.schemas.result_schema import OperationResult
from slotbook.schemas.submission_schema import NotificationKind, Submission
from slotbook.security import require_shared_secret
from slotbook.slots.resolver import SlotResolver
from slotbook.storage.memory import InMemoryStore
from slotbook.storage.sql import SqlStore
from slotbook.sync.outbox import SpreadsheetSink, SyncOutbox

logger = get_request_logger(__name__)

GENERIC_FAILURE = "Something went wrong."


def _summary(submission: Submission) -> dict[str, Any]:
    return {
        "current_step": submission.current_step,
        "application_status": submission.application_status.value,
        "is_registered": submission.is_registered,
        "selected_slot": submission.selected_slot,
        "slot_date": submission.slot_date.isoformat() if submission.slot_date else None,
    }


class SlotbookApp:
    """Owns the components and exposes every public operation."""

    def __init__(
        self,
        config: AppConfig,
        store: Union[InMemoryStore, SqlStore],
        gateway: DeliveryGateway,
        clock: Clock = utc_now,
    ) -> None:
        self.config = config
        self.store = store
        self.gateway = gateway
        self.clock = clock

        self.otp = OtpEngine(store, store, gateway, config.otp, clock)
        self.resolver = SlotResolver(store, store, clock)
        self.scheduler = NotificationScheduler(store, gateway, config.notifications, clock)
        self.outbox = SyncOutbox(store, clock)
        self.registration = RegistrationService(
            store, self.otp, self.resolver, self.scheduler, self.outbox, clock,
        )
        self.admin = SlotAdmin(store, store, store, clock)
        self.sweep_trigger = SweepTrigger(self.scheduler, config.notifications.cron_secret)

    # ------------------------------------------------------------------ #
    # OTP
    # ------------------------------------------------------------------ #

    def send_otp(self, phone: str, full_name: str, occupation: str) -> OperationResult:
        def run() -> OperationResult:
            request = parse_request(
                SendOtpRequest, phone=phone, full_name=full_name, occupation=occupation,
            )
            self.otp.issue(request.phone, request.full_name, request.occupation)
            return OperationResult.ok(
                "OTP sent successfully.", expires_in_minutes=self.config.otp.expiry_minutes,
            )
        return self._run("send_otp", run)

    def verify_otp(self, phone: str, otp: str) -> OperationResult:
        def run() -> OperationResult:
            request = parse_request(VerifyOtpRequest, phone=phone, otp=otp)
            self.otp.verify(request.phone, request.otp)
            return OperationResult.ok("Phone verified.", verified=True)
        return self._run("verify_otp", run)

    # ------------------------------------------------------------------ #
    # Registration steps
    # ------------------------------------------------------------------ #

    def save_step1(self, phone: str, full_name: str, occupation: str) -> OperationResult:
        def run() -> OperationResult:
            request = parse_request(
                Step1Request, phone=phone, full_name=full_name, occupation=occupation,
            )
            submission = self.registration.save_identity(request)
            return OperationResult.ok("Step 1 saved.", **_summary(submission))
        return self._run("save_step1", run)

    def save_step2(self, phone: str) -> OperationResult:
        def run() -> OperationResult:
            request = parse_request(Step2Request, phone=phone)
            submission = self.registration.confirm_otp(request.phone)
            return OperationResult.ok("Step 2 saved.", **_summary(submission))
        return self._run("save_step2", run)

    def save_step3(self, phone: str, selected_slot: str, slot_date: Any) -> OperationResult:
        def run() -> OperationResult:
            request = parse_request(
                Step3Request, phone=phone, selected_slot=selected_slot, slot_date=slot_date,
            )
            outcome = self.registration.book_slot(request)
            return OperationResult.ok(
                "Slot booked successfully.",
                **_summary(outcome.submission),
                confirmation=outcome.confirmation.model_dump(mode="json"),
                notifications={
                    kind.value: result.model_dump(mode="json")
                    for kind, result in outcome.notifications.items()
                },
            )
        return self._run("save_step3", run)

    def save_step4(self, phone: str, interest_level: Any, email: str) -> OperationResult:
        def run() -> OperationResult:
            request = parse_request(
                Step4Request, phone=phone, interest_level=interest_level, email=email,
            )
            submission = self.registration.submit_survey(request)
            return OperationResult.ok("Survey submitted.", **_summary(submission))
        return self._run("save_step4", run)

    def registration_status(self, phone: str) -> OperationResult:
        def run() -> OperationResult:
            request = parse_request(PhoneRequest, phone=phone)
            view = self.registration.registration_status(request.phone)
            return OperationResult.ok("", **view.model_dump(mode="json"))
        return self._run("registration_status", run)

    # ------------------------------------------------------------------ #
    # Slots
    # ------------------------------------------------------------------ #

    def get_slots_now(self) -> OperationResult:
        def run() -> OperationResult:
            slots = self.resolver.slots_for_now()
            return OperationResult.ok("", slots=[s.model_dump() for s in slots])
        return self._run("get_slots_now", run)

    def get_slots_for_date(self, date_str: str) -> OperationResult:
        def run() -> OperationResult:
            slots = self.resolver.slots_for_date(date_str)
            return OperationResult.ok("", date=date_str, slots=[s.model_dump() for s in slots])
        return self._run("get_slots_for_date", run)

    # ------------------------------------------------------------------ #
    # Admin (every call needs ADMIN_SECRET)
    # ------------------------------------------------------------------ #

    def _require_admin(self, admin_key: Optional[str]) -> None:
        require_shared_secret(admin_key, self.config.admin.secret, "ADMIN_SECRET")

    def list_slot_configs(self, admin_key: Optional[str]) -> OperationResult:
        def run() -> OperationResult:
            self._require_admin(admin_key)
            views = self.admin.list_slot_configs()
            return OperationResult.ok("", slots=[v.model_dump() for v in views])
        return self._run("list_slot_configs", run)

    def set_slot_enabled(
        self, admin_key: Optional[str], slot_id: str, enabled: bool,
    ) -> OperationResult:
        def run() -> OperationResult:
            self._require_admin(admin_key)
            config = self.admin.set_slot_enabled(slot_id, enabled)
            return OperationResult.ok("Slot updated.", slot_id=config.slot_id, enabled=config.enabled)
        return self._run("set_slot_enabled", run)

    def set_date_override(
        self, admin_key: Optional[str], date_str: str, slot_id: str, enabled: bool,
    ) -> OperationResult:
        def run() -> OperationResult:
            self._require_admin(admin_key)
            override = self.admin.set_date_override(date_str, slot_id, enabled)
            return OperationResult.ok("Override saved.", **override.model_dump(mode="json"))
        return self._run("set_date_override", run)

    def get_booking_counts(
        self, admin_key: Optional[str], start_date: str, end_date: str,
    ) -> OperationResult:
        def run() -> OperationResult:
            self._require_admin(admin_key)
            counts = self.admin.get_booking_counts(start_date, end_date)
            return OperationResult.ok("", **counts.model_dump(mode="json"))
        return self._run("get_booking_counts", run)

    def reset_notification_flags(
        self, admin_key: Optional[str], phone: str, kinds: Optional[Iterable[str]] = None,
    ) -> OperationResult:
        def run() -> OperationResult:
            self._require_admin(admin_key)
            request = parse_request(PhoneRequest, phone=phone)
            selected = None
            if kinds is not None:
                try:
                    selected = [NotificationKind(kind) for kind in kinds]
                except ValueError:
                    raise ValidationError("Unknown notification kind") from None
            reset = self.admin.reset_notification_flags(request.phone, selected)
            return OperationResult.ok("Flags reset.", kinds=[k.value for k in reset])
        return self._run("reset_notification_flags", run)

    # ------------------------------------------------------------------ #
    # Background work
    # ------------------------------------------------------------------ #

    def run_sweep(self, key: Optional[str]) -> OperationResult:
        def run() -> OperationResult:
            stats = self.sweep_trigger.run(key)
            return OperationResult.ok(
                "Sweep complete.", **{kind: s.model_dump() for kind, s in stats.items()},
            )
        return self._run("run_sweep", run)

    def flush_sync(self, sink: SpreadsheetSink) -> OperationResult:
        def run() -> OperationResult:
            return OperationResult.ok("", **self.outbox.flush(sink))
        return self._run("flush_sync", run)

    def close(self) -> None:
        for resource in (self.gateway, self.store):
            close = getattr(resource, "close", None)
            if callable(close):
                close()

    def _run(self, name: str, operation: Callable[[], OperationResult]) -> OperationResult:
        set_request_id()
        try:
            return operation()
        except UpstreamError as exc:
            logger.warning("%s upstream failure: %s", name, exc.message)
            return OperationResult.failure(exc)
        except SlotbookError as exc:
            logger.info("%s rejected (%s): %s", name, exc.code, exc.message)
            return OperationResult.failure(exc)
        except Exception:
            logger.exception("%s failed unexpectedly", name)
            return OperationResult(success=False, message=GENERIC_FAILURE, error=UpstreamError.code)


def build_app(
    config: Optional[AppConfig] = None,
    gateway: Optional[DeliveryGateway] = None,
    store: Optional[Union[InMemoryStore, SqlStore]] = None,
    clock: Clock = utc_now,
) -> SlotbookApp:
    """Wire the default components; any of them can be swapped for tests or demos.

    Without an explicit store, ``DATABASE_URL`` selects ``SqlStore`` and an
    unset URL falls back to a process-local ``InMemoryStore``.
    """
    config = config or settings
    if gateway is None:
        gateway = Msg91Gateway(config.gateway, otp_expiry_minutes=config.otp.expiry_minutes)
    if store is None:
        if config.storage.database_url:
            store = SqlStore.from_url(
                config.storage.database_url,
                pool_size=config.storage.pool_size,
                pool_recycle=config.storage.pool_recycle_seconds,
            )
        else:
            store = InMemoryStore()
    return SlotbookApp(config, store, gateway, clock)


def build_live_app(config: Optional[AppConfig] = None) -> SlotbookApp:
    """App for the sweep and worker processes: MSG91 plus the shared database.

    Raises:
        ConfigurationError: OTP credentials or DATABASE_URL missing.
    """
    config = config or settings
    require_secrets(config)
    require_database(config)
    return build_app(config)
