"""Shared test fixtures and helpers."""

from datetime import date, datetime, timedelta, timezone
from typing import Optional

import pytest

from slotbook.app import SlotbookApp
from slotbook.clock import civil_instant
from slotbook.config import AdminConfig, AppConfig, GatewayConfig, NotificationConfig, OtpConfig
from slotbook.delivery.base import DeliveryResult, MessageTemplate, Recipient
from slotbook.notifications.scheduler import NotificationScheduler
from slotbook.otp.engine import OtpEngine
from slotbook.schemas.submission_schema import ApplicationStatus, Submission
from slotbook.slots.resolver import SlotResolver
from slotbook.storage.memory import InMemoryStore

TEST_SECRET = "test-otp-secret"
CRON_KEY = "cron-test-key"
ADMIN_KEY = "admin-test-key"
MEETING_LINK = "https://meet.example.com/demo"
PHONE = "9876543210"

# Thursday 22 Oct 2026, 19:00 in the civil timezone (13:30 UTC).
THURSDAY_7PM = datetime(2026, 10, 22, 13, 30, tzinfo=timezone.utc)
SATURDAY = date(2026, 10, 24)


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)

    def set(self, instant: datetime) -> None:
        self.now = instant


class RecordingGateway:
    """Records every send; can be switched to fail."""

    def __init__(self) -> None:
        self.otps: list[tuple[str, str]] = []
        self.templates: list[tuple[MessageTemplate, list[Recipient]]] = []
        self.fail_otp = False
        self.fail_templates = False

    def send_otp(self, phone: str, code: str) -> DeliveryResult:
        self.otps.append((phone, code))
        if self.fail_otp:
            return DeliveryResult(success=False, failed_count=1, error="gateway down")
        return DeliveryResult(success=True, sent_count=1)

    def send_template(
        self, template: MessageTemplate, recipients: list[Recipient],
    ) -> DeliveryResult:
        self.templates.append((template, list(recipients)))
        if self.fail_templates:
            return DeliveryResult(success=False, failed_count=len(recipients), error="gateway down")
        return DeliveryResult(success=True, sent_count=len(recipients))

    def last_code(self, phone: str = PHONE) -> str:
        return [code for p, code in self.otps if p == phone][-1]

    def sent(self, template: MessageTemplate) -> list[Recipient]:
        """Every recipient ever passed for ``template``."""
        return [r for t, recipients in self.templates if t == template for r in recipients]

    def calls(self, template: MessageTemplate) -> int:
        return sum(1 for t, _ in self.templates if t == template)


@pytest.fixture
def clock():
    return FrozenClock(THURSDAY_7PM)


@pytest.fixture
def gateway():
    return RecordingGateway()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def otp_config():
    return OtpConfig(secret=TEST_SECRET)


@pytest.fixture
def notification_config():
    return NotificationConfig(
        meeting_link=MEETING_LINK, cron_secret=CRON_KEY, claim_lease_seconds=120,
    )


@pytest.fixture
def app_config(otp_config, notification_config):
    return AppConfig(
        otp=otp_config,
        gateway=GatewayConfig(auth_key="", otp_template_id=""),
        notifications=notification_config,
        admin=AdminConfig(secret=ADMIN_KEY),
    )


@pytest.fixture
def otp_engine(store, gateway, otp_config, clock):
    return OtpEngine(store, store, gateway, otp_config, clock)


@pytest.fixture
def resolver(store, clock):
    return SlotResolver(store, store, clock)


@pytest.fixture
def scheduler(store, gateway, notification_config, clock):
    return NotificationScheduler(store, gateway, notification_config, clock)


@pytest.fixture
def app(app_config, store, gateway, clock):
    return SlotbookApp(app_config, store, gateway, clock)


def slot_time(day: date, hour: int = 19, minute: int = 0) -> datetime:
    """UTC instant of a civil wall-clock time."""
    return civil_instant(day, hour, minute)


def iso(instant: datetime) -> str:
    return instant.isoformat().replace("+00:00", "Z")


def verify_phone(app: SlotbookApp, gateway: RecordingGateway, phone: str = PHONE) -> None:
    """Issue and verify an OTP through the public boundary."""
    sent = app.send_otp(phone, "Asha", "Engineer")
    assert sent.success, sent.message
    verified = app.verify_otp(phone, gateway.last_code(phone))
    assert verified.success, verified.message


def register_through_step2(
    app: SlotbookApp, gateway: RecordingGateway, phone: str = PHONE,
) -> None:
    assert app.save_step1(phone, "Asha", "Engineer").success
    verify_phone(app, gateway, phone)
    assert app.save_step2(phone).success


def make_booked(
    store: InMemoryStore,
    phone: str,
    slot_id: str,
    slot_date: datetime,
    full_name: str = "Asha",
    registered_at: Optional[datetime] = None,
) -> Submission:
    """Insert a submission that is already registered for a slot."""
    return store.insert(Submission(
        phone=phone,
        full_name=full_name,
        occupation="Engineer",
        current_step=3,
        application_status=ApplicationStatus.REGISTERED,
        selected_slot=slot_id,
        slot_date=slot_date,
        is_registered=True,
        registered_at=registered_at or slot_date - timedelta(days=1),
    ))
