"""Tests for OTP codes, issuance limits and verification."""

import threading
from datetime import timedelta

import pytest

from slotbook.config import OtpConfig
from slotbook.errors import (
    ConfigurationError,
    InvalidOrExpiredOtpError,
    RateLimitedError,
    TooManyAttemptsError,
    UpstreamError,
)
from slotbook.otp.codes import generate_code, hash_code, verify_code
from slotbook.otp.engine import OtpEngine
from slotbook.schemas.otp_schema import OtpIssue, OtpRecord
from slotbook.storage.memory import InMemoryStore

from tests.conftest import PHONE, TEST_SECRET, RecordingGateway


def issue(engine: OtpEngine, phone: str = PHONE) -> None:
    engine.issue(phone, "Asha", "Engineer")


class TestCodes:
    def test_code_has_requested_length(self):
        for length in (4, 6, 8):
            code = generate_code(length)
            assert len(code) == length
            assert code.isdigit()

    def test_code_never_starts_with_zero(self):
        assert all(generate_code()[0] != "0" for _ in range(200))

    def test_hash_is_keyed(self):
        assert hash_code("123456", "a") != hash_code("123456", "b")
        assert hash_code("123456", "a") == hash_code("123456", "a")

    def test_hash_requires_secret(self):
        with pytest.raises(ConfigurationError):
            hash_code("123456", "")

    def test_verify_matching_code(self):
        stored = hash_code("123456", TEST_SECRET)
        assert verify_code("123456", stored, TEST_SECRET)

    def test_verify_wrong_code(self):
        stored = hash_code("123456", TEST_SECRET)
        assert not verify_code("654321", stored, TEST_SECRET)

    def test_verify_malformed_hash_fails_closed(self):
        assert not verify_code("123456", "not-hex", TEST_SECRET)
        assert not verify_code("123456", "abcd", TEST_SECRET)

    def test_verify_without_secret_fails_closed(self):
        stored = hash_code("123456", TEST_SECRET)
        assert not verify_code("123456", stored, "")


class TestIssue:
    def test_sends_code_through_gateway(self, otp_engine, gateway):
        issue(otp_engine)
        assert len(gateway.otps) == 1
        phone, code = gateway.otps[0]
        assert phone == PHONE
        assert len(code) == 6

    def test_stores_only_the_hash(self, otp_engine, gateway, store):
        issue(otp_engine)
        record = store.latest(PHONE)
        code = gateway.last_code()
        assert record is not None
        assert record.otp_hash != code
        assert record.otp_hash == hash_code(code, TEST_SECRET)

    def test_record_expires_after_five_minutes(self, otp_engine, store, clock):
        issue(otp_engine)
        record = store.latest(PHONE)
        assert (record.expires_at - clock()).total_seconds() == 300

    def test_gateway_failure_leaves_no_record(self, otp_engine, gateway, store):
        gateway.fail_otp = True
        with pytest.raises(UpstreamError):
            issue(otp_engine)
        assert store.latest(PHONE) is None

    def test_gateway_failure_does_not_start_cooldown(self, otp_engine, gateway):
        gateway.fail_otp = True
        with pytest.raises(UpstreamError):
            issue(otp_engine)
        assert otp_engine.can_send(PHONE).allowed

    def test_missing_secret_refuses_before_sending(self, store, gateway, clock):
        engine = OtpEngine(store, store, gateway, OtpConfig(secret=""), clock)
        with pytest.raises(ConfigurationError):
            issue(engine)
        assert gateway.otps == []

    def test_new_code_replaces_previous(self, otp_engine, gateway, clock):
        issue(otp_engine)
        first = gateway.last_code()
        clock.advance(seconds=61)
        issue(otp_engine)
        second = gateway.last_code()
        if first != second:
            with pytest.raises(InvalidOrExpiredOtpError):
                otp_engine.verify(PHONE, first)
        otp_engine.verify(PHONE, second)
        assert otp_engine.is_verified(PHONE)


class TestRateLimits:
    def test_second_issue_within_cooldown_rejected(self, otp_engine, clock):
        issue(otp_engine)
        clock.advance(seconds=20)
        with pytest.raises(RateLimitedError) as exc_info:
            issue(otp_engine)
        assert exc_info.value.retry_after == 40

    def test_issue_allowed_after_cooldown(self, otp_engine, gateway, clock):
        issue(otp_engine)
        clock.advance(seconds=60)
        issue(otp_engine)
        assert len(gateway.otps) == 2

    def test_fourth_issue_within_window_rejected(self, otp_engine, clock):
        for _ in range(3):
            issue(otp_engine)
            clock.advance(seconds=61)
        with pytest.raises(RateLimitedError) as exc_info:
            issue(otp_engine)
        # The oldest issuance was 183s ago; it ages out at 900s.
        assert exc_info.value.retry_after == 900 - 183

    def test_window_frees_up_after_fifteen_minutes(self, otp_engine, gateway, clock):
        for _ in range(3):
            issue(otp_engine)
            clock.advance(seconds=61)
        clock.advance(minutes=15)
        issue(otp_engine)
        assert len(gateway.otps) == 4

    def test_limits_are_per_phone(self, otp_engine, gateway):
        issue(otp_engine, "9876543210")
        issue(otp_engine, "9123456789")
        assert len(gateway.otps) == 2

    def test_can_send_reports_retry_after(self, otp_engine, clock):
        issue(otp_engine)
        clock.advance(seconds=59)
        decision = otp_engine.can_send(PHONE)
        assert not decision.allowed
        assert decision.retry_after == 1


class TestVerify:
    def test_correct_code_verifies(self, otp_engine, gateway):
        issue(otp_engine)
        otp_engine.verify(PHONE, gateway.last_code())
        assert otp_engine.is_verified(PHONE)

    def test_success_consumes_record(self, otp_engine, gateway, store):
        issue(otp_engine)
        code = gateway.last_code()
        otp_engine.verify(PHONE, code)
        assert store.latest(PHONE) is None
        with pytest.raises(InvalidOrExpiredOtpError):
            otp_engine.verify(PHONE, code)

    def test_no_record(self, otp_engine):
        with pytest.raises(InvalidOrExpiredOtpError):
            otp_engine.verify(PHONE, "123456")

    def test_expired_record(self, otp_engine, gateway, store, clock):
        issue(otp_engine)
        code = gateway.last_code()
        clock.advance(minutes=5, seconds=1)
        with pytest.raises(InvalidOrExpiredOtpError):
            otp_engine.verify(PHONE, code)
        assert not otp_engine.is_verified(PHONE)

    def test_wrong_code_counts_down(self, otp_engine, gateway):
        issue(otp_engine)
        code = gateway.last_code()
        wrong = "1" * 6 if code != "1" * 6 else "2" * 6
        left = []
        for _ in range(3):
            with pytest.raises(InvalidOrExpiredOtpError) as exc_info:
                otp_engine.verify(PHONE, wrong)
            left.append(exc_info.value.attempts_left)
        assert left == [2, 1, 0]

    def test_correct_code_rejected_after_three_failures(self, otp_engine, gateway):
        issue(otp_engine)
        code = gateway.last_code()
        wrong = "1" * 6 if code != "1" * 6 else "2" * 6
        for _ in range(3):
            with pytest.raises(InvalidOrExpiredOtpError):
                otp_engine.verify(PHONE, wrong)
        with pytest.raises(InvalidOrExpiredOtpError):
            otp_engine.verify(PHONE, code)
        assert not otp_engine.is_verified(PHONE)

    def test_exhausted_record_raises_too_many_attempts(self, otp_engine, store, clock):
        store.replace(OtpRecord(
            phone=PHONE,
            otp_hash=hash_code("123456", TEST_SECRET),
            expires_at=clock.now.replace(year=2030),
            attempts=3,
        ))
        with pytest.raises(TooManyAttemptsError):
            otp_engine.verify(PHONE, "123456")
        assert store.latest(PHONE) is None

    def test_grace_window_expires(self, otp_engine, gateway, clock):
        issue(otp_engine)
        otp_engine.verify(PHONE, gateway.last_code())
        clock.advance(minutes=14)
        assert otp_engine.is_verified(PHONE)
        clock.advance(minutes=1)
        assert not otp_engine.is_verified(PHONE)

    def test_clear_verification(self, otp_engine, gateway):
        issue(otp_engine)
        otp_engine.verify(PHONE, gateway.last_code())
        otp_engine.clear_verification(PHONE)
        assert not otp_engine.is_verified(PHONE)


class StaleReadStore(InMemoryStore):
    """Store whose issuance reads lag behind its writes."""

    def issues_since(self, phone, since):
        return []


class HoldingGateway(RecordingGateway):
    """Gateway that holds the first OTP send until released."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def send_otp(self, phone, code):
        if not self.entered.is_set():
            self.entered.set()
            self.release.wait(5)
        return super().send_otp(phone, code)


class TestConcurrentIssue:
    def test_reservation_rejects_when_check_was_stale(self, gateway, otp_config, clock):
        stale = StaleReadStore()
        engine = OtpEngine(stale, stale, gateway, otp_config, clock)
        issue(engine)
        clock.advance(seconds=10)
        with pytest.raises(RateLimitedError):
            issue(engine)
        assert len(gateway.otps) == 1

    def test_send_in_flight_blocks_second_request(self, store, otp_config, clock):
        gateway = HoldingGateway()
        engine = OtpEngine(store, store, gateway, otp_config, clock)
        first = threading.Thread(target=issue, args=(engine,))
        first.start()
        assert gateway.entered.wait(5)

        with pytest.raises(RateLimitedError):
            issue(engine)
        gateway.release.set()
        first.join()
        assert len(gateway.otps) == 1

    def test_gateway_exception_gives_reservation_back(self, store, gateway, otp_config, clock):
        def explode(phone, code):
            raise ConnectionError("socket closed")

        gateway.send_otp = explode
        engine = OtpEngine(store, store, gateway, otp_config, clock)
        with pytest.raises(ConnectionError):
            issue(engine)
        assert store.issues_since(PHONE, clock() - timedelta(minutes=15)) == []


class TestReserveIssue:
    def test_cooldown_and_limit(self, store, clock):
        window_start = clock() - timedelta(minutes=15)
        cooldown = timedelta(seconds=60)

        def reserve(offset: int) -> bool:
            issued = OtpIssue(phone=PHONE, issued_at=clock() + timedelta(seconds=offset))
            return store.reserve_issue(issued, window_start, cooldown, limit=3)

        assert reserve(0)
        assert not reserve(30)
        assert reserve(60)
        assert reserve(120)
        assert not reserve(180)

    def test_cancel_frees_the_slot(self, store, clock):
        issued = OtpIssue(phone=PHONE, issued_at=clock())
        cooldown = timedelta(seconds=60)
        assert store.reserve_issue(issued, clock() - timedelta(minutes=15), cooldown, limit=3)
        store.cancel_issue(issued)
        assert store.reserve_issue(issued, clock() - timedelta(minutes=15), cooldown, limit=3)
