"""
OTP issuance and verification.

State lives in the repositories (OTP record, issuance log, verified-phone
marker), so limits hold across restarts and across instances. Plaintext
codes exist only in memory between generation and the gateway call.

Usage:
    engine = OtpEngine(store, store, gateway, settings.otp)
    engine.issue("9876543210", "Asha", "Engineer")
    engine.verify("9876543210", "123456")
    assert engine.is_verified("9876543210")
"""

import math
from datetime import timedelta

from slotbook.clock import Clock, utc_now
from slotbook.config import OtpConfig
from slotbook.delivery.base import DeliveryGateway
from slotbook.errors import (
    InvalidOrExpiredOtpError,
    RateLimitedError,
    TooManyAttemptsError,
    UpstreamError,
)
from slotbook.logging_context import get_request_logger
from slotbook.otp.codes import generate_code, hash_code, verify_code
from slotbook.schemas.otp_schema import OtpIssue, OtpRecord, SendDecision, VerifiedPhone
from slotbook.storage.base import OtpRepository, VerifiedPhoneRepository
from slotbook.utils import mask_phone

logger = get_request_logger(__name__)


class OtpEngine:
    """Issues, rate-limits and verifies one-time codes per phone."""

    def __init__(
        self,
        otps: OtpRepository,
        verified: VerifiedPhoneRepository,
        gateway: DeliveryGateway,
        config: OtpConfig,
        clock: Clock = utc_now,
    ) -> None:
        self._otps = otps
        self._verified = verified
        self._gateway = gateway
        self._config = config
        self._clock = clock

    @property
    def _window(self) -> timedelta:
        return timedelta(minutes=self._config.rate_window_minutes)

    def can_send(self, phone: str) -> SendDecision:
        """Check the resend cooldown and the rolling-window issuance limit."""
        now = self._clock()
        self._otps.purge_expired(now, self._window)
        issued = self._otps.issues_since(phone, now - self._window)

        cooldown = timedelta(seconds=self._config.resend_cooldown_seconds)
        if issued and issued[-1] + cooldown > now:
            wait = math.ceil((issued[-1] + cooldown - now).total_seconds())
            return SendDecision(
                allowed=False,
                retry_after=max(wait, 1),
                message="Please wait before requesting another OTP.",
            )

        if len(issued) >= self._config.max_per_window:
            wait = math.ceil((issued[0] + self._window - now).total_seconds())
            return SendDecision(
                allowed=False,
                retry_after=max(wait, 1),
                message="Too many OTP requests. Try again later.",
            )

        return SendDecision(allowed=True)

    def issue(self, phone: str, name: str, occupation: str) -> None:
        """Generate, deliver and store a new code for ``phone``.

        The issuance slot is reserved atomically before the gateway call,
        so two concurrent requests for one phone cannot both send. A failed
        send gives the reservation back, and the record is written only
        after the gateway confirms delivery.

        Raises:
            RateLimitedError: cooldown or window limit hit.
            ConfigurationError: OTP_SECRET missing.
            UpstreamError: the gateway reported failure.
        """
        decision = self.can_send(phone)
        if not decision.allowed:
            logger.info("OTP request throttled for %s", mask_phone(phone))
            raise RateLimitedError(decision.message, retry_after=decision.retry_after)

        code = generate_code(self._config.length)
        otp_hash = hash_code(code, self._config.secret)

        now = self._clock()
        reservation = OtpIssue(phone=phone, issued_at=now)
        reserved = self._otps.reserve_issue(
            reservation,
            since=now - self._window,
            cooldown=timedelta(seconds=self._config.resend_cooldown_seconds),
            limit=self._config.max_per_window,
        )
        if not reserved:
            logger.info("OTP request for %s lost the issuance race", mask_phone(phone))
            decision = self.can_send(phone)
            raise RateLimitedError(
                decision.message or "Please wait before requesting another OTP.",
                retry_after=decision.retry_after,
            )

        try:
            result = self._gateway.send_otp(phone, code)
        except Exception:
            self._otps.cancel_issue(reservation)
            raise
        if not result.success:
            self._otps.cancel_issue(reservation)
            logger.warning("OTP delivery failed for %s: %s", mask_phone(phone), result.error)
            raise UpstreamError("Could not send OTP. Please try again.")

        self._otps.replace(OtpRecord(
            phone=phone,
            otp_hash=otp_hash,
            expires_at=now + timedelta(minutes=self._config.expiry_minutes),
            attempts=0,
            created_at=now,
        ))
        logger.info(
            "OTP issued to %s (name_len=%d, occupation_len=%d)",
            mask_phone(phone), len(name), len(occupation),
        )

    def verify(self, phone: str, candidate: str) -> None:
        """Check a candidate code; on success start the verified grace window.

        Raises:
            InvalidOrExpiredOtpError: no record, expired record, or wrong code.
            TooManyAttemptsError: the record already used up its attempts.
        """
        now = self._clock()
        record = self._otps.latest(phone)
        if record is None:
            raise InvalidOrExpiredOtpError()

        if now > record.expires_at:
            self._otps.delete(phone)
            raise InvalidOrExpiredOtpError()

        if record.attempts >= self._config.max_attempts:
            self._otps.delete(phone)
            raise TooManyAttemptsError("Too many attempts. Please request a new OTP.")

        if not verify_code(candidate, record.otp_hash, self._config.secret):
            attempts = self._otps.increment_attempts(phone)
            if attempts is None:
                attempts = self._config.max_attempts
            if attempts >= self._config.max_attempts:
                self._otps.delete(phone)
            logger.info("OTP mismatch for %s (attempt %d)", mask_phone(phone), attempts)
            raise InvalidOrExpiredOtpError(
                "Invalid OTP.",
                attempts_left=max(self._config.max_attempts - attempts, 0),
            )

        self._otps.delete(phone)
        self._verified.mark_verified(VerifiedPhone(
            phone=phone,
            verified_at=now,
            expires_at=now + timedelta(minutes=self._config.verified_grace_minutes),
        ))
        logger.info("OTP verified for %s", mask_phone(phone))

    def is_verified(self, phone: str) -> bool:
        """True while the phone is inside its post-verification grace window."""
        return self._verified.is_verified(phone, self._clock())

    def clear_verification(self, phone: str) -> None:
        self._verified.clear_verified(phone)
