"""
Error taxonomy shared by every component.

Internals raise these; the public operation boundary in ``slotbook.app``
turns them into typed failure results. Each error carries a stable
``code`` for clients and a user-facing message that never contains
secrets or full phone numbers.
"""

from typing import Optional


class SlotbookError(Exception):
    """Base class for all expected, typed failures."""

    code = "error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class ValidationError(SlotbookError):
    """Malformed input the caller can fix."""

    code = "validation"


class NotFoundError(SlotbookError):
    """Referenced submission, slot or override does not exist."""

    code = "not_found"


class ConflictError(SlotbookError):
    """Duplicate phone, already registered, or slot no longer open."""

    code = "conflict"


class RateLimitedError(SlotbookError):
    """OTP cooldown or rolling-window limit exceeded."""

    code = "rate_limited"

    def __init__(self, message: str = "", retry_after: Optional[int] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class UnauthorizedError(SlotbookError):
    """Phone not verified, or a missing/invalid shared secret."""

    code = "unauthorized"


class InvalidOrExpiredOtpError(UnauthorizedError):
    """No usable OTP record, an expired one, or a wrong code."""

    code = "otp_invalid"

    def __init__(self, message: str = "Invalid or expired OTP.",
                 attempts_left: Optional[int] = None) -> None:
        super().__init__(message)
        self.attempts_left = attempts_left


class TooManyAttemptsError(UnauthorizedError):
    """The OTP record was burned by repeated wrong codes."""

    code = "otp_attempts_exceeded"


class UpstreamError(SlotbookError):
    """Delivery gateway or persistence failure; not user-fixable."""

    code = "upstream"


class ConfigurationError(SlotbookError):
    """A required secret or credential is missing."""

    code = "configuration"
