"""One-time code generation and keyed hashing (HMAC-SHA256)."""

import hashlib
import hmac
import secrets

from slotbook.errors import ConfigurationError


def generate_code(length: int = 6) -> str:
    """Random numeric code with no leading zero, so it is always ``length`` digits."""
    first = str(secrets.randbelow(9) + 1)
    rest = "".join(str(secrets.randbelow(10)) for _ in range(length - 1))
    return first + rest


def hash_code(code: str, secret: str) -> str:
    """Hex HMAC-SHA256 of a code.

    Raises:
        ConfigurationError: if the secret is empty.
    """
    if not secret:
        raise ConfigurationError("OTP_SECRET is not set")
    return hmac.new(secret.encode(), code.encode(), hashlib.sha256).hexdigest()


def verify_code(candidate: str, stored_hash: str, secret: str) -> bool:
    """Constant-time check of a candidate against a stored hash. Never raises."""
    if not candidate or not stored_hash or not secret:
        return False
    try:
        expected = bytes.fromhex(hash_code(candidate, secret))
        actual = bytes.fromhex(stored_hash)
    except (ValueError, TypeError, ConfigurationError):
        return False
    return hmac.compare_digest(expected, actual)
