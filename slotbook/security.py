"""Shared-secret checks for the operator-facing entry points (sweep trigger, admin)."""

import hmac
import logging
from typing import Optional

from slotbook.errors import ConfigurationError, UnauthorizedError

logger = logging.getLogger(__name__)


def constant_time_compare(a: str, b: str) -> bool:
    """Compare two strings without leaking where they differ."""
    if not a or not b:
        return False
    return hmac.compare_digest(a.encode(), b.encode())


def require_shared_secret(key: Optional[str], secret: str, env_name: str) -> None:
    """
    Accept ``key`` only if it matches the configured ``secret``.

    Raises:
        ConfigurationError: the secret named ``env_name`` is not configured.
        UnauthorizedError: the key is missing or wrong.
    """
    if not secret:
        raise ConfigurationError(f"{env_name} is not configured")
    if not constant_time_compare(key or "", secret):
        logger.warning("Rejected call: bad %s key", env_name)
        raise UnauthorizedError("Unauthorized")
