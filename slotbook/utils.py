"""Shared utilities used across the registration backend."""

import re
from typing import Optional

PHONE_DIGITS = 10


def normalize_phone(value: Optional[str]) -> Optional[str]:
    """Reduce a phone number to its 10-digit national number.

    Strips every non-digit and keeps the last 10 digits, so country codes
    and separators in any format are accepted. Returns None when fewer
    than 10 digits remain.

    Examples:
        >>> normalize_phone("+91 98765-43210")
        '9876543210'
        >>> normalize_phone("12345") is None
        True
    """
    if value is None:
        return None
    digits = re.sub(r"\D", "", str(value))
    if len(digits) < PHONE_DIGITS:
        return None
    return digits[-PHONE_DIGITS:]


def mask_phone(value: Optional[str]) -> str:
    """Mask a phone number down to its last four digits for logging."""
    digits = re.sub(r"\D", "", str(value or ""))
    if len(digits) < 4:
        return "****"
    return "******" + digits[-4:]
