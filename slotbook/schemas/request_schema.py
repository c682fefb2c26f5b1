"""
Per-operation input structs.

Every public operation validates its input once, here, at the boundary.
Phone numbers are normalized to 10 digits; free text is trimmed.
"""

import re
from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError as PydanticValidationError, field_validator

from slotbook.clock import ensure_utc, parse_instant
from slotbook.errors import ValidationError
from slotbook.slots.catalog import is_valid_slot_id
from slotbook.utils import normalize_phone

_EMAIL_PATTERN = re.compile(r"^\S+@\S+\.\S+$")

RequestT = TypeVar("RequestT", bound=BaseModel)


class PhoneRequest(BaseModel):
    """Base for requests keyed by phone."""
    phone: str

    @field_validator("phone", mode="before")
    @classmethod
    def _normalize_phone(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("phone is required")
        normalized = normalize_phone(value)
        if normalized is None:
            raise ValueError("Valid 10-digit phone number required")
        return normalized


class IdentityRequest(PhoneRequest):
    full_name: str
    occupation: str

    @field_validator("full_name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        value = value.strip()
        if not 2 <= len(value) <= 100:
            raise ValueError("full_name must be between 2 and 100 characters")
        return value

    @field_validator("occupation")
    @classmethod
    def _check_occupation(cls, value: str) -> str:
        value = value.strip()
        if not 1 <= len(value) <= 200:
            raise ValueError("occupation is required")
        return value


class SendOtpRequest(IdentityRequest):
    """Input to OTP issuance."""


class Step1Request(IdentityRequest):
    """Identity step."""


class VerifyOtpRequest(PhoneRequest):
    otp: str

    @field_validator("otp", mode="before")
    @classmethod
    def _check_otp(cls, value: Any) -> str:
        text = str(value).strip() if value is not None else ""
        if not re.fullmatch(r"\d{4,10}", text):
            raise ValueError("OTP must be numeric")
        return text


class Step2Request(PhoneRequest):
    """OTP-verified step; carries only the phone."""


class Step3Request(PhoneRequest):
    selected_slot: str
    slot_date: datetime

    @field_validator("selected_slot")
    @classmethod
    def _check_slot(cls, value: str) -> str:
        value = value.strip()
        if not is_valid_slot_id(value):
            raise ValueError(
                "selected_slot must be a valid slot ID (e.g. FRIDAY_7PM, SUNDAY_11AM)"
            )
        return value

    @field_validator("slot_date", mode="before")
    @classmethod
    def _parse_slot_date(cls, value: Any) -> datetime:
        if isinstance(value, datetime):
            return ensure_utc(value)
        parsed = parse_instant(value) if isinstance(value, str) else None
        if parsed is None:
            raise ValueError("Valid slot_date is required")
        return parsed


class Step4Request(PhoneRequest):
    interest_level: int
    email: str

    @field_validator("interest_level", mode="before")
    @classmethod
    def _check_interest(cls, value: Any) -> int:
        try:
            number = int(value)
        except (TypeError, ValueError):
            raise ValueError("interest_level must be a number from 1 to 5") from None
        if str(value).strip() != str(number) or not 1 <= number <= 5:
            raise ValueError("interest_level must be a number from 1 to 5")
        return number

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        value = value.strip().lower()
        if not _EMAIL_PATTERN.match(value):
            raise ValueError("Please enter a valid email address")
        return value


def parse_request(model: type[RequestT], **data: Any) -> RequestT:
    """Build a request struct, converting pydantic errors to ``ValidationError``."""
    try:
        return model(**data)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        message = str(first.get("msg", "Invalid input")).removeprefix("Value error, ")
        field_name = ".".join(str(part) for part in first.get("loc", ()))
        if first.get("type") == "missing":
            message = f"{field_name} is required"
        raise ValidationError(message) from None
