"""Delivery gateway capability: send a templated message, report success."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol


class MessageTemplate(str, Enum):
    """Templated messages the backend sends besides the OTP itself."""
    SLOT_CONFIRMATION = "slot_confirmation"
    REMINDER_4H = "reminder_4h"
    MEET_LINK_1H = "meet_link_1h"
    REMINDER_30M = "reminder_30m"


@dataclass
class Recipient:
    """One destination with its template variables."""
    phone: str
    variables: dict[str, str] = field(default_factory=dict)


@dataclass
class DeliveryResult:
    """Outcome of one gateway call; never raised, always returned."""
    success: bool
    sent_count: int = 0
    failed_count: int = 0
    error: Optional[str] = None


class DeliveryGateway(Protocol):
    """Sends OTPs and templated notifications. Implementations must not raise."""

    def send_otp(self, phone: str, code: str) -> DeliveryResult: ...

    def send_template(
        self, template: MessageTemplate, recipients: list[Recipient],
    ) -> DeliveryResult: ...
