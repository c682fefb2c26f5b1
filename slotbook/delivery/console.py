"""Offline gateway that logs messages instead of sending them."""

import logging

from slotbook.delivery.base import DeliveryResult, MessageTemplate, Recipient
from slotbook.utils import mask_phone

logger = logging.getLogger(__name__)


class ConsoleGateway:
    """Records every message in ``outbox``; used by the console demo.

    OTP codes are kept in ``last_codes`` so the demo can complete the
    verification step. They are never logged.
    """

    def __init__(self) -> None:
        self.outbox: list[tuple[str, str, dict[str, str]]] = []
        self.last_codes: dict[str, str] = {}

    def send_otp(self, phone: str, code: str) -> DeliveryResult:
        self.last_codes[phone] = code
        self.outbox.append(("otp", phone, {}))
        logger.info("[console] OTP delivered to %s", mask_phone(phone))
        return DeliveryResult(success=True, sent_count=1)

    def send_template(
        self, template: MessageTemplate, recipients: list[Recipient],
    ) -> DeliveryResult:
        for recipient in recipients:
            self.outbox.append((template.value, recipient.phone, dict(recipient.variables)))
            logger.info("[console] %s delivered to %s", template.value, mask_phone(recipient.phone))
        return DeliveryResult(success=True, sent_count=len(recipients))
