from slotbook.delivery.base import DeliveryGateway, DeliveryResult, MessageTemplate, Recipient
from slotbook.delivery.console import ConsoleGateway
from slotbook.delivery.msg91 import Msg91Gateway

__all__ = [
    "ConsoleGateway",
    "DeliveryGateway",
    "DeliveryResult",
    "MessageTemplate",
    "Msg91Gateway",
    "Recipient",
]
