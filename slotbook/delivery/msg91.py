"""
MSG91 SMS gateway.

Uses the OTP endpoint for verification codes and the flow endpoint for
templated notifications (one request carries every recipient with its
own variables). All calls are bounded by the configured timeout and
report failures as ``DeliveryResult`` instead of raising.
"""

import logging
from typing import Any, Optional

import httpx

from slotbook.config import GatewayConfig
from slotbook.delivery.base import DeliveryResult, MessageTemplate, Recipient
from slotbook.utils import mask_phone

logger = logging.getLogger(__name__)

COUNTRY_CODE = "91"


def to_msisdn(phone: str) -> str:
    """10-digit national number -> ``91XXXXXXXXXX``."""
    digits = "".join(ch for ch in str(phone) if ch.isdigit())
    return COUNTRY_CODE + digits[-10:]


class Msg91Gateway:
    """SMS delivery through the MSG91 v5 API."""

    def __init__(
        self,
        config: GatewayConfig,
        otp_expiry_minutes: int = 5,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._config = config
        self._otp_expiry_minutes = otp_expiry_minutes
        self._client = client or httpx.Client(timeout=config.timeout_seconds)
        if not config.auth_key:
            logger.warning("MSG91_AUTH_KEY not configured. SMS sending will fail.")

    def _template_id(self, template: MessageTemplate) -> str:
        return {
            MessageTemplate.SLOT_CONFIRMATION: self._config.confirmation_template_id,
            MessageTemplate.REMINDER_4H: self._config.reminder_template_id,
            MessageTemplate.MEET_LINK_1H: self._config.meet_link_template_id,
            MessageTemplate.REMINDER_30M: self._config.reminder_30min_template_id,
        }[template]

    def send_otp(self, phone: str, code: str) -> DeliveryResult:
        if not self._config.auth_key or not self._config.otp_template_id:
            return DeliveryResult(success=False, failed_count=1, error="MSG91 not configured")

        params = {
            "mobile": to_msisdn(phone),
            "authkey": self._config.auth_key,
            "otp_expiry": str(self._otp_expiry_minutes),
            "template_id": self._config.otp_template_id,
            "otp": code,
        }
        error = self._request("GET", "/otp", params=params)
        if error:
            logger.warning("[MSG91] Send OTP failed for %s: %s", mask_phone(phone), error)
            return DeliveryResult(success=False, failed_count=1, error=error)
        logger.info("[MSG91] Send OTP success for %s", mask_phone(phone))
        return DeliveryResult(success=True, sent_count=1)

    def send_template(
        self, template: MessageTemplate, recipients: list[Recipient],
    ) -> DeliveryResult:
        if not recipients:
            return DeliveryResult(success=True)
        template_id = self._template_id(template)
        if not self._config.auth_key or not template_id:
            return DeliveryResult(
                success=False,
                failed_count=len(recipients),
                error=f"MSG91 template for {template.value} not configured",
            )

        payload = {
            "template_id": template_id,
            "short_url": "0",
            "recipients": [
                {"mobiles": to_msisdn(r.phone), **r.variables} for r in recipients
            ],
        }
        error = self._request(
            "POST", "/flow", json=payload, headers={"authkey": self._config.auth_key},
        )
        if error:
            logger.warning(
                "[MSG91] %s failed for %d recipient(s): %s",
                template.value, len(recipients), error,
            )
            return DeliveryResult(success=False, failed_count=len(recipients), error=error)
        logger.info("[MSG91] %s sent to %d recipient(s)", template.value, len(recipients))
        return DeliveryResult(success=True, sent_count=len(recipients))

    def _request(self, method: str, path: str, **kwargs: Any) -> Optional[str]:
        """Perform one API call; return an error string, or None on success."""
        url = self._config.base_url.rstrip("/") + path
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.TimeoutException:
            return "Timeout contacting MSG91"
        except httpx.HTTPError as exc:
            return f"Connection error: {exc.__class__.__name__}"

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if response.status_code >= 400:
            return str(data.get("message") or data.get("error") or f"API returned {response.status_code}")
        if data.get("type") == "error" or data.get("status") == "error" or data.get("success") is False:
            return str(data.get("message") or data.get("error") or "MSG91 error")
        return None

    def close(self) -> None:
        self._client.close()
