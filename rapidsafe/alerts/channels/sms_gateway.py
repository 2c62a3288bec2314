"""
sms_gateway.py — SMS transports used by the notification fanout.

Delivery mechanism:
    • Primary: Twilio Programmable Messaging REST API
    • Development: simulation transport that only logs

═══════════════════════════════════════════════════════════════════════════
SMS GATEWAY ARCHITECTURE
═══════════════════════════════════════════════════════════════════════════

    Fanout  →  SmsTransport.send(to, body)  →  Provider API  →  Carrier

    Twilio:
        POST {TWILIO_API_BASE_URL}/Accounts/{SID}/Messages.json
        form fields: To, From, Body     auth: HTTP Basic (SID, token)
        201 → {"sid": "SM...", ...}

A transport either returns the provider message id or raises
SmsDeliveryError. It never retries: per-recipient isolation and logging
live in the fanout.
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional, Protocol

import httpx

from rapidsafe.core.config import Settings, settings as default_settings
from rapidsafe.core.errors import ServiceConfigurationError
from rapidsafe.core.logging_config import mask_phone

logger = logging.getLogger(__name__)


class SmsDeliveryError(Exception):
    """A provider refused or failed to accept one message."""

    def __init__(self, phone_number: str, reason: str):
        super().__init__(f"SMS to {mask_phone(phone_number)} failed: {reason}")
        self.phone_number = phone_number
        self.reason = reason


class SmsTransport(Protocol):
    async def send(self, to: str, body: str) -> str:
        """Send one text message; return the provider message id."""
        ...


class SimulatedSmsTransport:
    """Logs messages instead of sending them. Default outside production."""

    async def send(self, to: str, body: str) -> str:
        if not to:
            raise SmsDeliveryError(to, "No phone number on file")
        message_id = f"SIM{uuid.uuid4().hex[:16].upper()}"
        logger.info(
            "[SMS/simulation] %s → %s: %d chars",
            message_id, mask_phone(to), len(body),
        )
        return message_id


class TwilioSmsTransport:
    """Twilio REST transport over a shared ``httpx.AsyncClient``."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        *,
        api_base_url: str = "https://api.twilio.com/2010-04-01",
        timeout_seconds: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._account_sid = account_sid
        self._from_number = from_number
        self._url = f"{api_base_url.rstrip('/')}/Accounts/{account_sid}/Messages.json"
        self._client = client or httpx.AsyncClient(
            auth=(account_sid, auth_token),
            timeout=timeout_seconds,
        )

    async def send(self, to: str, body: str) -> str:
        if not to:
            raise SmsDeliveryError(to, "No phone number on file")
        try:
            response = await self._client.post(
                self._url,
                data={"To": to, "From": self._from_number, "Body": body},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise SmsDeliveryError(
                to, f"provider returned {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise SmsDeliveryError(to, f"transport error: {exc}") from exc

        message_id = response.json().get("sid", "")
        logger.info("[SMS/Twilio] %s accepted for %s", message_id, mask_phone(to))
        return message_id

    async def aclose(self) -> None:
        await self._client.aclose()


def build_transport(config: Optional[Settings] = None) -> SmsTransport:
    """Pick the transport named by ``SMS_PROVIDER``."""
    config = config or default_settings
    provider = config.SMS_PROVIDER.lower()

    if provider == "simulation":
        return SimulatedSmsTransport()

    if provider == "twilio":
        if not (config.TWILIO_ACCOUNT_SID and config.TWILIO_AUTH_TOKEN and config.TWILIO_FROM_NUMBER):
            raise ServiceConfigurationError(
                "SMS_PROVIDER=twilio requires TWILIO_ACCOUNT_SID, "
                "TWILIO_AUTH_TOKEN and TWILIO_FROM_NUMBER"
            )
        return TwilioSmsTransport(
            config.TWILIO_ACCOUNT_SID,
            config.TWILIO_AUTH_TOKEN,
            config.TWILIO_FROM_NUMBER,
            api_base_url=config.TWILIO_API_BASE_URL,
            timeout_seconds=config.SMS_SEND_TIMEOUT_SECONDS,
        )

    raise ServiceConfigurationError(
        f"Unknown SMS provider: {config.SMS_PROVIDER}", setting="SMS_PROVIDER",
    )
