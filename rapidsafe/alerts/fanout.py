"""
fanout.py — One SMS per emergency contact, isolated per recipient.

═══════════════════════════════════════════════════════════════════════════
FANOUT
═══════════════════════════════════════════════════════════════════════════

    contacts ──┬── send(c1) ──┐
               ├── send(c2) ──┼──► join (all settled) ──► FanoutReport
               └── send(cN) ──┘

All sends start together; the join waits for every one of them, so the
call takes as long as the slowest recipient. A failure or timeout for one
recipient becomes a FAILED DeliveryAttempt and never reaches the others or
the caller.

Message wording depends on the trigger method. Both variants carry the
tracking link ``{TRACKING_BASE_URL}/track/{alert_id}``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Sequence

from rapidsafe.alerts.channels.sms_gateway import SmsTransport
from rapidsafe.alerts.models import (
    DeliveryAttempt,
    DeliveryStatus,
    EmergencyContact,
    FanoutReport,
    TriggerMethod,
)
from rapidsafe.core.logging_config import mask_phone

logger = logging.getLogger(__name__)


DURESS_TEMPLATE = (
    "⚠️ Duress Alert: Emergency! {name} needs IMMEDIATE assistance. "
    "Track live location here: {link}"
)
NORMAL_TEMPLATE = (
    "🚨 SOS Alert: {name} has manually triggered an emergency alarm. "
    "Track live location here: {link}"
)


def build_tracking_link(base_url: str, alert_id: str) -> str:
    return f"{base_url.rstrip('/')}/track/{alert_id}"


def build_message(trigger_method: TriggerMethod, contact_name: str, link: str) -> str:
    template = DURESS_TEMPLATE if trigger_method == TriggerMethod.DURESS_PIN else NORMAL_TEMPLATE
    return template.format(name=contact_name, link=link)


async def _send_one(
    transport: SmsTransport,
    contact: EmergencyContact,
    body: str,
    timeout_seconds: float,
) -> DeliveryAttempt:
    try:
        message_id = await asyncio.wait_for(
            transport.send(contact.phone_number, body),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.error(
            "SMS to %s timed out after %.1fs",
            mask_phone(contact.phone_number), timeout_seconds,
        )
        return DeliveryAttempt(
            phone_number=contact.phone_number,
            contact_name=contact.name,
            status=DeliveryStatus.FAILED,
            error_message=f"Timed out after {timeout_seconds:.1f}s",
        )
    except Exception as exc:
        logger.error(
            "Failed to send SMS to %s: %s",
            mask_phone(contact.phone_number), exc,
        )
        return DeliveryAttempt(
            phone_number=contact.phone_number,
            contact_name=contact.name,
            status=DeliveryStatus.FAILED,
            error_message=str(exc),
        )

    return DeliveryAttempt(
        phone_number=contact.phone_number,
        contact_name=contact.name,
        status=DeliveryStatus.DELIVERED,
        provider_message_id=message_id,
    )


async def fan_out(
    alert_id: str,
    trigger_method: TriggerMethod,
    contacts: Sequence[EmergencyContact],
    transport: SmsTransport,
    *,
    tracking_base_url: str,
    timeout_seconds: float = 15.0,
) -> FanoutReport:
    """
    Notify every contact concurrently and wait for all sends to settle.

    Parameters
    ----------
    alert_id : str
        Keys the tracking link.
    trigger_method : TriggerMethod
        Selects duress vs normal wording.
    contacts : sequence of EmergencyContact
    transport : SmsTransport
    tracking_base_url : str
    timeout_seconds : float
        Upper bound for each individual send.

    Returns
    -------
    FanoutReport
        One DeliveryAttempt per contact, in contact order.
    """
    link = build_tracking_link(tracking_base_url, alert_id)

    sends = [
        _send_one(
            transport,
            contact,
            build_message(trigger_method, contact.name, link),
            timeout_seconds,
        )
        for contact in contacts
    ]
    attempts: List[DeliveryAttempt] = list(await asyncio.gather(*sends))

    report = FanoutReport(alert_id=alert_id, attempts=attempts)
    logger.info(
        "Fanout for alert %s: %d/%d delivered",
        alert_id, report.delivered, len(attempts),
        extra={"alert_id": alert_id, "recipient_count": len(attempts)},
    )
    return report
