"""
test_fanout.py — Notification fanout and SMS transports.

Covers:
    • Message templates and tracking links
    • Per-recipient failure and timeout isolation
    • SimulatedSmsTransport / TwilioSmsTransport (httpx.MockTransport)
    • build_transport provider selection

Run with:
    pytest tests/test_fanout.py -v
"""

from __future__ import annotations

import asyncio
import time
from urllib.parse import parse_qs

import httpx
import pytest

from fakes import FakeSmsTransport, make_contacts
from rapidsafe.alerts.channels.sms_gateway import (
    SimulatedSmsTransport,
    SmsDeliveryError,
    TwilioSmsTransport,
    build_transport,
)
from rapidsafe.alerts.fanout import (
    build_message,
    build_tracking_link,
    fan_out,
)
from rapidsafe.alerts.models import DeliveryStatus, TriggerMethod
from rapidsafe.core.config import Settings
from rapidsafe.core.errors import ServiceConfigurationError


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Message building
# ═══════════════════════════════════════════════════════════════════════════

class TestMessages:
    """Template selection and link format."""

    def test_tracking_link(self):
        assert build_tracking_link("https://rapidsafe.test", "abc") == "https://rapidsafe.test/track/abc"

    def test_tracking_link_trailing_slash(self):
        assert build_tracking_link("https://rapidsafe.test/", "abc") == "https://rapidsafe.test/track/abc"

    def test_duress_wording(self):
        msg = build_message(TriggerMethod.DURESS_PIN, "Sarah", "https://x/track/1")
        assert msg == (
            "⚠️ Duress Alert: Emergency! Sarah needs IMMEDIATE assistance. "
            "Track live location here: https://x/track/1"
        )

    def test_normal_wording(self):
        msg = build_message(TriggerMethod.NORMAL_SOS, "Sarah", "https://x/track/1")
        assert msg == (
            "🚨 SOS Alert: Sarah has manually triggered an emergency alarm. "
            "Track live location here: https://x/track/1"
        )


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: fan_out
# ═══════════════════════════════════════════════════════════════════════════

class TestFanOut:
    """Concurrent sends with failure isolation."""

    @pytest.mark.asyncio
    async def test_every_contact_notified(self):
        transport = FakeSmsTransport()
        contacts = make_contacts(4)
        report = await fan_out(
            "alert-1", TriggerMethod.DURESS_PIN, contacts, transport,
            tracking_base_url="https://rapidsafe.test",
        )
        assert report.delivered == 4
        assert report.failed == 0
        assert sorted(transport.recipients) == sorted(c.phone_number for c in contacts)

    @pytest.mark.asyncio
    async def test_failing_recipient_isolated(self):
        contacts = make_contacts(3)
        transport = FakeSmsTransport(failing=[contacts[1].phone_number])
        report = await fan_out(
            "alert-1", TriggerMethod.DURESS_PIN, contacts, transport,
            tracking_base_url="https://rapidsafe.test",
        )

        statuses = [a.status for a in report.attempts]
        assert statuses == [DeliveryStatus.DELIVERED, DeliveryStatus.FAILED, DeliveryStatus.DELIVERED]
        assert "carrier rejected" in report.attempts[1].error_message
        assert contacts[1].phone_number not in transport.recipients

    @pytest.mark.asyncio
    async def test_hanging_recipient_times_out(self):
        contacts = make_contacts(2)
        transport = FakeSmsTransport(hanging=[contacts[0].phone_number])
        report = await fan_out(
            "alert-1", TriggerMethod.NORMAL_SOS, contacts, transport,
            tracking_base_url="https://rapidsafe.test",
            timeout_seconds=0.05,
        )
        assert report.attempts[0].status == DeliveryStatus.FAILED
        assert "Timed out" in report.attempts[0].error_message
        assert report.attempts[1].status == DeliveryStatus.DELIVERED

    @pytest.mark.asyncio
    async def test_sends_run_concurrently(self):
        class SlowTransport:
            async def send(self, to, body):
                await asyncio.sleep(0.1)
                return "ok"

        start = time.monotonic()
        report = await fan_out(
            "alert-1", TriggerMethod.DURESS_PIN, make_contacts(4), SlowTransport(),
            tracking_base_url="https://rapidsafe.test",
        )
        assert report.delivered == 4
        assert time.monotonic() - start < 0.35

    @pytest.mark.asyncio
    async def test_report_to_dict(self):
        report = await fan_out(
            "alert-1", TriggerMethod.DURESS_PIN, make_contacts(1), FakeSmsTransport(),
            tracking_base_url="https://rapidsafe.test",
        )
        d = report.to_dict()
        assert d["alert_id"] == "alert-1"
        assert d["total"] == 1
        assert d["attempts"][0]["status"] == "delivered"
        # Phone numbers stay out of the diagnostic view
        assert "phone_number" not in d["attempts"][0]


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Transports
# ═══════════════════════════════════════════════════════════════════════════

class TestSimulatedTransport:

    @pytest.mark.asyncio
    async def test_returns_message_id(self):
        message_id = await SimulatedSmsTransport().send("+2348000000001", "hello")
        assert message_id.startswith("SIM")

    @pytest.mark.asyncio
    async def test_empty_number_rejected(self):
        with pytest.raises(SmsDeliveryError):
            await SimulatedSmsTransport().send("", "hello")


class TestTwilioTransport:
    """Twilio REST calls against a mocked httpx transport."""

    @staticmethod
    def _transport(handler) -> TwilioSmsTransport:
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(handler),
            auth=("AC123", "secret"),
        )
        return TwilioSmsTransport(
            "AC123", "secret", "+15005550006",
            api_base_url="https://twilio.test/2010-04-01",
            client=client,
        )

    @pytest.mark.asyncio
    async def test_posts_form_and_returns_sid(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["form"] = parse_qs(request.content.decode())
            seen["auth"] = request.headers.get("authorization", "")
            return httpx.Response(201, json={"sid": "SM42"})

        transport = self._transport(handler)
        message_id = await transport.send("+2348000000001", "help")
        await transport.aclose()

        assert message_id == "SM42"
        assert seen["url"] == "https://twilio.test/2010-04-01/Accounts/AC123/Messages.json"
        assert seen["form"] == {
            "To": ["+2348000000001"],
            "From": ["+15005550006"],
            "Body": ["help"],
        }
        assert seen["auth"].startswith("Basic ")

    @pytest.mark.asyncio
    async def test_provider_error(self):
        transport = self._transport(lambda request: httpx.Response(400, json={"code": 21211}))
        with pytest.raises(SmsDeliveryError, match="400"):
            await transport.send("+2348000000001", "help")
        await transport.aclose()

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        transport = self._transport(handler)
        with pytest.raises(SmsDeliveryError, match="transport error"):
            await transport.send("+2348000000001", "help")
        await transport.aclose()


class TestBuildTransport:

    def test_simulation_default(self):
        assert isinstance(build_transport(Settings(SMS_PROVIDER="simulation")), SimulatedSmsTransport)

    def test_twilio_requires_credentials(self):
        with pytest.raises(ServiceConfigurationError, match="TWILIO_ACCOUNT_SID"):
            build_transport(Settings(SMS_PROVIDER="twilio"))

    def test_twilio_configured(self):
        config = Settings(
            SMS_PROVIDER="twilio",
            TWILIO_ACCOUNT_SID="AC123",
            TWILIO_AUTH_TOKEN="secret",
            TWILIO_FROM_NUMBER="+15005550006",
        )
        assert isinstance(build_transport(config), TwilioSmsTransport)

    def test_unknown_provider(self):
        with pytest.raises(ServiceConfigurationError, match="Unknown SMS provider"):
            build_transport(Settings(SMS_PROVIDER="pigeon"))
