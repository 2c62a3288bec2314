"""
test_dispatch_client.py — On-device SOS orchestration and the HTTP client.

Covers:
    • initiate_sos happy path, location fallback, backend failure,
      tracking failure (partial success)
    • History log entries
    • cancel_sos / resolve_sos
    • AlertBackendClient error mapping (httpx.MockTransport)

Run with:
    pytest tests/test_dispatch_client.py -v
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from fakes import (
    FakeAlertBackend,
    FakeLocationProvider,
    RecordingSink,
    make_contacts,
    make_fix,
)
from rapidsafe.alerts.models import UNKNOWN_LOCATION, GeoPoint
from rapidsafe.device.backend_client import AlertBackendClient, build_backend_client
from rapidsafe.device.dispatch import AlertDispatchClient, DispatchStatus
from rapidsafe.device.errors import BackendCommunicationError
from rapidsafe.device.history import HistoryLog
from rapidsafe.device.location import PermissionStatus
from rapidsafe.device.streamer import LocationStreamer


@pytest.fixture()
async def parts():
    provider = FakeLocationProvider([make_fix(6.5, 3.4)])
    backend = FakeAlertBackend()
    streamer = LocationStreamer(provider, RecordingSink(), poll_interval_seconds=60.0)
    history = HistoryLog()
    client = AlertDispatchClient(backend, provider, streamer, history, fix_timeout_seconds=0.1)
    yield client, backend, provider, streamer, history
    await streamer.stop()


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: initiate_sos
# ═══════════════════════════════════════════════════════════════════════════

class TestInitiateSos:

    @pytest.mark.asyncio
    async def test_success(self, parts):
        client, backend, _, streamer, _ = parts
        result = await client.initiate_sos("user-alice", "duress_pin", make_contacts(2))

        assert result.success is True
        assert result.alert_id == "alert-1"
        assert result.status == DispatchStatus.SUCCESS
        assert result.message == "Alert initiated and contacts notified."
        assert backend.created[0]["initial_location"] == GeoPoint(6.5, 3.4)
        assert backend.created[0]["trigger_method"] == "duress_pin"
        assert streamer.bound_alert_id == "alert-1"
        assert client.current_alert_id == "alert-1"

    @pytest.mark.asyncio
    async def test_location_failure_sends_zero_zero(self, parts):
        client, backend, provider, _, _ = parts
        provider.fixes.clear()
        result = await client.initiate_sos("user-alice", "duress_pin", make_contacts(1))
        assert result.success is True
        assert backend.created[0]["initial_location"] == UNKNOWN_LOCATION

    @pytest.mark.asyncio
    async def test_location_timeout_sends_zero_zero(self, parts):
        client, backend, provider, _, _ = parts
        provider.hang = True
        result = await client.initiate_sos("user-alice", "normal_sos", make_contacts(1))
        assert result.success is True
        assert backend.created[0]["initial_location"] == UNKNOWN_LOCATION

    @pytest.mark.asyncio
    async def test_backend_failure(self, parts):
        client, backend, _, streamer, history = parts
        backend.fail = True
        result = await client.initiate_sos("user-alice", "duress_pin", make_contacts(2))

        assert result.success is False
        assert result.status == DispatchStatus.BACKEND_COMMUNICATION_FAILED
        assert result.message == "Backend communication failed."
        assert result.alert_id is None
        assert streamer.bound_alert_id is None
        assert len(history) == 0

    @pytest.mark.asyncio
    async def test_tracking_failure_is_partial_success(self, parts):
        client, _, provider, streamer, history = parts
        provider.background = PermissionStatus.DENIED
        result = await client.initiate_sos("user-alice", "duress_pin", make_contacts(2))

        assert result.success is True
        assert result.alert_id == "alert-1"
        assert result.status == DispatchStatus.PARTIAL_SUCCESS_NO_TRACKING
        assert streamer.bound_alert_id is None
        assert len(history) == 1

    @pytest.mark.asyncio
    async def test_unexpected_streamer_error_is_partial_success(self, parts):
        client, _, _, streamer, _ = parts
        with patch.object(streamer, "start", AsyncMock(side_effect=RuntimeError("gps service crashed"))):
            result = await client.initiate_sos("user-alice", "duress_pin", make_contacts(1))
        assert result.success is True
        assert result.status == DispatchStatus.PARTIAL_SUCCESS_NO_TRACKING

    @pytest.mark.asyncio
    async def test_history_entry(self, parts):
        client, _, _, _, history = parts
        contacts = make_contacts(2)
        await client.initiate_sos("user-alice", "duress_pin", contacts)

        entry = history.entries()[0]
        assert entry.type == "Duress PIN"
        assert entry.status == "Sent"
        assert entry.recipients == [c.name for c in contacts]
        assert entry.to_dict()["recipients"] == entry.recipients

    @pytest.mark.asyncio
    async def test_history_newest_first(self):
        provider = FakeLocationProvider([make_fix(), make_fix()])
        backend = FakeAlertBackend(alert_ids=["alert-1", "alert-2"])
        streamer = LocationStreamer(provider, RecordingSink(), poll_interval_seconds=60.0)
        history = HistoryLog()
        client = AlertDispatchClient(backend, provider, streamer, history)
        try:
            await client.initiate_sos("user-alice", "normal_sos", make_contacts(1))
            await client.initiate_sos("user-alice", "duress_pin", make_contacts(1))
        finally:
            await streamer.stop()

        assert [e.type for e in history.entries()] == ["Duress PIN", "SOS"]

    @pytest.mark.asyncio
    async def test_result_to_dict(self, parts):
        client, _, _, _, _ = parts
        result = await client.initiate_sos("user-alice", "duress_pin", make_contacts(1))
        assert result.to_dict() == {
            "success": True,
            "message": "Alert initiated and contacts notified.",
            "alertId": "alert-1",
            "status": "success",
        }


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: cancel / resolve
# ═══════════════════════════════════════════════════════════════════════════

class TestCloseSos:

    @pytest.mark.asyncio
    async def test_resolve(self, parts):
        client, backend, _, streamer, _ = parts
        await client.initiate_sos("user-alice", "duress_pin", make_contacts(1))
        assert await client.resolve_sos() is True
        assert backend.resolved == ["alert-1"]
        assert streamer.bound_alert_id is None
        assert client.current_alert_id is None

    @pytest.mark.asyncio
    async def test_cancel(self, parts):
        client, backend, _, _, _ = parts
        await client.initiate_sos("user-alice", "duress_pin", make_contacts(1))
        assert await client.cancel_sos() is True
        assert backend.cancelled == ["alert-1"]

    @pytest.mark.asyncio
    async def test_nothing_to_close(self, parts):
        client, backend, _, _, _ = parts
        assert await client.cancel_sos() is False
        assert backend.cancelled == []


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: AlertBackendClient
# ═══════════════════════════════════════════════════════════════════════════

def _client(handler) -> AlertBackendClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://api.test")
    return AlertBackendClient(http, token=lambda: "tok-123")


class TestAlertBackendClient:

    @pytest.mark.asyncio
    async def test_create_alert_request(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers["authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "success": True, "message": "Alert initiated and contacts notified.", "alertId": "a1",
            })

        result = await _client(handler).create_alert(
            "user-alice", "duress_pin", make_contacts(1), GeoPoint(6.5, 3.4),
        )

        assert result.alert_id == "a1"
        assert seen["path"] == "/api/v1/alerts"
        assert seen["auth"] == "Bearer tok-123"
        assert seen["body"]["userId"] == "user-alice"
        assert seen["body"]["initialLocation"] == {"lat": 6.5, "lng": 3.4}
        assert seen["body"]["contacts"][0]["phoneNumber"] == make_contacts(1)[0].phone_number

    @pytest.mark.asyncio
    async def test_push_location_request(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"alertId": "a1", "applied": True})

        applied = await _client(handler).push_location("a1", make_fix(6.5, 3.4, heading=45.0))

        assert applied is True
        assert seen["method"] == "PATCH"
        assert seen["path"] == "/api/v1/alerts/a1/location"
        assert seen["body"]["currentLocation"] == {"lat": 6.5, "lng": 3.4}
        assert seen["body"]["direction"] == 45.0
        assert seen["body"]["lastUpdated"].startswith("2026-03-14T09:30:00")

    @pytest.mark.asyncio
    async def test_error_envelope_mapped(self):
        def handler(request):
            return httpx.Response(403, json={"error": {
                "code": "permission-denied", "message": "User ID mismatch.", "status": 403,
            }})

        with pytest.raises(BackendCommunicationError) as exc_info:
            await _client(handler).create_alert("u", "duress_pin", make_contacts(1), UNKNOWN_LOCATION)
        assert exc_info.value.status_code == 403
        assert exc_info.value.error_code == "permission-denied"

    @pytest.mark.asyncio
    async def test_non_json_error(self):
        with pytest.raises(BackendCommunicationError) as exc_info:
            await _client(lambda r: httpx.Response(502, text="Bad Gateway")).resolve_alert("a1")
        assert exc_info.value.status_code == 502
        assert exc_info.value.error_code is None

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(BackendCommunicationError):
            await _client(handler).cancel_alert("a1")

    @pytest.mark.asyncio
    async def test_factory_uses_base_url(self):
        client = build_backend_client("tok", base_url="https://backend.test")
        try:
            assert str(client._http.base_url) == "https://backend.test"
        finally:
            await client.aclose()
