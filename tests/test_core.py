"""
test_core.py — Settings, logging helpers, bearer tokens, health probes and
the error envelope.

Run with:
    pytest tests/test_core.py -v
"""

from __future__ import annotations

import json
import logging

import httpx
import pytest
from fastapi import FastAPI

from rapidsafe.core.config import Settings
from rapidsafe.core.errors import (
    FailedPreconditionError,
    InvalidArgumentError,
    NotFoundError,
    RapidSafeError,
    register_error_handlers,
)
from rapidsafe.core.health import HealthStatus, check_database, run_health_check
from rapidsafe.core.logging_config import (
    JSONFormatter,
    PhoneMaskingFilter,
    mask_phone,
    set_request_context,
)
from rapidsafe.core.security import get_optional_caller, issue_access_token, verify_access_token


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Settings
# ═══════════════════════════════════════════════════════════════════════════

class TestSettings:

    def test_defaults(self):
        s = Settings()
        assert s.SMS_PROVIDER == "simulation"
        assert s.LOCATION_FIX_TIMEOUT_SECONDS == 10.0
        assert s.STREAM_MIN_INTERVAL_SECONDS == 5.0
        assert s.STREAM_MIN_DISTANCE_METERS == 5.0
        assert s.JWT_ALGORITHM == "HS256"

    def test_environment_flags(self):
        assert Settings(ENVIRONMENT="production").is_production
        assert Settings(ENVIRONMENT="development").is_development

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("SMS_SEND_TIMEOUT_SECONDS", "3.5")
        assert Settings().SMS_SEND_TIMEOUT_SECONDS == 3.5


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Logging
# ═══════════════════════════════════════════════════════════════════════════

class TestLogging:

    def test_mask_phone(self):
        assert mask_phone("+2348012345678") == "*********5678"

    def test_mask_short_number(self):
        assert mask_phone("123") == "****"

    def test_filter_masks_numbers_in_messages(self):
        record = logging.LogRecord(
            "rapidsafe.test", logging.INFO, __file__, 1,
            "sending to %s at %s", ("+234 801 234 5678", "2026-03-14T09:30:00"), None,
        )
        assert PhoneMaskingFilter().filter(record) is True
        message = record.getMessage()
        assert "5678" in message
        assert "801" not in message
        assert "2026-03-14T09:30:00" in message

    def test_json_formatter_includes_context_and_extras(self):
        set_request_context(request_id="req-1", endpoint="/api/v1/alerts")
        try:
            record = logging.LogRecord("rapidsafe.test", logging.INFO, __file__, 1, "created %s", ("a1",), None)
            record.alert_id = "a1"
            entry = json.loads(JSONFormatter().format(record))
        finally:
            set_request_context()

        assert entry["message"] == "created a1"
        assert entry["alert_id"] == "a1"
        assert entry["context"]["request_id"] == "req-1"
        assert entry["level"] == "INFO"


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Tokens
# ═══════════════════════════════════════════════════════════════════════════

class TestTokens:

    def test_round_trip(self):
        caller = verify_access_token(issue_access_token("user-alice"))
        assert caller is not None
        assert caller.uid == "user-alice"

    def test_expired(self):
        assert verify_access_token(issue_access_token("user-alice", expires_minutes=-1)) is None

    def test_wrong_secret(self):
        assert verify_access_token(issue_access_token("user-alice", secret="other")) is None

    def test_garbage(self):
        assert verify_access_token("abc.def.ghi") is None

    @pytest.mark.asyncio
    async def test_dependency(self):
        assert await get_optional_caller(None) is None
        assert await get_optional_caller("Basic xyz") is None
        caller = await get_optional_caller(f"Bearer {issue_access_token('user-bob')}")
        assert caller.uid == "user-bob"


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Health
# ═══════════════════════════════════════════════════════════════════════════

class TestHealth:

    @pytest.mark.asyncio
    async def test_database_reachable(self, engine):
        comp = await check_database(engine)
        assert comp.status == HealthStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_report(self, engine):
        report = await run_health_check(engine)
        assert report.status == HealthStatus.HEALTHY
        names = [c["name"] for c in report.to_dict()["components"]]
        assert names == ["database", "sms_provider"]


# ═══════════════════════════════════════════════════════════════════════════
# Section 5: Error envelope
# ═══════════════════════════════════════════════════════════════════════════

class TestErrorEnvelope:

    @pytest.fixture()
    async def error_client(self):
        app = FastAPI()
        register_error_handlers(app)

        @app.get("/not-found")
        async def not_found():
            raise NotFoundError("Alert", alert_id="a1")

        @app.get("/precondition")
        async def precondition():
            raise FailedPreconditionError("Location updates require an active alert.")

        @app.get("/value")
        async def value():
            raise ValueError("bad value")

        transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
            yield c

    def test_hierarchy(self):
        err = InvalidArgumentError("nope", field="contacts")
        assert isinstance(err, RapidSafeError)
        assert err.status_code == 422
        assert err.error_code == "invalid-argument"
        assert err.details == {"field": "contacts"}

    @pytest.mark.asyncio
    async def test_not_found(self, error_client):
        response = await error_client.get("/not-found")
        assert response.status_code == 404
        error = response.json()["error"]
        assert error["code"] == "not-found"
        assert error["message"] == "Alert not found"
        assert error["details"] == {"resource": "Alert", "alert_id": "a1"}
        assert error["path"] == "/not-found"

    @pytest.mark.asyncio
    async def test_failed_precondition(self, error_client):
        response = await error_client.get("/precondition")
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "failed-precondition"

    @pytest.mark.asyncio
    async def test_value_error(self, error_client):
        response = await error_client.get("/value")
        assert response.status_code == 422
        assert response.json()["error"]["message"] == "bad value"
