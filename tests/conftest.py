"""
Shared fixtures: an in-memory SQLite alert store, the alert service wired
to a fake SMS transport, and an httpx client talking to the ASGI app.
"""

from __future__ import annotations

import httpx
import pytest

from fakes import TRACKING_BASE_URL, FakeSmsTransport
from rapidsafe.alerts.alert_service import AlertRecordService
from rapidsafe.alerts.store import AlertRecordStore
from rapidsafe.api.v1.alerts import get_alert_service
from rapidsafe.core.database import build_engine, build_session_factory, init_db
from rapidsafe.core.security import AuthenticatedUser
from rapidsafe.main import create_app


@pytest.fixture()
async def engine():
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await init_db(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture()
def store(engine) -> AlertRecordStore:
    return AlertRecordStore(build_session_factory(engine))


@pytest.fixture()
def sms() -> FakeSmsTransport:
    return FakeSmsTransport()


@pytest.fixture()
def service(store, sms) -> AlertRecordService:
    return AlertRecordService(
        store,
        sms,
        tracking_base_url=TRACKING_BASE_URL,
        sms_timeout_seconds=0.5,
    )


@pytest.fixture()
def alice() -> AuthenticatedUser:
    return AuthenticatedUser(uid="user-alice")


@pytest.fixture()
def app(service):
    app = create_app(use_lifespan=False)
    app.dependency_overrides[get_alert_service] = lambda: service
    yield app
    app.dependency_overrides.clear()


@pytest.fixture()
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c
