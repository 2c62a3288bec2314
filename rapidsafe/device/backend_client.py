"""
backend_client.py — Device → backend HTTP calls (httpx).

Every failure mode (connection error, timeout, non-2xx answer, unreadable
body) surfaces as BackendCommunicationError; callers only ever handle that.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional, Sequence, Union

import httpx

from rapidsafe.alerts.models import CreateAlertResult, EmergencyContact, GeoPoint
from rapidsafe.core.config import settings
from rapidsafe.device.errors import BackendCommunicationError
from rapidsafe.device.location import PositionFix

logger = logging.getLogger(__name__)

TokenSource = Union[str, Callable[[], str]]


class AlertBackendClient:
    """
    Thin client for the alert API.

    Parameters
    ----------
    http : httpx.AsyncClient
        Shared client whose ``base_url`` points at the backend.
    token : str | callable
        Bearer token, or a function returning the current one.
    """

    def __init__(self, http: httpx.AsyncClient, token: TokenSource):
        self._http = http
        self._token = token

    def _headers(self) -> Dict[str, str]:
        token = self._token() if callable(self._token) else self._token
        return {"Authorization": f"Bearer {token}"}

    async def _call(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        try:
            response = await self._http.request(method, path, json=json, headers=self._headers())
        except httpx.HTTPError as exc:
            raise BackendCommunicationError(f"{method} {path} failed: {exc}") from exc

        if response.is_error:
            error_code = None
            message = response.text
            try:
                error = response.json().get("error", {})
                error_code = error.get("code")
                message = error.get("message", message)
            except ValueError:
                pass
            raise BackendCommunicationError(
                f"{method} {path} → {response.status_code}: {message}",
                status_code=response.status_code,
                error_code=error_code,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise BackendCommunicationError(f"{method} {path}: unreadable response") from exc

    async def create_alert(
        self,
        user_id: str,
        trigger_method: str,
        contacts: Sequence[EmergencyContact],
        initial_location: GeoPoint,
    ) -> CreateAlertResult:
        data = await self._call(
            "POST",
            "/api/v1/alerts",
            json={
                "userId": user_id,
                "triggerMethod": trigger_method,
                "contacts": [c.to_dict() for c in contacts],
                "initialLocation": initial_location.to_dict(),
            },
        )
        return CreateAlertResult(
            success=bool(data.get("success")),
            message=data.get("message", ""),
            alert_id=data.get("alertId"),
        )

    async def push_location(self, alert_id: str, fix: PositionFix) -> bool:
        """Returns whether the backend applied the update (False = stale)."""
        data = await self._call(
            "PATCH",
            f"/api/v1/alerts/{alert_id}/location",
            json={
                "currentLocation": {"lat": fix.lat, "lng": fix.lng},
                "lastUpdated": fix.timestamp.isoformat(),
                "direction": fix.heading,
            },
        )
        return bool(data.get("applied"))

    async def resolve_alert(self, alert_id: str) -> Dict[str, Any]:
        return await self._call("POST", f"/api/v1/alerts/{alert_id}/resolve")

    async def cancel_alert(self, alert_id: str) -> Dict[str, Any]:
        return await self._call("POST", f"/api/v1/alerts/{alert_id}/cancel")

    async def aclose(self) -> None:
        await self._http.aclose()


def build_backend_client(
    token: TokenSource,
    *,
    base_url: Optional[str] = None,
    timeout_seconds: float = 15.0,
) -> AlertBackendClient:
    """Client for the configured backend (``BACKEND_BASE_URL``)."""
    http = httpx.AsyncClient(
        base_url=base_url or settings.BACKEND_BASE_URL,
        timeout=timeout_seconds,
    )
    return AlertBackendClient(http, token)
