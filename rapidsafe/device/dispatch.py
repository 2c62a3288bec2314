"""
dispatch.py — On-device orchestration of an emergency alert.

initiate_sos pipeline:
    1. best-effort location fix (falls back to (0, 0))
    2. create the alert record on the backend (fans out SMS server-side)
    3. start background tracking for the new alert id
    4. record the dispatch in the local history log

Only step 2 can fail the dispatch. A tracking failure downgrades the
result to PARTIAL_SUCCESS_NO_TRACKING; the contacts have already been
told by then.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Protocol, Sequence

from rapidsafe.alerts.models import (
    AlertStatus,
    CreateAlertResult,
    EmergencyContact,
    GeoPoint,
    TriggerMethod,
    UNKNOWN_LOCATION,
)
from rapidsafe.core.config import settings
from rapidsafe.device.errors import BackendCommunicationError
from rapidsafe.device.history import HistoryLog
from rapidsafe.device.location import LocationProvider, acquire_initial_fix
from rapidsafe.device.streamer import LocationStreamer

logger = logging.getLogger(__name__)


class DispatchStatus(str, Enum):
    SUCCESS                      = "success"
    PARTIAL_SUCCESS_NO_TRACKING  = "partial_success_no_tracking"
    BACKEND_COMMUNICATION_FAILED = "backend_communication_failed"


HISTORY_TYPES = {
    TriggerMethod.DURESS_PIN.value: "Duress PIN",
    TriggerMethod.NORMAL_SOS.value: "SOS",
}


@dataclass
class AlertResult:
    success: bool
    message: str
    alert_id: Optional[str] = None
    status: DispatchStatus = DispatchStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "alertId": self.alert_id,
            "status": self.status.value,
        }


class AlertBackend(Protocol):
    async def create_alert(
        self,
        user_id: str,
        trigger_method: str,
        contacts: Sequence[EmergencyContact],
        initial_location: GeoPoint,
    ) -> CreateAlertResult:
        ...

    async def resolve_alert(self, alert_id: str) -> Any:
        ...

    async def cancel_alert(self, alert_id: str) -> Any:
        ...


class AlertDispatchClient:
    """
    Parameters
    ----------
    backend : AlertBackend
        Usually an ``AlertBackendClient``.
    provider : LocationProvider
        Platform GPS, used for the initial fix.
    streamer : LocationStreamer
        Started once the backend hands back an alert id.
    history : HistoryLog, optional
        Local log; skipped when None.
    """

    def __init__(
        self,
        backend: AlertBackend,
        provider: LocationProvider,
        streamer: LocationStreamer,
        history: Optional[HistoryLog] = None,
        *,
        fix_timeout_seconds: float = settings.LOCATION_FIX_TIMEOUT_SECONDS,
    ):
        self._backend = backend
        self._provider = provider
        self._streamer = streamer
        self._history = history
        self.fix_timeout_seconds = fix_timeout_seconds
        self._current_alert_id: Optional[str] = None

    @property
    def current_alert_id(self) -> Optional[str]:
        return self._current_alert_id

    async def initiate_sos(
        self,
        user_id: str,
        trigger_method: str,
        contacts: Sequence[EmergencyContact],
    ) -> AlertResult:
        location = await acquire_initial_fix(self._provider, self.fix_timeout_seconds)
        if location == UNKNOWN_LOCATION:
            logger.warning("Dispatching alert without a location fix")

        try:
            created = await self._backend.create_alert(user_id, trigger_method, contacts, location)
        except BackendCommunicationError as exc:
            logger.error(
                "Error initiating SOS: %s", exc,
                extra={"error_code": exc.error_code or exc.code},
            )
            return AlertResult(
                success=False,
                message="Backend communication failed.",
                status=DispatchStatus.BACKEND_COMMUNICATION_FAILED,
            )

        result = AlertResult(
            success=created.success,
            message=created.message,
            alert_id=created.alert_id,
        )
        if not (created.success and created.alert_id):
            return result

        self._current_alert_id = created.alert_id
        logger.info("SOS Alert initiated successfully: %s", created.alert_id,
                    extra={"alert_id": created.alert_id, "trigger_method": trigger_method})

        try:
            await self._streamer.start(created.alert_id)
        except Exception as exc:
            logger.error("Failed to start location tracking: %s", exc,
                         extra={"alert_id": created.alert_id})
            result.status = DispatchStatus.PARTIAL_SUCCESS_NO_TRACKING

        if self._history is not None:
            self._history.append(
                type=HISTORY_TYPES.get(trigger_method, trigger_method),
                description=created.message,
                recipients=[c.name for c in contacts],
            )
        return result

    async def cancel_sos(self) -> bool:
        """Stop tracking and mark the current alert cancelled."""
        return await self._close(AlertStatus.CANCELLED)

    async def resolve_sos(self) -> bool:
        """Stop tracking and mark the current alert resolved."""
        return await self._close(AlertStatus.RESOLVED)

    async def _close(self, status: AlertStatus) -> bool:
        alert_id = self._current_alert_id
        await self._streamer.stop()
        if alert_id is None:
            return False

        if status == AlertStatus.CANCELLED:
            await self._backend.cancel_alert(alert_id)
        else:
            await self._backend.resolve_alert(alert_id)

        self._current_alert_id = None
        logger.info("Alert %s marked %s", alert_id, status.value,
                    extra={"alert_id": alert_id})
        return True
