"""
alert_service.py — Alert record lifecycle and contact notification.

This is the backend coordinator that:
    1. Authorises the caller against the request
    2. Validates the request (recipients, trigger method, coordinates)
    3. Persists a new ACTIVE alert record
    4. Fans out one SMS per contact (joined, failures isolated)
    5. Returns {success, message, alertId}
and afterwards accepts location pushes and status changes for the record.

═══════════════════════════════════════════════════════════════════════════
CREATE FLOW
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┐
    │  1. Caller?         │  none                 → unauthenticated
    │  2. caller == user? │  mismatch             → permission-denied
    │  3. Contacts?       │  empty                → invalid-argument
    │  4. Trigger / coords│  unknown / out of range → invalid-argument
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │  Persist record     │  committed before anything is sent
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │  Fanout (join)      │  per-recipient failures logged, not raised
    └─────────┬───────────┘
              ▼
       success + alertId

A client that sees ``success`` therefore knows the record exists and every
contact was attempted. Partial delivery is still success: delivery is best
effort per recipient, and an alert nobody could be told about is already
excluded by step 3.
"""

from __future__ import annotations

import logging
from typing import Optional

from rapidsafe.alerts.channels.sms_gateway import SmsTransport
from rapidsafe.alerts.fanout import fan_out
from rapidsafe.alerts.models import (
    AlertRecord,
    AlertStatus,
    CreateAlertRequest,
    CreateAlertResult,
    GeoPoint,
    LocationUpdate,
    TriggerMethod,
    generate_alert_id,
    utc_now,
)
from rapidsafe.alerts.store import AlertRecordStore, MutationOutcome
from rapidsafe.core.errors import (
    FailedPreconditionError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
    UnauthenticatedError,
)
from rapidsafe.core.security import AuthenticatedUser

logger = logging.getLogger(__name__)


def _require_caller(caller: Optional[AuthenticatedUser]) -> AuthenticatedUser:
    if caller is None:
        raise UnauthenticatedError()
    return caller


def _parse_trigger_method(raw: str) -> TriggerMethod:
    try:
        return TriggerMethod(raw)
    except ValueError:
        valid = [t.value for t in TriggerMethod]
        raise InvalidArgumentError(
            f"Invalid trigger method '{raw}'. Must be one of: {valid}",
            field="triggerMethod",
        )


def _check_location(point: GeoPoint, field: str) -> None:
    if not point.is_plausible:
        raise InvalidArgumentError(
            f"Coordinates out of range: lat={point.lat}, lng={point.lng}",
            field=field,
        )


class AlertRecordService:
    """
    Owns alert records and the notification fanout.

    Parameters
    ----------
    store : AlertRecordStore
    transport : SmsTransport
        Outbound SMS transport used by the fanout.
    tracking_base_url : str
        Prefix of the tracking link sent to contacts.
    sms_timeout_seconds : float
        Upper bound for each individual SMS send.
    """

    def __init__(
        self,
        store: AlertRecordStore,
        transport: SmsTransport,
        *,
        tracking_base_url: str,
        sms_timeout_seconds: float = 15.0,
    ):
        self.store = store
        self.transport = transport
        self.tracking_base_url = tracking_base_url
        self.sms_timeout_seconds = sms_timeout_seconds

    # ── create ──────────────────────────────────────────────────────────

    async def create_alert(
        self,
        caller: Optional[AuthenticatedUser],
        request: CreateAlertRequest,
    ) -> CreateAlertResult:
        caller = _require_caller(caller)

        if caller.uid != request.user_id:
            raise PermissionDeniedError(
                "User ID mismatch. Cannot trigger an alert for another user.",
            )

        if not request.contacts:
            logger.warning(
                "Alert triggered by %s but no contacts were provided.",
                request.user_id,
            )
            raise InvalidArgumentError(
                "No emergency contacts found to notify.", field="contacts",
            )

        trigger_method = _parse_trigger_method(request.trigger_method)
        _check_location(request.initial_location, "initialLocation")

        alert_id = generate_alert_id()
        location = request.initial_location
        record = AlertRecord(
            alert_id=alert_id,
            user_id=request.user_id,
            status=AlertStatus.ACTIVE.value,
            trigger_method=trigger_method.value,
            created_at=utc_now(),
            initial_lat=location.lat,
            initial_lng=location.lng,
            current_lat=location.lat,
            current_lng=location.lng,
            last_updated=None,
            direction=None,
            emergency_contacts=[c.phone_number for c in request.contacts],
        )
        await self.store.insert(record)
        logger.info(
            "Alert %s created for user %s. Trigger: %s",
            alert_id, request.user_id, trigger_method.value,
            extra={
                "alert_id": alert_id,
                "user_id": request.user_id,
                "trigger_method": trigger_method.value,
            },
        )

        report = await fan_out(
            alert_id,
            trigger_method,
            request.contacts,
            self.transport,
            tracking_base_url=self.tracking_base_url,
            timeout_seconds=self.sms_timeout_seconds,
        )
        return CreateAlertResult(
            success=True,
            message="Alert initiated and contacts notified.",
            alert_id=alert_id,
            fanout=report,
        )

    # ── reads ───────────────────────────────────────────────────────────

    async def get_alert(
        self,
        caller: Optional[AuthenticatedUser],
        alert_id: str,
    ) -> AlertRecord:
        caller = _require_caller(caller)
        record = await self.store.get(alert_id)
        if record is None:
            raise NotFoundError("Alert", alert_id=alert_id)
        if record.user_id != caller.uid:
            raise PermissionDeniedError("Alert belongs to another user.", alert_id=alert_id)
        return record

    async def get_tracking_view(self, alert_id: str) -> AlertRecord:
        """Unauthenticated read behind the tracking link."""
        record = await self.store.get(alert_id)
        if record is None:
            raise NotFoundError("Alert", alert_id=alert_id)
        return record

    # ── mutations ───────────────────────────────────────────────────────

    async def update_location(
        self,
        caller: Optional[AuthenticatedUser],
        alert_id: str,
        update: LocationUpdate,
    ) -> bool:
        """
        Apply one streamed position. Returns False when the update was older
        than the stored one and therefore ignored.
        """
        caller = _require_caller(caller)
        _check_location(update.location, "currentLocation")

        outcome, _ = await self.store.update_location(alert_id, caller.uid, update)
        self._raise_for_outcome(outcome, alert_id, "Location updates")
        return outcome == MutationOutcome.APPLIED

    async def set_status(
        self,
        caller: Optional[AuthenticatedUser],
        alert_id: str,
        status: AlertStatus,
    ) -> AlertRecord:
        caller = _require_caller(caller)
        outcome, record = await self.store.transition_status(alert_id, caller.uid, status)
        self._raise_for_outcome(outcome, alert_id, f"Transition to {status.value}")
        logger.info("Alert %s marked %s", alert_id, status.value, extra={"alert_id": alert_id})
        return record

    @staticmethod
    def _raise_for_outcome(outcome: MutationOutcome, alert_id: str, action: str) -> None:
        if outcome == MutationOutcome.NOT_FOUND:
            raise NotFoundError("Alert", alert_id=alert_id)
        if outcome == MutationOutcome.NOT_OWNER:
            raise PermissionDeniedError("Alert belongs to another user.", alert_id=alert_id)
        if outcome == MutationOutcome.NOT_ACTIVE:
            raise FailedPreconditionError(
                f"{action} require an active alert.", alert_id=alert_id,
            )
