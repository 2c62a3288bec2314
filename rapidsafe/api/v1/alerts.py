"""
FastAPI routes: alert records.

    POST  /api/v1/alerts                     — createAlert (record + SMS fanout)
    GET   /api/v1/alerts/{id}                — owner read
    PATCH /api/v1/alerts/{id}/location       — streamed position push
    POST  /api/v1/alerts/{id}/resolve        — user is safe
    POST  /api/v1/alerts/{id}/cancel         — false alarm
    GET   /track/{id}                        — public tracking view (SMS link)
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Type, TypeVar

from fastapi import APIRouter, Body, Depends
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, ValidationError

from rapidsafe.alerts.alert_service import AlertRecordService
from rapidsafe.alerts.channels.sms_gateway import build_transport
from rapidsafe.alerts.models import AlertStatus
from rapidsafe.alerts.store import AlertRecordStore
from rapidsafe.api.schemas import (
    CreateAlertBody,
    CreateAlertResponse,
    LocationUpdateBody,
    LocationUpdateResponse,
)
from rapidsafe.core.config import settings
from rapidsafe.core.database import get_session_factory
from rapidsafe.core.errors import UnauthenticatedError
from rapidsafe.core.security import AuthenticatedUser, get_optional_caller

router = APIRouter(prefix="/api/v1/alerts", tags=["alerts"])
tracking_router = APIRouter(tags=["tracking"])


_Body = TypeVar("_Body", bound=BaseModel)

_service: Optional[AlertRecordService] = None


def get_alert_service() -> AlertRecordService:
    """Process-wide service; tests swap it through dependency_overrides."""
    global _service
    if _service is None:
        # Transport first: a misconfigured provider fails before the DB is touched
        transport = build_transport(settings)
        _service = AlertRecordService(
            AlertRecordStore(get_session_factory()),
            transport,
            tracking_base_url=settings.TRACKING_BASE_URL,
            sms_timeout_seconds=settings.SMS_SEND_TIMEOUT_SECONDS,
        )
    return _service


def _authorised_body(
    caller: Optional[AuthenticatedUser],
    schema: Type[_Body],
    payload: Any,
) -> _Body:
    """
    Parse a request body only once a caller is known.

    Bodies arrive as raw JSON so an anonymous request is answered
    'unauthenticated' however malformed its body is.
    """
    if caller is None:
        raise UnauthenticatedError()
    try:
        return schema.model_validate(payload)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors(include_url=False)) from exc


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=CreateAlertResponse,
    summary="Create an alert record and notify emergency contacts",
)
async def create_alert(
    payload: Any = Body(None),
    caller: Optional[AuthenticatedUser] = Depends(get_optional_caller),
    service: AlertRecordService = Depends(get_alert_service),
) -> CreateAlertResponse:
    body = _authorised_body(caller, CreateAlertBody, payload)
    result = await service.create_alert(caller, body.to_request())
    return CreateAlertResponse(
        success=result.success,
        message=result.message,
        alert_id=result.alert_id,
    )


@router.get("/{alert_id}", summary="Read one of the caller's alert records")
async def get_alert(
    alert_id: str,
    caller: Optional[AuthenticatedUser] = Depends(get_optional_caller),
    service: AlertRecordService = Depends(get_alert_service),
) -> Dict[str, Any]:
    record = await service.get_alert(caller, alert_id)
    return record.to_dict()


@router.patch(
    "/{alert_id}/location",
    response_model=LocationUpdateResponse,
    summary="Push the latest device position into an active alert",
)
async def update_location(
    alert_id: str,
    payload: Any = Body(None),
    caller: Optional[AuthenticatedUser] = Depends(get_optional_caller),
    service: AlertRecordService = Depends(get_alert_service),
) -> LocationUpdateResponse:
    body = _authorised_body(caller, LocationUpdateBody, payload)
    applied = await service.update_location(caller, alert_id, body.to_update())
    return LocationUpdateResponse(alert_id=alert_id, applied=applied)


@router.post("/{alert_id}/resolve", summary="Mark an active alert resolved")
async def resolve_alert(
    alert_id: str,
    caller: Optional[AuthenticatedUser] = Depends(get_optional_caller),
    service: AlertRecordService = Depends(get_alert_service),
) -> Dict[str, Any]:
    record = await service.set_status(caller, alert_id, AlertStatus.RESOLVED)
    return record.to_dict()


@router.post("/{alert_id}/cancel", summary="Mark an active alert cancelled")
async def cancel_alert(
    alert_id: str,
    caller: Optional[AuthenticatedUser] = Depends(get_optional_caller),
    service: AlertRecordService = Depends(get_alert_service),
) -> Dict[str, Any]:
    record = await service.set_status(caller, alert_id, AlertStatus.CANCELLED)
    return record.to_dict()


@tracking_router.get("/track/{alert_id}", summary="Live location behind the SMS link")
async def track_alert(
    alert_id: str,
    service: AlertRecordService = Depends(get_alert_service),
) -> Dict[str, Any]:
    record = await service.get_tracking_view(alert_id)
    return record.to_tracking_dict()
