"""
Pydantic schemas for the alert API.

Wire names are camelCase (what the mobile client sends); Python attributes
are snake_case. Range and emptiness checks are deliberately *not* declared
here: they run in the service after the caller is authorised, so an
anonymous request with an empty contact list is answered 'unauthenticated'.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from rapidsafe.alerts.models import (
    CreateAlertRequest,
    EmergencyContact,
    GeoPoint,
    LocationUpdate,
)


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class LocationInput(_WireModel):
    lat: float = Field(..., examples=[6.5244])
    lng: float = Field(..., examples=[3.3792])

    def to_point(self) -> GeoPoint:
        return GeoPoint(self.lat, self.lng)


class ContactInput(_WireModel):
    id: Optional[str] = Field(None, examples=["c1"])
    name: str = Field(..., examples=["Sarah (Sister)"])
    phone_number: str = Field(..., alias="phoneNumber", examples=["+2348011111111"])


class CreateAlertBody(_WireModel):
    """Body of POST /api/v1/alerts."""
    user_id: str = Field(..., alias="userId")
    trigger_method: str = Field(
        ..., alias="triggerMethod", examples=["duress_pin"],
        description="normal_sos | duress_pin",
    )
    contacts: List[ContactInput] = Field(default_factory=list)
    initial_location: LocationInput = Field(..., alias="initialLocation")

    def to_request(self) -> CreateAlertRequest:
        return CreateAlertRequest(
            user_id=self.user_id,
            trigger_method=self.trigger_method,
            contacts=[
                EmergencyContact(name=c.name, phone_number=c.phone_number, id=c.id)
                for c in self.contacts
            ],
            initial_location=self.initial_location.to_point(),
        )


class LocationUpdateBody(_WireModel):
    """Body of PATCH /api/v1/alerts/{alert_id}/location."""
    current_location: LocationInput = Field(..., alias="currentLocation")
    last_updated: datetime = Field(..., alias="lastUpdated")
    direction: Optional[float] = None

    def to_update(self) -> LocationUpdate:
        return LocationUpdate(
            location=self.current_location.to_point(),
            timestamp=self.last_updated,
            direction=self.direction,
        )


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class CreateAlertResponse(_WireModel):
    success: bool
    message: str
    alert_id: Optional[str] = Field(None, alias="alertId")


class LocationUpdateResponse(_WireModel):
    alert_id: str = Field(..., alias="alertId")
    applied: bool
