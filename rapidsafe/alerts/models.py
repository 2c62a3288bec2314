"""
models.py — Shared data structures for alert records and notification
fanout.

Defines:
    • AlertStatus     — lifecycle of an alert record
    • TriggerMethod   — how the SOS was raised (button vs duress PIN)
    • DeliveryStatus  — per-recipient SMS outcome
    • GeoPoint        — a {lat, lng} pair as sent on the wire
    • EmergencyContact, CreateAlertRequest, CreateAlertResult
    • LocationUpdate  — one streamed position push
    • DeliveryAttempt, FanoutReport — fanout bookkeeping
    • AlertRecord     — persisted ORM entity (table ``alerts``)

═══════════════════════════════════════════════════════════════════════════
ALERT RECORD LIFECYCLE
═══════════════════════════════════════════════════════════════════════════

    create_alert ──► ACTIVE ──► RESOLVED   (user marked safe)
                        │
                        └─────► CANCELLED  (false alarm)

Only ACTIVE records accept location updates. ``alert_id``, ``user_id``,
``trigger_method``, ``created_at`` and ``initial_*`` never change after
creation; the mutable fields are ``current_*``, ``last_updated``,
``direction`` and ``status``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, DateTime, Float, String
from sqlalchemy.orm import Mapped, mapped_column

from rapidsafe.core.database import Base


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class AlertStatus(str, Enum):
    ACTIVE    = "active"
    RESOLVED  = "resolved"
    CANCELLED = "cancelled"


class TriggerMethod(str, Enum):
    NORMAL_SOS = "normal_sos"
    DURESS_PIN = "duress_pin"


class DeliveryStatus(str, Enum):
    DELIVERED = "delivered"
    FAILED    = "failed"


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════

def generate_alert_id() -> str:
    return uuid.uuid4().hex


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
# Value objects
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class GeoPoint:
    """A coordinate in decimal degrees. (0, 0) is the 'no fix' sentinel."""
    lat: float
    lng: float

    @property
    def is_plausible(self) -> bool:
        return -90.0 <= self.lat <= 90.0 and -180.0 <= self.lng <= 180.0

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}


UNKNOWN_LOCATION = GeoPoint(0.0, 0.0)


@dataclass(frozen=True)
class EmergencyContact:
    name: str
    phone_number: str
    id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"name": self.name, "phoneNumber": self.phone_number}
        if self.id is not None:
            d["id"] = self.id
        return d


@dataclass
class CreateAlertRequest:
    """
    Body of createAlert. ``trigger_method`` stays a raw string here; the
    service parses it after the caller has been authorised.
    """
    user_id: str
    trigger_method: str
    contacts: List[EmergencyContact]
    initial_location: GeoPoint


@dataclass
class CreateAlertResult:
    success: bool
    message: str
    alert_id: Optional[str] = None
    # Delivery outcome for the caller in-process; never serialised
    fanout: Optional[FanoutReport] = field(default=None, repr=False, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "alertId": self.alert_id,
        }


@dataclass
class LocationUpdate:
    """One position push from the device streamer."""
    location: GeoPoint
    timestamp: datetime
    direction: Optional[float] = None


@dataclass
class DeliveryAttempt:
    """Outcome of one SMS send to one contact."""
    phone_number: str
    contact_name: str
    status: DeliveryStatus
    attempt_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    provider_message_id: Optional[str] = None
    error_message: Optional[str] = None
    completed_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt_id": self.attempt_id,
            "contact_name": self.contact_name,
            "status": self.status.value,
            "provider_message_id": self.provider_message_id,
            "error_message": self.error_message,
            "completed_at": self.completed_at.isoformat(),
        }


@dataclass
class FanoutReport:
    alert_id: str
    attempts: List[DeliveryAttempt] = field(default_factory=list)

    @property
    def delivered(self) -> int:
        return sum(1 for a in self.attempts if a.status == DeliveryStatus.DELIVERED)

    @property
    def failed(self) -> int:
        return sum(1 for a in self.attempts if a.status == DeliveryStatus.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "total": len(self.attempts),
            "delivered": self.delivered,
            "failed": self.failed,
            "attempts": [a.to_dict() for a in self.attempts],
        }


# ═══════════════════════════════════════════════════════════════════════════
# Persisted entity
# ═══════════════════════════════════════════════════════════════════════════

class AlertRecord(Base):
    """One triggered SOS and its live-tracked location."""

    __tablename__ = "alerts"

    alert_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    status: Mapped[str] = mapped_column(String(16), default=AlertStatus.ACTIVE.value)
    trigger_method: Mapped[str] = mapped_column(String(16))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    initial_lat: Mapped[float] = mapped_column(Float)
    initial_lng: Mapped[float] = mapped_column(Float)
    current_lat: Mapped[float] = mapped_column(Float)
    current_lng: Mapped[float] = mapped_column(Float)
    last_updated: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    direction: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    emergency_contacts: Mapped[List[str]] = mapped_column(JSON, default=list)

    @property
    def initial_location(self) -> GeoPoint:
        return GeoPoint(self.initial_lat, self.initial_lng)

    @property
    def current_location(self) -> GeoPoint:
        return GeoPoint(self.current_lat, self.current_lng)

    @property
    def is_active(self) -> bool:
        return self.status == AlertStatus.ACTIVE.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alertId": self.alert_id,
            "userId": self.user_id,
            "status": self.status,
            "triggerMethod": self.trigger_method,
            "createdAt": as_utc(self.created_at).isoformat(),
            "initialLocation": self.initial_location.to_dict(),
            "currentLocation": self.current_location.to_dict(),
            "lastUpdated": (
                as_utc(self.last_updated).isoformat() if self.last_updated else None
            ),
            "direction": self.direction,
            "emergencyContacts": list(self.emergency_contacts or []),
        }

    def to_tracking_dict(self) -> Dict[str, Any]:
        """Public view behind the tracking link: no user id, no contacts."""
        return {
            "alertId": self.alert_id,
            "status": self.status,
            "createdAt": as_utc(self.created_at).isoformat(),
            "currentLocation": self.current_location.to_dict(),
            "lastUpdated": (
                as_utc(self.last_updated).isoformat() if self.last_updated else None
            ),
            "direction": self.direction,
        }
