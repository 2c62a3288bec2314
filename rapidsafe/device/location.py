"""
location.py — Device location: provider interface, one-shot fix, and the
recurring position watcher.

Provides:
    - PositionFix / PermissionStatus / LocationProvider (platform boundary)
    - haversine_m: great-circle distance in meters
    - acquire_initial_fix: bounded one-shot fix with the (0, 0) fallback
    - PositionWatcher: background task emitting positions on a time OR
      distance threshold

Haversine
=========
    a = sin²(Δφ / 2) + cos(φ₁) · cos(φ₂) · sin²(Δλ / 2)
    c = 2 · atan2(√a, √(1 − a))
    d = R · c

Accurate to ~0.5%, plenty for a 5 m displacement trigger.

Emission rule
=============
The first sample after start always emits. After that a sample emits when
either
    elapsed since last emission ≥ min_interval_seconds   (heartbeat)
    distance from last emitted position ≥ min_distance_meters
so a stationary phone still reports and a moving one is not throttled to
the timer.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol

from rapidsafe.alerts.models import UNKNOWN_LOCATION, GeoPoint

logger = logging.getLogger(__name__)

# A single reading may take this many poll intervals before it is abandoned
SAMPLE_TIMEOUT_POLLS = 5

EARTH_RADIUS_M: float = 6_371_008.8  # IAU mean radius


# ---------------------------------------------------------------------------
# Platform boundary
# ---------------------------------------------------------------------------

class PermissionStatus(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"


@dataclass(frozen=True)
class PositionFix:
    """A single GPS reading."""
    lat: float
    lng: float
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    heading: Optional[float] = None
    accuracy_m: Optional[float] = None

    def to_point(self) -> GeoPoint:
        return GeoPoint(self.lat, self.lng)


class LocationProvider(Protocol):
    """What the platform (GPS + permission dialogs) must offer."""

    async def request_foreground_permission(self) -> PermissionStatus:
        ...

    async def request_background_permission(self) -> PermissionStatus:
        ...

    async def get_current_position(self, *, high_accuracy: bool = True) -> PositionFix:
        """Raise LocationUnavailableError (or any error) when no fix exists."""
        ...


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------

def haversine_m(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance between two points, in meters."""
    lat1, lat2 = math.radians(a.lat), math.radians(b.lat)
    d_lat = lat2 - lat1
    d_lng = math.radians(b.lng - a.lng)

    h = (
        math.sin(d_lat / 2.0) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2.0) ** 2
    )
    c = 2.0 * math.atan2(math.sqrt(h), math.sqrt(1.0 - h))
    return EARTH_RADIUS_M * c


# ---------------------------------------------------------------------------
# One-shot fix
# ---------------------------------------------------------------------------

async def acquire_initial_fix(
    provider: LocationProvider,
    timeout_seconds: float,
) -> GeoPoint:
    """
    Best-effort high-accuracy fix bounded by ``timeout_seconds``.

    Never raises: permission denial, timeout or provider failure all
    return the (0, 0) sentinel so the alert still goes out.
    """
    try:
        fix = await asyncio.wait_for(
            provider.get_current_position(high_accuracy=True),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.error("Initial location fix timed out after %.1fs", timeout_seconds)
        return UNKNOWN_LOCATION
    except Exception as exc:
        logger.error("Failed to get initial location: %s", exc)
        return UNKNOWN_LOCATION
    return fix.to_point()


# ---------------------------------------------------------------------------
# Recurring watcher
# ---------------------------------------------------------------------------

PositionCallback = Callable[[PositionFix], Awaitable[object]]


class PositionWatcher:
    """
    Recurring position registration backed by one asyncio task.

    The task samples the provider every ``poll_interval_seconds`` and hands
    qualifying fixes to ``on_position``. Sampling and callback errors are
    logged; the loop keeps going until :meth:`stop`.
    """

    def __init__(
        self,
        provider: LocationProvider,
        on_position: PositionCallback,
        *,
        min_interval_seconds: float,
        min_distance_meters: float,
        poll_interval_seconds: float = 1.0,
        sample_timeout_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._provider = provider
        self._on_position = on_position
        self.min_interval_seconds = min_interval_seconds
        self.min_distance_meters = min_distance_meters
        self.poll_interval_seconds = poll_interval_seconds
        self.sample_timeout_seconds = (
            sample_timeout_seconds
            if sample_timeout_seconds is not None
            else max(poll_interval_seconds * SAMPLE_TIMEOUT_POLLS, 1.0)
        )
        self._clock = clock

        self._task: Optional[asyncio.Task] = None
        self._last_emitted_at: Optional[float] = None
        self._last_emitted_point: Optional[GeoPoint] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def should_emit(self, fix: PositionFix, now: float) -> bool:
        if self._last_emitted_at is None or self._last_emitted_point is None:
            return True
        if now - self._last_emitted_at >= self.min_interval_seconds:
            return True
        moved = haversine_m(self._last_emitted_point, fix.to_point())
        return moved >= self.min_distance_meters

    async def sample_once(self) -> bool:
        """Take one reading; return True if it was emitted."""
        try:
            fix = await asyncio.wait_for(
                self._provider.get_current_position(high_accuracy=True),
                timeout=self.sample_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Position sample timed out after %.1fs", self.sample_timeout_seconds)
            return False
        except Exception as exc:
            logger.warning("Position sample failed: %s", exc)
            return False

        now = self._clock()
        if not self.should_emit(fix, now):
            return False

        self._last_emitted_at = now
        self._last_emitted_point = fix.to_point()
        try:
            await self._on_position(fix)
        except Exception as exc:
            logger.error("Position callback failed: %s", exc)
        return True

    async def _run(self) -> None:
        while True:
            await self.sample_once()
            await asyncio.sleep(self.poll_interval_seconds)

    def start(self) -> None:
        if self.is_running:
            return
        self._last_emitted_at = None
        self._last_emitted_point = None
        self._task = asyncio.create_task(self._run(), name="rapidsafe-position-watcher")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
