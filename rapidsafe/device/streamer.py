"""
streamer.py — Background location streaming bound to one active alert.

State machine:

    IDLE ──start(id)──► REQUESTING_PERMISSION ──granted──► ACTIVE
      ▲                         │ denied                     │
      └─────────────────────────┴──────────── stop() ────────┘

A streamer owns at most one StreamSession (alert id + watcher task).
``start`` and ``stop`` are the only places that replace or clear it, and
both run under one lock, so two concurrent starts cannot leave two
watchers writing to two different alert records.

Background permission is requested only after foreground permission has
been granted.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from rapidsafe.core.config import settings
from rapidsafe.device.errors import LocationPermissionError
from rapidsafe.device.location import (
    LocationProvider,
    PermissionStatus,
    PositionFix,
    PositionWatcher,
)

logger = logging.getLogger(__name__)


class StreamState(str, Enum):
    IDLE = "idle"
    REQUESTING_PERMISSION = "requesting_permission"
    ACTIVE = "active"


class LocationSink(Protocol):
    async def push_location(self, alert_id: str, fix: PositionFix) -> bool:
        ...


@dataclass
class StreamSession:
    alert_id: str
    watcher: Optional[PositionWatcher] = None


class LocationStreamer:
    """
    Pushes periodic position updates into the bound alert record.

    The watcher runs as its own asyncio task, so the stream outlives
    whichever coroutine called :meth:`start`; it ends only on :meth:`stop`
    or when the event loop shuts down.
    """

    def __init__(
        self,
        provider: LocationProvider,
        sink: LocationSink,
        *,
        min_interval_seconds: float = settings.STREAM_MIN_INTERVAL_SECONDS,
        min_distance_meters: float = settings.STREAM_MIN_DISTANCE_METERS,
        poll_interval_seconds: float = settings.STREAM_POLL_INTERVAL_SECONDS,
    ):
        self._provider = provider
        self._sink = sink
        self.min_interval_seconds = min_interval_seconds
        self.min_distance_meters = min_distance_meters
        self.poll_interval_seconds = poll_interval_seconds

        self._state = StreamState.IDLE
        self._session: Optional[StreamSession] = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def bound_alert_id(self) -> Optional[str]:
        return self._session.alert_id if self._session else None

    @property
    def is_active(self) -> bool:
        return self._state == StreamState.ACTIVE

    async def start(self, alert_id: str) -> bool:
        """
        Bind to ``alert_id`` and begin streaming.

        Raises
        ------
        LocationPermissionError
            Foreground or background permission refused. The streamer is
            left IDLE with nothing bound.
        """
        async with self._lock:
            await self._end_session()

            self._session = StreamSession(alert_id=alert_id)
            self._state = StreamState.REQUESTING_PERMISSION

            try:
                await self._acquire_permissions()
            except Exception:
                self._session = None
                self._state = StreamState.IDLE
                raise

            watcher = PositionWatcher(
                self._provider,
                self.handle_position,
                min_interval_seconds=self.min_interval_seconds,
                min_distance_meters=self.min_distance_meters,
                poll_interval_seconds=self.poll_interval_seconds,
            )
            self._session.watcher = watcher
            watcher.start()
            self._state = StreamState.ACTIVE

        logger.info(
            "Background location tracking started for alert %s", alert_id,
            extra={"alert_id": alert_id},
        )
        return True

    async def _acquire_permissions(self) -> None:
        if await self._provider.request_foreground_permission() != PermissionStatus.GRANTED:
            raise LocationPermissionError("foreground")
        if await self._provider.request_background_permission() != PermissionStatus.GRANTED:
            raise LocationPermissionError("background")

    async def stop(self) -> bool:
        """Stop streaming and unbind. Calling it while idle is a no-op."""
        async with self._lock:
            was_bound = self.bound_alert_id
            await self._end_session()
        if was_bound:
            logger.info("Background location tracking stopped for alert %s", was_bound)
        return True

    async def _end_session(self) -> None:
        session, self._session = self._session, None
        self._state = StreamState.IDLE
        if session is not None and session.watcher is not None:
            await session.watcher.stop()

    async def handle_position(self, fix: PositionFix) -> bool:
        """
        Position callback. Returns True if the update reached the backend.

        Updates arriving with nothing bound are discarded; push failures are
        logged and left for the next periodic callback to supersede.
        """
        alert_id = self.bound_alert_id
        if alert_id is None:
            logger.warning("Location update received, but no active alert ID.")
            return False

        try:
            await self._sink.push_location(alert_id, fix)
        except Exception as exc:
            logger.error("Failed to push location for alert %s: %s", alert_id, exc)
            return False
        return True
