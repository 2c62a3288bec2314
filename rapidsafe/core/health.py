"""
Health check aggregation: a deep probe of the subsystems the alert
pipeline cannot work without.

Checks:
    • Database connectivity (alert records)
    • SMS provider configuration (notification fanout)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from rapidsafe.core.config import settings
from rapidsafe.core.database import get_engine

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # alerts are created but notifications may not go out
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = settings.APP_VERSION
    environment: str = settings.ENVIRONMENT
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


_start_time = time.monotonic()


async def check_database(engine: Optional[AsyncEngine] = None) -> ComponentHealth:
    comp = ComponentHealth(name="database")
    start = time.monotonic()
    try:
        async with (engine or get_engine()).connect() as conn:
            await conn.execute(text("SELECT 1"))
        comp.message = "Connection available"
    except Exception as exc:
        logger.error("Database health check failed: %s", exc)
        comp.status = HealthStatus.UNHEALTHY
        comp.message = str(exc)
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


def check_sms_provider() -> ComponentHealth:
    comp = ComponentHealth(name="sms_provider")
    if settings.SMS_PROVIDER == "simulation":
        comp.message = "Simulation mode, messages are logged only"
        if settings.is_production:
            comp.status = HealthStatus.DEGRADED
    elif settings.SMS_PROVIDER == "twilio":
        missing = [
            name for name in ("TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_FROM_NUMBER")
            if not getattr(settings, name)
        ]
        if missing:
            comp.status = HealthStatus.DEGRADED
            comp.message = f"Missing settings: {', '.join(missing)}"
    else:
        comp.status = HealthStatus.DEGRADED
        comp.message = f"Unknown SMS provider: {settings.SMS_PROVIDER}"
    return comp


async def run_health_check(engine: Optional[AsyncEngine] = None) -> HealthReport:
    components = [await check_database(engine), check_sms_provider()]

    statuses = {c.status for c in components}
    if HealthStatus.UNHEALTHY in statuses:
        overall = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        overall = HealthStatus.DEGRADED
    else:
        overall = HealthStatus.HEALTHY

    return HealthReport(
        status=overall,
        uptime_seconds=time.monotonic() - _start_time,
        components=components,
    )
