"""Health checks for ShipFlow.

The database is a hard dependency. The carrier gateway only degrades the
service: drafts can still be edited while booking is unavailable.
"""

import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .logging_config import get_logger

logger = get_logger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    status: HealthStatus
    message: Optional[str] = None
    latency_ms: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


async def check_database_health(session_factory: async_sessionmaker[AsyncSession]) -> ComponentHealth:
    """Run ``SELECT 1`` and report the round trip."""
    start = time.perf_counter()
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        return ComponentHealth(status=HealthStatus.UNHEALTHY, message=f"Database error: {e}")

    return ComponentHealth(
        status=HealthStatus.HEALTHY,
        message="Database connection OK",
        latency_ms=round((time.perf_counter() - start) * 1000, 2),
    )


def check_carrier_gateway(gateway_name: str, api_key: Optional[str]) -> ComponentHealth:
    """Configuration check only; no carrier call is made."""
    if gateway_name == "mock":
        return ComponentHealth(status=HealthStatus.DEGRADED, message="Mock carrier gateway in use")
    if not api_key:
        return ComponentHealth(status=HealthStatus.DEGRADED, message="CARRIER_API_KEY not set")
    return ComponentHealth(status=HealthStatus.HEALTHY, message=f"Carrier gateway '{gateway_name}' configured")


def get_overall_health(components: Dict[str, ComponentHealth]) -> HealthStatus:
    """Worst component status wins."""
    statuses = {c.status for c in components.values()}
    for candidate in (HealthStatus.UNHEALTHY, HealthStatus.DEGRADED):
        if candidate in statuses:
            return candidate
    return HealthStatus.HEALTHY
