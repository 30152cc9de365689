"""Metrics and health endpoints."""

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ..dependencies import Services, get_services
from .health import (
    HealthStatus,
    check_carrier_gateway,
    check_database_health,
    get_overall_health,
)

router = APIRouter(tags=["Observability"])


@router.get("/metrics", include_in_schema=False)
def metrics():
    """Prometheus text exposition."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@router.get("/health", summary="Health check endpoint")
async def health_check(services: Services = Depends(get_services)):
    """200 while the database answers, 503 otherwise.

    A degraded carrier gateway is reported but does not fail the check.
    """
    components = {
        "database": await check_database_health(services.session_factory),
        "carrier_gateway": check_carrier_gateway(
            services.settings.CARRIER_GATEWAY,
            services.settings.CARRIER_API_KEY,
        ),
    }
    overall = get_overall_health(components)

    return JSONResponse(
        status_code=503 if overall == HealthStatus.UNHEALTHY else 200,
        content={
            "status": overall.value,
            "open_workspaces": len(services.workspaces),
            "components": {name: comp.to_dict() for name, comp in components.items()},
        },
    )
