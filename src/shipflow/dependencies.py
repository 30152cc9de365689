"""Global FastAPI dependencies and service wiring.

This module provides:
- get_operator: operator identity from the X-Company-ID / X-User-ID headers
- build_services: wires store, repositories, gateway and lifecycle manager
- get_* accessors for the services held on app.state

Authentication happens upstream; this service trusts the identity headers
set by the gateway in front of it.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from fastapi import Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .carriers.capabilities import CarrierCapabilityRegistry
from .carriers.ports import CarrierGatewayPort
from .carriers.registry import GatewayRegistry
from .config import Settings
from .shipment_drafts.identifiers import ShipmentIdGenerator
from .shipment_drafts.lifecycle import DraftLifecycleManager
from .shipment_drafts.rates import SqlAlchemyRateRepository
from .shipment_drafts.store import Owner, SqlAlchemyDraftStore
from .shipment_drafts.workspace import WorkspaceRegistry


@dataclass
class Services:
    """Process-wide service instances."""
    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    store: SqlAlchemyDraftStore
    rate_repository: SqlAlchemyRateRepository
    gateway: CarrierGatewayPort
    capabilities: CarrierCapabilityRegistry
    id_generator: ShipmentIdGenerator
    lifecycle: DraftLifecycleManager
    workspaces: WorkspaceRegistry


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    gateway: Optional[CarrierGatewayPort] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Services:
    """Wire all services for one process.

    Args:
        settings: Application settings
        session_factory: Async session factory for the store and repositories
        gateway: Carrier gateway override (tests); defaults to CARRIER_GATEWAY
        sleep: Delay function used by booking orchestration
    """
    store = SqlAlchemyDraftStore(session_factory)
    rate_repository = SqlAlchemyRateRepository(session_factory)
    gateway = gateway or GatewayRegistry.build(settings.CARRIER_GATEWAY, settings)
    capabilities = CarrierCapabilityRegistry.from_settings(settings)
    id_generator = ShipmentIdGenerator(
        store,
        max_attempts=settings.ID_MAX_ATTEMPTS,
        suffix_length=settings.ID_SUFFIX_LENGTH,
    )
    lifecycle = DraftLifecycleManager(
        store=store,
        rate_repository=rate_repository,
        gateway=gateway,
        capabilities=capabilities,
        id_generator=id_generator,
        settings=settings,
        sleep=sleep,
    )
    return Services(
        settings=settings,
        session_factory=session_factory,
        store=store,
        rate_repository=rate_repository,
        gateway=gateway,
        capabilities=capabilities,
        id_generator=id_generator,
        lifecycle=lifecycle,
        workspaces=WorkspaceRegistry(
            idle_timeout=settings.WORKSPACE_IDLE_TIMEOUT_SECONDS or None,
            max_open=settings.WORKSPACE_MAX_OPEN or None,
        ),
    )


def get_operator(
    x_company_id: Optional[str] = Header(None, alias="X-Company-ID"),
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
) -> Owner:
    """Operator identity from request headers.

    Raises:
        HTTPException 401: If either header is missing or blank
    """
    if not x_company_id or not x_company_id.strip() or not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Company-ID and X-User-ID headers are required",
        )
    return Owner(company_key=x_company_id.strip(), user_key=x_user_id.strip())


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is starting up",
        )
    return services


def get_lifecycle(request: Request) -> DraftLifecycleManager:
    return get_services(request).lifecycle


def get_workspaces(request: Request) -> WorkspaceRegistry:
    return get_services(request).workspaces


def get_store(request: Request) -> SqlAlchemyDraftStore:
    return get_services(request).store
