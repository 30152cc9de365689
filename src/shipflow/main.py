"""ShipFlow - Main FastAPI Application

Shipment draft and booking service.

This module creates and configures the FastAPI application, including:
- Shipment draft router
- Middleware (request ID correlation, CORS)
- Exception handlers mapping domain errors to HTTP status codes
- Health and metrics endpoints
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .config import get_settings
from .database import create_tables, dispose_engine, get_engine, get_session_factory
from .dependencies import Services, build_services
from .observability.logging_config import configure_logging
from .observability.middleware import RequestIDMiddleware
from .observability.router import router as observability_router
from .shipment_drafts.exceptions import (
    BookingAlreadyCompletedError,
    BookingPreconditionError,
    DraftAccessError,
    DraftNotEditableError,
    DraftNotFoundError,
    DraftStoreError,
    NavigationError,
    RatePersistenceError,
    SectionValidationError,
    ShipmentDraftError,
)
from .shipment_drafts.router import router as shipment_drafts_router
from .shipment_drafts.status import StateTransitionError

settings = get_settings()

configure_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)

logger = logging.getLogger(__name__)


# Most specific first
ERROR_STATUS = (
    (DraftNotFoundError, status.HTTP_404_NOT_FOUND, "not_found"),
    (DraftAccessError, status.HTTP_403_FORBIDDEN, "forbidden"),
    (DraftNotEditableError, status.HTTP_409_CONFLICT, "not_editable"),
    (StateTransitionError, status.HTTP_409_CONFLICT, "invalid_state"),
    (BookingAlreadyCompletedError, status.HTTP_409_CONFLICT, "already_booked"),
    (SectionValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY, "validation_error"),
    (BookingPreconditionError, status.HTTP_422_UNPROCESSABLE_ENTITY, "booking_precondition"),
    (NavigationError, status.HTTP_422_UNPROCESSABLE_ENTITY, "navigation_error"),
    (RatePersistenceError, status.HTTP_502_BAD_GATEWAY, "rate_persistence_error"),
    (DraftStoreError, status.HTTP_503_SERVICE_UNAVAILABLE, "store_unavailable"),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler.

    - Startup: create tables, wire services (unless injected)
    - Shutdown: close the carrier gateway and the engine
    """
    logger.info("ShipFlow API starting up...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")

    owns_services = getattr(app.state, "services", None) is None
    if owns_services:
        await create_tables(get_engine())
        app.state.services = build_services(settings, get_session_factory())

    yield

    logger.info("ShipFlow API shutting down...")
    if owns_services:
        await app.state.services.gateway.aclose()
        await dispose_engine()


def register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(ShipmentDraftError)
    async def shipment_draft_exception_handler(
        request: Request,
        exc: ShipmentDraftError
    ) -> JSONResponse:
        """Map domain errors to HTTP status codes."""
        status_code, error = status.HTTP_400_BAD_REQUEST, "shipment_draft_error"
        for exc_type, code, name in ERROR_STATUS:
            if isinstance(exc, exc_type):
                status_code, error = code, name
                break

        content = {"error": error, "message": str(exc)}
        if isinstance(exc, SectionValidationError):
            content["section"] = exc.section
            content["details"] = exc.errors
        elif isinstance(exc, BookingPreconditionError):
            content["missing"] = exc.missing

        log = logger.error if status_code >= 500 else logger.warning
        log(f"{error} on {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=status_code, content=content)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError
    ) -> JSONResponse:
        """Handle Pydantic validation errors with field-level details."""
        errors = [
            {"type": e["type"], "loc": list(e["loc"]), "msg": e["msg"]}
            for e in exc.errors()
        ]
        logger.warning(f"Validation error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": "validation_error",
                "message": "Request validation failed",
                "details": errors,
            },
        )

    @app.exception_handler(SQLAlchemyError)
    async def database_exception_handler(
        request: Request,
        exc: SQLAlchemyError
    ) -> JSONResponse:
        """Log the full error but return a generic message."""
        logger.error(
            f"Database error on {request.method} {request.url.path}",
            exc_info=exc
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "database_error",
                "message": "A database error occurred. Please try again later.",
            },
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request,
        exc: Exception
    ) -> JSONResponse:
        """Catch-all: details are logged, not exposed to the client."""
        logger.error(
            f"Unhandled exception on {request.method} {request.url.path}",
            exc_info=exc
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "internal_error",
                "message": "An unexpected error occurred. Please try again later.",
            },
        )


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Application factory.

    Args:
        services: Pre-wired services (tests). When omitted they are built
            from settings at startup.
    """
    app = FastAPI(
        title="ShipFlow API",
        description="Shipment draft and booking service",
        version="0.1.0",
        docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
        redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None,
        openapi_url="/openapi.json" if settings.ENVIRONMENT != "production" else None,
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services

    # Request ID Middleware (must be first for proper correlation)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    register_exception_handlers(app)

    app.include_router(observability_router)
    app.include_router(shipment_drafts_router, prefix="/api/v1")

    @app.get("/", include_in_schema=False)
    async def root() -> dict[str, Any]:
        """Root endpoint - API information."""
        return {
            "name": "ShipFlow API",
            "version": "0.1.0",
            "status": "running",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import os

    import uvicorn

    uvicorn.run(
        "shipflow.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=settings.ENVIRONMENT == "development",
        log_level=settings.LOG_LEVEL.lower(),
        log_config=None,
    )
