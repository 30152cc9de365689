"""Observability module for ShipFlow.

Provides structured logging, request correlation and metrics.
"""

from .logging_config import configure_logging, get_logger
from .metrics import (
    drafts_opened_total,
    section_persist_failures_total,
    identifier_fallbacks_total,
    identifier_collisions_total,
    bookings_total,
    booking_duration_seconds,
    document_generation_total,
)
from .request_id import request_id_var, get_request_id, set_request_id, generate_request_id, bind_request_id
from .middleware import RequestIDMiddleware

__all__ = [
    # Logging
    "configure_logging",
    "get_logger",
    # Metrics
    "drafts_opened_total",
    "section_persist_failures_total",
    "identifier_fallbacks_total",
    "identifier_collisions_total",
    "bookings_total",
    "booking_duration_seconds",
    "document_generation_total",
    # Request ID
    "request_id_var",
    "get_request_id",
    "set_request_id",
    "generate_request_id",
    "bind_request_id",
    # Middleware
    "RequestIDMiddleware",
]
