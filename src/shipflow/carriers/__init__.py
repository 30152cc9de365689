"""
Carriers module - carrier booking and document integration

Defines the CarrierGatewayPort used by the booking orchestrator, the
document-capability lookup, and the gateway adapters (HTTP and mock).
"""

from .ports import (
    CarrierGatewayPort,
    BookingRequest,
    LabelRequest,
    BolRequest,
    GatewayResponse,
    CarrierGatewayError,
)
from .capabilities import CarrierCapabilityRegistry, DocumentCapability
from .http_gateway import HttpCarrierGateway
from .implementations.mock_gateway import MockCarrierGateway
from .registry import GatewayRegistry

__all__ = [
    "CarrierGatewayPort",
    "BookingRequest",
    "LabelRequest",
    "BolRequest",
    "GatewayResponse",
    "CarrierGatewayError",
    "CarrierCapabilityRegistry",
    "DocumentCapability",
    "HttpCarrierGateway",
    "MockCarrierGateway",
    "GatewayRegistry",
]
