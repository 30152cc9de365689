"""
Mock Carrier Gateway - In-memory carrier RPC for development and tests

Simulates booking and document generation without a carrier RPC service.
Every call is recorded with a monotonic timestamp so callers can assert on
ordering and delays.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from uuid import uuid4

from ..ports import (
    BolRequest,
    BookingRequest,
    CarrierGatewayError,
    CarrierGatewayPort,
    GatewayResponse,
    LabelRequest,
)


logger = logging.getLogger(__name__)

MODE_SUCCESS = "success"
MODE_FAILURE = "failure"  # success=false response
MODE_ERROR = "error"      # raises CarrierGatewayError


@dataclass
class RecordedCall:
    operation: str
    payload: Dict[str, Any]
    at: float = field(default_factory=time.monotonic)


class MockCarrierGateway(CarrierGatewayPort):
    """
    Mock carrier gateway.

    Configuration (per operation, "book" | "label" | "bol"):
        - mode: "success" | "failure" | "error" (default: "success")
        - error_message: Message used for failure/error modes
        - response_data: Body returned on success (overrides the generated one)

    Usage:
        gateway = MockCarrierGateway(label={"mode": "failure"})
        response = await gateway.book(request)
        assert response.success is True
    """

    def __init__(
        self,
        book: Optional[Dict[str, Any]] = None,
        label: Optional[Dict[str, Any]] = None,
        bol: Optional[Dict[str, Any]] = None,
    ):
        self.config = {
            "book": book or {},
            "label": label or {},
            "bol": bol or {},
        }
        self.calls: List[RecordedCall] = []

    def configure(self, operation: str, **config) -> None:
        self.config[operation] = config

    def calls_for(self, operation: str) -> List[RecordedCall]:
        return [c for c in self.calls if c.operation == operation]

    def _respond(self, operation: str, payload: Dict[str, Any], default_data: Dict[str, Any]) -> GatewayResponse:
        self.calls.append(RecordedCall(operation=operation, payload=payload))

        config = self.config.get(operation, {})
        mode = config.get("mode", MODE_SUCCESS)
        error_message = config.get("error_message", f"Mock {operation} simulated failure")

        if mode == MODE_ERROR:
            logger.info(f"MockCarrierGateway: Simulating {operation} transport error")
            raise CarrierGatewayError(error_message)

        if mode == MODE_FAILURE:
            logger.info(f"MockCarrierGateway: Simulating {operation} failure")
            return GatewayResponse(success=False, error=error_message)

        data = config.get("response_data")
        if data is None:
            data = default_data
        return GatewayResponse(success=True, data=dict(data))

    async def book(self, request: BookingRequest) -> GatewayResponse:
        confirmation = f"MOCK-{uuid4().hex[:10].upper()}"
        return self._respond(
            "book",
            request.to_payload(),
            {"confirmationNumber": confirmation, "bookingStatus": "BOOKED"},
        )

    async def generate_label(self, request: LabelRequest) -> GatewayResponse:
        return self._respond(
            "label",
            request.to_payload(),
            {"documentId": f"label-{uuid4().hex[:8]}", "format": request.format_hint},
        )

    async def generate_bol(self, request: BolRequest) -> GatewayResponse:
        return self._respond(
            "bol",
            request.to_payload(),
            {"documentId": f"bol-{uuid4().hex[:8]}"},
        )
