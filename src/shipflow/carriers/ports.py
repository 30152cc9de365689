"""
CarrierGatewayPort - Port interface for carrier booking and document RPCs

The booking orchestrator depends only on this Port. Concrete adapters:
- HttpCarrierGateway: JSON-over-HTTP calls to the carrier RPC service
- MockCarrierGateway: in-memory gateway for development and tests

Carrier protocol details (SOAP envelopes, PDF conversion) live behind the RPC
service and are out of scope here.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class BookingRequest:
    """
    Input of CarrierGatewayPort.book().

    Attributes:
        api_key: Key forwarded to the carrier RPC service
        rate_request_context: Snapshot of the draft sections the rate was quoted for
        draft_key: Persistence key of the draft being booked
        rate_document_id: Persisted rate document selected for booking
    """
    api_key: Optional[str]
    rate_request_context: Dict[str, Any]
    draft_key: str
    rate_document_id: str

    def to_payload(self) -> Dict[str, Any]:
        return {
            "apiKey": self.api_key,
            "rateRequestData": self.rate_request_context,
            "draftFirestoreDocId": self.draft_key,
            "selectedRateDocumentId": self.rate_document_id,
        }


@dataclass
class LabelRequest:
    """Input of CarrierGatewayPort.generate_label()."""
    external_shipment_id: str
    draft_key: str
    carrier: str
    format_hint: str = "PDF"

    def to_payload(self) -> Dict[str, Any]:
        return {
            "shipmentId": self.external_shipment_id,
            "firebaseDocId": self.draft_key,
            "carrier": self.carrier,
            "labelFormat": self.format_hint,
        }


@dataclass
class BolRequest:
    """Input of CarrierGatewayPort.generate_bol()."""
    order_number: str
    draft_key: str
    carrier: str

    def to_payload(self) -> Dict[str, Any]:
        return {
            "proNumber": self.order_number,
            "shipmentId": self.order_number,
            "firebaseDocId": self.draft_key,
            "carrier": self.carrier,
        }


@dataclass
class GatewayResponse:
    """
    Standard return structure for every CarrierGatewayPort call.

    Attributes:
        success: Whether the carrier accepted the request
        data: Response body (confirmation fields, document ids, ...)
        error: Human-readable error message if success=False
    """
    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @classmethod
    def from_body(cls, body: Any) -> "GatewayResponse":
        """Build from an RPC response body ``{success, data, error|messages}``."""
        if not isinstance(body, dict):
            return cls(success=False, error="Malformed carrier response")
        # Callable-function envelope: {"result": {...}}
        if "result" in body and isinstance(body["result"], dict) and "success" not in body:
            body = body["result"]
        data = body.get("data")
        if not isinstance(data, dict):
            data = {k: v for k, v in body.items() if k not in ("success", "error", "messages")}
        success = bool(body.get("success"))
        error = _error_text(body.get("error"))
        if error is None and not success:
            error = _messages_text(body.get("messages"))
        return cls(success=success, data=data, error=error)


def _error_text(error: Any) -> Optional[str]:
    if error is None:
        return None
    if isinstance(error, dict):
        return error.get("message") or str(error)
    return str(error)


def _messages_text(messages: Any) -> Optional[str]:
    """Join a carrier's `messages` list: plain strings or {message|text} objects."""
    if not messages:
        return None
    if not isinstance(messages, list):
        messages = [messages]
    parts = []
    for message in messages:
        if isinstance(message, dict):
            message = message.get("message") or message.get("text")
        if message:
            parts.append(str(message))
    return "; ".join(parts) or None


class CarrierGatewayError(Exception):
    """
    Raised by gateway adapters when a call cannot be completed
    (transport failure, timeout, non-JSON response).

    The booking orchestrator turns this into attempt state; it never reaches
    the HTTP layer.
    """
    pass


class CarrierGatewayPort(ABC):
    """Abstract interface for the carrier RPC service."""

    @abstractmethod
    async def book(self, request: BookingRequest) -> GatewayResponse:
        """Reserve the shipment with the carrier of the selected rate.

        Raises:
            CarrierGatewayError: If the call cannot be completed
        """
        pass

    @abstractmethod
    async def generate_label(self, request: LabelRequest) -> GatewayResponse:
        """Generate the shipping label for a reserved shipment."""
        pass

    @abstractmethod
    async def generate_bol(self, request: BolRequest) -> GatewayResponse:
        """Generate the bill of lading for a reserved shipment."""
        pass

    async def aclose(self) -> None:
        """Release transport resources. No-op by default."""
        return None
