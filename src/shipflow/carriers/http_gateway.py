"""HTTP adapter for the carrier RPC service.

Each port operation is a JSON POST to ``<base_url>/<function>``. The service
answers ``{"success": bool, "data": {...}, "error": ...}``; a 4xx/5xx answer
with such a body is still a carrier-level failure, not a transport error.
"""

from typing import Any, Dict, Optional

import httpx

from ..observability.logging_config import get_logger
from ..observability.request_id import get_request_id
from .ports import (
    BolRequest,
    BookingRequest,
    CarrierGatewayError,
    CarrierGatewayPort,
    GatewayResponse,
    LabelRequest,
)

logger = get_logger(__name__)

BOOK_FUNCTION = "bookRateUniversal"
LABEL_FUNCTION = "generateLabel"
BOL_FUNCTION = "generateBOL"


class HttpCarrierGateway(CarrierGatewayPort):
    """Carrier gateway over httpx.AsyncClient.

    Timeouts are enforced by the transport; the orchestrator never cancels
    a call once it started.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._owns_client = client is None
        self.http_client = client or httpx.AsyncClient(
            timeout=timeout_seconds,
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=5),
        )

    @classmethod
    def from_settings(cls, settings) -> "HttpCarrierGateway":
        return cls(
            base_url=settings.CARRIER_API_BASE_URL,
            api_key=settings.CARRIER_API_KEY,
            timeout_seconds=settings.CARRIER_API_TIMEOUT_SECONDS,
        )

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "X-Request-ID": get_request_id()}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _call(self, function: str, payload: Dict[str, Any]) -> GatewayResponse:
        url = f"{self.base_url}/{function}"
        try:
            response = await self.http_client.post(url, json=payload, headers=self._headers())
        except httpx.TimeoutException as e:
            raise CarrierGatewayError(f"{function} timed out: {e}") from e
        except httpx.HTTPError as e:
            raise CarrierGatewayError(f"{function} request failed: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise CarrierGatewayError(
                f"{function} returned non-JSON response (HTTP {response.status_code})"
            ) from e

        result = GatewayResponse.from_body(body)
        if response.is_error and result.success:
            result = GatewayResponse(
                success=False,
                data=result.data,
                error=f"HTTP {response.status_code}",
            )

        logger.info(
            f"Carrier RPC {function} answered success={result.success}",
            extra={"status_code": response.status_code},
        )
        return result

    async def book(self, request: BookingRequest) -> GatewayResponse:
        payload = request.to_payload()
        if payload.get("apiKey") is None:
            payload["apiKey"] = self.api_key
        return await self._call(BOOK_FUNCTION, payload)

    async def generate_label(self, request: LabelRequest) -> GatewayResponse:
        return await self._call(LABEL_FUNCTION, request.to_payload())

    async def generate_bol(self, request: BolRequest) -> GatewayResponse:
        return await self._call(BOL_FUNCTION, request.to_payload())

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()
