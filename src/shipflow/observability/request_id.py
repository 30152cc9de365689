"""Request ID management for request correlation.

The request id travels in a context variable so every log line of a request,
including those emitted while the booking orchestrator awaits carrier calls,
carries it. The same id is forwarded to the carrier RPC service.
"""

import re
import uuid
from contextvars import ContextVar
from typing import Optional

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Accepted shape of a caller-supplied X-Request-ID
_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._\-]{8,128}$")


def generate_request_id() -> str:
    return str(uuid.uuid4())


def get_request_id() -> str:
    """Current request id, or "no-request-id" outside a request."""
    return request_id_var.get() or "no-request-id"


def set_request_id(request_id: str) -> None:
    request_id_var.set(request_id)


def bind_request_id(incoming: Optional[str]) -> str:
    """Adopt a caller-supplied request id if well formed, else generate one.

    Returns:
        The request id now bound to the current context
    """
    request_id = incoming.strip() if incoming else ""
    if not _REQUEST_ID_PATTERN.match(request_id):
        request_id = generate_request_id()
    set_request_id(request_id)
    return request_id
