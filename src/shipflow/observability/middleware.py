"""FastAPI middleware for observability.

Binds a request id to every request and logs one line on entry and one on
completion, tagged with the operator headers when present.
"""

import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .logging_config import get_logger
from .request_id import bind_request_id

logger = get_logger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Middleware to bind request IDs and log request outcomes."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = bind_request_id(request.headers.get("X-Request-ID"))
        operator = {
            "company_key": request.headers.get("X-Company-ID", "-"),
            "user_key": request.headers.get("X-User-ID", "-"),
        }

        start_time = time.time()
        logger.info(f"{request.method} {request.url.path}", extra=operator)

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                f"Request failed: {str(e)}",
                extra={**operator, "duration_ms": round(duration_ms, 2)},
                exc_info=True
            )
            raise

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"{request.method} {request.url.path} completed: {response.status_code}",
            extra={
                **operator,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
            }
        )

        response.headers["X-Request-ID"] = request_id
        return response
