"""FastAPI middleware for request logging."""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from xero_accounting.logging import (
    clear_request_context,
    log_api_request,
    set_request_context,
)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with its duration and tag it with a request ID."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())[:8]
        set_request_context(request_id)

        start_time = time.perf_counter()

        try:
            response = await call_next(request)

            log_api_request(
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=(time.perf_counter() - start_time) * 1000,
            )

            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as e:
            log_api_request(
                method=request.method,
                path=request.url.path,
                status_code=500,
                duration_ms=(time.perf_counter() - start_time) * 1000,
                error=str(e),
            )
            raise

        finally:
            clear_request_context()
