"""Request ID middleware for request tracing.

Each request gets an id (taken from X-Request-ID when the caller sends one)
that is stored on request.state, placed in the logging context and echoed
back in the X-Request-ID response header.
"""

import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from utils.logging import clear_request_context, get_logger, set_request_context

logger = get_logger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Generates and propagates request ids and logs request completion."""

    # Paths excluded from access logging
    EXCLUDE_PATHS = {"/health", "/health/live", "/health/ready"}

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        set_request_context(request_id=request_id)

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id

            if request.url.path not in self.EXCLUDE_PATHS:
                duration = time.perf_counter() - start_time
                log = logger.warning if response.status_code >= 400 else logger.info
                log(
                    f"{request.method} {request.url.path} - {response.status_code} ({duration:.3f}s)",
                    extra={
                        "event": "request_complete",
                        "method": request.method,
                        "path": request.url.path,
                        "status_code": response.status_code,
                        "duration_seconds": duration,
                    },
                )
            return response
        finally:
            clear_request_context()
