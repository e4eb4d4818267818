"""Request/response logging middleware"""

import logging
import re
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

# Accept/decline links carry signed tokens in the path
_TOKEN_PATH = re.compile(r"(/api/v1/jobs/(?:accept|decline)/)[^/?]+")

SLOW_REQUEST_SECONDS = 5.0


def redact_path(path: str) -> str:
    return _TOKEN_PATH.sub(r"\1[redacted]", path)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request and its response without leaking invitation tokens"""

    def __init__(self, app, log_requests: bool = True, log_responses: bool = True):
        super().__init__(app)
        self.log_requests = log_requests
        self.log_responses = log_responses

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        request_id = getattr(request.state, "request_id", "unknown")
        path = redact_path(request.url.path)

        if self.log_requests:
            logger.info(
                "Incoming request",
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": path,
                    "client_host": request.client.host if request.client else "unknown",
                    "user_agent": request.headers.get("user-agent", "unknown"),
                },
            )

        response: Response = await call_next(request)

        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(round(process_time, 4))

        if self.log_responses:
            details = {
                "request_id": request_id,
                "method": request.method,
                "path": path,
                "status_code": response.status_code,
                "process_time": round(process_time, 4),
            }
            logger.info("Request completed", extra=details)

            if process_time > SLOW_REQUEST_SECONDS:
                logger.warning("Slow request detected", extra=details)

        return response
