"""Request logging middleware emitting one JSON line per request."""

import json
import logging
import time
import uuid
from typing import Any, Awaitable, Callable, Dict

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs request and response information as structured JSON.

    Logs include the request ID, method, path, status code, processing
    time, client IP and, for analyze calls, the batch size and mode
    reported by the route in response headers.

    Never logs request or response bodies, file contents or API keys.
    """

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        start_time = time.monotonic()
        log_data: Dict[str, Any] = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "user_ip": request.client.host if request.client else "unknown",
        }

        try:
            response = await call_next(request)
        except Exception as e:
            error_log = {
                **log_data,
                "status_code": 500,
                "processing_time_ms": round((time.monotonic() - start_time) * 1000, 2),
                "error": str(e),
                "error_type": type(e).__name__,
                "message": f"Request failed: {request.method} {request.url.path}",
            }
            logger.error(json.dumps(error_log), exc_info=True)
            raise

        log_data.update({
            "status_code": response.status_code,
            "processing_time_ms": round((time.monotonic() - start_time) * 1000, 2),
        })

        if "X-Batch-Size" in response.headers:
            try:
                log_data["batch_size"] = int(response.headers["X-Batch-Size"])
            except ValueError:
                pass
        if "X-Classifier-Mode" in response.headers:
            log_data["classifier_mode"] = response.headers["X-Classifier-Mode"]

        logger.info(json.dumps(log_data))

        response.headers["X-Request-ID"] = request_id
        return response


def get_request_id(request: Request) -> str:
    """Request ID assigned by the middleware, or "unknown"."""
    return getattr(request.state, "request_id", "unknown")
