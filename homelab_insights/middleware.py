"""Middleware for the Homelab Insights API"""

import re
import time
import uuid
from typing import Callable

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .metrics import track_request
from .structured_logger import get_logger, request_context

logger = get_logger("homelab_insights.http")

# Collapse path parameters so metric label cardinality stays bounded
_PATH_PARAMS = [
    (re.compile(r"^/v1/insights/[^/]+/dismiss$"), "/v1/insights/{insight_id}/dismiss"),
    (re.compile(r"^/v1/disks/(?!predictions$)[^/]+/prediction$"), "/v1/disks/{disk_name}/prediction"),
]


def endpoint_label(path: str) -> str:
    for pattern, label in _PATH_PARAMS:
        if pattern.match(path):
            return label
    return path


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log and count every request with timing and a request id"""

    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        request.state.request_id = request_id
        endpoint = endpoint_label(request.url.path)

        with request_context(request_id):
            start_time = time.time()
            try:
                response = await call_next(request)
            except Exception as e:
                duration_ms = (time.time() - start_time) * 1000
                logger.error(f"{request.method} {request.url.path} - Error: {e}")
                track_request(request.method, endpoint, 500, duration_ms)
                return JSONResponse(
                    status_code=500,
                    content={
                        "error": "Internal server error",
                        "request_id": request_id
                    }
                )

            duration_ms = (time.time() - start_time) * 1000
            logger.log_request(request.method, request.url.path, response.status_code, duration_ms)
            if endpoint != "/metrics":
                track_request(request.method, endpoint, response.status_code, duration_ms)

        response.headers["X-Response-Time"] = f"{duration_ms / 1000:.3f}s"
        response.headers["X-Request-ID"] = request_id
        return response
