"""Request tracing middleware shared by the HTTP services"""
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .logging import set_correlation_id, set_event_code, get_logger

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


def event_code_from_path(path: str):
    """``/events/ab12cd/photos`` -> ``ab12cd``; None for other routes"""
    parts = path.strip("/").split("/")
    if len(parts) >= 2 and parts[0] == "events":
        return parts[1]
    return None


class CorrelationMiddleware(BaseHTTPMiddleware):
    """Binds a correlation id and event code to the request's log context"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request.state.correlation_id = set_correlation_id(request.headers.get(CORRELATION_HEADER))
        set_event_code(event_code_from_path(request.url.path))

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        response.headers[CORRELATION_HEADER] = request.state.correlation_id
        log = logger.warning if response.status_code >= 500 else logger.info
        log(
            f"{request.method} {request.url.path} -> {response.status_code}",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(elapsed_ms, 1),
            }
        )
        return response
