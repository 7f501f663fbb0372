"""Request tracing: correlation/event ids, one log line per request."""
import time
import uuid
import logging
from typing import Any, Dict

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from safetyops.app.core.logging import correlation_id_ctx, entity_id_ctx, event_id_ctx

CORRELATION_HEADER = "X-Correlation-ID"
EVENT_HEADER = "X-Event-ID"

logger = logging.getLogger(__name__)


def _request_fields(request: Request, started: float, event_id: str) -> Dict[str, Any]:
    return {
        "method": request.method,
        "path": request.url.path,
        "duration_ms": round((time.perf_counter() - started) * 1000, 2),
        "event_id": event_id,
    }


class TracingMiddleware(BaseHTTPMiddleware):
    """
    Tags every request with a correlation id (taken from the caller when
    supplied) and a fresh event id.

    Both ids are placed in the logging context, so lifecycle log lines emitted
    while serving the request carry them, and are echoed in the response
    headers. The entity id is reset per request; routes bind it once the path
    has been matched.
    """

    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get(CORRELATION_HEADER) or \
                         request.headers.get("X-Trace-ID") or \
                         str(uuid.uuid4())
        event_id = str(uuid.uuid4())

        correlation_id_ctx.set(correlation_id)
        event_id_ctx.set(event_id)
        entity_id_ctx.set(None)
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            fields = _request_fields(request, started, event_id)
            fields.update(status_code=500, error=str(e))
            logger.error(
                f"{request.method} {request.url.path} failed",
                extra={"extra_data": fields},
                exc_info=True,
            )
            raise

        fields = _request_fields(request, started, event_id)
        fields["status_code"] = response.status_code
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(level, f"{request.method} {request.url.path} -> {response.status_code}", extra={"extra_data": fields})

        response.headers[CORRELATION_HEADER] = correlation_id
        response.headers[EVENT_HEADER] = event_id
        return response
