"""Request ID middleware for the HTTP side (health checks).

Learn: Every HTTP request gets an ID, taken from an incoming
X-Request-ID header (for tracing through a proxy) or generated. It is
bound to structlog's contextvars and echoed in the response.
WebSocket scopes pass through untouched; sessions bind their own
session_id instead.
"""

import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

HEADER = "X-Request-ID"
MAX_LENGTH = 128


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(HEADER, "")[:MAX_LENGTH] or uuid.uuid4().hex

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        response: Response = await call_next(request)
        response.headers[HEADER] = request_id
        return response
