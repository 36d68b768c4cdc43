"""
Request ID middleware for request tracing.

Every log line emitted while a request is handled (registry changes,
kill switches, phase transitions) carries the request id, and the actor
when the caller sent an X-Actor header.
"""

import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from rollout_engine.utils.context import request_id_ctx

REQUEST_ID_HEADER = "X-Request-ID"
ACTOR_HEADER = "X-Actor"


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Assign or propagate X-Request-ID and bind it to the log context."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id

        token = request_id_ctx.set(request_id)
        bound = {"request_id": request_id}
        actor = request.headers.get(ACTOR_HEADER)
        if actor:
            bound["actor"] = actor
        structlog.contextvars.bind_contextvars(**bound)

        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars(*bound)
            request_id_ctx.reset(token)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
