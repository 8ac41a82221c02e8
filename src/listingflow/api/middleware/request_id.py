"""Request ID middleware for request correlation.

Adds an X-Request-ID header to every response. A client-supplied id is
kept; otherwise a new UUID is generated. The id also flows into the actor
context and from there into every audit event the request writes.
"""

import uuid
from collections.abc import Callable
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# Request ID of the request being served
request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

REQUEST_ID_HEADER = "X-Request-ID"


def get_request_id() -> str | None:
    """Get the current request ID from context.

    Returns:
        The request ID for the current request, or None outside a request.
    """
    return request_id_ctx.get()


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Ensures every request carries an X-Request-ID.

    The id is stored in a context variable and on ``request.state`` for
    handlers, and echoed on the response.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER, "").strip() or str(uuid.uuid4())

        request_id_ctx.set(request_id)
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
