"""listingflow API middleware components.

This module provides:
- Request ID tracking for request correlation
- Consistent failure envelope formatting
- Actor resolution from identity headers
"""

from listingflow.api.middleware.actor import (
    REQUIRED_ACTOR_HEADERS,
    current_request_id,
    require_actor,
    resolve_actor,
)
from listingflow.api.middleware.errors import (
    ErrorHandlerMiddleware,
    build_error_response,
    register_exception_handlers,
)
from listingflow.api.middleware.request_id import (
    REQUEST_ID_HEADER,
    RequestIDMiddleware,
    get_request_id,
)

__all__ = [
    "REQUEST_ID_HEADER",
    "REQUIRED_ACTOR_HEADERS",
    "ErrorHandlerMiddleware",
    "RequestIDMiddleware",
    "build_error_response",
    "current_request_id",
    "get_request_id",
    "register_exception_handlers",
    "require_actor",
    "resolve_actor",
]
