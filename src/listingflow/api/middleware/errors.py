"""Error handling for consistent JSON failure envelopes.

Every failure leaves the API in the same shape:

    {"ok": false, "error": {"code", "message", "details"}, "requestId": ...}

WorkflowError, request validation and HTTP errors are converted by FastAPI
exception handlers; anything that escapes them is caught by
ErrorHandlerMiddleware, logged, and reported as INTERNAL_ERROR without
leaking internals.
"""

import logging
from collections.abc import Callable
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from listingflow.api.middleware.request_id import get_request_id
from listingflow.core.errors import ERROR_STATUS, ErrorCode, WorkflowError
from listingflow.db.kv import StoreError

logger = logging.getLogger(__name__)

# HTTP errors raised by routing map onto the closed code set
_HTTP_STATUS_CODES: dict[int, ErrorCode] = {
    400: ErrorCode.VALIDATION_FAILED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    405: ErrorCode.VALIDATION_FAILED,
    409: ErrorCode.CONFLICT,
    422: ErrorCode.VALIDATION_FAILED,
}


def build_error_response(
    code: ErrorCode,
    message: str,
    status_code: int | None = None,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    """Build the standard failure envelope.

    Args:
        code: Error code from the closed taxonomy.
        message: Human-readable description.
        status_code: HTTP status; derived from the code when omitted.
        details: Domain context (ids, roles, statuses).

    Returns:
        JSONResponse with the failure envelope.
    """
    body: dict[str, Any] = {
        "ok": False,
        "error": {
            "code": code.value,
            "message": message,
            "details": details or {},
        },
        "requestId": get_request_id() or "",
    }
    return JSONResponse(status_code=status_code or ERROR_STATUS[code], content=body)


async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "Workflow error: %s",
            exc.message,
            extra={"error_code": exc.code.value, "path": request.url.path},
        )
    return build_error_response(exc.code, exc.message, exc.status_code, exc.details)


def _summarize_validation_errors(errors: Any) -> list[dict[str, Any]]:
    return [
        {
            "loc": [str(part) for part in error.get("loc", ())],
            "msg": str(error.get("msg", "")),
            "type": str(error.get("type", "")),
        }
        for error in errors
    ]


async def request_validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return build_error_response(
        ErrorCode.VALIDATION_FAILED,
        "Request validation failed",
        details={"errors": _summarize_validation_errors(exc.errors())},
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = _HTTP_STATUS_CODES.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    message = str(exc.detail) if exc.detail else code.value
    return build_error_response(code, message, exc.status_code)


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the envelope-producing exception handlers to app."""
    app.add_exception_handler(WorkflowError, workflow_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catches exceptions that escape the route handlers.

    Handles:
    - WorkflowError: raised outside a route (e.g. from a dependency chain
      that bypassed the exception handlers)
    - StoreError: backend failures, reported as INTERNAL_ERROR
    - Generic exceptions: logged with traceback, reported as INTERNAL_ERROR
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        try:
            return await call_next(request)
        except WorkflowError as exc:
            return build_error_response(exc.code, exc.message, exc.status_code, exc.details)
        except StoreError as exc:
            logger.error(
                "Store failure processing request: %s %s",
                request.method,
                request.url.path,
                extra={"store_operation": exc.operation, "store_key": exc.key},
            )
            return build_error_response(ErrorCode.INTERNAL_ERROR, "Unexpected server error")
        except Exception:
            logger.exception(
                "Unexpected error processing request: %s %s",
                request.method,
                request.url.path,
            )
            return build_error_response(ErrorCode.INTERNAL_ERROR, "Unexpected server error")
