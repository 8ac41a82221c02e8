"""Actor resolution from request headers.

Identity is asserted by the caller through X-LF-* headers; there is no
session or token layer in front of the workflow engine. Handlers declare
the actor as a dependency:

    @router.get("/jobs")
    async def list_jobs(actor: Annotated[ActorContext, Depends(require_actor)]):
        ...
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping

from fastapi import Request

from listingflow.api.middleware.request_id import get_request_id
from listingflow.core.errors import forbidden
from listingflow.services.authz import ActorContext, parse_role
from listingflow.services.organization import ACTOR_HEADER_NAMES

logger = logging.getLogger(__name__)

REQUIRED_ACTOR_HEADERS = [
    ACTOR_HEADER_NAMES["user_id"],
    ACTOR_HEADER_NAMES["role"],
    ACTOR_HEADER_NAMES["brokerage_id"],
]


def _header(headers: Mapping[str, str], name: str) -> str:
    return (headers.get(name) or headers.get(name.lower()) or "").strip()


def resolve_actor(headers: Mapping[str, str], request_id: str) -> ActorContext:
    """Build an ActorContext from identity headers.

    Args:
        headers: Request headers (case-insensitive mapping or plain dict).
        request_id: Correlation id for this request.

    Raises:
        WorkflowError: FORBIDDEN when user, role or brokerage is missing;
            VALIDATION_FAILED for an unknown role.
    """
    user_id = _header(headers, ACTOR_HEADER_NAMES["user_id"])
    role_raw = _header(headers, ACTOR_HEADER_NAMES["role"])
    brokerage_id = _header(headers, ACTOR_HEADER_NAMES["brokerage_id"])

    if not (user_id and role_raw and brokerage_id):
        raise forbidden("Missing actor headers", requiredHeaders=REQUIRED_ACTOR_HEADERS)

    return ActorContext(
        user_id=user_id,
        role=parse_role(role_raw),
        brokerage_id=brokerage_id,
        office_id=_header(headers, ACTOR_HEADER_NAMES["office_id"]) or None,
        team_id=_header(headers, ACTOR_HEADER_NAMES["team_id"]) or None,
        request_id=request_id,
    )


def current_request_id(request: Request) -> str:
    """Request id set by RequestIDMiddleware, or a fresh one outside it."""
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or str(uuid.uuid4())
    )


async def require_actor(request: Request) -> ActorContext:
    """FastAPI dependency resolving the acting identity."""
    actor = resolve_actor(request.headers, current_request_id(request))
    logger.debug(
        "Actor resolved",
        extra={
            "user_id": actor.user_id,
            "actor_role": actor.role.value,
            "brokerage_id": actor.brokerage_id,
            "request_id": actor.request_id,
        },
    )
    return actor
