"""Role-based permissions and tenant scope enforcement.

This module provides:
- Permission definitions for every workflow operation
- The static role -> permission mapping
- ActorContext, the resolved identity behind a request
- The tenant scope guard (brokerage / office / team isolation)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from listingflow.core.errors import ErrorCode, WorkflowError
from listingflow.db.models import Role

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Permission definitions
# ---------------------------------------------------------------------------


class Permission(str, Enum):
    """Capabilities granted through roles. Names follow ``action:resource``."""

    MANAGE_BROKERAGE_USERS = "manage:brokerage-users"
    MANAGE_OFFICE_USERS = "manage:office-users"
    MANAGE_BROKERAGE_PRESETS = "manage:brokerage-presets"
    MANAGE_OFFICE_PRESETS = "manage:office-presets"
    CREATE_JOB = "create:job"
    VIEW_JOB_OWN = "view:job-own"
    VIEW_JOB_OFFICE = "view:job-office"
    APPROVE_JOB = "approve:job"
    PROCESS_JOB = "process:job"
    DELIVER_JOB = "deliver:job"
    REQUEST_REVISION = "request:revision"
    EXPORT_REPORT = "export:report"
    VIEW_AUDIT = "view:audit"


# ---------------------------------------------------------------------------
# Role-to-permission mappings
# ---------------------------------------------------------------------------

ROLE_PERMISSIONS: dict[Role, frozenset[Permission]] = {
    Role.BROKERAGE_ADMIN: frozenset(Permission),
    Role.OFFICE_ADMIN: frozenset(
        [
            Permission.MANAGE_OFFICE_USERS,
            Permission.MANAGE_OFFICE_PRESETS,
            Permission.CREATE_JOB,
            Permission.VIEW_JOB_OWN,
            Permission.VIEW_JOB_OFFICE,
            Permission.APPROVE_JOB,
            Permission.PROCESS_JOB,
            Permission.DELIVER_JOB,
            Permission.REQUEST_REVISION,
            Permission.EXPORT_REPORT,
            Permission.VIEW_AUDIT,
        ]
    ),
    Role.TEAM_LEAD: frozenset(
        [
            Permission.CREATE_JOB,
            Permission.VIEW_JOB_OWN,
            Permission.APPROVE_JOB,
            Permission.REQUEST_REVISION,
        ]
    ),
    Role.AGENT: frozenset(
        [
            Permission.CREATE_JOB,
            Permission.VIEW_JOB_OWN,
            Permission.REQUEST_REVISION,
        ]
    ),
    Role.MEDIA_PARTNER: frozenset(
        [
            Permission.VIEW_JOB_OWN,
            Permission.PROCESS_JOB,
            Permission.DELIVER_JOB,
        ]
    ),
    Role.REVIEWER: frozenset(
        [
            Permission.VIEW_JOB_OWN,
            Permission.VIEW_JOB_OFFICE,
            Permission.APPROVE_JOB,
            Permission.DELIVER_JOB,
            Permission.REQUEST_REVISION,
        ]
    ),
}

# Office-bound roles may not reach into another office of their brokerage.
OFFICE_BOUND_ROLES = frozenset([Role.OFFICE_ADMIN, Role.REVIEWER, Role.MEDIA_PARTNER])

# Team-bound roles may not reach into another team.
TEAM_BOUND_ROLES = frozenset([Role.TEAM_LEAD, Role.AGENT])


# ---------------------------------------------------------------------------
# Actor and tenant targets
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ActorContext:
    """Identity on whose behalf a request runs.

    Attributes:
        user_id: Acting user.
        role: Role claimed for this request.
        brokerage_id: Tenant the actor belongs to.
        office_id: Office the actor is bound to, if any.
        team_id: Team the actor is bound to, if any.
        request_id: Correlation id propagated into audit events.
    """

    user_id: str
    role: Role
    brokerage_id: str
    office_id: str | None = None
    team_id: str | None = None
    request_id: str = ""


class TenantTarget(Protocol):
    """Anything with a tenant position: jobs, presets, offices, scopes."""

    @property
    def brokerage_id(self) -> str: ...

    @property
    def office_id(self) -> str | None: ...

    @property
    def team_id(self) -> str | None: ...


@dataclass(frozen=True)
class TenantScope:
    """Explicit tenant position for checks against entities without one."""

    brokerage_id: str
    office_id: str | None = None
    team_id: str | None = None


def parse_role(value: str) -> Role:
    """Convert a role name into a Role.

    Raises:
        WorkflowError: VALIDATION_FAILED for an unknown role name.
    """
    try:
        return Role(value)
    except ValueError:
        raise WorkflowError(
            ErrorCode.VALIDATION_FAILED,
            f"Invalid role: {value}",
            {"role": value},
        ) from None


# ---------------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------------


def get_role_permissions(role: Role) -> frozenset[Permission]:
    return ROLE_PERMISSIONS.get(role, frozenset())


def has_permission(role: Role, permission: Permission) -> bool:
    """Check the static grant table."""
    return permission in get_role_permissions(role)


def assert_permission(role: Role, permission: Permission) -> None:
    """Require a permission or raise FORBIDDEN.

    Raises:
        WorkflowError: FORBIDDEN with ``{role, permission}`` details.
    """
    if not has_permission(role, permission):
        logger.warning(
            "Permission denied",
            extra={"role": role.value, "permission": permission.value},
        )
        raise WorkflowError(
            ErrorCode.FORBIDDEN,
            f"Role {role.value} lacks permission {permission.value}",
            {"role": role.value, "permission": permission.value},
        )


def assert_any_permission(role: Role, *permissions: Permission) -> None:
    """Require at least one of the permissions; reports the first on failure."""
    if any(has_permission(role, p) for p in permissions):
        return
    assert_permission(role, permissions[0])


def assert_tenant_scope(actor: ActorContext, target: TenantTarget) -> None:
    """Deny access across brokerage, office or team boundaries.

    A brokerage mismatch always fails. Below brokerage level, the check
    only applies when both the actor and the target carry the id, so an
    actor or target without an office (or team) passes that level.

    Raises:
        WorkflowError: TENANT_SCOPE_VIOLATION.
    """
    if actor.brokerage_id != target.brokerage_id:
        raise WorkflowError(
            ErrorCode.TENANT_SCOPE_VIOLATION,
            "Cross-brokerage access is not allowed",
            {
                "actorBrokerageId": actor.brokerage_id,
                "targetBrokerageId": target.brokerage_id,
            },
        )

    if actor.role == Role.BROKERAGE_ADMIN:
        return

    if actor.role in OFFICE_BOUND_ROLES:
        if target.office_id and actor.office_id and target.office_id != actor.office_id:
            raise WorkflowError(
                ErrorCode.TENANT_SCOPE_VIOLATION,
                "Cross-office access is not allowed for this role",
                {"actorOfficeId": actor.office_id, "targetOfficeId": target.office_id},
            )
        return

    if actor.role in TEAM_BOUND_ROLES:
        if target.team_id and actor.team_id and target.team_id != actor.team_id:
            raise WorkflowError(
                ErrorCode.TENANT_SCOPE_VIOLATION,
                "Cross-team access is not allowed for this role",
                {"actorTeamId": actor.team_id, "targetTeamId": target.team_id},
            )
