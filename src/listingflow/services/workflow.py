"""Job lifecycle state machine.

The transition table is static: each permitted ``(from, to)`` pair maps to
a rule naming the actors allowed to perform it and the metadata the move
requires. Validation is pure and performs no I/O.

    Draft -> Submitted -> In Review -> Approved for Processing -> Processing
          -> Delivered -> Completed

with Rejected, Revision Requested and Cancelled side branches. Moves out of
Submitted are made by the System pseudo-actor when a job is routed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from listingflow.core.errors import ErrorCode, WorkflowError
from listingflow.db.models import SYSTEM_ACTOR, JobStatus, Role

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TransitionRule:
    """One permitted status move.

    Attributes:
        from_status: Status the job must currently hold.
        to_status: Status the job moves to.
        allowed_actors: Role names (plus ``System``) allowed to perform it.
        reason_required: A non-blank reason must accompany the move.
        requires_output_assets: At least one output asset id must be given.
        requires_revision_reason_category: A non-blank revision category is needed.
    """

    from_status: JobStatus
    to_status: JobStatus
    allowed_actors: frozenset[str]
    reason_required: bool = False
    requires_output_assets: bool = False
    requires_revision_reason_category: bool = False


@dataclass(frozen=True, slots=True)
class TransitionMetadata:
    """Caller-supplied context checked against a rule's requirements."""

    reason: str | None = None
    note: str | None = None
    revision_reason_category: str | None = None
    output_asset_ids: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True, slots=True)
class TransitionResult:
    """Outcome of validating a transition.

    Attributes:
        ok: Whether the move is legal.
        rule: The matched rule when ok.
        code: Failure code when not ok.
        message: Failure message when not ok.
    """

    ok: bool
    rule: TransitionRule | None = None
    code: ErrorCode | None = None
    message: str | None = None


def _actors(*names: Role | str) -> frozenset[str]:
    return frozenset(n.value if isinstance(n, Enum) else n for n in names)


_REVIEWERS = _actors(Role.REVIEWER, Role.OFFICE_ADMIN, Role.TEAM_LEAD)

TRANSITION_RULES: tuple[TransitionRule, ...] = (
    TransitionRule(
        JobStatus.DRAFT,
        JobStatus.SUBMITTED,
        _actors(Role.AGENT, Role.OFFICE_ADMIN, Role.BROKERAGE_ADMIN),
    ),
    TransitionRule(JobStatus.SUBMITTED, JobStatus.IN_REVIEW, _actors(SYSTEM_ACTOR)),
    TransitionRule(
        JobStatus.SUBMITTED, JobStatus.APPROVED_FOR_PROCESSING, _actors(SYSTEM_ACTOR)
    ),
    TransitionRule(JobStatus.IN_REVIEW, JobStatus.APPROVED_FOR_PROCESSING, _REVIEWERS),
    TransitionRule(JobStatus.IN_REVIEW, JobStatus.REJECTED, _REVIEWERS, reason_required=True),
    TransitionRule(JobStatus.IN_REVIEW, JobStatus.DRAFT, _REVIEWERS, reason_required=True),
    TransitionRule(
        JobStatus.APPROVED_FOR_PROCESSING,
        JobStatus.PROCESSING,
        _actors(Role.MEDIA_PARTNER, Role.REVIEWER, SYSTEM_ACTOR),
    ),
    TransitionRule(
        JobStatus.PROCESSING,
        JobStatus.DELIVERED,
        _actors(Role.MEDIA_PARTNER, Role.REVIEWER, Role.OFFICE_ADMIN),
        requires_output_assets=True,
    ),
    TransitionRule(
        JobStatus.DELIVERED,
        JobStatus.REVISION_REQUESTED,
        _actors(Role.AGENT, Role.TEAM_LEAD, Role.OFFICE_ADMIN, Role.BROKERAGE_ADMIN),
        requires_revision_reason_category=True,
    ),
    TransitionRule(
        JobStatus.DELIVERED,
        JobStatus.COMPLETED,
        _actors(Role.AGENT, Role.OFFICE_ADMIN, Role.BROKERAGE_ADMIN, SYSTEM_ACTOR),
    ),
    TransitionRule(
        JobStatus.REVISION_REQUESTED,
        JobStatus.PROCESSING,
        _actors(Role.MEDIA_PARTNER, Role.REVIEWER),
    ),
    TransitionRule(
        JobStatus.REVISION_REQUESTED,
        JobStatus.CANCELLED,
        _actors(Role.OFFICE_ADMIN, Role.BROKERAGE_ADMIN),
        reason_required=True,
    ),
    TransitionRule(JobStatus.REJECTED, JobStatus.DRAFT, _actors(Role.AGENT, Role.OFFICE_ADMIN)),
    TransitionRule(
        JobStatus.SUBMITTED,
        JobStatus.CANCELLED,
        _actors(Role.AGENT, Role.OFFICE_ADMIN, Role.BROKERAGE_ADMIN),
        reason_required=True,
    ),
    TransitionRule(
        JobStatus.PROCESSING,
        JobStatus.CANCELLED,
        _actors(Role.OFFICE_ADMIN, Role.BROKERAGE_ADMIN),
        reason_required=True,
    ),
)

_RULES_BY_PAIR: dict[tuple[JobStatus, JobStatus], TransitionRule] = {
    (rule.from_status, rule.to_status): rule for rule in TRANSITION_RULES
}

TERMINAL_STATUSES = frozenset([JobStatus.COMPLETED, JobStatus.CANCELLED])


def actor_name(actor: Role | str) -> str:
    """Plain role name for an actor (``System`` stays as is)."""
    return actor.value if isinstance(actor, Enum) else str(actor)


def get_transition_rule(from_status: JobStatus, to_status: JobStatus) -> TransitionRule | None:
    return _RULES_BY_PAIR.get((from_status, to_status))


def allowed_targets(from_status: JobStatus) -> list[JobStatus]:
    """Statuses reachable from from_status in one move, in table order."""
    return [rule.to_status for rule in TRANSITION_RULES if rule.from_status == from_status]


def is_terminal(status: JobStatus) -> bool:
    return status in TERMINAL_STATUSES


def _blank(value: str | None) -> bool:
    return not (value and value.strip())


def validate_transition(
    from_status: JobStatus,
    to_status: JobStatus,
    actor: Role | str,
    metadata: TransitionMetadata | None = None,
) -> TransitionResult:
    """Decide whether actor may move a job from from_status to to_status.

    Checks run in a fixed order: the pair must be in the table, then the
    actor must be allowed, then the rule's requirements (reason, output
    assets, revision category) must be met. Whitespace-only strings count
    as missing.
    """
    metadata = metadata or TransitionMetadata()
    role = actor_name(actor)
    source = from_status.value
    target = to_status.value

    rule = get_transition_rule(from_status, to_status)
    if rule is None:
        return TransitionResult(
            ok=False,
            code=ErrorCode.INVALID_TRANSITION,
            message=f"Transition {source} -> {target} is not allowed",
        )

    if role not in rule.allowed_actors:
        return TransitionResult(
            ok=False,
            code=ErrorCode.FORBIDDEN,
            message=f"Role {role} cannot transition {source} -> {target}",
        )

    if rule.reason_required and _blank(metadata.reason):
        return TransitionResult(
            ok=False,
            code=ErrorCode.VALIDATION_FAILED,
            message="Transition reason is required",
        )

    if rule.requires_output_assets and not metadata.output_asset_ids:
        return TransitionResult(
            ok=False,
            code=ErrorCode.VALIDATION_FAILED,
            message="Delivered transition requires output asset ids",
        )

    if rule.requires_revision_reason_category and _blank(metadata.revision_reason_category):
        return TransitionResult(
            ok=False,
            code=ErrorCode.VALIDATION_FAILED,
            message="Revision requested transition requires revision reason category",
        )

    return TransitionResult(ok=True, rule=rule)


def assert_transition(
    from_status: JobStatus,
    to_status: JobStatus,
    actor: Role | str,
    metadata: TransitionMetadata | None = None,
) -> TransitionRule:
    """Validate a transition and return its rule.

    Raises:
        WorkflowError: With the failure code and ``{from, to, actorRole}`` details.
    """
    result = validate_transition(from_status, to_status, actor, metadata)
    if result.ok and result.rule is not None:
        return result.rule

    details: dict[str, Any] = {
        "from": from_status.value,
        "to": to_status.value,
        "actorRole": actor_name(actor),
    }
    logger.warning(
        "Transition denied: %s",
        result.message,
        extra={
            "from_status": from_status.value,
            "to_status": to_status.value,
            "actor_role": details["actorRole"],
        },
    )
    raise WorkflowError(
        result.code or ErrorCode.INVALID_TRANSITION,
        result.message or "Transition is not allowed",
        details,
    )
