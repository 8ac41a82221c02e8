"""Tenant administration: bootstrap, offices, teams, users, memberships, presets.

All writes emit audit events into the acting brokerage's log.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from listingflow.core.errors import (
    ErrorCode,
    WorkflowError,
    forbidden,
    not_found,
    validation_failed,
)
from listingflow.db.models import (
    AuditEventType,
    Brokerage,
    EditLabel,
    Membership,
    Office,
    Preset,
    Role,
    ScopeType,
    Team,
    User,
    issue_id,
)
from listingflow.services.audit_log import AuditTrail
from listingflow.services.authz import (
    ActorContext,
    Permission,
    TenantScope,
    assert_permission,
    assert_tenant_scope,
    has_permission,
)

if TYPE_CHECKING:
    from listingflow.core.config import Settings
    from listingflow.db.repository import EntityStore

logger = logging.getLogger(__name__)

ACTOR_HEADER_NAMES = {
    "user_id": "X-LF-User-Id",
    "role": "X-LF-Role",
    "brokerage_id": "X-LF-Brokerage-Id",
    "office_id": "X-LF-Office-Id",
    "team_id": "X-LF-Team-Id",
}

_EDIT_LABEL_VALUES = [label.value for label in EditLabel]


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def sanitize_edit_labels(values: list[str] | None) -> list[EditLabel]:
    """Keep known edit labels only, de-duplicated in first-seen order."""
    labels = [v for v in map(_clean, values or []) if v in _EDIT_LABEL_VALUES]
    return [EditLabel(v) for v in dict.fromkeys(labels)]


def bootstrap_allowed(settings: Settings, provided_key: str | None) -> bool:
    """Whether a bootstrap request may proceed.

    With a configured key the header must match it. Without one, bootstrap
    is open everywhere except production.
    """
    if not settings.bootstrap_enabled:
        return False
    expected = settings.bootstrap_key.get_secret_value().strip() if settings.bootstrap_key else ""
    if not expected:
        return True
    provided = _clean(provided_key)
    return bool(provided) and hmac.compare_digest(provided.encode(), expected.encode())


# ---------------------------------------------------------------------------
# Inputs and results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BootstrapInput:
    brokerage_name: str | None = None
    office_name: str | None = None
    team_name: str | None = None
    admin_name: str | None = None
    admin_email: str | None = None


@dataclass
class BootstrapResult:
    brokerage: Brokerage
    office: Office
    team: Team | None
    admin_user: User
    membership: Membership
    actor_headers: dict[str, str]


@dataclass(frozen=True)
class MembershipInput:
    role: str | None = None
    scope_type: str | None = None
    office_id: str | None = None
    team_id: str | None = None


@dataclass(frozen=True)
class PresetInput:
    """Fields for a new preset."""

    name: str | None = None
    scope_type: str | None = None
    scope_id: str | None = None
    allowed_edit_types: list[str] = field(default_factory=list)
    active: bool = True
    approval_required: bool = False
    disclosure_required_default: bool = False
    default_settings: dict[str, Any] = field(default_factory=dict)
    delivery_notes_template: str | None = None
    revision_policy_template: str | None = None


@dataclass(frozen=True)
class PresetChanges:
    """Partial preset update; None leaves a field unchanged."""

    name: str | None = None
    active: bool | None = None
    allowed_edit_types: list[str] | None = None
    approval_required: bool | None = None
    disclosure_required_default: bool | None = None
    default_settings: dict[str, Any] | None = None
    delivery_notes_template: str | None = None
    revision_policy_template: str | None = None


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class OrganizationService:
    """Manages the tenant tree, identities and presets."""

    def __init__(self, store: EntityStore) -> None:
        self.store = store
        self.audit = AuditTrail(store)

    # -------------------------------------------------------------------------
    # Bootstrap
    # -------------------------------------------------------------------------

    async def bootstrap(self, data: BootstrapInput, request_id: str) -> BootstrapResult:
        """Create a brokerage with its first office, optional team and admin."""
        brokerage_name = _clean(data.brokerage_name)
        office_name = _clean(data.office_name)
        team_name = _clean(data.team_name)
        admin_name = _clean(data.admin_name)
        admin_email = _clean(data.admin_email).lower()
        if not (brokerage_name and office_name and admin_name and admin_email):
            raise validation_failed(
                "brokerageName, officeName, adminName, and adminEmail are required"
            )

        brokerage = await self.store.add_brokerage(
            Brokerage(id=issue_id("brg"), name=brokerage_name)
        )
        office = await self.store.add_office(
            Office(id=issue_id("ofc"), brokerage_id=brokerage.id, name=office_name)
        )
        team = None
        if team_name:
            team = await self.store.add_team(
                Team(
                    id=issue_id("team"),
                    brokerage_id=brokerage.id,
                    office_id=office.id,
                    name=team_name,
                )
            )
        admin = await self.store.add_user(
            User(id=issue_id("usr"), brokerage_id=brokerage.id, email=admin_email, name=admin_name)
        )
        membership = await self.store.add_membership(
            Membership(
                id=issue_id("mship"),
                user_id=admin.id,
                role=Role.BROKERAGE_ADMIN,
                scope_type=ScopeType.BROKERAGE,
                brokerage_id=brokerage.id,
            )
        )

        actor = ActorContext(
            user_id=admin.id,
            role=Role.BROKERAGE_ADMIN,
            brokerage_id=brokerage.id,
            office_id=office.id,
            team_id=team.id if team else None,
            request_id=request_id,
        )
        await self.audit.emit(
            AuditEventType.USER_INVITED,
            actor,
            actor,
            target_entity_type="user",
            target_entity_id=admin.id,
            after_snapshot=admin.snapshot(),
            note="Bootstrap admin user created",
        )
        await self.audit.emit(
            AuditEventType.MEMBERSHIP_CHANGED,
            actor,
            actor,
            target_entity_type="membership",
            target_entity_id=membership.id,
            after_snapshot=membership.snapshot(),
            note="Bootstrap admin membership created",
        )

        headers = {
            ACTOR_HEADER_NAMES["user_id"]: admin.id,
            ACTOR_HEADER_NAMES["role"]: Role.BROKERAGE_ADMIN.value,
            ACTOR_HEADER_NAMES["brokerage_id"]: brokerage.id,
            ACTOR_HEADER_NAMES["office_id"]: office.id,
        }
        if team:
            headers[ACTOR_HEADER_NAMES["team_id"]] = team.id

        logger.info(
            "Brokerage bootstrapped",
            extra={"brokerage_id": brokerage.id, "request_id": request_id},
        )
        return BootstrapResult(
            brokerage=brokerage,
            office=office,
            team=team,
            admin_user=admin,
            membership=membership,
            actor_headers=headers,
        )

    # -------------------------------------------------------------------------
    # Brokerages, offices, teams
    # -------------------------------------------------------------------------

    async def get_brokerage(
        self, actor: ActorContext, *, include_all: bool = False
    ) -> tuple[Brokerage, list[Brokerage] | None]:
        """The actor's brokerage, plus every brokerage for admins asking for all."""
        brokerage = await self.store.get_brokerage(actor.brokerage_id)
        if brokerage is None:
            raise not_found("Brokerage", brokerageId=actor.brokerage_id)
        if include_all and actor.role == Role.BROKERAGE_ADMIN:
            return brokerage, await self.store.list_brokerages()
        return brokerage, None

    async def list_offices(self, actor: ActorContext) -> list[Office]:
        return await self.store.list_offices(actor.brokerage_id)

    async def create_office(self, actor: ActorContext, name: str | None) -> Office:
        assert_permission(actor.role, Permission.MANAGE_OFFICE_USERS)
        if actor.role != Role.BROKERAGE_ADMIN:
            raise forbidden("Only BrokerageAdmin can create offices", role=actor.role.value)

        name = _clean(name)
        if not name:
            raise validation_failed("Office name is required")

        office = await self.store.add_office(
            Office(id=issue_id("ofc"), brokerage_id=actor.brokerage_id, name=name)
        )
        await self.audit.emit(
            AuditEventType.ORG_STRUCTURE_CHANGED,
            actor,
            TenantScope(actor.brokerage_id, office.id),
            target_entity_type="office",
            target_entity_id=office.id,
            after_snapshot=office.snapshot(),
            note="Office created",
        )
        return office

    async def _load_office(self, actor: ActorContext, office_id: str) -> Office:
        office = await self.store.get_office(office_id)
        if office is None:
            raise not_found("Office", officeId=office_id)
        assert_tenant_scope(actor, TenantScope(office.brokerage_id, office.id))
        return office

    async def _load_team(self, actor: ActorContext, team_id: str) -> Team:
        team = await self.store.get_team(team_id)
        if team is None:
            raise not_found("Team", teamId=team_id)
        assert_tenant_scope(actor, TenantScope(team.brokerage_id, team.office_id, team.id))
        return team

    @staticmethod
    def _require_own_office(actor: ActorContext, office: Office, message: str) -> None:
        if actor.role == Role.OFFICE_ADMIN and actor.office_id and actor.office_id != office.id:
            raise forbidden(message, officeId=office.id)

    async def list_teams(self, actor: ActorContext, office_id: str | None) -> list[Team]:
        office_id = _clean(office_id)
        if not office_id:
            raise validation_failed("officeId query parameter is required")
        office = await self._load_office(actor, office_id)
        return await self.store.list_teams(office.id)

    async def create_team(
        self, actor: ActorContext, office_id: str | None, name: str | None
    ) -> Team:
        assert_permission(actor.role, Permission.MANAGE_OFFICE_USERS)
        office_id = _clean(office_id)
        name = _clean(name)
        if not office_id or not name:
            raise validation_failed("officeId and name are required")

        office = await self._load_office(actor, office_id)
        self._require_own_office(
            actor, office, "OfficeAdmin can only create teams in their own office"
        )

        team = await self.store.add_team(
            Team(
                id=issue_id("team"),
                brokerage_id=office.brokerage_id,
                office_id=office.id,
                name=name,
            )
        )
        await self.audit.emit(
            AuditEventType.ORG_STRUCTURE_CHANGED,
            actor,
            TenantScope(team.brokerage_id, team.office_id, team.id),
            target_entity_type="team",
            target_entity_id=team.id,
            after_snapshot=team.snapshot(),
            note="Team created",
        )
        return team

    # -------------------------------------------------------------------------
    # Users and memberships
    # -------------------------------------------------------------------------

    async def _build_membership(
        self, actor: ActorContext, user: User, data: MembershipInput
    ) -> Membership:
        role_raw = _clean(data.role)
        scope_raw = _clean(data.scope_type)
        try:
            role = Role(role_raw)
        except ValueError:
            raise validation_failed("Invalid role for membership", role=role_raw) from None
        try:
            scope_type = ScopeType(scope_raw)
        except ValueError:
            raise validation_failed(
                "scopeType must be brokerage, office, or team", scopeType=scope_raw
            ) from None

        office_id = _clean(data.office_id) or None
        team_id = _clean(data.team_id) or None

        if scope_type in (ScopeType.OFFICE, ScopeType.TEAM):
            if not office_id:
                raise validation_failed("officeId is required for office/team scope")
            await self._load_office(actor, office_id)
        else:
            office_id = None

        if scope_type == ScopeType.TEAM:
            if not team_id:
                raise validation_failed("teamId is required for team scope")
            team = await self._load_team(actor, team_id)
            if team.office_id != office_id:
                raise validation_failed(
                    "Team does not belong to the given office", teamId=team_id, officeId=office_id
                )
        else:
            team_id = None

        return Membership(
            id=issue_id("mship"),
            user_id=user.id,
            role=role,
            scope_type=scope_type,
            brokerage_id=actor.brokerage_id,
            office_id=office_id,
            team_id=team_id,
        )

    async def list_users(self, actor: ActorContext) -> list[User]:
        assert_permission(actor.role, Permission.MANAGE_OFFICE_USERS)
        return await self.store.list_users(actor.brokerage_id)

    async def create_user(
        self,
        actor: ActorContext,
        email: str | None,
        name: str | None,
        membership: MembershipInput | None = None,
    ) -> tuple[User, Membership | None]:
        """Create a user, and a membership when role and scope are both given."""
        assert_permission(actor.role, Permission.MANAGE_OFFICE_USERS)
        email = _clean(email).lower()
        name = _clean(name)
        if not email or not name:
            raise validation_failed("name and email are required")

        user = User(id=issue_id("usr"), brokerage_id=actor.brokerage_id, email=email, name=name)
        pending = None
        if membership and _clean(membership.role) and _clean(membership.scope_type):
            pending = await self._build_membership(actor, user, membership)

        await self.store.add_user(user)
        if pending:
            await self.store.add_membership(pending)

        await self.audit.emit(
            AuditEventType.USER_INVITED,
            actor,
            TenantScope(
                actor.brokerage_id,
                pending.office_id if pending else None,
                pending.team_id if pending else None,
            ),
            target_entity_type="user",
            target_entity_id=user.id,
            after_snapshot=user.snapshot(),
            note="User created from admin endpoint",
        )
        if pending:
            await self.audit.emit(
                AuditEventType.MEMBERSHIP_CHANGED,
                actor,
                TenantScope(actor.brokerage_id, pending.office_id, pending.team_id),
                target_entity_type="membership",
                target_entity_id=pending.id,
                after_snapshot=pending.snapshot(),
                note="Membership created during user create",
            )
        return user, pending

    async def list_memberships(self, actor: ActorContext) -> list[Membership]:
        assert_permission(actor.role, Permission.MANAGE_OFFICE_USERS)
        return await self.store.list_memberships(actor.brokerage_id)

    async def create_membership(
        self, actor: ActorContext, user_id: str | None, data: MembershipInput
    ) -> Membership:
        assert_permission(actor.role, Permission.MANAGE_OFFICE_USERS)
        user_id = _clean(user_id)
        if not user_id or not _clean(data.role) or not _clean(data.scope_type):
            raise validation_failed("userId, role, and scopeType are required")

        user = await self.store.get_user(user_id)
        if user is None:
            raise not_found("User", userId=user_id)
        assert_tenant_scope(actor, TenantScope(user.brokerage_id))

        membership = await self.store.add_membership(
            await self._build_membership(actor, user, data)
        )
        await self.audit.emit(
            AuditEventType.MEMBERSHIP_CHANGED,
            actor,
            TenantScope(actor.brokerage_id, membership.office_id, membership.team_id),
            target_entity_type="membership",
            target_entity_id=membership.id,
            after_snapshot=membership.snapshot(),
            note="Membership created",
        )
        return membership

    # -------------------------------------------------------------------------
    # Presets
    # -------------------------------------------------------------------------

    async def list_presets(
        self, actor: ActorContext, *, include_inactive: bool = False
    ) -> list[Preset]:
        """Brokerage presets merged with the actor's office presets.

        Office presets of other offices are hidden. A brokerage admin with
        no office binding sees every office's presets.
        """
        if not (
            has_permission(actor.role, Permission.CREATE_JOB)
            or has_permission(actor.role, Permission.MANAGE_OFFICE_PRESETS)
        ):
            raise forbidden("Role is not allowed to view presets", role=actor.role.value)

        presets = await self.store.list_presets(actor.brokerage_id)
        if actor.office_id:
            presets += await self.store.list_office_presets(actor.office_id)

        see_all_offices = actor.role == Role.BROKERAGE_ADMIN and not actor.office_id
        merged: dict[str, Preset] = {}
        for preset in presets:
            if preset.brokerage_id != actor.brokerage_id:
                continue
            if not include_inactive and not preset.active:
                continue
            if preset.scope_type == ScopeType.OFFICE and not see_all_offices:
                if preset.office_id != actor.office_id:
                    continue
            merged[preset.id] = preset
        return list(merged.values())

    async def _authorize_preset_scope(
        self, actor: ActorContext, scope_type: ScopeType, scope_id: str
    ) -> str | None:
        """Check the actor may manage presets at this scope; return the office id."""
        if scope_type == ScopeType.BROKERAGE:
            assert_permission(actor.role, Permission.MANAGE_BROKERAGE_PRESETS)
            if scope_id != actor.brokerage_id:
                raise WorkflowError(
                    ErrorCode.TENANT_SCOPE_VIOLATION,
                    "scopeId must match actor brokerageId for brokerage presets",
                    {"scopeId": scope_id, "actorBrokerageId": actor.brokerage_id},
                )
            return None

        assert_permission(actor.role, Permission.MANAGE_OFFICE_PRESETS)
        office = await self._load_office(actor, scope_id)
        self._require_own_office(
            actor, office, "OfficeAdmin can only manage presets in their own office"
        )
        return office.id

    async def create_preset(self, actor: ActorContext, data: PresetInput) -> Preset:
        name = _clean(data.name)
        scope_raw = _clean(data.scope_type)
        scope_id = _clean(data.scope_id)
        allowed = sanitize_edit_labels(data.allowed_edit_types)

        if not name or not scope_id or not scope_raw:
            raise validation_failed("name, scopeType, and scopeId are required")
        if not allowed:
            raise validation_failed("At least one allowedEditType is required")
        if scope_raw not in (ScopeType.BROKERAGE.value, ScopeType.OFFICE.value):
            raise validation_failed("scopeType must be brokerage or office", scopeType=scope_raw)

        scope_type = ScopeType(scope_raw)
        office_id = await self._authorize_preset_scope(actor, scope_type, scope_id)

        preset = await self.store.add_preset(
            Preset(
                id=issue_id("preset"),
                name=name,
                scope_type=scope_type,
                scope_id=scope_id,
                brokerage_id=actor.brokerage_id,
                office_id=office_id,
                active=data.active,
                allowed_edit_types=allowed,
                default_settings=dict(data.default_settings or {}),
                approval_required=data.approval_required,
                disclosure_required_default=data.disclosure_required_default,
                delivery_notes_template=_clean(data.delivery_notes_template),
                revision_policy_template=_clean(data.revision_policy_template),
                created_by=actor.user_id,
            )
        )
        await self.audit.emit(
            AuditEventType.PRESET_CREATED,
            actor,
            TenantScope(actor.brokerage_id, office_id),
            target_entity_type="preset",
            target_entity_id=preset.id,
            after_snapshot=preset.snapshot(),
        )
        logger.info(
            "Preset created",
            extra={"preset_id": preset.id, "scope_type": scope_type.value},
        )
        return preset

    async def update_preset(
        self, actor: ActorContext, preset_id: str | None, changes: PresetChanges
    ) -> Preset:
        """Apply a partial update to a preset the actor may manage."""
        preset_id = _clean(preset_id)
        if not preset_id:
            raise validation_failed("presetId is required")

        preset = await self.store.get_preset(preset_id)
        if preset is None:
            raise not_found("Preset", presetId=preset_id)
        assert_tenant_scope(actor, TenantScope(preset.brokerage_id, preset.office_id))
        await self._authorize_preset_scope(actor, preset.scope_type, preset.scope_id)

        before = preset.snapshot()
        if changes.name is not None:
            name = _clean(changes.name)
            if not name:
                raise validation_failed("Preset name cannot be empty")
            preset.name = name
        if changes.allowed_edit_types is not None:
            allowed = sanitize_edit_labels(changes.allowed_edit_types)
            if not allowed:
                raise validation_failed("At least one allowedEditType is required")
            preset.allowed_edit_types = allowed
        if changes.active is not None:
            preset.active = changes.active
        if changes.approval_required is not None:
            preset.approval_required = changes.approval_required
        if changes.disclosure_required_default is not None:
            preset.disclosure_required_default = changes.disclosure_required_default
        if changes.default_settings is not None:
            preset.default_settings = dict(changes.default_settings)
        if changes.delivery_notes_template is not None:
            preset.delivery_notes_template = _clean(changes.delivery_notes_template)
        if changes.revision_policy_template is not None:
            preset.revision_policy_template = _clean(changes.revision_policy_template)

        await self.store.save_preset(preset)
        await self.audit.emit(
            AuditEventType.PRESET_UPDATED,
            actor,
            TenantScope(preset.brokerage_id, preset.office_id),
            target_entity_type="preset",
            target_entity_id=preset.id,
            before_snapshot=before,
            after_snapshot=preset.snapshot(),
        )
        return preset
