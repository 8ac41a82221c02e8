"""Pydantic schemas for tenant administration endpoints.

Covers bootstrap, offices, teams, users, memberships and presets. Each
request converts itself into the matching service input.
"""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, Field

from listingflow.api.schemas.common import CamelModel
from listingflow.services.organization import (
    BootstrapInput,
    MembershipInput,
    PresetChanges,
    PresetInput,
)

# -----------------------------------------------------------------------------
# Bootstrap
# -----------------------------------------------------------------------------


class BootstrapRequest(CamelModel):
    """First-run creation of a brokerage, its first office and its admin."""

    brokerage_name: str | None = Field(None, max_length=200)
    office_name: str | None = Field(None, max_length=200)
    team_name: str | None = Field(None, max_length=200)
    admin_name: str | None = Field(None, max_length=200)
    admin_email: str | None = Field(None, max_length=320)

    def to_input(self) -> BootstrapInput:
        return BootstrapInput(
            brokerage_name=self.brokerage_name,
            office_name=self.office_name,
            team_name=self.team_name,
            admin_name=self.admin_name,
            admin_email=self.admin_email,
        )


# -----------------------------------------------------------------------------
# Offices and teams
# -----------------------------------------------------------------------------


class CreateOfficeRequest(CamelModel):
    name: str | None = Field(None, max_length=200)


class CreateTeamRequest(CamelModel):
    office_id: str | None = None
    name: str | None = Field(None, max_length=200)


# -----------------------------------------------------------------------------
# Users and memberships
# -----------------------------------------------------------------------------


class CreateUserRequest(CamelModel):
    """New user, with an optional membership when role and scope are given."""

    email: str | None = Field(None, max_length=320)
    name: str | None = Field(None, max_length=200)
    role: str | None = None
    scope_type: str | None = None
    office_id: str | None = None
    team_id: str | None = None

    def membership(self) -> MembershipInput:
        return MembershipInput(
            role=self.role,
            scope_type=self.scope_type,
            office_id=self.office_id,
            team_id=self.team_id,
        )


class CreateMembershipRequest(CamelModel):
    user_id: str | None = None
    role: str | None = None
    scope_type: str | None = None
    office_id: str | None = None
    team_id: str | None = None

    def to_input(self) -> MembershipInput:
        return MembershipInput(
            role=self.role,
            scope_type=self.scope_type,
            office_id=self.office_id,
            team_id=self.team_id,
        )


# -----------------------------------------------------------------------------
# Presets
# -----------------------------------------------------------------------------

_DEFAULT_SETTINGS_ALIASES = AliasChoices("defaultSettings", "defaultSettingsJson", "default_settings")


class CreatePresetRequest(CamelModel):
    """Reusable job configuration at brokerage or office scope."""

    name: str | None = Field(None, max_length=200)
    scope_type: str | None = None
    scope_id: str | None = None
    allowed_edit_types: list[str] = Field(default_factory=list)
    active: bool = True
    approval_required: bool = False
    disclosure_required_default: bool = False
    default_settings: dict[str, Any] = Field(
        default_factory=dict, validation_alias=_DEFAULT_SETTINGS_ALIASES
    )
    delivery_notes_template: str | None = None
    revision_policy_template: str | None = None

    def to_input(self) -> PresetInput:
        return PresetInput(
            name=self.name,
            scope_type=self.scope_type,
            scope_id=self.scope_id,
            allowed_edit_types=list(self.allowed_edit_types),
            active=self.active,
            approval_required=self.approval_required,
            disclosure_required_default=self.disclosure_required_default,
            default_settings=dict(self.default_settings),
            delivery_notes_template=self.delivery_notes_template,
            revision_policy_template=self.revision_policy_template,
        )


class UpdatePresetRequest(CamelModel):
    """Partial preset update; omitted fields are left unchanged."""

    preset_id: str | None = None
    name: str | None = Field(None, max_length=200)
    active: bool | None = None
    allowed_edit_types: list[str] | None = None
    approval_required: bool | None = None
    disclosure_required_default: bool | None = None
    default_settings: dict[str, Any] | None = Field(
        None, validation_alias=_DEFAULT_SETTINGS_ALIASES
    )
    delivery_notes_template: str | None = None
    revision_policy_template: str | None = None

    def to_changes(self) -> PresetChanges:
        return PresetChanges(
            name=self.name,
            active=self.active,
            allowed_edit_types=self.allowed_edit_types,
            approval_required=self.approval_required,
            disclosure_required_default=self.disclosure_required_default,
            default_settings=self.default_settings,
            delivery_notes_template=self.delivery_notes_template,
            revision_policy_template=self.revision_policy_template,
        )
