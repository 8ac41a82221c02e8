"""Tenant hierarchy and identity records.

Brokerage -> Office -> Team form the tenant tree. Users belong to one
brokerage and receive roles through Membership records bound to a scope.
"""

from pydantic import field_validator

from listingflow.db.models.base import Record, Role, ScopeType


class Brokerage(Record):
    """Top-level tenant."""

    name: str
    active: bool = True


class Office(Record):
    """Office within a brokerage."""

    brokerage_id: str
    name: str
    active: bool = True


class Team(Record):
    """Team within an office."""

    brokerage_id: str
    office_id: str
    name: str
    active: bool = True


class User(Record):
    """A person in a brokerage. Email is unique only by convention, not enforced."""

    brokerage_id: str
    email: str
    name: str
    active: bool = True

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class Membership(Record):
    """Role binding for a user at brokerage, office or team scope."""

    user_id: str
    role: Role
    scope_type: ScopeType
    brokerage_id: str
    office_id: str | None = None
    team_id: str | None = None
