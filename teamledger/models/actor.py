"""
Identity Models for TeamLedger

An Actor is the resolved view of an authenticated account: who they are,
which role they hold and which organization their data belongs to.

DESIGN DECISION: The organization is not a stored entity. It is the
owner's identifier, and every delegate carries it as organization_key.
All visibility and aggregation rules partition on this key.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utc_now() -> datetime:
    """Timezone-aware current time used for all timestamps."""
    return datetime.now(timezone.utc)


class Role(str, Enum):
    """
    The two tiers of the organization.

    There is exactly one approver tier (owner) above one
    contributor tier (delegate).
    """
    OWNER = "owner"
    DELEGATE = "delegate"


class RoleSource(str, Enum):
    """Where a resolved role came from (recorded for audit)."""
    ROLE_RECORD = "role_record"
    SESSION_CLAIM = "session_claim"
    DELEGATE_ROSTER = "delegate_roster"


class AuthSession(BaseModel):
    """
    An authenticated session as issued by the identity provider.

    metadata may carry 'role', 'admin_id' / 'organization_key'
    and 'name' claims. None of them are trusted over a stored
    role record.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    actor_id: str = Field(..., min_length=1)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def role_claim(self) -> Optional[str]:
        value = self.metadata.get("role")
        return str(value).lower() if value else None

    @property
    def organization_claim(self) -> Optional[str]:
        value = self.metadata.get("organization_key") or self.metadata.get("admin_id")
        return str(value) if value else None

    @property
    def name_claim(self) -> Optional[str]:
        value = self.metadata.get("name")
        return str(value) if value else None


class Actor(BaseModel):
    """
    A resolved actor.

    Passed explicitly through every engine call; there is no
    ambient "current user".
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    role: Role
    display_name: str = Field(default="Unknown", max_length=200)
    organization_key: str = Field(..., min_length=1)
    role_source: Optional[RoleSource] = None

    @model_validator(mode='after')
    def validate_organization(self) -> 'Actor':
        """Owners are their own organization; delegates never are."""
        if self.role == Role.OWNER and self.organization_key != self.id:
            raise ValueError("An owner's organization key must be its own id")
        if self.role == Role.DELEGATE and self.organization_key == self.id:
            raise ValueError("A delegate must report to a different owner")
        return self

    @property
    def is_owner(self) -> bool:
        return self.role == Role.OWNER

    def owns_organization(self, organization_key: str) -> bool:
        """True if this actor is the owner of the given organization."""
        return self.is_owner and self.organization_key == organization_key


class RoleRecord(BaseModel):
    """
    Explicit, stored role assignment.

    Written only by provisioning. A role record always wins over
    session claims and roster membership.

    Removing a delegate keeps the record with revoked_at set, so stale
    session claims cannot bring the account back; linking the account
    again writes a fresh record.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    actor_id: str = Field(..., min_length=1)
    role: Role
    display_name: str = Field(default="Unknown", max_length=200)
    organization_key: str = Field(..., min_length=1)
    assigned_by: Optional[str] = Field(
        default=None,
        description="Actor (or 'provisioning') that made the assignment"
    )
    assigned_at: datetime = Field(default_factory=utc_now)
    revoked_at: Optional[datetime] = None

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None


class DelegateRosterEntry(BaseModel):
    """
    A delegate on an owner's team.

    delegate_id stays empty until the delegate's account exists
    and is linked.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    owner_id: str = Field(..., min_length=1)
    delegate_id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=200)
    email: Optional[str] = Field(default=None, max_length=320)
    created_at: datetime = Field(default_factory=utc_now)
