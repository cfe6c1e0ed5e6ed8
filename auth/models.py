"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, minimal logic). Stores and the
authenticator do the work.

Role is a closed variant: every User carries exactly one profile object whose
type fixes the role and holds the role-specific data (rescue-service
affiliation for rescue members, the permission set for administrators).
User.role is derived from the profile, so the two can never disagree, and
code that needs role-specific data dispatches on the profile instead of
probing optional fields.

Layer rule: no imports from api/, otp/, sms/, or audit/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import ClassVar, Optional, Union


class Role(str, Enum):
    CITIZEN = "CITIZEN"
    RESCUE_MEMBER = "RESCUE_MEMBER"
    ADMIN = "ADMIN"


class TokenType(str, Enum):
    ACCESS = "ACCESS"
    REFRESH = "REFRESH"


# ---------------------------------------------------------------------------
# Role variants
# ---------------------------------------------------------------------------


@dataclass
class RescueService:
    name: str
    service_type: str
    contact_number: Optional[str] = None
    id: Optional[int] = None


@dataclass
class CitizenProfile:
    role: ClassVar[Role] = Role.CITIZEN

    def context(self, user: "User") -> dict:
        return {"hasCompletedProfile": bool(user.phone_number and user.first_name and user.last_name)}


@dataclass
class RescueMemberProfile:
    role: ClassVar[Role] = Role.RESCUE_MEMBER

    rescue_service: RescueService
    badge_number: str
    position: Optional[str] = None
    is_on_duty: bool = False

    def context(self, user: "User") -> dict:
        return {
            "rescueService": {
                "id": self.rescue_service.id,
                "name": self.rescue_service.name,
                "serviceType": self.rescue_service.service_type,
            },
            "position": self.position,
            "badgeNumber": self.badge_number,
            "isOnDuty": self.is_on_duty,
        }


@dataclass
class AdminProfile:
    role: ClassVar[Role] = Role.ADMIN

    permissions: list[str] = field(default_factory=list)
    is_active: bool = True

    def context(self, user: "User") -> dict:
        return {"permissions": list(self.permissions), "isActive": self.is_active}


RoleProfile = Union[CitizenProfile, RescueMemberProfile, AdminProfile]


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


@dataclass
class User:
    """An identity able to authenticate.

    Users with is_active=False or a deleted_at timestamp are invisible to
    authentication: the store's get_active_* lookups never return them.
    """

    email: str
    password_hash: str
    profile: RoleProfile
    id: Optional[int] = None
    phone_number: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_active: bool = True
    deleted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def role(self) -> Role:
        return self.profile.role

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)

    def context(self) -> dict:
        """Role-specific block returned alongside the login tokens."""
        return self.profile.context(self)


@dataclass
class Token:
    """One ledger row. Rows are never deleted; revocation flips is_revoked."""

    user_id: int
    token: str
    type: TokenType
    expires_at: datetime
    id: Optional[int] = None
    is_revoked: bool = False
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class TokenPayload:
    """Claims carried inside a signed bearer token."""

    user_id: int
    role: Role
    type: TokenType = TokenType.ACCESS


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: Optional[str]  # None for ADMIN


@dataclass(frozen=True)
class SessionSummary:
    """One entry of GET /auth/sessions."""

    id: int
    type: TokenType
    created_at: datetime
    expires_at: datetime
    is_current: bool
