"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and
services do the work.

Relations are id-based: a User does not hold its UserRole rows, a Role does
not hold its RolePermission rows. The store loads an RbacGrants snapshot
(entities keyed by id, join rows carrying ids) when claims are needed. Nothing
here references anything else by object, so every dataclass serializes on its
own and no reference cycles exist.

Snapshots are frozen. Mutation goes through explicit store writes, never by
editing a returned object in place.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class User:
    """An account. email is stored lowercased; phone_number in +84 form."""

    email: str
    password_hash: str
    first_name: str
    last_name: str
    id: str | None = None
    phone_number: str | None = None
    avatar: str | None = None
    is_email_verified: bool = False
    is_phone_verified: bool = False
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_login_at: datetime | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class Role:
    name: str
    id: str | None = None
    description: str | None = None
    is_active: bool = True
    created_at: datetime | None = None


@dataclass(frozen=True)
class Permission:
    """A named capability. (resource, action) is unique, e.g. ("users", "read")."""

    name: str
    resource: str
    action: str
    id: str | None = None
    description: str | None = None
    is_active: bool = True
    created_at: datetime | None = None


@dataclass(frozen=True)
class UserRole:
    """user -> role assignment. is_active=False soft-disables without deleting."""

    user_id: str
    role_id: str
    assigned_at: datetime | None = None
    is_active: bool = True


@dataclass(frozen=True)
class RolePermission:
    """role -> permission grant. is_active=False soft-disables without deleting."""

    role_id: str
    permission_id: str
    granted_at: datetime | None = None
    is_active: bool = True


@dataclass(frozen=True)
class RbacGrants:
    """Everything ClaimAggregator needs for one user, loaded in one pass.

    roles / permissions are arenas keyed by id; the join rows point into them.
    Only the roles referenced by user_roles and the permissions referenced by
    role_permissions are present.
    """

    user_roles: tuple[UserRole, ...] = ()
    role_permissions: tuple[RolePermission, ...] = ()
    roles: dict[str, Role] = field(default_factory=dict)
    permissions: dict[str, Permission] = field(default_factory=dict)


@dataclass(frozen=True)
class ClaimSet:
    roles: tuple[str, ...] = ()
    permissions: tuple[str, ...] = ()


@dataclass(frozen=True)
class RefreshToken:
    """An opaque, server-tracked refresh credential bound to one device.

    A token moves Active -> Revoked exactly once, or simply ages into Expired.
    When the revocation came from rotation, replaced_by_token names the
    successor (same user, same device), forming a linear chain.

    Activity depends on "now", so the checks take it as an argument rather
    than reading a clock behind the caller's back.
    """

    token: str
    user_id: str
    device_id: str
    expires_at: datetime
    id: str | None = None
    device_name: str | None = None
    user_agent: str | None = None
    ip_address: str | None = None
    created_at: datetime | None = None
    used_at: datetime | None = None
    revoked_at: datetime | None = None
    revoked_by_ip: str | None = None
    replaced_by_token: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    def is_active(self, now: datetime) -> bool:
        return not self.is_revoked and not self.is_expired(now)


# ---------------------------------------------------------------------------
# Use-case results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UserProjection:
    """Read model of a user returned to callers and kept in the session cache."""

    id: str
    email: str
    first_name: str
    last_name: str
    full_name: str
    phone_number: str | None = None
    avatar: str | None = None
    is_email_verified: bool = False
    is_phone_verified: bool = False
    is_active: bool = True
    created_at: datetime | None = None
    last_login_at: datetime | None = None
    roles: tuple[str, ...] = ()
    permissions: tuple[str, ...] = ()


@dataclass(frozen=True)
class AuthResult:
    """Outcome of a successful login or registration."""

    access_token: str
    refresh_token: str
    expires_at: datetime
    user: UserProjection


@dataclass(frozen=True)
class RefreshResult:
    access_token: str
    refresh_token: str
    expires_at: datetime


@dataclass(frozen=True)
class Session:
    """One device session, as shown on a "where am I logged in" screen."""

    device_id: str
    device_name: str | None
    ip_address: str | None
    user_agent: str | None
    created_at: datetime | None
    expires_at: datetime


@dataclass(frozen=True)
class Principal:
    """The caller, as stated by a verified access token. No store round-trip involved."""

    user_id: str
    email: str
    roles: tuple[str, ...] = ()
    permissions: tuple[str, ...] = ()

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions
