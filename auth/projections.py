"""
auth/projections.py -- Build the caller-facing user projection and move it in
and out of the session cache.

The cache stores plain JSON, so datetimes go through core.clock.to_iso() and
tuples become lists. projection_from_dict() is the exact inverse.
"""

from __future__ import annotations

from typing import Any

from auth.models import ClaimSet, User, UserProjection
from core.clock import from_iso, to_iso


def build_projection(user: User, claims: ClaimSet) -> UserProjection:
    return UserProjection(
        id=user.id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        full_name=user.full_name,
        phone_number=user.phone_number,
        avatar=user.avatar,
        is_email_verified=user.is_email_verified,
        is_phone_verified=user.is_phone_verified,
        is_active=user.is_active,
        created_at=user.created_at,
        last_login_at=user.last_login_at,
        roles=claims.roles,
        permissions=claims.permissions,
    )


def projection_to_dict(projection: UserProjection) -> dict[str, Any]:
    return {
        "id": projection.id,
        "email": projection.email,
        "first_name": projection.first_name,
        "last_name": projection.last_name,
        "full_name": projection.full_name,
        "phone_number": projection.phone_number,
        "avatar": projection.avatar,
        "is_email_verified": projection.is_email_verified,
        "is_phone_verified": projection.is_phone_verified,
        "is_active": projection.is_active,
        "created_at": to_iso(projection.created_at) if projection.created_at else None,
        "last_login_at": to_iso(projection.last_login_at) if projection.last_login_at else None,
        "roles": list(projection.roles),
        "permissions": list(projection.permissions),
    }


def projection_from_dict(data: dict[str, Any]) -> UserProjection:
    return UserProjection(
        id=data["id"],
        email=data["email"],
        first_name=data["first_name"],
        last_name=data["last_name"],
        full_name=data["full_name"],
        phone_number=data.get("phone_number"),
        avatar=data.get("avatar"),
        is_email_verified=bool(data.get("is_email_verified")),
        is_phone_verified=bool(data.get("is_phone_verified")),
        is_active=bool(data.get("is_active", True)),
        created_at=from_iso(data.get("created_at")),
        last_login_at=from_iso(data.get("last_login_at")),
        roles=tuple(data.get("roles") or ()),
        permissions=tuple(data.get("permissions") or ()),
    )
