"""
auth/roles.py -- Administrative RBAC operations.

Grants and assignments are never deleted here, only switched on or off, so
the join rows double as an audit trail and a disabled grant can be restored
with its identity intact. Changes take effect in access tokens at the
affected user's next login or refresh, when claims are re-aggregated.

Cached projections carry roles and permissions, so they are dropped on every
change: the one user for an assignment, every "user:" entry for a grant,
since any number of users may hold the role.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.errors import ConflictError, NotFoundError, ValidationError
from auth.models import Permission, Role
from auth.store import UserStore
from cache.store import SessionCache, user_key

logger = logging.getLogger("volcanion.auth")


class RoleService:
    def __init__(self, users: UserStore, cache: SessionCache | None = None) -> None:
        self.users = users
        self.cache = cache

    def list_roles(self) -> list[Role]:
        return self.users.list_roles()

    def list_permissions(self) -> list[Permission]:
        return self.users.list_permissions()

    def create_role(self, name: str, description: str | None = None) -> Role:
        if not name or not name.strip():
            raise ValidationError({"name": ["Role name is required"]})
        try:
            role = self.users.create_role(Role(name=name.strip(), description=description))
        except IntegrityError as exc:
            raise ConflictError("Role name already exists", field="name") from exc
        logger.info("Created role %s", role.name)
        return role

    def create_permission(self, name: str, resource: str, action: str, description: str | None = None) -> Permission:
        errors: dict[str, list[str]] = {}
        for field, value in (("name", name), ("resource", resource), ("action", action)):
            if not value or not value.strip():
                errors[field] = [f"{field.capitalize()} is required"]
        if errors:
            raise ValidationError(errors)
        if self.users.get_permission_by_name(name.strip()) is not None:
            raise ConflictError("Permission name already exists", field="name")
        try:
            permission = self.users.create_permission(
                Permission(name=name.strip(), resource=resource.strip(), action=action.strip(), description=description)
            )
        except IntegrityError as exc:
            raise ConflictError("Permission for this resource and action already exists", field="resource") from exc
        logger.info("Created permission %s (%s:%s)", permission.name, permission.resource, permission.action)
        return permission

    def _role(self, role_name: str) -> Role:
        role = self.users.get_role_by_name(role_name)
        if role is None:
            raise NotFoundError("Role", role_name)
        return role

    def set_permission(self, role_name: str, permission_name: str, active: bool = True) -> None:
        """Grant (active=True) or soft-revoke (active=False) a permission on a role."""
        role = self._role(role_name)
        permission = self.users.get_permission_by_name(permission_name)
        if permission is None:
            raise NotFoundError("Permission", permission_name)
        self.users.set_role_permission(role.id, permission.id, active=active)
        if self.cache is not None:
            self.cache.remove_by_prefix(user_key(""))
        logger.info("%s permission %s on role %s", "Granted" if active else "Revoked", permission.name, role.name)

    def set_user_role(self, user_id: str, role_name: str, active: bool = True) -> None:
        """Assign (active=True) or soft-unassign (active=False) a role to a user."""
        if self.users.get_by_id(user_id) is None:
            raise NotFoundError("User", user_id)
        role = self._role(role_name)
        self.users.set_user_role(user_id, role.id, active=active)
        if self.cache is not None:
            self.cache.remove(user_key(user_id))
        logger.info("%s role %s for user %s", "Assigned" if active else "Unassigned", role.name, user_id)

    def ensure_role(self, name: str, description: str | None = None) -> Role:
        """Return the named role, creating it if absent. Used by seeding."""
        existing = self.users.get_role_by_name(name)
        if existing is not None:
            return existing
        try:
            return self.users.create_role(Role(name=name, description=description))
        except IntegrityError:
            # Created concurrently by another seeder; the row exists now.
            role = self.users.get_role_by_name(name)
            if role is None:
                raise
            return role
