"""
auth/claims.py -- Effective role and permission set for a user.

Pure function over an RbacGrants snapshot loaded by the store: no I/O, no
clock. Only active join rows count:

  - a UserRole with is_active=False contributes no role and none of that
    role's permissions;
  - a RolePermission with is_active=False contributes nothing.

Permissions are a set union, since two roles may grant the same permission.
Output is sorted so the same grants always produce the same token claims.
"""

from __future__ import annotations

from auth.models import ClaimSet, RbacGrants


def resolve_claims(grants: RbacGrants) -> ClaimSet:
    active_role_ids = {ur.role_id for ur in grants.user_roles if ur.is_active and ur.role_id in grants.roles}

    roles = {grants.roles[role_id].name for role_id in active_role_ids}

    permissions = {
        grants.permissions[rp.permission_id].name
        for rp in grants.role_permissions
        if rp.is_active and rp.role_id in active_role_ids and rp.permission_id in grants.permissions
    }

    return ClaimSet(roles=tuple(sorted(roles)), permissions=tuple(sorted(permissions)))
