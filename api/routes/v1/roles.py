"""
api/routes/v1/roles.py -- RBAC administration endpoints. Admin role required.

Routes:
  GET  /api/v1/roles                                    -- list roles
  POST /api/v1/roles                                    -- create a role
  GET  /api/v1/permissions                              -- list permissions
  POST /api/v1/permissions                              -- create a permission
  PUT  /api/v1/roles/{role_name}/permissions/{perm}     -- grant or soft-revoke
  PUT  /api/v1/users/{user_id}/roles/{role_name}        -- assign or soft-unassign

Grant changes reach access tokens at the affected user's next login or refresh.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import (
    GrantRequest,
    MessageResponse,
    PermissionCreate,
    PermissionResponse,
    RoleCreate,
    RoleResponse,
)
from auth.dependencies import require_role
from auth.models import Permission
from auth.roles import RoleService

router = APIRouter(dependencies=[Depends(require_role("Admin"))])


def _service(request: Request) -> RoleService:
    return request.app.state.role_service


def _permission_response(p: Permission) -> PermissionResponse:
    return PermissionResponse(
        id=p.id,
        name=p.name,
        resource=p.resource,
        action=p.action,
        description=p.description,
        is_active=p.is_active,
    )


@router.get("/roles", response_model=list[RoleResponse])
def list_roles(request: Request) -> list[RoleResponse]:
    return [RoleResponse.from_role(r) for r in _service(request).list_roles()]


@router.post("/roles", response_model=RoleResponse, status_code=201)
def create_role(request: Request, body: RoleCreate) -> RoleResponse:
    return RoleResponse.from_role(_service(request).create_role(body.name, body.description))


@router.get("/permissions", response_model=list[PermissionResponse])
def list_permissions(request: Request) -> list[PermissionResponse]:
    return [_permission_response(p) for p in _service(request).list_permissions()]


@router.post("/permissions", response_model=PermissionResponse, status_code=201)
def create_permission(request: Request, body: PermissionCreate) -> PermissionResponse:
    permission = _service(request).create_permission(body.name, body.resource, body.action, body.description)
    return _permission_response(permission)


@router.put("/roles/{role_name}/permissions/{permission_name}", response_model=MessageResponse)
def set_role_permission(request: Request, role_name: str, permission_name: str, body: GrantRequest) -> MessageResponse:
    _service(request).set_permission(role_name, permission_name, active=body.active)
    verb = "granted to" if body.active else "revoked from"
    return MessageResponse(message=f"Permission {permission_name} {verb} role {role_name}.")


@router.put("/users/{user_id}/roles/{role_name}", response_model=MessageResponse)
def set_user_role(request: Request, user_id: str, role_name: str, body: GrantRequest) -> MessageResponse:
    _service(request).set_user_role(user_id, role_name, active=body.active)
    verb = "assigned" if body.active else "unassigned"
    return MessageResponse(message=f"Role {role_name} {verb}.")
