"""
api/routes/v1/users.py -- Profile and account-administration endpoints.

Routes:
  GET  /api/v1/users/profile            -- the caller's own projection
  PUT  /api/v1/users/profile            -- edit the caller's name, phone, avatar
  POST /api/v1/users/change-password    -- requires the current password
  GET  /api/v1/users/{user_id}          -- admin: any user's projection
  POST /api/v1/users/{user_id}/activate    -- admin
  POST /api/v1/users/{user_id}/deactivate  -- admin

/profile is declared before /{user_id} so it is not captured by the path
parameter.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import ChangePasswordRequest, MessageResponse, UpdateProfileRequest, UserResponse
from auth.dependencies import get_current_principal, require_role
from auth.errors import NotFoundError
from auth.models import Principal
from auth.users import UserService

router = APIRouter()

_require_admin = require_role("Admin")


def _service(request: Request) -> UserService:
    return request.app.state.user_service


@router.get("/users/profile", response_model=UserResponse)
def get_profile(request: Request, principal: Principal = Depends(get_current_principal)) -> UserResponse:
    projection = _service(request).get_user(principal.user_id)
    if projection is None:
        # Token outlived its account.
        raise NotFoundError("User", principal.user_id)
    return UserResponse.from_projection(projection)


@router.put("/users/profile", response_model=UserResponse)
def update_profile(
    request: Request,
    body: UpdateProfileRequest,
    principal: Principal = Depends(get_current_principal),
) -> UserResponse:
    projection = _service(request).update_profile(
        principal.user_id,
        first_name=body.first_name,
        last_name=body.last_name,
        phone_number=body.phone_number,
        avatar=body.avatar,
    )
    return UserResponse.from_projection(projection)


@router.post("/users/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    principal: Principal = Depends(get_current_principal),
) -> MessageResponse:
    """Change the caller's password. Existing sessions stay valid."""
    _service(request).change_password(
        principal.user_id,
        current_password=body.current_password,
        new_password=body.new_password,
        confirm_password=body.confirm_password,
    )
    return MessageResponse(message="Password changed.")


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(request: Request, user_id: str, _: Principal = Depends(_require_admin)) -> UserResponse:
    projection = _service(request).get_user(user_id)
    if projection is None:
        raise NotFoundError("User", user_id)
    return UserResponse.from_projection(projection)


@router.post("/users/{user_id}/activate", response_model=MessageResponse)
def activate_user(request: Request, user_id: str, _: Principal = Depends(_require_admin)) -> MessageResponse:
    _service(request).activate(user_id)
    return MessageResponse(message="User activated.")


@router.post("/users/{user_id}/deactivate", response_model=MessageResponse)
def deactivate_user(request: Request, user_id: str, _: Principal = Depends(_require_admin)) -> MessageResponse:
    """Block new logins and refreshes. Access tokens already issued run out on their own."""
    _service(request).deactivate(user_id)
    return MessageResponse(message="User deactivated.")
