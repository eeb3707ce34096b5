"""
API request and response models for Volcanion Auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request models are deliberately permissive (plain strings, empty defaults):
field rules live in auth/validators.py so a bad request gets every violation
back in one ValidationError rather than Pydantic's first-failure shape.
Only max_length caps are applied here, to bound request size.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import AuthResult, RefreshResult, Role, Session, UserProjection

# ---------------------------------------------------------------------------
# Errors / health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    fields: Optional[dict[str, list[str]]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    email_or_phone: str = Field(default="", max_length=255)
    password: str = Field(default="", max_length=255)
    device_id: str = Field(default="", max_length=255)
    device_name: Optional[str] = Field(default=None, max_length=255)
    remember_me: bool = False


class RegisterRequest(BaseModel):
    email: str = Field(default="", max_length=255)
    phone_number: Optional[str] = Field(default=None, max_length=30)
    password: str = Field(default="", max_length=255)
    confirm_password: str = Field(default="", max_length=255)
    first_name: str = Field(default="", max_length=255)
    last_name: str = Field(default="", max_length=255)
    device_id: str = Field(default="", max_length=255)
    device_name: Optional[str] = Field(default=None, max_length=255)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(default="", max_length=255)
    device_id: str = Field(default="", max_length=255)


class LogoutRequest(BaseModel):
    refresh_token: str = Field(default="", max_length=255)


class ValidateTokenRequest(BaseModel):
    access_token: str = Field(default="", max_length=8192)


# ---------------------------------------------------------------------------
# Auth -- responses
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    id: str
    email: str
    phone_number: Optional[str] = None
    first_name: str
    last_name: str
    full_name: str
    avatar: Optional[str] = None
    is_email_verified: bool
    is_phone_verified: bool
    is_active: bool
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None
    roles: list[str] = Field(default_factory=list)
    permissions: list[str] = Field(default_factory=list)

    @classmethod
    def from_projection(cls, p: UserProjection) -> "UserResponse":
        return cls(
            id=p.id,
            email=p.email,
            phone_number=p.phone_number,
            first_name=p.first_name,
            last_name=p.last_name,
            full_name=p.full_name,
            avatar=p.avatar,
            is_email_verified=p.is_email_verified,
            is_phone_verified=p.is_phone_verified,
            is_active=p.is_active,
            created_at=p.created_at,
            last_login_at=p.last_login_at,
            roles=list(p.roles),
            permissions=list(p.permissions),
        )


class AuthResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_at: datetime
    user: UserResponse

    @classmethod
    def from_result(cls, result: AuthResult) -> "AuthResponse":
        return cls(
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            expires_at=result.expires_at,
            user=UserResponse.from_projection(result.user),
        )


class RefreshResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_at: datetime

    @classmethod
    def from_result(cls, result: RefreshResult) -> "RefreshResponse":
        return cls(access_token=result.access_token, refresh_token=result.refresh_token, expires_at=result.expires_at)


class ValidateTokenResponse(BaseModel):
    valid: bool


class MeResponse(BaseModel):
    """Identity as stated by the caller's access token."""

    user_id: str
    email: str
    roles: list[str]
    permissions: list[str]


class SessionResponse(BaseModel):
    device_id: str
    device_name: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: Optional[datetime] = None
    expires_at: datetime

    @classmethod
    def from_session(cls, s: Session) -> "SessionResponse":
        return cls(
            device_id=s.device_id,
            device_name=s.device_name,
            ip_address=s.ip_address,
            user_agent=s.user_agent,
            created_at=s.created_at,
            expires_at=s.expires_at,
        )


class MessageResponse(BaseModel):
    message: str


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UpdateProfileRequest(BaseModel):
    first_name: str = Field(default="", max_length=255)
    last_name: str = Field(default="", max_length=255)
    phone_number: Optional[str] = Field(default=None, max_length=30)
    avatar: Optional[str] = Field(default=None, max_length=2048)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(default="", max_length=255)
    new_password: str = Field(default="", max_length=255)
    confirm_password: str = Field(default="", max_length=255)


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


class RoleCreate(BaseModel):
    name: str = Field(default="", max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)


class RoleResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    is_active: bool

    @classmethod
    def from_role(cls, role: Role) -> "RoleResponse":
        return cls(id=role.id, name=role.name, description=role.description, is_active=role.is_active)


class PermissionCreate(BaseModel):
    name: str = Field(default="", max_length=100)
    resource: str = Field(default="", max_length=100)
    action: str = Field(default="", max_length=50)
    description: Optional[str] = Field(default=None, max_length=1000)


class PermissionResponse(BaseModel):
    id: str
    name: str
    resource: str
    action: str
    description: Optional[str] = None
    is_active: bool


class GrantRequest(BaseModel):
    active: bool = True
