"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/login        -- email-or-phone + password; issues access + refresh tokens
  POST /api/v1/auth/register     -- create account; issues access + refresh tokens
  POST /api/v1/auth/refresh      -- rotate a refresh token
  POST /api/v1/auth/logout       -- revoke one refresh token (always 200)
  POST /api/v1/auth/logout-all   -- revoke every session of the token's owner (always 200)
  POST /api/v1/auth/validate     -- {"valid": bool} for an access token
  GET  /api/v1/auth/me           -- identity from the caller's access token
  GET  /api/v1/auth/sessions     -- the caller's active device sessions

Handlers are thin: they pull caller IP and User-Agent off the request, call
AuthService with explicit arguments, and serialize the result. AuthError
subclasses raised by the service are turned into status codes by the
exception handler in api/main.py.

Security:
  POST /login and /register are rate-limited per IP.
  Cache-Control: no-store on every response that carries tokens.
  These handlers are sync (def) on purpose: the service blocks on the KDF and
  the database, so FastAPI runs them in its threadpool instead of on the
  event loop.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import LOGIN_RATE_LIMIT, limiter
from api.models import (
    AuthResponse,
    LoginRequest,
    LogoutRequest,
    MeResponse,
    MessageResponse,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    SessionResponse,
    ValidateTokenRequest,
    ValidateTokenResponse,
)
from auth.dependencies import get_current_principal
from auth.models import Principal
from auth.service import AuthService

# Auth policy:
# - login / register / refresh / logout / logout-all / validate: public --
#   they authenticate by the credential in the body, not by a Bearer header.
# - me / sessions: requires a valid access token (get_current_principal).
router = APIRouter()


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def _no_store(payload: dict, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=payload)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


@limiter.limit(LOGIN_RATE_LIMIT)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate and open a session on body.device_id.

    Unknown account, inactive account and wrong password all produce the
    identical 401 payload.
    """
    result = _service(request).login(
        email_or_phone=body.email_or_phone,
        password=body.password,
        device_id=body.device_id,
        device_name=body.device_name,
        remember_me=body.remember_me,
        ip_address=_client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )
    return _no_store(AuthResponse.from_result(result).model_dump(mode="json"))


@limiter.limit(LOGIN_RATE_LIMIT)
@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account and open its first session."""
    result = _service(request).register(
        email=body.email,
        password=body.password,
        confirm_password=body.confirm_password,
        first_name=body.first_name,
        last_name=body.last_name,
        device_id=body.device_id,
        phone_number=body.phone_number,
        device_name=body.device_name,
        ip_address=_client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )
    return _no_store(AuthResponse.from_result(result).model_dump(mode="json"), status_code=201)


@router.post("/auth/refresh", response_model=RefreshResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange a refresh token for a new access/refresh pair. The old token stops working."""
    result = _service(request).refresh(body.refresh_token, body.device_id, ip_address=_client_ip(request))
    return _no_store(RefreshResponse.from_result(result).model_dump(mode="json"))


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, body: LogoutRequest) -> MessageResponse:
    """Revoke one session. Succeeds even if the token is unknown or already revoked."""
    _service(request).logout(body.refresh_token, ip_address=_client_ip(request))
    return MessageResponse(message="Logged out.")


@router.post("/auth/logout-all", response_model=MessageResponse)
def logout_all(request: Request, body: LogoutRequest) -> MessageResponse:
    """Revoke every session belonging to the owner of body.refresh_token."""
    _service(request).logout_all_devices(body.refresh_token, ip_address=_client_ip(request))
    return MessageResponse(message="Logged out from all devices.")


@router.post("/auth/validate", response_model=ValidateTokenResponse)
def validate(request: Request, body: ValidateTokenRequest) -> ValidateTokenResponse:
    return ValidateTokenResponse(valid=_service(request).validate_token(body.access_token))


@router.get("/auth/me", response_model=MeResponse)
def me(principal: Principal = Depends(get_current_principal)) -> MeResponse:
    """Return the identity carried by the caller's access token."""
    return MeResponse(
        user_id=principal.user_id,
        email=principal.email,
        roles=list(principal.roles),
        permissions=list(principal.permissions),
    )


@router.get("/auth/sessions", response_model=list[SessionResponse])
def sessions(request: Request, principal: Principal = Depends(get_current_principal)) -> list[SessionResponse]:
    """List the caller's active device sessions, newest first."""
    return [SessionResponse.from_session(s) for s in _service(request).list_sessions(principal.user_id)]
