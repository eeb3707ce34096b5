"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The caller is identified by an access token in the Authorization: Bearer
header. Everything below is decided from the verified token alone -- no
user lookup -- which is what aggregating roles and permissions into the token
buys: "may this caller do X" costs one HMAC check.

try_get_principal() is the soft variant (returns None on failure).
get_current_principal() wraps it and raises HTTP 401 if unauthenticated.
require_role() / require_permission() build dependencies that additionally
raise HTTP 403 when the claim is missing.

Layer rule: auth/dependencies.py may import from fastapi (for Depends/
HTTPException/Request) because this module is part of the FastAPI dependency
injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import HTTPException, Request

from auth.models import Principal
from auth.tokens import TokenIssuer


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def try_get_principal(request: Request) -> Principal | None:
    """Decode the Bearer token into a Principal. Never raises."""
    token = _bearer_token(request)
    if not token:
        return None
    issuer: TokenIssuer = request.app.state.token_issuer
    claims = issuer.decode(token)
    if claims is None:
        return None
    return Principal(
        user_id=claims["sub"],
        email=claims.get("email", ""),
        roles=tuple(claims.get("roles", ())),
        permissions=tuple(claims.get("permissions", ())),
    )


def get_current_principal(request: Request) -> Principal:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(principal: Principal = Depends(get_current_principal)): ...
    """
    principal = try_get_principal(request)
    if principal is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return principal


def require_role(role: str) -> Callable[[Request], Principal]:
    """Build a dependency that requires the caller's token to carry `role`.

    Use as a FastAPI dependency:
        @router.post("/admin-only")
        async def route(principal: Principal = Depends(require_role("Admin"))): ...
    """

    def dependency(request: Request) -> Principal:
        principal = get_current_principal(request)
        if not principal.has_role(role):
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": f"{role} role required."},
            )
        return principal

    return dependency


def require_permission(permission: str) -> Callable[[Request], Principal]:
    """Build a dependency that requires the caller's token to carry `permission`."""

    def dependency(request: Request) -> Principal:
        principal = get_current_principal(request)
        if not principal.has_permission(permission):
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": "Missing required permission."},
            )
        return principal

    return dependency
