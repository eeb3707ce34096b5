"""
auth/tokens.py -- Access-token (JWT) minting/validation and refresh-token generation.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with Settings.secret_key
       (loaded once, read-only afterwards) and carry sub (user id), email,
       roles, permissions, iat, exp, jti, and iss/aud when configured.
       Downstream authorization is decided from these claims alone, which is
       why claims are aggregated at issuance instead of looked up per request.

  Verification: signature, algorithm allow-list (HS256 only, so "alg: none"
       and algorithm-confusion tokens fail), issuer, audience, and expiry.
       Expiry is checked here against the injected Clock with zero leeway
       rather than by jose against the wall clock, so expiry logic has one
       time source. decode() returns None on ANY failure -- malformed,
       unsigned, expired, wrong issuer/audience all look the same to callers.
       The reason is logged at DEBUG level, never returned.

  Refresh tokens: secrets.token_urlsafe(64) -- 512 bits from the OS CSPRNG.
       Opaque (not a JWT), unrelated to the access token, and only meaningful
       as a lookup key in the refresh-token store.

Layer rule: no imports from api/ or cache/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from core.clock import Clock, SystemClock
from core.config import Settings, get_settings

logger = logging.getLogger("volcanion.auth")

_ALGORITHM = "HS256"
_REFRESH_TOKEN_BYTES = 64


class TokenIssuer:
    """Mints and verifies access tokens; generates refresh-token values.

    Usage:
        issuer = TokenIssuer.from_settings(get_settings())
        token, expires_at = issuer.issue_access_token(user_id, email, roles, permissions)
        claims = issuer.decode(token)   # dict or None
    """

    def __init__(
        self,
        secret_key: str,
        access_token_lifetime: timedelta,
        issuer: str = "",
        audience: str = "",
        clock: Clock | None = None,
    ) -> None:
        if not secret_key:
            raise ValueError("TokenIssuer requires a signing key")
        if access_token_lifetime <= timedelta(0):
            raise ValueError("access_token_lifetime must be positive")
        self._secret_key = secret_key
        self._lifetime = access_token_lifetime
        self._issuer = issuer
        self._audience = audience
        self._clock = clock or SystemClock()

    @classmethod
    def from_settings(cls, settings: Settings | None = None, clock: Clock | None = None) -> TokenIssuer:
        settings = settings or get_settings()
        return cls(
            secret_key=settings.secret_key,
            access_token_lifetime=timedelta(minutes=settings.access_token_expire_minutes),
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def issue_access_token(
        self,
        user_id: str,
        email: str,
        roles: Iterable[str],
        permissions: Iterable[str],
    ) -> tuple[str, datetime]:
        """Encode a signed JWT and return it with its expiry.

        JWT timestamps have one-second resolution, so the returned expiry is
        truncated to match exactly what the token says.
        """
        issued_at = int(self._clock.now().timestamp())
        expires = issued_at + int(self._lifetime.total_seconds())
        payload: dict[str, Any] = {
            "sub": str(user_id),
            "email": email,
            "roles": list(roles),
            "permissions": list(permissions),
            "iat": issued_at,
            "exp": expires,
            "jti": uuid.uuid4().hex,
        }
        if self._issuer:
            payload["iss"] = self._issuer
        if self._audience:
            payload["aud"] = self._audience
        token = jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)
        return token, datetime.fromtimestamp(expires, tz=timezone.utc)

    @staticmethod
    def issue_refresh_token() -> str:
        """Return a new opaque refresh-token value (512 bits of entropy)."""
        return secrets.token_urlsafe(_REFRESH_TOKEN_BYTES)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def decode(self, token: str) -> dict[str, Any] | None:
        """Verify a JWT and return its claims, or None on any failure."""
        if not isinstance(token, str) or not token:
            return None
        # No require_exp / require_iat: jose re-enables verify_<claim> for every
        # required claim, which would check exp against the wall clock.
        options = {
            "verify_exp": False,
            "require_sub": True,
            "require_aud": bool(self._audience),
            "require_iss": bool(self._issuer),
            "leeway": 0,
        }
        try:
            claims = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                options=options,
                audience=self._audience or None,
                issuer=self._issuer or None,
            )
        except JWTError as exc:
            logger.debug("Access token rejected: %s", exc)
            return None

        if not isinstance(claims.get("iat"), (int, float)):
            logger.debug("Access token rejected: missing iat")
            return None
        exp = claims.get("exp")
        if not isinstance(exp, (int, float)) or self._clock.now().timestamp() >= exp:
            logger.debug("Access token rejected: expired")
            return None
        if not isinstance(claims.get("roles"), list) or not isinstance(claims.get("permissions"), list):
            logger.debug("Access token rejected: missing role/permission claims")
            return None
        return claims

    def validate(self, token: str) -> bool:
        return self.decode(token) is not None
