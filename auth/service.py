"""
auth/service.py -- Login, registration, refresh, and logout use cases.

AuthService composes the hasher, claim aggregator, token issuer, the two
stores, and the session cache. Each public method is one request-scoped unit
of work: it takes everything it needs (including caller IP and user agent) as
explicit arguments, holds no in-process lock, and either returns a result
dataclass or raises an AuthError subclass.

Security:
  Enumeration -- login failures for "no such account", "inactive account" and
      "wrong password" raise the same UnauthorizedError with the same message,
      and all three run the KDF once (against DUMMY_HASH when there is no
      account). The distinguishing reason is logged, never returned.
      Registration, by contrast, names the colliding field: the caller typed
      that value in, so the conflict tells them nothing new about anyone else.

  Refresh -- the presented token must exist, be active, and belong to the
      presenting device. Claims are re-aggregated from current RBAC state on
      every refresh, so revoking a role takes effect at the next rotation.
      Rotation itself is delegated to RefreshTokenStore.rotate(); losing a
      concurrent rotation race surfaces as UnauthorizedError.

  Sessions -- unless remember_me is set, logging in on a device revokes the
      device's existing refresh tokens (one live session per device).

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy.exc import IntegrityError

from auth.claims import resolve_claims
from auth.errors import INVALID_CREDENTIALS, INVALID_REFRESH_TOKEN, ConflictError, UnauthorizedError, ValidationError
from auth.models import AuthResult, RefreshResult, RefreshToken, Session, User
from auth.passwords import DUMMY_HASH, hash_password, verify_password
from auth.projections import build_projection, projection_to_dict
from auth.store import UserStore
from auth.token_store import RefreshTokenStore
from auth.tokens import TokenIssuer
from auth.validators import (
    normalize_email,
    normalize_phone,
    split_login_identifier,
    validate_login,
    validate_refresh,
    validate_register,
)
from cache.store import SessionCache, user_key
from core.clock import Clock, SystemClock
from core.config import Settings, get_settings

logger = logging.getLogger("volcanion.auth")


def _prefix(token: str) -> str:
    """Loggable handle for a secret token value."""
    return f"{token[:8]}..."


class AuthService:
    """Authentication orchestrator.

    Usage:
        service = AuthService(user_store, token_store, TokenIssuer.from_settings(), cache)
        result = service.login("a@x.com", "Passw0rd!", device_id="d1")
        rotated = service.refresh(result.refresh_token, device_id="d1")
    """

    def __init__(
        self,
        users: UserStore,
        tokens: RefreshTokenStore,
        issuer: TokenIssuer,
        cache: SessionCache | None = None,
        clock: Clock | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.users = users
        self.tokens = tokens
        self.issuer = issuer
        self.cache = cache
        self._clock = clock or SystemClock()
        self._refresh_lifetime = timedelta(days=settings.refresh_token_expire_days)
        self._cache_ttl = settings.user_cache_ttl_seconds
        self._default_role = settings.default_role_name

    # ------------------------------------------------------------------
    # Login / register
    # ------------------------------------------------------------------

    def login(
        self,
        email_or_phone: str,
        password: str,
        device_id: str,
        device_name: str | None = None,
        remember_me: bool = False,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthResult:
        errors = validate_login(email_or_phone, password, device_id)
        if errors:
            raise ValidationError(errors)

        email, phone = split_login_identifier(email_or_phone)
        user = self.users.get_by_email_or_phone(email, phone)

        # Always run the KDF exactly once, whatever happens below.
        password_ok = verify_password(password, user.password_hash if user else DUMMY_HASH)
        if user is None:
            logger.info("Login failed: unknown identifier (ip=%s)", ip_address)
            raise UnauthorizedError(INVALID_CREDENTIALS)
        if not user.is_active:
            logger.info("Login failed: inactive account %s (ip=%s)", user.id, ip_address)
            raise UnauthorizedError(INVALID_CREDENTIALS)
        if not password_ok:
            logger.info("Login failed: wrong password for %s (ip=%s)", user.id, ip_address)
            raise UnauthorizedError(INVALID_CREDENTIALS)

        self.users.update_last_login(user.id)
        user = self.users.get_by_id(user.id) or user

        if not remember_me:
            revoked = self.tokens.revoke_by_device(user.id, device_id, ip_address)
            if revoked:
                logger.info("Superseded %d session(s) for user %s on device %s", revoked, user.id, device_id)

        result = self._start_session(user, device_id, device_name, ip_address, user_agent)
        logger.info("Login succeeded for user %s on device %s", user.id, device_id)
        return result

    def register(
        self,
        email: str,
        password: str,
        confirm_password: str,
        first_name: str,
        last_name: str,
        device_id: str,
        phone_number: str | None = None,
        device_name: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthResult:
        errors = validate_register(email, phone_number, password, confirm_password, first_name, last_name, device_id)
        if errors:
            raise ValidationError(errors)

        email = normalize_email(email)
        phone = normalize_phone(phone_number) if phone_number and phone_number.strip() else None

        if self.users.email_exists(email):
            raise ConflictError("Email already exists", field="email")
        if phone and self.users.phone_exists(phone):
            raise ConflictError("Phone number already exists", field="phone_number")

        try:
            user = self.users.create_user(
                User(
                    email=email,
                    phone_number=phone,
                    password_hash=hash_password(password),
                    first_name=first_name.strip(),
                    last_name=last_name.strip(),
                )
            )
        except IntegrityError as exc:
            # A concurrent registration won between the existence check and the insert.
            if self.users.email_exists(email):
                raise ConflictError("Email already exists", field="email") from exc
            raise ConflictError("Phone number already exists", field="phone_number") from exc

        default_role = self.users.get_role_by_name(self._default_role)
        if default_role is not None:
            self.users.set_user_role(user.id, default_role.id)
        else:
            logger.warning("Default role %r is not configured; %s registered without a role", self._default_role, user.id)

        logger.info("Registered user %s", user.id)
        return self._start_session(user, device_id, device_name, ip_address, user_agent)

    def _start_session(
        self,
        user: User,
        device_id: str,
        device_name: str | None,
        ip_address: str | None,
        user_agent: str | None,
    ) -> AuthResult:
        """Aggregate claims, mint both tokens, persist the refresh token, cache the projection."""
        claims = resolve_claims(self.users.load_grants(user.id))
        access_token, expires_at = self.issuer.issue_access_token(user.id, user.email, claims.roles, claims.permissions)
        refresh_value = self.issuer.issue_refresh_token()
        self.tokens.create(
            RefreshToken(
                token=refresh_value,
                user_id=user.id,
                device_id=device_id,
                device_name=device_name,
                user_agent=user_agent,
                ip_address=ip_address,
                expires_at=self._clock.now() + self._refresh_lifetime,
            )
        )
        projection = build_projection(user, claims)
        if self.cache is not None:
            self.cache.set(user_key(user.id), projection_to_dict(projection), ttl=self._cache_ttl)
        return AuthResult(
            access_token=access_token,
            refresh_token=refresh_value,
            expires_at=expires_at,
            user=projection,
        )

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str, device_id: str, ip_address: str | None = None) -> RefreshResult:
        errors = validate_refresh(refresh_token, device_id)
        if errors:
            raise ValidationError(errors)

        stored = self.tokens.get_by_token(refresh_token)
        if stored is None:
            logger.info("Refresh rejected: unknown token %s", _prefix(refresh_token))
            raise UnauthorizedError(INVALID_REFRESH_TOKEN)
        if stored.is_revoked:
            # A rotated token coming back is either a client bug or a replayed credential.
            logger.warning(
                "Refresh rejected: revoked token %s presented for user %s (ip=%s)",
                _prefix(refresh_token),
                stored.user_id,
                ip_address,
            )
            raise UnauthorizedError(INVALID_REFRESH_TOKEN)
        if stored.is_expired(self._clock.now()):
            logger.info("Refresh rejected: expired token %s", _prefix(refresh_token))
            raise UnauthorizedError(INVALID_REFRESH_TOKEN)
        if stored.device_id != device_id:
            logger.warning("Refresh rejected: device mismatch for token %s", _prefix(refresh_token))
            raise UnauthorizedError(INVALID_REFRESH_TOKEN)

        user = self.users.get_by_id(stored.user_id)
        if user is None or not user.is_active:
            logger.info("Refresh rejected: account %s is deactivated", stored.user_id)
            raise UnauthorizedError("User account is deactivated")

        claims = resolve_claims(self.users.load_grants(user.id))

        successor = self.tokens.rotate(
            refresh_token,
            RefreshToken(
                token=self.issuer.issue_refresh_token(),
                user_id=user.id,
                device_id=stored.device_id,
                device_name=stored.device_name,
                user_agent=stored.user_agent,
                ip_address=ip_address,
                expires_at=self._clock.now() + self._refresh_lifetime,
            ),
            revoked_by_ip=ip_address,
        )
        if successor is None:
            logger.warning("Refresh rejected: token %s was rotated concurrently", _prefix(refresh_token))
            raise UnauthorizedError(INVALID_REFRESH_TOKEN)

        access_token, expires_at = self.issuer.issue_access_token(user.id, user.email, claims.roles, claims.permissions)
        return RefreshResult(access_token=access_token, refresh_token=successor.token, expires_at=expires_at)

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def logout(self, refresh_token: str, ip_address: str | None = None) -> None:
        """Revoke one session. Unknown or already-inactive tokens are a silent no-op."""
        if not refresh_token:
            return
        if self.tokens.revoke(refresh_token, ip_address):
            logger.info("Logged out token %s", _prefix(refresh_token))

    def logout_all_devices(self, refresh_token: str, ip_address: str | None = None) -> int:
        """Revoke every session of the token's owner and drop the cached projection.

        Returns the number of sessions revoked. A token that resolves to no
        user is a silent no-op, mirroring logout().
        """
        stored = self.tokens.get_by_token(refresh_token) if refresh_token else None
        if stored is None:
            return 0
        revoked = self.tokens.revoke_all_by_user(stored.user_id, ip_address)
        if self.cache is not None:
            self.cache.remove(user_key(stored.user_id))
        logger.info("Logged out user %s from all devices (%d session(s))", stored.user_id, revoked)
        return revoked

    # ------------------------------------------------------------------
    # Misc
    # ------------------------------------------------------------------

    def validate_token(self, access_token: str) -> bool:
        return self.issuer.validate(access_token)

    def list_sessions(self, user_id: str) -> list[Session]:
        return [
            Session(
                device_id=t.device_id,
                device_name=t.device_name,
                ip_address=t.ip_address,
                user_agent=t.user_agent,
                created_at=t.created_at,
                expires_at=t.expires_at,
            )
            for t in self.tokens.list_active_by_user(user_id)
        ]

    def cleanup_expired_tokens(self) -> int:
        removed = self.tokens.cleanup_expired()
        if removed:
            logger.info("Deleted %d expired refresh token(s)", removed)
        return removed
