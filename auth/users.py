"""
auth/users.py -- Profile management: read-through lookup, profile edits,
password change, activation and deactivation.

Every method takes the target user id explicitly; the HTTP layer decides
whether that is the caller's own id (from the access token) or an admin
acting on someone else.

Cache contract: get_user() is read-through (miss -> store -> cache). Every
write that changes what the projection says, or whether the account may be
used, removes the cache entry before returning, so a stale projection can
never outlive the change that invalidated it.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.claims import resolve_claims
from auth.errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from auth.models import User, UserProjection
from auth.passwords import hash_password, verify_password
from auth.projections import build_projection, projection_from_dict, projection_to_dict
from auth.store import UserStore
from auth.validators import normalize_phone, validate_password_change, validate_profile_update
from cache.store import SessionCache, user_key
from core.config import Settings, get_settings

logger = logging.getLogger("volcanion.auth")


class UserService:
    def __init__(self, users: UserStore, cache: SessionCache | None = None, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        self.users = users
        self.cache = cache
        self._cache_ttl = settings.user_cache_ttl_seconds

    def _require(self, user_id: str) -> User:
        user = self.users.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    def _invalidate(self, user_id: str) -> None:
        if self.cache is not None:
            self.cache.remove(user_key(user_id))

    def get_user(self, user_id: str) -> UserProjection | None:
        """Cached projection, or a fresh one built from the store. None if no such user."""
        if self.cache is not None:
            cached = self.cache.get(user_key(user_id))
            if cached is not None:
                return projection_from_dict(cached)

        user = self.users.get_by_id(user_id)
        if user is None:
            return None
        projection = build_projection(user, resolve_claims(self.users.load_grants(user_id)))
        if self.cache is not None:
            self.cache.set(user_key(user_id), projection_to_dict(projection), ttl=self._cache_ttl)
        return projection

    def update_profile(
        self,
        user_id: str,
        first_name: str,
        last_name: str,
        phone_number: str | None = None,
        avatar: str | None = None,
    ) -> UserProjection:
        errors = validate_profile_update(first_name, last_name, phone_number)
        if errors:
            raise ValidationError(errors)

        self._require(user_id)

        phone = None
        if phone_number and phone_number.strip():
            phone = normalize_phone(phone_number)
            owner = self.users.get_by_phone(phone)
            if owner is not None and owner.id != user_id:
                raise ConflictError("Phone number already exists", field="phone_number")

        try:
            self.users.update_user(
                user_id,
                first_name=first_name.strip(),
                last_name=last_name.strip(),
                phone_number=phone,
                avatar=avatar,
            )
        except IntegrityError as exc:
            raise ConflictError("Phone number already exists", field="phone_number") from exc
        self._invalidate(user_id)

        updated = self._require(user_id)
        return build_projection(updated, resolve_claims(self.users.load_grants(user_id)))

    def change_password(self, user_id: str, current_password: str, new_password: str, confirm_password: str) -> None:
        errors = validate_password_change(current_password, new_password, confirm_password)
        if errors:
            raise ValidationError(errors)

        user = self._require(user_id)
        if not verify_password(current_password, user.password_hash):
            raise UnauthorizedError("Current password is incorrect")

        self.users.update_user(user_id, password_hash=hash_password(new_password))
        logger.info("Password changed for user %s", user_id)

    def deactivate(self, user_id: str) -> None:
        self._require(user_id)
        self.users.update_user(user_id, is_active=False)
        self._invalidate(user_id)
        logger.info("Deactivated user %s", user_id)

    def activate(self, user_id: str) -> None:
        self._require(user_id)
        self.users.update_user(user_id, is_active=True)
        self._invalidate(user_id)
        logger.info("Activated user %s", user_id)
