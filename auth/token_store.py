"""
auth/token_store.py -- Persistence and lifecycle of refresh tokens.

Pattern: Repository + Data Mapper (same shape as auth/store.py).

Lifecycle: Active -> Revoked (logout, device logout, logout-all, or rotation)
or Active -> Expired by age. Both are terminal: nothing here ever clears
revoked_at or extends expires_at, and every revoking UPDATE carries
"revoked_at IS NULL AND expires_at > now" so an inactive row is never touched.

Rotation is the one operation with a concurrency contract. rotate() runs a
conditional UPDATE keyed on "this token is still active" and inserts the
successor only if that UPDATE hit exactly one row, all inside one
transaction. Two concurrent rotations of the same token therefore serialize
on the database write lock: the first flips the row, the second matches zero
rows and gets None back. No in-process lock is involved.

Chains stay linear: a row is revoked at most once, so replaced_by_token is
set at most once, and the successor must belong to the same user and device.
A successor always expires after its predecessor (its lifetime starts at
rotation time), so the expired-token sweep deletes a predecessor no later
than its successor and never leaves a dangling replaced_by_token.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import and_
from sqlalchemy.engine import Engine

from auth import schema
from auth.models import RefreshToken
from core.clock import Clock, SystemClock, from_iso, to_iso

logger = logging.getLogger("volcanion.auth")

_t = schema.refresh_tokens


def _active_at(now: str):
    return and_(_t.c.revoked_at.is_(None), _t.c.expires_at > now)


class RefreshTokenStore:
    """Repository for RefreshToken rows.

    Usage:
        tokens = RefreshTokenStore(engine)
        tokens.create(RefreshToken(token=value, user_id=uid, device_id="d1", expires_at=exp))
        successor = tokens.rotate(value, RefreshToken(...), revoked_by_ip="10.0.0.1")
        if successor is None: ...  # lost the race or token no longer active
    """

    def __init__(self, engine: Engine, clock: Clock | None = None) -> None:
        self.engine = engine
        self._clock = clock or SystemClock()

    def _now(self) -> str:
        return to_iso(self._clock.now())

    # ------------------------------------------------------------------
    # Create / read
    # ------------------------------------------------------------------

    def create(self, entry: RefreshToken) -> RefreshToken:
        """Persist a new active token. created_at is always set here, never by the caller."""
        token_id = str(uuid.uuid4())
        with self.engine.connect() as conn:
            conn.execute(_t.insert().values(**_insert_values(entry, token_id, self._now())))
            row = conn.execute(_t.select().where(_t.c.id == token_id)).one()
            conn.commit()
        return _row_to_token(row)

    def get_by_token(self, value: str) -> RefreshToken | None:
        """Exact-match lookup. The owning user is loaded separately via user_id."""
        with self.engine.connect() as conn:
            row = conn.execute(_t.select().where(_t.c.token == value)).fetchone()
        return _row_to_token(row) if row is not None else None

    def list_by_user(self, user_id: str) -> list[RefreshToken]:
        """Every token the user ever held, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _t.select().where(_t.c.user_id == user_id).order_by(_t.c.created_at.desc())
            ).fetchall()
        return [_row_to_token(r) for r in rows]

    def list_active_by_user(self, user_id: str) -> list[RefreshToken]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _t.select()
                .where((_t.c.user_id == user_id) & _active_at(self._now()))
                .order_by(_t.c.created_at.desc())
            ).fetchall()
        return [_row_to_token(r) for r in rows]

    # ------------------------------------------------------------------
    # Rotation
    # ------------------------------------------------------------------

    def rotate(self, old_value: str, new_entry: RefreshToken, revoked_by_ip: str | None = None) -> RefreshToken | None:
        """Atomically revoke old_value, link it to new_entry, and persist new_entry.

        Returns the stored successor, or None when old_value is unknown,
        already revoked, or expired -- including when a concurrent rotation of
        the same token committed first. Raises ValueError (and writes nothing)
        if new_entry does not belong to the same user and device.
        """
        now = self._now()
        with self.engine.begin() as conn:
            result = conn.execute(
                _t.update()
                .where((_t.c.token == old_value) & _active_at(now))
                .values(
                    revoked_at=now,
                    used_at=now,
                    revoked_by_ip=revoked_by_ip,
                    replaced_by_token=new_entry.token,
                )
            )
            if result.rowcount != 1:
                return None
            old = conn.execute(_t.select().where(_t.c.token == old_value)).fetchone()
            if old.user_id != new_entry.user_id or old.device_id != new_entry.device_id:
                raise ValueError("rotated token must keep the same user and device")
            conn.execute(_t.insert().values(**_insert_values(new_entry, str(uuid.uuid4()), now)))
        logger.debug("Rotated refresh token %s... for user %s", old_value[:8], new_entry.user_id)
        return self.get_by_token(new_entry.token)

    # ------------------------------------------------------------------
    # Revocation
    # ------------------------------------------------------------------

    def revoke(self, value: str, revoked_by_ip: str | None = None) -> bool:
        """Revoke one token. Unknown or already-inactive tokens are a no-op (False)."""
        now = self._now()
        with self.engine.connect() as conn:
            result = conn.execute(
                _t.update()
                .where((_t.c.token == value) & _active_at(now))
                .values(revoked_at=now, revoked_by_ip=revoked_by_ip)
            )
            conn.commit()
        return result.rowcount > 0

    def revoke_by_device(self, user_id: str, device_id: str, revoked_by_ip: str | None = None) -> int:
        """Revoke every active token for one (user, device) pair. Returns the count."""
        now = self._now()
        with self.engine.connect() as conn:
            result = conn.execute(
                _t.update()
                .where((_t.c.user_id == user_id) & (_t.c.device_id == device_id) & _active_at(now))
                .values(revoked_at=now, revoked_by_ip=revoked_by_ip)
            )
            conn.commit()
        return result.rowcount

    def revoke_all_by_user(self, user_id: str, revoked_by_ip: str | None = None) -> int:
        """Revoke every active token the user holds, on every device. Returns the count."""
        now = self._now()
        with self.engine.connect() as conn:
            result = conn.execute(
                _t.update()
                .where((_t.c.user_id == user_id) & _active_at(now))
                .values(revoked_at=now, revoked_by_ip=revoked_by_ip)
            )
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def delete(self, token_id: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_t.delete().where(_t.c.id == token_id))
            conn.commit()
        return result.rowcount > 0

    def cleanup_expired(self) -> int:
        """Physically delete tokens past expiry. Returns rows removed; 0 when none.

        Only touches rows that are already expired, which no other operation
        will modify, so it is safe to run alongside live traffic.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_t.delete().where(_t.c.expires_at <= self._now()))
            conn.commit()
        return result.rowcount


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _insert_values(entry: RefreshToken, token_id: str, created_at: str) -> dict:
    return {
        "id": token_id,
        "token": entry.token,
        "user_id": entry.user_id,
        "device_id": entry.device_id,
        "device_name": entry.device_name,
        "user_agent": entry.user_agent,
        "ip_address": entry.ip_address,
        "created_at": created_at,
        "expires_at": to_iso(entry.expires_at),
    }


def _row_to_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        token=row.token,
        user_id=row.user_id,
        device_id=row.device_id,
        device_name=row.device_name,
        user_agent=row.user_agent,
        ip_address=row.ip_address,
        created_at=from_iso(row.created_at),
        expires_at=from_iso(row.expires_at),
        used_at=from_iso(row.used_at),
        revoked_at=from_iso(row.revoked_at),
        revoked_by_ip=row.revoked_by_ip,
        replaced_by_token=row.replaced_by_token,
    )
