"""
auth/store.py -- SQLAlchemy Core persistence for users and RBAC entities.

Pattern: Repository + Data Mapper.
UserStore is the repository; the _row_to_* functions are the mappers.
Service code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Returned objects are frozen dataclass snapshots. To change anything, call a
write method -- there is no "edit the object then save" path.

Uniqueness (email, phone, role name, permission name, permission
resource+action) is enforced by the schema. Writes that collide raise
sqlalchemy.exc.IntegrityError; services translate that into ConflictError
where the collision can legitimately happen under concurrency.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import func, or_, select
from sqlalchemy.engine import Engine

from auth import schema
from auth.models import Permission, RbacGrants, Role, RolePermission, User, UserRole
from core.clock import Clock, SystemClock, from_iso, to_iso

# Columns callers may change through update_user(). Anything else (id,
# created_at, email) is immutable after registration.
_MUTABLE_USER_FIELDS = frozenset(
    {
        "phone_number",
        "password_hash",
        "first_name",
        "last_name",
        "avatar",
        "is_email_verified",
        "is_phone_verified",
        "is_active",
        "last_login_at",
    }
)
_BOOL_FIELDS = frozenset({"is_email_verified", "is_phone_verified", "is_active"})


def _new_id() -> str:
    return str(uuid.uuid4())


class UserStore:
    """Repository for User, Role, Permission and their join rows.

    Usage:
        engine = create_auth_engine("sqlite:///:memory:")
        store = UserStore(engine)
        user = store.create_user(User(email="a@x.com", password_hash=h, first_name="A", last_name="B"))
        grants = store.load_grants(user.id)
    """

    def __init__(self, engine: Engine, clock: Clock | None = None) -> None:
        self.engine = engine
        self._clock = clock or SystemClock()

    def _now(self) -> str:
        return to_iso(self._clock.now())

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> User:
        """Insert a new user and return the stored snapshot (id and timestamps set).

        Raises sqlalchemy.exc.IntegrityError if the email or phone is taken.
        """
        user_id = user.id or _new_id()
        now = self._now()
        with self.engine.connect() as conn:
            conn.execute(
                schema.users.insert().values(
                    id=user_id,
                    email=user.email,
                    phone_number=user.phone_number,
                    password_hash=user.password_hash,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    avatar=user.avatar,
                    is_email_verified=int(user.is_email_verified),
                    is_phone_verified=int(user.is_phone_verified),
                    is_active=int(user.is_active),
                    created_at=now,
                    updated_at=now,
                )
            )
            row = conn.execute(schema.users.select().where(schema.users.c.id == user_id)).one()
            conn.commit()
        return _row_to_user(row)

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(schema.users.select().where(schema.users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Case-insensitive: emails are stored lowercased, so lowercase the probe."""
        with self.engine.connect() as conn:
            row = conn.execute(
                schema.users.select().where(schema.users.c.email == email.strip().lower())
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_phone(self, phone_number: str) -> User | None:
        """Exact match on the canonical (+84) form."""
        with self.engine.connect() as conn:
            row = conn.execute(
                schema.users.select().where(schema.users.c.phone_number == phone_number)
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email_or_phone(self, email: str | None, phone_number: str | None) -> User | None:
        """Look up by whichever identifiers the caller could derive from a login string."""
        conditions = []
        if email:
            conditions.append(schema.users.c.email == email.strip().lower())
        if phone_number:
            conditions.append(schema.users.c.phone_number == phone_number)
        if not conditions:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(schema.users.select().where(or_(*conditions)).limit(1)).fetchone()
        return _row_to_user(row) if row is not None else None

    def email_exists(self, email: str) -> bool:
        with self.engine.connect() as conn:
            count = conn.execute(
                select(func.count()).select_from(schema.users).where(schema.users.c.email == email.strip().lower())
            ).scalar()
        return (count or 0) > 0

    def phone_exists(self, phone_number: str) -> bool:
        with self.engine.connect() as conn:
            count = conn.execute(
                select(func.count()).select_from(schema.users).where(schema.users.c.phone_number == phone_number)
            ).scalar()
        return (count or 0) > 0

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable fields on an existing user; stamps updated_at.

        Unknown field names raise ValueError -- fail fast rather than silently
        ignoring a typo. Booleans are stored as 0/1 and datetimes as to_iso().

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - _MUTABLE_USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        values: dict = {}
        for name, value in fields.items():
            if name in _BOOL_FIELDS:
                value = int(bool(value))
            elif isinstance(value, datetime):
                value = to_iso(value)
            values[name] = value
        values["updated_at"] = self._now()
        with self.engine.connect() as conn:
            result = conn.execute(schema.users.update().where(schema.users.c.id == user_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                schema.users.update().where(schema.users.c.id == user_id).values(last_login_at=self._now())
            )
            conn.commit()

    def delete_user(self, user_id: str) -> bool:
        """Hard delete. Cascades to the user's role assignments and refresh tokens.

        Auth flows deactivate accounts instead; this is for administrative cleanup.
        """
        with self.engine.connect() as conn:
            result = conn.execute(schema.users.delete().where(schema.users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Roles and permissions
    # ------------------------------------------------------------------

    def create_role(self, role: Role) -> Role:
        """Raises IntegrityError if the name is taken."""
        role_id = role.id or _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                schema.roles.insert().values(
                    id=role_id,
                    name=role.name,
                    description=role.description,
                    is_active=int(role.is_active),
                    created_at=self._now(),
                )
            )
            row = conn.execute(schema.roles.select().where(schema.roles.c.id == role_id)).one()
            conn.commit()
        return _row_to_role(row)

    def get_role_by_name(self, name: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(schema.roles.select().where(schema.roles.c.name == name)).fetchone()
        return _row_to_role(row) if row is not None else None

    def list_roles(self) -> list[Role]:
        with self.engine.connect() as conn:
            rows = conn.execute(schema.roles.select().order_by(schema.roles.c.name)).fetchall()
        return [_row_to_role(r) for r in rows]

    def create_permission(self, permission: Permission) -> Permission:
        """Raises IntegrityError if the name or (resource, action) pair is taken."""
        permission_id = permission.id or _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                schema.permissions.insert().values(
                    id=permission_id,
                    name=permission.name,
                    resource=permission.resource,
                    action=permission.action,
                    description=permission.description,
                    is_active=int(permission.is_active),
                    created_at=self._now(),
                )
            )
            row = conn.execute(schema.permissions.select().where(schema.permissions.c.id == permission_id)).one()
            conn.commit()
        return _row_to_permission(row)

    def get_permission_by_name(self, name: str) -> Permission | None:
        with self.engine.connect() as conn:
            row = conn.execute(schema.permissions.select().where(schema.permissions.c.name == name)).fetchone()
        return _row_to_permission(row) if row is not None else None

    def list_permissions(self) -> list[Permission]:
        with self.engine.connect() as conn:
            rows = conn.execute(schema.permissions.select().order_by(schema.permissions.c.name)).fetchall()
        return [_row_to_permission(r) for r in rows]

    def set_user_role(self, user_id: str, role_id: str, active: bool = True) -> None:
        """Assign (or soft-disable) a role for a user. Idempotent.

        An existing assignment is flipped in place so its history row survives;
        re-activating stamps a fresh assigned_at.
        """
        self._upsert_join(
            schema.user_roles,
            (schema.user_roles.c.user_id == user_id) & (schema.user_roles.c.role_id == role_id),
            {"user_id": user_id, "role_id": role_id},
            "assigned_at",
            active,
        )

    def set_role_permission(self, role_id: str, permission_id: str, active: bool = True) -> None:
        """Grant (or soft-disable) a permission for a role. Idempotent."""
        self._upsert_join(
            schema.role_permissions,
            (schema.role_permissions.c.role_id == role_id)
            & (schema.role_permissions.c.permission_id == permission_id),
            {"role_id": role_id, "permission_id": permission_id},
            "granted_at",
            active,
        )

    def _upsert_join(self, table, where, keys: dict, stamp_column: str, active: bool) -> None:
        values = {"is_active": int(active)}
        if active:
            values[stamp_column] = self._now()
        with self.engine.begin() as conn:
            result = conn.execute(table.update().where(where).values(**values))
            if result.rowcount == 0:
                conn.execute(table.insert().values(**keys, **{stamp_column: self._now()}, is_active=int(active)))

    def load_grants(self, user_id: str) -> RbacGrants:
        """Load the user's role assignments and everything they point at.

        Inactive join rows are included -- filtering is ClaimAggregator's job,
        and it keeps this query honest about what is stored.
        """
        with self.engine.connect() as conn:
            ur_rows = conn.execute(
                schema.user_roles.select().where(schema.user_roles.c.user_id == user_id)
            ).fetchall()
            role_ids = [r.role_id for r in ur_rows]
            if not role_ids:
                return RbacGrants()
            role_rows = conn.execute(schema.roles.select().where(schema.roles.c.id.in_(role_ids))).fetchall()
            rp_rows = conn.execute(
                schema.role_permissions.select().where(schema.role_permissions.c.role_id.in_(role_ids))
            ).fetchall()
            permission_ids = [r.permission_id for r in rp_rows]
            perm_rows = (
                conn.execute(
                    schema.permissions.select().where(schema.permissions.c.id.in_(permission_ids))
                ).fetchall()
                if permission_ids
                else []
            )
        return RbacGrants(
            user_roles=tuple(
                UserRole(
                    user_id=r.user_id,
                    role_id=r.role_id,
                    assigned_at=from_iso(r.assigned_at),
                    is_active=bool(r.is_active),
                )
                for r in ur_rows
            ),
            role_permissions=tuple(
                RolePermission(
                    role_id=r.role_id,
                    permission_id=r.permission_id,
                    granted_at=from_iso(r.granted_at),
                    is_active=bool(r.is_active),
                )
                for r in rp_rows
            ),
            roles={r.id: _row_to_role(r) for r in role_rows},
            permissions={r.id: _row_to_permission(r) for r in perm_rows},
        )


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        phone_number=row.phone_number,
        password_hash=row.password_hash,
        first_name=row.first_name,
        last_name=row.last_name,
        avatar=row.avatar,
        is_email_verified=bool(row.is_email_verified),
        is_phone_verified=bool(row.is_phone_verified),
        is_active=bool(row.is_active),
        created_at=from_iso(row.created_at),
        updated_at=from_iso(row.updated_at),
        last_login_at=from_iso(row.last_login_at),
    )


def _row_to_role(row) -> Role:
    return Role(
        id=row.id,
        name=row.name,
        description=row.description,
        is_active=bool(row.is_active),
        created_at=from_iso(row.created_at),
    )


def _row_to_permission(row) -> Permission:
    return Permission(
        id=row.id,
        name=row.name,
        resource=row.resource,
        action=row.action,
        description=row.description,
        is_active=bool(row.is_active),
        created_at=from_iso(row.created_at),
    )
