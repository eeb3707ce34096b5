"""
auth/schema.py -- SQLAlchemy Core schema and engine factory for the auth database.

One MetaData holds every auth table so foreign keys resolve and cascades work:

  users ──< user_roles >── roles ──< role_permissions >── permissions
  users ──< refresh_tokens

Ownership / cascade:
  Deleting a user deletes its user_roles and refresh_tokens rows.
  Deleting a role or a permission deletes the role_permissions rows that
  reference it (and a role's user_roles rows).

Timestamps are fixed-width UTC strings from core.clock.to_iso(), so
"expires_at > :now" comparisons are correct as plain string comparisons.
Booleans are stored as 0/1 integers and converted by the row mappers.

SQLite specifics (set per connection because PRAGMAs are not inherited by
pooled connections):
  journal_mode=WAL   readers never block on the single writer.
  foreign_keys=ON    SQLite ignores ON DELETE CASCADE without it.
  busy timeout       a second writer waits for the first instead of failing
                     immediately -- required for the conditional-update
                     rotation to serialize concurrent refresh calls.
"""

from __future__ import annotations

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine

from core.config import get_settings

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),  # stored lowercased
    Column("phone_number", String(20), unique=True),  # +84 form; NULLs are distinct
    Column("password_hash", Text, nullable=False),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("avatar", Text),
    Column("is_email_verified", Integer, nullable=False, server_default="0"),
    Column("is_phone_verified", Integer, nullable=False, server_default="0"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login_at", String(32)),
)

roles = Table(
    "roles",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("description", Text),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
)

permissions = Table(
    "permissions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("resource", String(100), nullable=False),
    Column("action", String(50), nullable=False),
    Column("description", Text),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("resource", "action", name="uq_permissions_resource_action"),
)

user_roles = Table(
    "user_roles",
    metadata,
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("role_id", String(36), ForeignKey("roles.id", ondelete="CASCADE"), nullable=False),
    Column("assigned_at", String(32), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
    PrimaryKeyConstraint("user_id", "role_id"),
)

role_permissions = Table(
    "role_permissions",
    metadata,
    Column("role_id", String(36), ForeignKey("roles.id", ondelete="CASCADE"), nullable=False),
    Column("permission_id", String(36), ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False),
    Column("granted_at", String(32), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
    PrimaryKeyConstraint("role_id", "permission_id"),
)

refresh_tokens = Table(
    "refresh_tokens",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("token", String(128), nullable=False, unique=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("device_id", String(255), nullable=False),
    Column("device_name", String(255)),
    Column("user_agent", Text),
    Column("ip_address", String(45)),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("used_at", String(32)),
    Column("revoked_at", String(32)),
    Column("revoked_by_ip", String(45)),
    Column("replaced_by_token", String(128)),
    Index("ix_refresh_tokens_user_device", "user_id", "device_id"),
    Index("ix_refresh_tokens_expires_at", "expires_at"),
)


def _sqlite_pragmas(dbapi_conn, connection_record) -> None:
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_auth_engine(db_url: str | None = None) -> Engine:
    """Create an engine for the auth database and make sure the schema exists."""
    db_url = db_url or get_settings().database_url
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = 30
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _sqlite_pragmas)
    metadata.create_all(engine)
    return engine
