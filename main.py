#!/usr/bin/env python3
"""
Volcanion Auth -- administrative command line.

Usage:
  python main.py serve [--host HOST] [--port PORT] [--reload]
  python main.py seed-roles
  python main.py create-admin admin@example.com --first-name Ada --last-name Admin
  python main.py cleanup-tokens

Every command reads configuration the same way the API does (environment
variables and .env, see core/config.py), so it works against the same
database the server uses.
"""

import argparse
import getpass
import logging
import sys

from sqlalchemy.exc import IntegrityError

from auth.models import User
from auth.passwords import hash_password, meets_policy
from auth.roles import RoleService
from auth.schema import create_auth_engine
from auth.store import UserStore
from auth.token_store import RefreshTokenStore
from auth.validators import is_valid_email, normalize_email
from core.config import get_settings

logger = logging.getLogger("volcanion.cli")

ADMIN_ROLE = "Admin"

_DEFAULT_ROLES = (
    ("User", "Default role for self-registered accounts"),
    (ADMIN_ROLE, "Account and RBAC administration"),
)


def _seed_roles(roles: RoleService) -> None:
    settings = get_settings()
    seeded = dict(_DEFAULT_ROLES)
    seeded.setdefault(settings.default_role_name, "Default role for self-registered accounts")
    for name, description in seeded.items():
        role = roles.ensure_role(name, description)
        print(f"  Role {role.name} ({role.id})")


def cmd_seed_roles(args: argparse.Namespace) -> int:
    engine = create_auth_engine()
    try:
        _seed_roles(RoleService(UserStore(engine)))
    finally:
        engine.dispose()
    return 0


def cmd_create_admin(args: argparse.Namespace) -> int:
    if not is_valid_email(args.email):
        print(f"  [!] '{args.email}' is not a valid email address.")
        return 2

    password = args.password or getpass.getpass("Password: ")
    if not meets_policy(password):
        print("  [!] Password must be at least 8 characters and mix upper/lower case, digits and symbols.")
        return 2
    if not args.password and getpass.getpass("Confirm password: ") != password:
        print("  [!] Passwords do not match.")
        return 2

    engine = create_auth_engine()
    try:
        store = UserStore(engine)
        roles = RoleService(store)
        _seed_roles(roles)
        try:
            user = store.create_user(
                User(
                    email=normalize_email(args.email),
                    password_hash=hash_password(password),
                    first_name=args.first_name,
                    last_name=args.last_name,
                    is_email_verified=True,
                )
            )
        except IntegrityError:
            print(f"  [!] An account with email {args.email} already exists.")
            return 1
        roles.set_user_role(user.id, ADMIN_ROLE)
        print(f"  Created admin {user.email} ({user.id})")
    finally:
        engine.dispose()
    return 0


def cmd_cleanup_tokens(args: argparse.Namespace) -> int:
    engine = create_auth_engine()
    try:
        removed = RefreshTokenStore(engine).cleanup_expired()
    finally:
        engine.dispose()
    print(f"  Deleted {removed} expired refresh token(s).")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="volcanion-auth",
        description="Volcanion authentication service administration.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py seed-roles
  python main.py create-admin admin@example.com --first-name Ada --last-name Admin
  python main.py cleanup-tokens
  DEBUG=true python main.py serve --reload
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development only)")
    serve.set_defaults(func=cmd_serve)

    seed = sub.add_parser("seed-roles", help="Create the default User and Admin roles if missing")
    seed.set_defaults(func=cmd_seed_roles)

    admin = sub.add_parser("create-admin", help="Create an account holding the Admin role")
    admin.add_argument("email", metavar="EMAIL", help="Login email for the new account")
    admin.add_argument("--first-name", default="Admin", help="Given name (default: Admin)")
    admin.add_argument("--last-name", default="User", help="Family name (default: User)")
    admin.add_argument(
        "--password",
        default=None,
        help="Password; prompted for when omitted. Passing it here leaves it in shell history.",
    )
    admin.set_defaults(func=cmd_create_admin)

    cleanup = sub.add_parser("cleanup-tokens", help="Delete refresh tokens past their expiry")
    cleanup.set_defaults(func=cmd_cleanup_tokens)

    return parser


def main(argv=None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)-5s %(name)s %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
