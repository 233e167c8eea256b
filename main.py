#!/usr/bin/env python3
"""
Storefront Auth -- operator command line.

Usage:
  python main.py serve [--host 127.0.0.1] [--port 8000] [--reload]
  python main.py create-admin --email admin@example.com --first-name Ada --last-name Admin
  python main.py purge-tokens

Environment variables (see core/config.py for the full list):
  DATABASE_URL         SQLAlchemy URL of the auth database.
  JWT_SECRET           Access token signing secret (>= 32 chars).
  JWT_REFRESH_SECRET   Refresh token signing secret (>= 32 chars, different).
  DEBUG=true           Auto-generate missing secrets for local development.
"""

from __future__ import annotations

import argparse
import getpass
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.models import Account, Role
from auth.store import AuthStore
from auth.tokens import PasswordHasher
from core.config import get_settings


def create_admin(
    store: AuthStore,
    hasher: PasswordHasher,
    email: str,
    password: str,
    first_name: str,
    last_name: str,
) -> Optional[Account]:
    """Create a verified ADMIN account. Returns None if the email is taken.

    Public registration never verifies an email by itself; an operator-created
    admin skips the verification email because the operator vouches for it.
    """
    if store.find_account_by_email(email) is not None:
        return None
    try:
        return store.create_account(
            Account(
                email=email,
                password_hash=hasher.hash(password),
                first_name=first_name,
                last_name=last_name,
                role=Role.ADMIN,
                email_verified=True,
            )
        )
    except IntegrityError:
        return None


def _read_password() -> str:
    password = getpass.getpass("Password: ")
    if not password:
        print("  [!] Password must not be empty.")
        sys.exit(1)
    if password != getpass.getpass("Repeat password: "):
        print("  [!] Passwords do not match.")
        sys.exit(1)
    return password


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _cmd_create_admin(args: argparse.Namespace) -> int:
    settings = get_settings()
    password = args.password or _read_password()
    store = AuthStore(settings.database_url)
    try:
        account = create_admin(
            store,
            PasswordHasher(rounds=settings.bcrypt_rounds),
            args.email,
            password,
            args.first_name,
            args.last_name,
        )
    finally:
        store.close()
    if account is None:
        print(f"  [!] An account with email '{args.email}' already exists.")
        return 1
    print(f"  Created admin {account.email} (id {account.id}).")
    return 0


def _cmd_purge_tokens(args: argparse.Namespace) -> int:
    store = AuthStore(get_settings().database_url)
    try:
        removed = store.purge_expired_tokens()
    finally:
        store.close()
    print(f"  Removed {removed} expired token(s).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="storefront-auth",
        description="Operator commands for the storefront auth service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --reload
  python main.py create-admin --email admin@example.com --first-name Ada --last-name Admin
  DATABASE_URL=sqlite:///prod.db python main.py purge-tokens
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development)")
    serve.set_defaults(func=_cmd_serve)

    admin = sub.add_parser("create-admin", help="Create a verified ADMIN account")
    admin.add_argument("--email", required=True)
    admin.add_argument("--first-name", required=True)
    admin.add_argument("--last-name", required=True)
    admin.add_argument(
        "--password",
        default=None,
        help="Password (prompted for when omitted; avoid passing it on shared machines)",
    )
    admin.set_defaults(func=_cmd_create_admin)

    purge = sub.add_parser("purge-tokens", help="Delete expired verification, reset, and refresh tokens")
    purge.set_defaults(func=_cmd_purge_tokens)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
