#!/usr/bin/env python3
"""
Storefront -- management commands.

The HTTP service runs under uvicorn (see asgi.py). This script covers the
operator tasks that have no endpoint of their own.

Usage:
  python main.py create-admin --name "Site Admin" --email admin@example.com
  python main.py purge-sessions
  python main.py service-token billing --permissions orders:read --expires 12h

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the store (default sqlite:///storefront.db)
  SECRET_KEY     Required unless DEBUG=true. See core/config.py.
"""

import argparse
import getpass
import logging
import sys

from auth.credentials import CredentialStore
from auth.models import ROLE_ADMIN
from auth.sessions import SessionLog
from auth.store import UserStore
from auth.tokens import TokenIssuer, parse_duration
from core.config import get_settings
from core.errors import StorefrontError

logger = logging.getLogger("storefront.cli")


def _create_admin(args: argparse.Namespace) -> int:
    """Create a verified admin account. The bootstrap path for a fresh database."""
    password = args.password or getpass.getpass("Password: ")
    if not 6 <= len(password) <= 72:
        print("  [!] Password must be between 6 and 72 characters.")
        return 1
    settings = get_settings()
    store = UserStore(settings.database_url)
    try:
        user = CredentialStore(store).create_user(
            args.name, args.email, password, role=ROLE_ADMIN, is_verified=True
        )
    except StorefrontError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        store.close()
    print(f"  Admin created: id={user.id} email={user.email}")
    return 0


def _purge_sessions(args: argparse.Namespace) -> int:
    settings = get_settings()
    store = UserStore(settings.database_url)
    try:
        removed = SessionLog(store, settings).purge_expired()
    finally:
        store.close()
    print(f"  {removed} expired session record(s) removed.")
    return 0


def _service_token(args: argparse.Namespace) -> int:
    """Print a signed service token to stdout so it can be piped into a secret store."""
    settings = get_settings()
    expires = args.expires or settings.service_token_expire
    try:
        parse_duration(expires)
    except ValueError:
        print(f"  [!] Invalid duration {expires!r}. Use e.g. 30s, 15m, 1h, 7d.", file=sys.stderr)
        return 1
    permissions = [p.strip() for p in (args.permissions or "").split(",") if p.strip()]
    print(TokenIssuer(settings).issue_service_token(args.name, permissions, expires))
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="storefront",
        description="Storefront management commands.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin --name "Site Admin" --email admin@example.com
  python main.py purge-sessions
  python main.py service-token billing --permissions orders:read,orders:write
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p_admin = sub.add_parser("create-admin", help="Create a verified admin account")
    p_admin.add_argument("--name", required=True, help="Display name (2-50 characters)")
    p_admin.add_argument("--email", required=True, help="Login email address")
    p_admin.add_argument(
        "--password",
        help="Account password. Prompted for when omitted, which keeps it out of shell history.",
    )
    p_admin.set_defaults(func=_create_admin)

    p_purge = sub.add_parser("purge-sessions", help="Delete expired session records now")
    p_purge.set_defaults(func=_purge_sessions)

    p_token = sub.add_parser("service-token", help="Issue a service-to-service token")
    p_token.add_argument("name", help="Service name stored in the token's service claim")
    p_token.add_argument(
        "--permissions",
        metavar="LIST",
        help="Comma-separated permission strings (default: none)",
    )
    p_token.add_argument(
        "--expires",
        metavar="DURATION",
        help="Lifetime such as 30s, 15m, 1h, 7d (default: SERVICE_TOKEN_EXPIRE)",
    )
    p_token.set_defaults(func=_service_token)

    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0

    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s %(message)s")
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
