#!/usr/bin/env python3
"""
authkeep -- Credential authentication service with revocable refresh tokens.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8000 --reload
  python main.py create-user alice alice@example.com
  python main.py set-active alice@example.com --inactive
  python main.py revoke-all alice@example.com
  python main.py sessions alice@example.com
  python main.py set-password alice@example.com
  python main.py purge-tokens

Environment variables (or .env):
  JWT_ACCESS_SECRET   Required outside DEBUG mode. At least 32 characters.
  JWT_REFRESH_SECRET  Required outside DEBUG mode. Must differ from the access secret.
  DATABASE_URL        SQLAlchemy URL. Defaults to a SQLite file under auth/.
  DEBUG               true = generate throwaway secrets for local development.
"""

import argparse
import getpass
import sys
from typing import Optional

from auth.errors import AuthError, ErrorKind
from auth.service import AuthService
from auth.tokens import utcnow
from core.config import get_settings


def _read_password() -> str:
    """Prompt twice without echo; refuse a mismatch."""
    password = getpass.getpass("Password: ")
    confirm = getpass.getpass("Confirm password: ")
    if password != confirm:
        raise ValueError("Passwords do not match.")
    return password


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _cmd_create_user(service: AuthService, args: argparse.Namespace) -> int:
    password = args.password if args.password is not None else _read_password()
    result = service.register(args.username, args.email, password)
    print(f"  Created user {result.user.username} <{result.user.email}> (id={result.user.id})")
    return 0


def _cmd_set_active(service: AuthService, args: argparse.Namespace) -> int:
    user = service.set_active(args.email, args.active)
    state = "active" if user.is_active else "inactive"
    print(f"  {user.username} <{user.email}> is now {state}")
    return 0


def _cmd_revoke_all(service: AuthService, args: argparse.Namespace) -> int:
    user = service.users.get_by_email(args.email)
    if user is None:
        raise AuthError(ErrorKind.NOT_FOUND)
    revoked = service.sign_out_everywhere(user.id)
    print(f"  Revoked {revoked} refresh token(s) for {user.username}")
    return 0


def _cmd_sessions(service: AuthService, args: argparse.Namespace) -> int:
    records = service.list_sessions(args.email)
    if not records:
        print("  No refresh tokens on record.")
        return 0
    now = utcnow()
    print(f"  {'ID':>6}  {'CREATED':<32}  {'EXPIRES':<32}  STATE")
    for rec in records:
        if rec.is_revoked:
            state = "revoked"
        elif rec.is_usable(now):
            state = "active"
        else:
            state = "expired"
        print(f"  {rec.id:>6}  {rec.created_at:<32}  {rec.expires_at.isoformat():<32}  {state}")
    return 0


def _cmd_set_password(service: AuthService, args: argparse.Namespace) -> int:
    password = args.password if args.password is not None else _read_password()
    user = service.set_password(args.email, password)
    print(f"  Password updated for {user.username}; existing sessions revoked")
    return 0


def _cmd_purge_tokens(service: AuthService, args: argparse.Namespace) -> int:
    removed = service.purge_expired_tokens()
    print(f"  Purged {removed} expired refresh token(s)")
    return 0


_COMMANDS = {
    "create-user": _cmd_create_user,
    "set-active": _cmd_set_active,
    "revoke-all": _cmd_revoke_all,
    "sessions": _cmd_sessions,
    "set-password": _cmd_set_password,
    "purge-tokens": _cmd_purge_tokens,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="authkeep",
        description="authkeep -- credential authentication service and admin tools",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true", help="Auto-reload on code changes (development)")

    create = sub.add_parser("create-user", help="Register a user (password is prompted)")
    create.add_argument("username")
    create.add_argument("email")
    create.add_argument("--password", help=argparse.SUPPRESS)

    active = sub.add_parser("set-active", help="Activate or deactivate a user")
    active.add_argument("email")
    group = active.add_mutually_exclusive_group(required=True)
    group.add_argument("--active", dest="active", action="store_true")
    group.add_argument("--inactive", dest="active", action="store_false")

    revoke = sub.add_parser("revoke-all", help="Revoke every refresh token of a user")
    revoke.add_argument("email")

    sessions = sub.add_parser("sessions", help="List a user's refresh tokens and their state")
    sessions.add_argument("email")

    passwd = sub.add_parser("set-password", help="Reset a user's password (prompted) and revoke their sessions")
    passwd.add_argument("email")
    passwd.add_argument("--password", help=argparse.SUPPRESS)

    sub.add_parser("purge-tokens", help="Delete expired refresh-token records")
    return parser


def main(argv: Optional[list[str]] = None, service: Optional[AuthService] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "serve":
        return _cmd_serve(args)

    owns_service = service is None
    if service is None:
        service = AuthService.from_settings(get_settings())
    try:
        return _COMMANDS[args.command](service, args)
    except AuthError as exc:
        print(f"  [!] {exc.message}" + (f": {exc.details}" if exc.details else ""), file=sys.stderr)
        return 1
    except ValueError as exc:
        print(f"  [!] {exc}", file=sys.stderr)
        return 1
    finally:
        if owns_service:
            service.db.close()


if __name__ == "__main__":
    sys.exit(main())
