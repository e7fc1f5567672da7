#!/usr/bin/env python3
"""
farmer-auth -- operator CLI for the token core.

Usage:
  python main.py sweep                      # delete expired refresh records (run from cron)
  python main.py sessions <user_id>         # show a user's refresh token chain
  python main.py logout-all <user_id>       # revoke every session of a user
  python main.py serve --port 8000          # run the HTTP API under uvicorn

Environment variables:
  SECRET_KEY     Required unless DEBUG=true. At least 32 characters.
  DATABASE_URL   SQLAlchemy URL of the token database (default: SQLite file
                 under auth/).
"""

import argparse
import logging
import sys

from auth.sessions import SessionManager, classify
from auth.store import RefreshTokenStore, UserStore
from auth.sweeper import sweep
from auth.tokens import TokenCodec
from core.clock import utc_now
from core.config import get_settings


def _cmd_sweep(args: argparse.Namespace) -> int:
    store = RefreshTokenStore(get_settings().database_url)
    try:
        removed = sweep(store)
    finally:
        store.close()
    print(f"  Removed {removed} expired refresh token record(s).")
    return 0


def _cmd_sessions(args: argparse.Namespace) -> int:
    store = RefreshTokenStore(get_settings().database_url)
    try:
        records = store.list_for_user(args.user_id)
    finally:
        store.close()
    if not records:
        print(f"  [!] No refresh tokens on record for user {args.user_id}.")
        return 1
    now = utc_now()
    for record in records:
        line = f"  {record.jti}  {classify(record, now).value:<20}  expires {record.expires_at.isoformat()}"
        if record.replaced_by:
            line += f"  -> {record.replaced_by}"
        print(line)
    return 0


def _cmd_logout_all(args: argparse.Namespace) -> int:
    settings = get_settings()
    users = UserStore(settings.database_url)
    store = RefreshTokenStore(settings.database_url)
    try:
        revoked = SessionManager(TokenCodec.from_settings(settings), store, users).logout_all(args.user_id)
    finally:
        store.close()
        users.close()
    print(f"  Revoked {revoked} session(s) for user {args.user_id}.")
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="farmer-auth",
        description="Operator commands for the farmer-auth token core.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_sweep = sub.add_parser("sweep", help="Delete expired refresh token records.")
    p_sweep.set_defaults(func=_cmd_sweep)

    p_sessions = sub.add_parser("sessions", help="List a user's refresh tokens and their state.")
    p_sessions.add_argument("user_id")
    p_sessions.set_defaults(func=_cmd_sessions)

    p_logout = sub.add_parser("logout-all", help="Revoke every session of a user.")
    p_logout.add_argument("user_id")
    p_logout.set_defaults(func=_cmd_logout_all)

    p_serve = sub.add_parser("serve", help="Run the HTTP API.")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=8000)
    p_serve.add_argument("--reload", action="store_true")
    p_serve.set_defaults(func=_cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
