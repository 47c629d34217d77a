#!/usr/bin/env python3
"""
Acorn mod server -- maintenance commands.

Usage:
  python main.py init-db
  python main.py sweep-temp-tokens
  python main.py serve --host 0.0.0.0 --port 8000

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the database (default: sqlite file acorn.db)
  SECRET_KEY    Required unless DEBUG=true. See core/config.py for the rest.
"""

import argparse
from typing import Optional

from auth.broker import TempLoginBroker
from auth.store import AccountStore
from core.config import get_settings
from core.database import create_db_engine
from mods.store import ModStore


def _engine():
    settings = get_settings()
    return create_db_engine(settings.database_url, pool_size=settings.db_pool_size, pool_timeout=settings.db_pool_timeout)


def init_db() -> None:
    """Create every table that does not exist yet. Safe to run repeatedly."""
    engine = _engine()
    try:
        # AccountStore first: mods and access_tokens reference accounts.
        AccountStore(engine)
        TempLoginBroker(engine)
        ModStore(engine)
    finally:
        engine.dispose()
    print("Database schema is up to date.")


def sweep_temp_tokens() -> int:
    """Delete expired temp login tokens once. Meant for cron when the in-process sweeper is off."""
    engine = _engine()
    try:
        removed = TempLoginBroker(engine).sweep_expired()
    finally:
        engine.dispose()
    print(f"Removed {removed} expired temp login token(s).")
    return removed


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        prog="acorn",
        description="Maintenance commands for the Acorn mod server.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py init-db
  DATABASE_URL=postgresql+psycopg://acorn@db/acorn python main.py sweep-temp-tokens
  python main.py serve --port 8080
        """,
    )
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    commands.add_parser("init-db", help="Create the database schema")
    commands.add_parser("sweep-temp-tokens", help="Delete expired temp login tokens")
    serve = commands.add_parser("serve", help="Run the API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    args = parser.parse_args(argv)

    if args.command == "init-db":
        init_db()
    elif args.command == "sweep-temp-tokens":
        sweep_temp_tokens()
    elif args.command == "serve":
        import uvicorn

        uvicorn.run("api.main:app", host=args.host, port=args.port)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
