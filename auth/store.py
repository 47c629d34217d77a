"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts and access tokens.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_account is the mapper. Route and service code
never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Uniqueness of username and external_id is enforced by the database
  (PRIMARY KEY / UNIQUE), never by a lookup-then-insert in Python. Two
  concurrent registrations that both "see no conflict" still cannot both
  insert: the second one receives IntegrityError.

  Access tokens are stored as HMAC-SHA256 hashes (see auth/tokens.py). The
  verification query matches (token_hash, username) in one indexed lookup, so
  the same query runs whether the username exists or not.

Layer rule: no imports from api/ or mods/.
"""

from __future__ import annotations

import json

from sqlalchemy import Column, ForeignKey, Index, String, Table, Text, select
from sqlalchemy.engine import Engine

from auth.models import Account, AccessToken
from core.database import metadata, to_iso, utc_now

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_accounts = Table(
    "accounts",
    metadata,
    Column("username", String(32), primary_key=True),
    Column("external_id", String(64), nullable=False, unique=True),
    Column("created_at", String(32), nullable=False),
)

_access_tokens = Table(
    "access_tokens",
    metadata,
    Column("token_hash", String(64), primary_key=True),  # HMAC-SHA256 hex
    Column("username", String(32), ForeignKey("accounts.username"), nullable=False),
    Column("device_info", Text),  # JSON blob, opaque to the server
    Column("created_at", String(32), nullable=False),
    Index("ix_access_tokens_username", "username"),
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account and AccessToken entities.

    Usage:
        engine = create_db_engine("sqlite:///acorn.db")
        store = AccountStore(engine)
        store.create_account(Account(username="alice", external_id="123"))
        account = store.get_by_username("alice")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        metadata.create_all(self.engine, tables=[_accounts, _access_tokens])

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_account(self, account: Account) -> Account:
        """Insert a new account and return it with created_at filled in.

        Raises sqlalchemy.exc.IntegrityError if the username or the external
        id is already taken. This single INSERT is the uniqueness check;
        callers translate the IntegrityError into a 409.
        """
        created_at = to_iso(utc_now())
        with self.engine.begin() as conn:
            conn.execute(
                _accounts.insert().values(
                    username=account.username,
                    external_id=account.external_id,
                    created_at=created_at,
                )
            )
        return Account(username=account.username, external_id=account.external_id, created_at=created_at)

    def get_by_username(self, username: str) -> Account | None:
        """Look up an account by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.username == username)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_external_id(self, external_id: str) -> Account | None:
        """Look up the account bound to a Discord user ID.

        The /discord_auth callback uses this to decide between "log in" and
        "register".
        """
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.external_id == external_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    # ------------------------------------------------------------------
    # Access tokens
    # ------------------------------------------------------------------

    def create_access_token(self, access_token: AccessToken) -> None:
        """Persist a freshly issued access token.

        Raises sqlalchemy.exc.IntegrityError if the username does not reference
        an existing account.
        """
        with self.engine.begin() as conn:
            conn.execute(
                _access_tokens.insert().values(
                    token_hash=access_token.token_hash,
                    username=access_token.username,
                    device_info=json.dumps(access_token.device_info),
                    created_at=access_token.created_at or to_iso(utc_now()),
                )
            )

    def has_access_token(self, username: str, token_hash: str) -> bool:
        """Return True if token_hash is a live credential for username.

        Primary-key lookup on token_hash with the owner checked in the same
        WHERE clause: a valid token presented under another user's name does
        not match.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_access_tokens.c.token_hash).where(
                    (_access_tokens.c.token_hash == token_hash) & (_access_tokens.c.username == username)
                )
            ).fetchone()
        return row is not None


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        username=row.username,
        external_id=row.external_id,
        created_at=row.created_at,
    )
