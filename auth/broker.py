"""
auth/broker.py -- Temp login broker for the cross-device login handshake.

The Acorn desktop program cannot complete a Discord OAuth flow itself. It
generates a random temp login token, opens the browser on the login page with
that token in the URL, and polls POST /access_token with it. Once the browser
has identified the account through Discord it calls POST /temp_login, which
binds the token to the username here. The next poll consumes the binding and
receives an access token.

Lifecycle of a row:
  CREATED -> CONSUMED  resolve() hit it before expires_at (row deleted)
  CREATED -> EXPIRED   expires_at passed (row deleted later by sweep_expired)
Both terminal states look the same to callers: resolve() returns None.

Atomicity:
  create()  -- one INSERT; the PRIMARY KEY violation is the duplicate signal.
  resolve() -- one DELETE ... RETURNING; lookup and consumption cannot be
               separated, so two concurrent polls cannot both win.

Layer rule: no imports from api/ or mods/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy import Column, Index, String, Table
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from core.database import metadata, to_iso, utc_now

logger = logging.getLogger("acorn.auth.broker")

TEMP_LOGIN_TTL = timedelta(minutes=5)

_temp_login_tokens = Table(
    "temp_login_tokens",
    metadata,
    Column("token", String(128), primary_key=True),
    Column("username", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Index("ix_temp_login_tokens_expires_at", "expires_at"),
)


class TempLoginBroker:
    """Creates, consumes, and reaps temp login tokens.

    The clock is injectable so tests can move time forward without sleeping.
    """

    def __init__(self, engine: Engine, clock: Callable[[], datetime] = utc_now) -> None:
        self.engine = engine
        self._clock = clock
        metadata.create_all(self.engine, tables=[_temp_login_tokens])

    def create(self, token: str, username: str) -> bool:
        """Bind token to username for the next five minutes.

        Returns True if created, False if a live row with this token value
        already exists. A row whose expiry has already passed but which the
        sweeper has not reaped yet is dropped in the same transaction, so a
        dead token never blocks a fresh handshake.
        """
        now = self._clock()
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    _temp_login_tokens.delete().where(
                        (_temp_login_tokens.c.token == token) & (_temp_login_tokens.c.expires_at <= to_iso(now))
                    )
                )
                conn.execute(
                    _temp_login_tokens.insert().values(
                        token=token,
                        username=username,
                        expires_at=to_iso(now + TEMP_LOGIN_TTL),
                    )
                )
        except IntegrityError:
            logger.info("Temp login token already bound (username=%s)", username)
            return False
        return True

    def resolve(self, token: str) -> str | None:
        """Consume token and return the bound username, or None.

        None covers unknown, expired, and already-consumed tokens alike.
        """
        now = self._clock()
        with self.engine.begin() as conn:
            row = conn.execute(
                _temp_login_tokens.delete()
                .where((_temp_login_tokens.c.token == token) & (_temp_login_tokens.c.expires_at > to_iso(now)))
                .returning(_temp_login_tokens.c.username)
            ).first()
        return row.username if row is not None else None

    def sweep_expired(self) -> int:
        """Delete all expired rows. Returns the number of rows removed.

        Idempotent and safe to run concurrently with itself and with request
        traffic: it only ever touches rows resolve() would already ignore.
        """
        now = self._clock()
        with self.engine.begin() as conn:
            result = conn.execute(_temp_login_tokens.delete().where(_temp_login_tokens.c.expires_at < to_iso(now)))
        if result.rowcount:
            logger.info("Swept %d expired temp login token(s)", result.rowcount)
        return result.rowcount
