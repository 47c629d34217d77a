"""
mods/store.py -- SQLAlchemy Core persistence layer for mods.

Pattern: Repository + Data Mapper, same as auth/store.py. ModStore is the
repository; _row_to_mod is the mapper.

Concurrency:
  update_mod() bumps the version with `version = version + 1` inside the
  UPDATE statement and reads the new value back with RETURNING. The database
  serializes the two writers, so two concurrent accepted edits always yield
  two distinct, consecutive versions -- no read-then-write from Python, no
  lost update.

  Every mutation repeats the ownership condition (author = :username) in its
  WHERE clause. The route checks ownership first to produce a clean 403/404;
  the WHERE clause guarantees the write itself can never touch someone
  else's mod.

Security: all queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

import re
import uuid
from typing import Optional

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Table,
    Text,
    case,
    literal,
    select,
)
from sqlalchemy.engine import Engine

from core.database import metadata, to_iso, utc_now
from mods.models import Mod

SEARCH_LIMIT = 50
_MAX_SEARCH_TERMS = 8

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_mods = Table(
    "mods",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("author", String(32), ForeignKey("accounts.username"), nullable=False),
    Column("title", String(128), nullable=False),
    Column("description", Text, nullable=False),
    Column("game_name", String(128), nullable=False),
    Column("game_version_major", Integer, nullable=False),
    Column("game_version_minor", Integer, nullable=False),
    Column("file_data", LargeBinary, nullable=False),
    Column("version", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Index("ix_mods_author", "author"),
)

# Every column except the payload, for listings and metadata reads.
_METADATA_COLUMNS = [c for c in _mods.c if c.name != "file_data"]


def _search_terms(query: str) -> list[str]:
    """Split a free-text query into alphanumeric terms.

    Punctuation is treated as whitespace, so the terms can never contain LIKE
    wildcards or escape characters.
    """
    return [t.lower() for t in re.split(r"[^0-9A-Za-z]+", query) if t][:_MAX_SEARCH_TERMS]


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class ModStore:
    """Repository for Mod entities.

    Usage:
        store = ModStore(engine)
        mod = store.create_mod(Mod(author="alice", title="Big Heads", ...))
        new_version = store.update_mod(mod.id, "alice", description="now bigger")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        metadata.create_all(self.engine, tables=[_mods])

    def create_mod(self, mod: Mod) -> Mod:
        """Insert a new mod at version 1 and return it with id and timestamps set.

        Raises sqlalchemy.exc.IntegrityError if the author is not a registered
        account.
        """
        now = to_iso(utc_now())
        mod_id = str(uuid.uuid4())
        with self.engine.begin() as conn:
            conn.execute(
                _mods.insert().values(
                    id=mod_id,
                    author=mod.author,
                    title=mod.title,
                    description=mod.description,
                    game_name=mod.game_name,
                    game_version_major=mod.game_version_major,
                    game_version_minor=mod.game_version_minor,
                    file_data=mod.file_data or b"",
                    version=1,
                    created_at=now,
                    updated_at=now,
                )
            )
        return Mod(
            id=mod_id,
            author=mod.author,
            title=mod.title,
            description=mod.description,
            game_name=mod.game_name,
            game_version_major=mod.game_version_major,
            game_version_minor=mod.game_version_minor,
            file_data=mod.file_data,
            version=1,
            created_at=now,
            updated_at=now,
        )

    def get_mod(self, mod_id: str, include_file: bool = False) -> Optional[Mod]:
        """Return the mod or None. The payload is only loaded when include_file is set."""
        columns = list(_mods.c) if include_file else _METADATA_COLUMNS
        with self.engine.connect() as conn:
            row = conn.execute(select(*columns).where(_mods.c.id == mod_id)).fetchone()
        return _row_to_mod(row) if row is not None else None

    def get_author(self, mod_id: str) -> Optional[str]:
        """Return the recorded author of a mod, or None if it does not exist."""
        with self.engine.connect() as conn:
            return conn.execute(select(_mods.c.author).where(_mods.c.id == mod_id)).scalar()

    def update_mod(
        self,
        mod_id: str,
        username: str,
        file_data: Optional[bytes] = None,
        description: Optional[str] = None,
    ) -> Optional[int]:
        """Apply an edit by username and return the new version.

        Returns None if the mod does not exist or is not authored by username;
        in that case nothing was written.
        """
        values: dict = {"version": _mods.c.version + 1, "updated_at": to_iso(utc_now())}
        if file_data is not None:
            values["file_data"] = file_data
        if description is not None:
            values["description"] = description
        with self.engine.begin() as conn:
            row = conn.execute(
                _mods.update()
                .where((_mods.c.id == mod_id) & (_mods.c.author == username))
                .values(**values)
                .returning(_mods.c.version)
            ).first()
        return row.version if row is not None else None

    def delete_mod(self, mod_id: str, username: str) -> bool:
        """Delete a mod owned by username. Returns True if a row was deleted."""
        with self.engine.begin() as conn:
            result = conn.execute(_mods.delete().where((_mods.c.id == mod_id) & (_mods.c.author == username)))
        return result.rowcount > 0

    def search_mods(self, query: str, limit: int = SEARCH_LIMIT) -> list[Mod]:
        """Full-text-ish search over title and description.

        Every term must appear in the title or the description
        (case-insensitive). Results are ranked by relevance: a term found in
        the title scores 2, in the description 1. Ties go to the most recently
        updated mod. Returns metadata only.
        """
        terms = _search_terms(query)
        if not terms:
            return []

        conditions = []
        score = literal(0)
        for term in terms:
            in_title = _mods.c.title.ilike(f"%{term}%")
            in_description = _mods.c.description.ilike(f"%{term}%")
            conditions.append(in_title | in_description)
            score = score + case((in_title, 2), else_=0) + case((in_description, 1), else_=0)

        stmt = (
            select(*_METADATA_COLUMNS)
            .where(*conditions)
            .order_by(score.desc(), _mods.c.updated_at.desc())
            .limit(min(limit, SEARCH_LIMIT))
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_mod(r) for r in rows]


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_mod(row) -> Mod:
    # file_data is absent on metadata-only selects.
    file_data = getattr(row, "file_data", None)
    return Mod(
        id=row.id,
        author=row.author,
        title=row.title,
        description=row.description,
        game_name=row.game_name,
        game_version_major=row.game_version_major,
        game_version_minor=row.game_version_minor,
        file_data=bytes(file_data) if file_data is not None else None,
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
