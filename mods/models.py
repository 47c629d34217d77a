"""
mods/models.py -- Domain dataclasses for mods.

Pure data containers. Ownership rules live in mods/ownership.py; persistence
and the atomic version bump live in mods/store.py.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class Mod:
    """A user-uploaded mod for a specific game version.

    author is the username of the account that created it and the only one
    allowed to change or delete it. version starts at 1 and is bumped by the
    store, never by callers.

    id is None before the record is written to the database.
    """

    author: str
    title: str
    description: str
    game_name: str
    game_version_major: int
    game_version_minor: int
    file_data: Optional[bytes] = None  # omitted on metadata-only reads
    id: Optional[str] = None  # UUID4 string
    version: int = 1
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""

    @property
    def game_version(self) -> str:
        return f"{self.game_version_major}.{self.game_version_minor}"
