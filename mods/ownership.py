"""
mods/ownership.py -- Ownership gate for mod mutations.

Only the recorded author of a mod may change or delete it. Every PATCH and
DELETE route calls ensure_can_mutate() after authentication and before any
write. The store repeats the author condition inside the write itself, so the
gate decides the status code and the WHERE clause guarantees the invariant.
"""

from __future__ import annotations

import logging
from enum import Enum

from core.errors import ForbiddenError, NotFoundError
from mods.store import ModStore

logger = logging.getLogger("acorn.mods.ownership")


class Authorization(str, Enum):
    AUTHORIZED = "authorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"


def authorize_mutation(store: ModStore, mod_id: str, username: str) -> Authorization:
    """Decide whether username may mutate mod_id. Authorized iff username is the author."""
    author = store.get_author(mod_id)
    if author is None:
        return Authorization.NOT_FOUND
    if author != username:
        return Authorization.FORBIDDEN
    return Authorization.AUTHORIZED


def ensure_can_mutate(store: ModStore, mod_id: str, username: str) -> None:
    """Raise unless username owns mod_id.

    Raises:
        NotFoundError: no mod with that id.
        ForbiddenError: the mod belongs to someone else.
    """
    decision = authorize_mutation(store, mod_id, username)
    if decision is Authorization.NOT_FOUND:
        raise NotFoundError("Mod not found.", code="mod_not_found")
    if decision is Authorization.FORBIDDEN:
        logger.warning("User %s attempted to modify mod %s owned by someone else", username, mod_id)
        raise ForbiddenError("You do not have permission to edit this mod.", code="not_mod_author")
