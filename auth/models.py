"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and routes do
the work; these only own the shape.

Layer rule: no imports from api/ or mods/.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class Account:
    """A registered Acorn user.

    username is the public, immutable handle shown on mods. external_id is the
    Discord user ID the account is bound to at registration -- both are
    globally unique and neither changes afterwards.
    """

    username: str
    external_id: str
    created_at: str = ""  # ISO 8601, set by store on insert


@dataclass
class AccessToken:
    """A long-lived per-device bearer credential.

    token_hash is HMAC-SHA256(SECRET_KEY, raw_token). The raw token is returned
    to the device exactly once at issuance and never persisted.
    device_info is whatever the client chose to describe itself with (OS,
    program version, hostname); the server treats it as opaque.
    """

    token_hash: str
    username: str
    device_info: Any = None
    created_at: str = ""


@dataclass(frozen=True)
class ExternalTokens:
    """OAuth tokens returned by the identity provider's token endpoint."""

    access_token: str
    refresh_token: str | None = None


@dataclass(frozen=True)
class ExternalIdentity:
    """The stable identity behind an external access token."""

    external_id: str
    display_name: str
