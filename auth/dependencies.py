"""
auth/dependencies.py -- Credential verification for protected calls.

The Acorn desktop program sends its credentials as two plain fields
(username + accessToken) inside the multipart body of every mod mutation,
not as a header, so verification is a function the route calls once the form
schema has been validated rather than a header-reading Depends().

authenticate_credentials() is the only gate. Every failure -- unknown
username, wrong token, token belonging to someone else, blank values -- raises
the same UnauthorizedError with the same message and status, so the response
never reveals whether an account exists.

The get_* helpers are FastAPI Depends() accessors for the stores wired into
app.state by the lifespan (api/main.py) or by the test fixtures.

Layer rule: no imports from api/ or mods/. auth/dependencies.py may import
from fastapi because it is part of the dependency injection system.
"""

from __future__ import annotations

import logging

from fastapi import Request

from auth.broker import TempLoginBroker
from auth.discord import IdentityResolver
from auth.store import AccountStore
from auth.tokens import hash_access_token
from core.errors import UnauthorizedError

logger = logging.getLogger("acorn.auth")

_BAD_CREDENTIALS = "Not authenticated; invalid username or access token."


def authenticate_credentials(store: AccountStore, username: str | None, access_token: str | None) -> str:
    """Verify a (username, access token) pair. Returns the username on success.

    Raises:
        UnauthorizedError: for every kind of failure, always with one message.
    """
    if not username or not access_token:
        raise UnauthorizedError(_BAD_CREDENTIALS, code="bad_credentials")
    if not store.has_access_token(username, hash_access_token(access_token)):
        logger.info("Rejected credentials for username=%r", username)
        raise UnauthorizedError(_BAD_CREDENTIALS, code="bad_credentials")
    return username


def get_account_store(request: Request) -> AccountStore:
    return request.app.state.account_store


def get_broker(request: Request) -> TempLoginBroker:
    return request.app.state.broker


def get_identity_resolver(request: Request) -> IdentityResolver:
    return request.app.state.identity_resolver
