"""
auth/registration.py -- Account registration bound to a Discord identity.

Order of checks (cheapest and most local first):
  1. Username policy -- no network or database traffic for malformed names.
  2. Identity proof   -- the caller must hold a Discord access token that
     resolves to the external id they claim. Without this anyone could bind
     an account to someone else's Discord user.
  3. Insert           -- one INSERT; the PRIMARY KEY on username and the
     UNIQUE on external_id decide conflicts atomically.

Registration issues no access token. The desktop program obtains one through
the temp login handshake like any later login.
"""

from __future__ import annotations

import logging
import re

from sqlalchemy.exc import IntegrityError

from auth.discord import IdentityError, IdentityResolver
from auth.models import Account
from auth.store import AccountStore
from core.errors import ConflictError, UnauthorizedError, ValidationError

logger = logging.getLogger("acorn.auth.registration")

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]{3,32}$")


def validate_username(username: str) -> str:
    """Return username unchanged if it satisfies the handle policy.

    Raises:
        ValidationError: outside 3-32 chars or outside [A-Za-z0-9_-].
    """
    if not isinstance(username, str) or not USERNAME_PATTERN.fullmatch(username):
        raise ValidationError(
            "Username must be 3-32 characters of letters, digits, '_' or '-'.",
            code="invalid_username",
        )
    return username


def register_account(
    store: AccountStore,
    resolver: IdentityResolver,
    username: str,
    claimed_external_id: str,
    external_access_token: str,
) -> Account:
    """Create an account for username bound to claimed_external_id.

    Raises:
        ValidationError: username violates the policy.
        UnauthorizedError: the access token does not belong to claimed_external_id
            (or Discord rejected it).
        UpstreamFailureError: Discord failed or answered with garbage.
        ConflictError: username or external id already registered.
    """
    validate_username(username)

    try:
        identity = resolver.resolve(external_access_token)
    except IdentityError as exc:
        logger.warning("Identity resolution failed during registration of %s: %s", username, exc)
        raise exc.as_api_error() from exc

    if identity.external_id != claimed_external_id:
        logger.warning("Registration of %s claimed an external id the token does not own", username)
        raise UnauthorizedError("The Discord token does not match the claimed user ID.", code="identity_mismatch")

    try:
        account = store.create_account(Account(username=username, external_id=claimed_external_id))
    except IntegrityError as exc:
        logger.info("Registration conflict for username=%s", username)
        raise ConflictError(
            "An account with that username or Discord user already exists.",
            code="account_exists",
        ) from exc

    logger.info("Registered account %s", username)
    return account
