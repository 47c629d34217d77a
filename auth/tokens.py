"""
auth/tokens.py -- Access token generation, hashing, and issuance.

Security design decisions:
  Generation: secrets.token_urlsafe(32) draws 32 bytes (256 bits) from the OS
       CSPRNG and encodes them in the URL-safe base64 alphabet without "="
       padding, so the token survives query strings, headers, and form fields
       unescaped. Anything at or above 16 bytes meets the 128-bit floor; the
       exact length is not part of the wire contract.

  Storage: we store HMAC-SHA256(SECRET_KEY, raw_token), never the raw token.
       The hash is deterministic, so lookup stays an O(1) primary-key match,
       and a leaked database alone cannot be replayed against the API.
       bcrypt's intentional slowness is unnecessary for 256-bit random secrets.

  Failure: if the random source fails the error propagates as InternalError.
       Nothing is persisted and nothing is retried.

  Lifetime: access tokens are long-lived device credentials with no expiry.
       See DESIGN.md for the reasoning and the follow-up path (revocation).

Layer rule: no imports from api/ or mods/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import IntegrityError

from auth.models import AccessToken
from core.config import get_settings
from core.database import to_iso, utc_now
from core.errors import InternalError, NotFoundError

if TYPE_CHECKING:
    from auth.store import AccountStore

logger = logging.getLogger("acorn.auth.tokens")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

ACCESS_TOKEN_BYTES = 32


# ---------------------------------------------------------------------------
# Generation and hashing
# ---------------------------------------------------------------------------


def generate_access_token() -> str:
    """Generate a new opaque bearer token (43 URL-safe characters)."""
    return secrets.token_urlsafe(ACCESS_TOKEN_BYTES)


def hash_access_token(raw_token: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw_token) as a hex string."""
    return hmac.new(
        _settings.secret_key.encode(),
        raw_token.encode(),
        hashlib.sha256,
    ).hexdigest()


# ---------------------------------------------------------------------------
# Issuance
# ---------------------------------------------------------------------------


def issue_access_token(store: AccountStore, username: str, device_info: Any = None) -> str:
    """Mint a token for username, persist its hash, and return the raw token.

    The raw token is shown to the device ONCE; the server cannot recover it.

    Raises:
        InternalError: the OS random source failed. No row was written.
        NotFoundError: username does not belong to a registered account.
    """
    try:
        raw_token = generate_access_token()
    except (OSError, NotImplementedError) as exc:
        logger.error("Random source failure while issuing access token for %s", username)
        raise InternalError() from exc

    try:
        store.create_access_token(
            AccessToken(
                token_hash=hash_access_token(raw_token),
                username=username,
                device_info=device_info,
                created_at=to_iso(utc_now()),
            )
        )
    except IntegrityError as exc:
        logger.warning("Access token requested for unknown account %s", username)
        raise NotFoundError("Account not found.") from exc

    logger.info("Issued access token for %s", username)
    return raw_token
