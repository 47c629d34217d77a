"""
api/routes/v1/auth.py -- Account registration and the cross-device login handshake.

Routes:
  POST /api/v1/register           -- create an account bound to a Discord user
  GET  /api/v1/discord_auth       -- exchange a Discord OAuth code; report whether to register
  GET  /api/v1/goto_discord_auth  -- 302 to the Discord consent page
  POST /api/v1/temp_login         -- bind a desktop temp login token to a username
  POST /api/v1/access_token       -- consume a temp login token; mint an access token

Handshake:
  1. The desktop program generates a temp login token and opens the browser
     on the login page with it.
  2. The browser goes through /goto_discord_auth and /discord_auth (and
     /register the first time), then calls /temp_login with the token.
  3. The desktop program polls /access_token with the same token. 404 means
     "not yet" (or expired); 200 carries the access token, exactly once.

Security:
  POST /register, /temp_login and /access_token are rate-limited per IP.
  Cache-Control: no-store on every response that carries a credential.
  /temp_login is unauthenticated (see DESIGN.md, "temp_login caller identity").
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse

from api.limiter import limiter
from api.models import (
    AccessTokenRequest,
    AccessTokenResponse,
    DiscordAuthResponse,
    RegisterRequest,
    TempLoginRequest,
)
from auth.broker import TempLoginBroker
from auth.dependencies import get_account_store, get_broker, get_identity_resolver
from auth.discord import IdentityError, IdentityResolver
from auth.registration import register_account
from auth.store import AccountStore
from auth.tokens import issue_access_token
from core.config import get_settings
from core.errors import ConflictError, NotFoundError

logger = logging.getLogger("acorn.api.auth")

_login_limit = get_settings().login_rate_limit

# Auth policy:
# - POST /api/v1/register:           public -- proof of identity is the Discord token in the body
# - GET  /api/v1/discord_auth:       public -- proof of identity is the OAuth code
# - GET  /api/v1/goto_discord_auth:  public
# - POST /api/v1/temp_login:         public (gap, see DESIGN.md)
# - POST /api/v1/access_token:       public -- possession of a bound temp login token is the credential
router = APIRouter()


# ---------------------------------------------------------------------------
# Registration and Discord OAuth
# ---------------------------------------------------------------------------


@limiter.limit(_login_limit)
@router.post("/register", status_code=204)
def register(
    request: Request,
    body: RegisterRequest,
    store: AccountStore = Depends(get_account_store),
    resolver: IdentityResolver = Depends(get_identity_resolver),
) -> Response:
    """Create an account for the Discord user who owns externalAccessToken.

    409 if the username or the Discord user is already registered.
    """
    register_account(store, resolver, body.username, body.external_id, body.external_access_token)
    return Response(status_code=204)


@router.get("/discord_auth", response_model=DiscordAuthResponse, response_model_exclude_none=True)
def discord_auth(
    code: str = Query(..., min_length=1, max_length=512),
    store: AccountStore = Depends(get_account_store),
    resolver: IdentityResolver = Depends(get_identity_resolver),
) -> JSONResponse:
    """Trade a Discord OAuth code for the caller's Discord identity.

    If an account is already bound to that Discord user, answer with its
    username. Otherwise hand the Discord access token back to the browser so
    it can complete POST /register.
    """
    try:
        tokens = resolver.exchange(code)
        identity = resolver.resolve(tokens.access_token)
    except IdentityError as exc:
        logger.warning("Discord OAuth failed: %s", exc)
        raise exc.as_api_error() from exc

    account = store.get_by_external_id(identity.external_id)
    if account is not None:
        payload = DiscordAuthResponse(
            register=False,
            external_user_id=identity.external_id,
            username=account.username,
        )
    else:
        payload = DiscordAuthResponse(
            register=True,
            external_user_id=identity.external_id,
            external_access_token=tokens.access_token,
            external_username=identity.display_name,
        )
    resp = JSONResponse(content=payload.model_dump(by_alias=True, exclude_none=True))
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/goto_discord_auth")
def goto_discord_auth(resolver: IdentityResolver = Depends(get_identity_resolver)) -> RedirectResponse:
    """Send the browser to the Discord consent page."""
    return RedirectResponse(resolver.authorize_url(), status_code=302)


# ---------------------------------------------------------------------------
# Temp login handshake
# ---------------------------------------------------------------------------


@limiter.limit(_login_limit)
@router.post("/temp_login", status_code=204)
def temp_login(
    request: Request,
    body: TempLoginRequest,
    broker: TempLoginBroker = Depends(get_broker),
) -> Response:
    """Bind tempLoginToken to username for five minutes. 409 if already bound."""
    if not broker.create(body.temp_login_token, body.username):
        raise ConflictError("That temp login token is already in use.", code="temp_token_in_use")
    return Response(status_code=204)


@limiter.limit(_login_limit)
@router.post("/access_token", response_model=AccessTokenResponse)
def access_token(
    request: Request,
    body: AccessTokenRequest,
    broker: TempLoginBroker = Depends(get_broker),
    store: AccountStore = Depends(get_account_store),
) -> JSONResponse:
    """Consume tempLoginToken and return a fresh access token.

    The temp login token is gone after this call whether or not issuance
    succeeds; a failed poll must restart the handshake with a new token.
    """
    username = broker.resolve(body.temp_login_token)
    if username is None:
        raise NotFoundError("Unknown or expired temp login token.", code="temp_token_not_found")

    raw_token = issue_access_token(store, username, body.device_info)
    resp = JSONResponse(content=AccessTokenResponse(access_token=raw_token).model_dump(by_alias=True))
    resp.headers["Cache-Control"] = "no-store"
    return resp
