"""
auth/discord.py -- Discord as the external identity provider.

The browser half of the login handshake sends us the OAuth authorization code
Discord handed it. We exchange the code for tokens (token endpoint), then ask
Discord who the token belongs to (GET /users/@me). The Discord user ID is the
stable external identity an Acorn account is bound to.

The wire protocol is Authlib's job (requests_client.OAuth2Session). This module
only normalizes outcomes into two families:

  client-caused    InvalidCodeError, InvalidGrantError        -> HTTP 401
  provider-caused  UpstreamError(status), MalformedResponseError -> HTTP 500

as_api_error() performs that mapping so routes never branch on provider
details.

Layer rule: no imports from api/ or mods/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

import requests
from authlib.integrations.requests_client import OAuth2Session, OAuthError

from auth.models import ExternalIdentity, ExternalTokens
from core.errors import APIError, UnauthorizedError, UpstreamFailureError

logger = logging.getLogger("acorn.auth.discord")

DISCORD_AUTHORIZE_URL = "https://discord.com/oauth2/authorize"

# OAuth error codes that mean "the code/token the client gave us is bad"
# rather than "our client registration or Discord is broken".
_INVALID_GRANT_ERRORS = {"invalid_grant"}
_INVALID_CODE_ERRORS = {"invalid_request"}


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class IdentityError(Exception):
    """Base class for identity provider failures."""

    client_caused = False

    def as_api_error(self) -> APIError:
        if self.client_caused:
            return UnauthorizedError("Discord rejected the login; please sign in again.", code="invalid_grant")
        return UpstreamFailureError()


class InvalidCodeError(IdentityError):
    client_caused = True


class InvalidGrantError(IdentityError):
    client_caused = True


class UpstreamError(IdentityError):
    def __init__(self, status: Optional[int], message: str = "") -> None:
        self.status = status
        super().__init__(message or f"Discord answered with status {status}")


class MalformedResponseError(IdentityError):
    pass


# ---------------------------------------------------------------------------
# Resolver interface
# ---------------------------------------------------------------------------


class IdentityResolver(Protocol):
    """What the registration and login flows need from an identity provider."""

    def exchange(self, code: str) -> ExternalTokens: ...

    def resolve(self, access_token: str) -> ExternalIdentity: ...


class DiscordIdentityResolver:
    """Authlib-backed resolver for Discord OAuth2.

    Usage:
        resolver = DiscordIdentityResolver(client_id, client_secret, redirect_uri)
        tokens = resolver.exchange(code)
        identity = resolver.resolve(tokens.access_token)
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        api_base_url: str = "https://discord.com/api/v10",
        scope: str = "identify",
        timeout: float = 10.0,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.api_base_url = api_base_url.rstrip("/")
        self.scope = scope
        self.timeout = timeout

    @property
    def token_url(self) -> str:
        return f"{self.api_base_url}/oauth2/token"

    def _session(self, token: Optional[dict] = None) -> OAuth2Session:
        return OAuth2Session(
            client_id=self.client_id,
            client_secret=self.client_secret,
            redirect_uri=self.redirect_uri,
            scope=self.scope,
            token=token,
            token_endpoint_auth_method="client_secret_basic",  # noqa: S106 -- auth method name, not a secret
        )

    # ------------------------------------------------------------------
    # Authorization redirect
    # ------------------------------------------------------------------

    def authorize_url(self, state: Optional[str] = None) -> str:
        """Return the Discord consent-page URL the browser should be sent to."""
        session = self._session()
        try:
            url, _state = session.create_authorization_url(DISCORD_AUTHORIZE_URL, state=state)
        finally:
            session.close()
        return url

    # ------------------------------------------------------------------
    # Token endpoint
    # ------------------------------------------------------------------

    def exchange(self, code: str) -> ExternalTokens:
        """Trade an authorization code for Discord access/refresh tokens."""
        if not code or not code.strip():
            raise InvalidCodeError("Empty authorization code")
        return self._token_request(grant_type="authorization_code", code=code)

    def refresh(self, refresh_token: str) -> ExternalTokens:
        """Trade a refresh token for a new token pair."""
        if not refresh_token:
            raise InvalidGrantError("Empty refresh token")
        return self._token_request(grant_type="refresh_token", refresh_token=refresh_token)

    def _token_request(self, grant_type: str, **params: str) -> ExternalTokens:
        session = self._session()
        try:
            if grant_type == "refresh_token":
                token = session.refresh_token(self.token_url, timeout=self.timeout, **params)
            else:
                token = session.fetch_token(self.token_url, grant_type=grant_type, timeout=self.timeout, **params)
        except OAuthError as exc:
            raise _classify_oauth_error(exc) from exc
        except requests.JSONDecodeError as exc:
            raise MalformedResponseError("Token endpoint returned non-JSON body") from exc
        except requests.HTTPError as exc:
            status = exc.response.status_code if exc.response is not None else None
            raise UpstreamError(status) from exc
        except requests.RequestException as exc:
            raise UpstreamError(None, f"Token request failed: {exc}") from exc
        finally:
            session.close()

        access_token = token.get("access_token") if token else None
        if not access_token:
            raise MalformedResponseError("Token response has no access_token")
        return ExternalTokens(access_token=access_token, refresh_token=token.get("refresh_token"))

    # ------------------------------------------------------------------
    # User info
    # ------------------------------------------------------------------

    def resolve(self, access_token: str) -> ExternalIdentity:
        """Return the Discord identity that owns access_token.

        A 401 from Discord means the token the client presented is invalid or
        expired, which is the client's fault -- raised as InvalidGrantError.
        """
        if not access_token:
            raise InvalidGrantError("Empty access token")
        session = self._session(token={"access_token": access_token, "token_type": "Bearer"})
        try:
            resp = session.get(f"{self.api_base_url}/users/@me", timeout=self.timeout)
        except requests.RequestException as exc:
            raise UpstreamError(None, f"User info request failed: {exc}") from exc
        finally:
            session.close()

        if resp.status_code == 401:
            raise InvalidGrantError("Discord rejected the access token")
        if not resp.ok:
            raise UpstreamError(resp.status_code)
        try:
            profile = resp.json()
        except ValueError as exc:
            raise MalformedResponseError("User info is not JSON") from exc

        external_id = profile.get("id") if isinstance(profile, dict) else None
        if not isinstance(external_id, str) or not external_id:
            raise MalformedResponseError("User info has no id")
        # global_name is the display name; legacy accounts may only have username.
        display_name = profile.get("global_name") or profile.get("username") or external_id
        return ExternalIdentity(external_id=external_id, display_name=display_name)


def _classify_oauth_error(exc: OAuthError) -> IdentityError:
    if exc.error in _INVALID_GRANT_ERRORS:
        return InvalidGrantError(exc.description or exc.error)
    if exc.error in _INVALID_CODE_ERRORS:
        return InvalidCodeError(exc.description or exc.error)
    logger.error("Discord token endpoint error %s: %s", exc.error, exc.description)
    return UpstreamError(None, f"OAuth error {exc.error}")
