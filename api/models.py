"""
API request and response models for Acorn REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
mods/models.py, which own the internal domain representation. Route handlers
map between the two.

Wire names are camelCase (the desktop program and the browser page both speak
it); Python attribute names stay snake_case via the to_camel alias generator.

The multipart form schemas (ModCreateForm, ModUpdateForm, ModDeleteForm) fix
which fields are required and which are optional in one place. api/forms.py
fills them from the raw multipart fields and turns any failure into a single
400 response.
"""

import json
import re
import uuid
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from auth.registration import USERNAME_PATTERN
from core.sanitize import sanitize_text
from mods.models import Mod

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Generated by the desktop program; URL-safe so it can ride in the login URL.
TEMP_LOGIN_TOKEN_PATTERN = r"^[A-Za-z0-9_-]{1,128}$"
GAME_VERSION_PATTERN = re.compile(r"^(\d{1,4})\.(\d{1,4})$")

MAX_DEVICE_INFO_CHARS = 4096
MAX_TITLE_CHARS = 128
MAX_DESCRIPTION_CHARS = 10_000


class _ApiModel(BaseModel):
    """camelCase on the wire; subclasses add to this config, they do not replace it."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class RegisterRequest(_ApiModel):
    """Request body for POST /api/v1/register.

    The username policy is checked by auth.registration.validate_username so
    the same rule applies to every caller, not only HTTP.
    """

    username: str = Field(max_length=64)
    external_id: str = Field(min_length=1, max_length=64)
    external_access_token: str = Field(min_length=1, max_length=512)


class TempLoginRequest(_ApiModel):
    """Request body for POST /api/v1/temp_login."""

    temp_login_token: str = Field(pattern=TEMP_LOGIN_TOKEN_PATTERN)
    username: str = Field(pattern=USERNAME_PATTERN.pattern)


class AccessTokenRequest(_ApiModel):
    """Request body for POST /api/v1/access_token.

    device_info is opaque to the server -- any JSON value the client likes,
    stored as-is next to the token so a user can tell their devices apart.
    """

    temp_login_token: str = Field(pattern=TEMP_LOGIN_TOKEN_PATTERN)
    device_info: Any = None

    @field_validator("device_info")
    @classmethod
    def limit_device_info(cls, value: Any) -> Any:
        if len(json.dumps(value)) > MAX_DEVICE_INFO_CHARS:
            raise ValueError(f"deviceInfo must serialize to at most {MAX_DEVICE_INFO_CHARS} characters")
        return value


# ---------------------------------------------------------------------------
# Auth -- response models
# ---------------------------------------------------------------------------


class AccessTokenResponse(_ApiModel):
    """Response body for POST /api/v1/access_token. The token is shown once."""

    model_config = ConfigDict(frozen=True)

    access_token: str


class DiscordAuthResponse(_ApiModel):
    """Response body for GET /api/v1/discord_auth.

    register=False: the Discord user already has an account; username is set.
    register=True:  no account yet; the browser should show the registration
                    form and post external_access_token back to /register.
    """

    model_config = ConfigDict(frozen=True)

    register: bool
    external_user_id: str
    username: Optional[str] = None
    external_access_token: Optional[str] = None
    external_username: Optional[str] = None


# ---------------------------------------------------------------------------
# Mods -- multipart form schemas
# ---------------------------------------------------------------------------


def _clean_text(value: Optional[str], max_chars: int, required: bool = True) -> Optional[str]:
    cleaned = sanitize_text(value)
    if cleaned is None and required:
        raise ValueError("must not be blank")
    if cleaned is not None and len(cleaned) > max_chars:
        raise ValueError(f"must be at most {max_chars} characters")
    return cleaned


class _CredentialsForm(_ApiModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=64)
    access_token: str = Field(min_length=1, max_length=256)


class ModCreateForm(_CredentialsForm):
    """Multipart fields for PUT /api/v1/mod. Every field is required."""

    file_data: bytes = Field(min_length=1)
    title: str
    description: str
    game_name: str
    game_version: str

    @field_validator("title", "game_name", mode="before")
    @classmethod
    def clean_short_text(cls, value: Optional[str]) -> Optional[str]:
        return _clean_text(value, MAX_TITLE_CHARS)

    @field_validator("description", mode="before")
    @classmethod
    def clean_description(cls, value: Optional[str]) -> Optional[str]:
        return _clean_text(value, MAX_DESCRIPTION_CHARS)

    @field_validator("game_version")
    @classmethod
    def check_game_version(cls, value: str) -> str:
        if not GAME_VERSION_PATTERN.fullmatch(value.strip()):
            raise ValueError("must look like <major>.<minor>, e.g. 1.4")
        return value.strip()

    @property
    def game_version_parts(self) -> tuple[int, int]:
        major, minor = GAME_VERSION_PATTERN.fullmatch(self.game_version).groups()
        return int(major), int(minor)


class ModDeleteForm(_CredentialsForm):
    """Multipart fields for DELETE /api/v1/mod."""

    mod_id: uuid.UUID


class ModUpdateForm(ModDeleteForm):
    """Multipart fields for PATCH /api/v1/mod.

    file_data and description are each optional, but an edit must carry at
    least one of them.
    """

    file_data: Optional[bytes] = None
    description: Optional[str] = None

    @field_validator("description", mode="before")
    @classmethod
    def clean_description(cls, value: Optional[str]) -> Optional[str]:
        return _clean_text(value, MAX_DESCRIPTION_CHARS, required=False)

    @field_validator("file_data")
    @classmethod
    def reject_empty_file(cls, value: Optional[bytes]) -> Optional[bytes]:
        if value is not None and len(value) == 0:
            raise ValueError("must not be empty")
        return value

    @model_validator(mode="after")
    def require_a_change(self) -> "ModUpdateForm":
        if self.file_data is None and self.description is None:
            raise ValueError("at least one of fileData/description is required")
        return self


# ---------------------------------------------------------------------------
# Mods -- response models
# ---------------------------------------------------------------------------


class ModResponse(_ApiModel):
    """Mod metadata. The payload itself is never inlined into JSON."""

    model_config = ConfigDict(frozen=True)

    id: str
    author: str
    title: str
    description: str
    game_name: str
    game_version: str
    version: int
    created_at: str
    updated_at: str

    @classmethod
    def from_mod(cls, mod: Mod) -> "ModResponse":
        """Factory Method: map the domain dataclass onto the API contract."""
        return cls(
            id=mod.id,
            author=mod.author,
            title=mod.title,
            description=mod.description,
            game_name=mod.game_name,
            game_version=mod.game_version,
            version=mod.version,
            created_at=mod.created_at,
            updated_at=mod.updated_at,
        )


# ---------------------------------------------------------------------------
# Shared envelopes
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
