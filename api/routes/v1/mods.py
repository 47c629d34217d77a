"""
api/routes/v1/mods.py -- Mod upload, edit, delete, lookup and search.

Routes:
  PUT    /api/v1/mod              -- upload a new mod (multipart)
  PATCH  /api/v1/mod              -- replace the file and/or description (multipart)
  DELETE /api/v1/mod              -- delete a mod (multipart)
  GET    /api/v1/mod/{mod_id}     -- mod metadata
  GET    /api/v1/mods/search      -- ranked search over title and description

Mutations run in a fixed order:
  1. form schema (api/forms.py)      -> 400
  2. credentials                     -> 401
  3. ownership gate (PATCH, DELETE)  -> 404 / 403
  4. write

The store re-checks the author inside the UPDATE/DELETE itself, so a mod that
changes hands or disappears between steps 3 and 4 is never written; that
window is reported as 404.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request, Response

from api.forms import mod_create_form, mod_delete_form, mod_update_form
from api.models import ModCreateForm, ModDeleteForm, ModResponse, ModUpdateForm
from auth.dependencies import authenticate_credentials, get_account_store
from auth.store import AccountStore
from core.errors import NotFoundError
from mods.models import Mod
from mods.ownership import ensure_can_mutate
from mods.store import SEARCH_LIMIT, ModStore

logger = logging.getLogger("acorn.api.mods")

# Auth policy:
# - PUT    /api/v1/mod:             requires username + accessToken form fields
# - PATCH  /api/v1/mod:             requires credentials + authorship
# - DELETE /api/v1/mod:             requires credentials + authorship
# - GET    /api/v1/mod/{mod_id}:    public
# - GET    /api/v1/mods/search:     public
router = APIRouter()


def get_mod_store(request: Request) -> ModStore:
    return request.app.state.mod_store


# ---------------------------------------------------------------------------
# Mutations (multipart)
# ---------------------------------------------------------------------------


@router.put("/mod", status_code=204)
def create_mod(
    form: ModCreateForm = Depends(mod_create_form),
    accounts: AccountStore = Depends(get_account_store),
    mods: ModStore = Depends(get_mod_store),
) -> Response:
    """Upload a new mod authored by the authenticated user."""
    username = authenticate_credentials(accounts, form.username, form.access_token)
    major, minor = form.game_version_parts
    mod = mods.create_mod(
        Mod(
            author=username,
            title=form.title,
            description=form.description,
            game_name=form.game_name,
            game_version_major=major,
            game_version_minor=minor,
            file_data=form.file_data,
        )
    )
    logger.info("Mod %s uploaded by %s (%d bytes)", mod.id, username, len(form.file_data))
    return Response(status_code=204)


@router.patch("/mod", status_code=204)
def update_mod(
    form: ModUpdateForm = Depends(mod_update_form),
    accounts: AccountStore = Depends(get_account_store),
    mods: ModStore = Depends(get_mod_store),
) -> Response:
    """Replace the file and/or description of a mod. Each accepted edit bumps version by one."""
    username = authenticate_credentials(accounts, form.username, form.access_token)
    mod_id = str(form.mod_id)
    ensure_can_mutate(mods, mod_id, username)

    new_version = mods.update_mod(mod_id, username, file_data=form.file_data, description=form.description)
    if new_version is None:
        raise NotFoundError("Mod not found.", code="mod_not_found")
    logger.info("Mod %s updated by %s (version %d)", mod_id, username, new_version)
    return Response(status_code=204)


@router.delete("/mod", status_code=204)
def delete_mod(
    form: ModDeleteForm = Depends(mod_delete_form),
    accounts: AccountStore = Depends(get_account_store),
    mods: ModStore = Depends(get_mod_store),
) -> Response:
    username = authenticate_credentials(accounts, form.username, form.access_token)
    mod_id = str(form.mod_id)
    ensure_can_mutate(mods, mod_id, username)

    if not mods.delete_mod(mod_id, username):
        raise NotFoundError("Mod not found.", code="mod_not_found")
    logger.info("Mod %s deleted by %s", mod_id, username)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@router.get("/mods/search", response_model=list[ModResponse])
def search_mods(
    query: str = Query(..., min_length=1, max_length=200),
    limit: int = Query(SEARCH_LIMIT, ge=1, le=SEARCH_LIMIT),
    mods: ModStore = Depends(get_mod_store),
) -> list[ModResponse]:
    """Search titles and descriptions. Every term must match; title hits rank first."""
    return [ModResponse.from_mod(m) for m in mods.search_mods(query, limit=limit)]


@router.get("/mod/{mod_id}", response_model=ModResponse)
def get_mod(mod_id: str, mods: ModStore = Depends(get_mod_store)) -> ModResponse:
    mod = mods.get_mod(mod_id)
    if mod is None:
        raise NotFoundError("Mod not found.", code="mod_not_found")
    return ModResponse.from_mod(mod)
