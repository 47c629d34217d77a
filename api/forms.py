"""
api/forms.py -- Multipart form dependencies for the mod endpoints.

FastAPI's own Form()/File() validation would answer a missing field with its
generic 422 before the route runs. Here every raw field is declared Optional,
collected into the matching schema from api/models.py, and the first failure
is raised as one ValidationError (400). Nothing else about the request is
looked at until the form is valid, so a malformed request is always a 400,
even when its credentials are also wrong.

Upload size is enforced while reading: at most max_mod_file_bytes + 1 bytes
are ever pulled from the spooled upload.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import File, Form, UploadFile
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from api.models import ModCreateForm, ModDeleteForm, ModUpdateForm
from core.config import get_settings
from core.errors import ValidationError


def _read_upload(upload: Optional[UploadFile]) -> Optional[bytes]:
    if upload is None:
        return None
    limit = get_settings().max_mod_file_bytes
    data = upload.file.read(limit + 1)
    if len(data) > limit:
        raise ValidationError(f"Invalid field `fileData`: must be at most {limit} bytes.", code="file_too_large")
    return data


def _build(schema: type[BaseModel], fields: dict[str, Any]) -> Any:
    """Validate fields against schema; absent (None) fields count as missing."""
    try:
        return schema.model_validate({k: v for k, v in fields.items() if v is not None})
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        name = ".".join(str(part) for part in first["loc"]) or "form"
        raise ValidationError(f"Invalid field `{name}`: {first['msg']}") from exc


def mod_create_form(
    username: Optional[str] = Form(None),
    access_token: Optional[str] = Form(None, alias="accessToken"),
    file_data: Optional[UploadFile] = File(None, alias="fileData"),
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    game_name: Optional[str] = Form(None, alias="gameName"),
    game_version: Optional[str] = Form(None, alias="gameVersion"),
) -> ModCreateForm:
    return _build(
        ModCreateForm,
        {
            "username": username,
            "accessToken": access_token,
            "fileData": _read_upload(file_data),
            "title": title,
            "description": description,
            "gameName": game_name,
            "gameVersion": game_version,
        },
    )


def mod_update_form(
    username: Optional[str] = Form(None),
    access_token: Optional[str] = Form(None, alias="accessToken"),
    mod_id: Optional[str] = Form(None, alias="modId"),
    file_data: Optional[UploadFile] = File(None, alias="fileData"),
    description: Optional[str] = Form(None),
) -> ModUpdateForm:
    return _build(
        ModUpdateForm,
        {
            "username": username,
            "accessToken": access_token,
            "modId": mod_id,
            "fileData": _read_upload(file_data),
            "description": description,
        },
    )


def mod_delete_form(
    username: Optional[str] = Form(None),
    access_token: Optional[str] = Form(None, alias="accessToken"),
    mod_id: Optional[str] = Form(None, alias="modId"),
) -> ModDeleteForm:
    return _build(
        ModDeleteForm,
        {"username": username, "accessToken": access_token, "modId": mod_id},
    )
