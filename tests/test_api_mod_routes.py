"""
tests/test_api_mod_routes.py -- Integration tests for the mod endpoints.

Coverage:
  - PUT /mod: 204 on success, 400 on any missing/malformed field, 401 on bad
    credentials, 400 wins over 401 when both apply
  - PATCH /mod: 204 + version bump, 403 for a non-author, 404 for an unknown
    mod, 400 for a malformed modId or an edit that changes nothing
  - DELETE /mod: 204 for the author, 403 for anyone else
  - GET /mod/{id} and GET /mods/search return camelCase metadata
"""

from __future__ import annotations

import uuid

import pytest
from fastapi.testclient import TestClient

from mods.models import Mod


def _upload_fields(username: str, token: str, **overrides) -> dict:
    fields = {
        "username": username,
        "accessToken": token,
        "title": "Big Heads",
        "description": "Makes heads big.",
        "gameName": "Acorn Quest",
        "gameVersion": "1.4",
    }
    fields.update(overrides)
    return {k: v for k, v in fields.items() if v is not None}


def _file(data: bytes = b"PK\x03\x04 mod bytes") -> dict:
    return {"fileData": ("mod.zip", data, "application/zip")}


@pytest.fixture
def alice(make_user) -> tuple[str, str]:
    return make_user("alice")


@pytest.fixture
def bob(make_user) -> tuple[str, str]:
    return make_user("bob")


@pytest.fixture
def alice_mod(mod_store, alice) -> Mod:
    return mod_store.create_mod(
        Mod(
            author="alice",
            title="Big Heads",
            description="Makes heads big.",
            game_name="Acorn Quest",
            game_version_major=1,
            game_version_minor=4,
            file_data=b"v1",
        )
    )


class TestUpload:
    def test_upload_succeeds(self, api_client: TestClient, alice, mods_by_author) -> None:
        resp = api_client.put("/api/v1/mod", data=_upload_fields(*alice), files=_file())
        assert resp.status_code == 204, resp.text
        [mod] = mods_by_author("alice")
        assert mod.version == 1
        assert mod.game_version == "1.4"

    def test_upload_sanitizes_text(self, api_client: TestClient, alice, mods_by_author) -> None:
        fields = _upload_fields(*alice, title="  “Big” Heads — v2  ")
        assert api_client.put("/api/v1/mod", data=fields, files=_file()).status_code == 204
        [mod] = mods_by_author("alice")
        assert mod.title == '"Big" Heads - v2'

    @pytest.mark.parametrize("missing", ["title", "description", "gameName", "gameVersion", "accessToken"])
    def test_missing_field_is_400(self, api_client: TestClient, alice, missing) -> None:
        resp = api_client.put("/api/v1/mod", data=_upload_fields(*alice, **{missing: None}), files=_file())
        assert resp.status_code == 400
        assert missing in resp.json()["error"]["message"]

    def test_missing_file_is_400(self, api_client: TestClient, alice) -> None:
        resp = api_client.put("/api/v1/mod", data=_upload_fields(*alice), files={"unrelated": ("x", b"x")})
        assert resp.status_code == 400
        assert "fileData" in resp.json()["error"]["message"]

    @pytest.mark.parametrize("version", ["1", "1.4.2", "one.two", ""])
    def test_bad_game_version_is_400(self, api_client: TestClient, alice, version) -> None:
        resp = api_client.put("/api/v1/mod", data=_upload_fields(*alice, gameVersion=version), files=_file())
        assert resp.status_code == 400

    def test_blank_title_is_400(self, api_client: TestClient, alice) -> None:
        resp = api_client.put("/api/v1/mod", data=_upload_fields(*alice, title="   "), files=_file())
        assert resp.status_code == 400

    def test_bad_token_is_401(self, api_client: TestClient, alice) -> None:
        resp = api_client.put("/api/v1/mod", data=_upload_fields("alice", "wrong-token"), files=_file())
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Not authenticated; invalid username or access token."

    def test_malformed_request_with_bad_token_is_400(self, api_client: TestClient, alice) -> None:
        fields = _upload_fields("alice", "wrong-token", gameVersion="nope")
        resp = api_client.put("/api/v1/mod", data=fields, files=_file())
        assert resp.status_code == 400


class TestEdit:
    def test_author_edit_bumps_version(self, api_client: TestClient, alice, alice_mod, mod_store) -> None:
        resp = api_client.patch(
            "/api/v1/mod",
            data={"username": "alice", "accessToken": alice[1], "modId": alice_mod.id, "description": "Bigger."},
        )
        assert resp.status_code == 204, resp.text
        mod = mod_store.get_mod(alice_mod.id)
        assert mod.version == 2
        assert mod.description == "Bigger."

    def test_file_only_edit(self, api_client: TestClient, alice, alice_mod, mod_store) -> None:
        resp = api_client.patch(
            "/api/v1/mod",
            data={"username": "alice", "accessToken": alice[1], "modId": alice_mod.id},
            files=_file(b"v2"),
        )
        assert resp.status_code == 204, resp.text
        mod = mod_store.get_mod(alice_mod.id, include_file=True)
        assert mod.file_data == b"v2"
        assert mod.description == "Makes heads big."

    @pytest.mark.parametrize("extra", [{}, {"description": "   "}])
    def test_edit_without_changes_is_400(self, api_client: TestClient, alice, alice_mod, mod_store, extra) -> None:
        resp = api_client.patch(
            "/api/v1/mod",
            data={"username": "alice", "accessToken": alice[1], "modId": alice_mod.id, **extra},
        )
        assert resp.status_code == 400
        assert "at least one of fileData/description is required" in resp.json()["error"]["message"]
        assert mod_store.get_mod(alice_mod.id).version == 1

    def test_non_author_is_403(self, api_client: TestClient, bob, alice_mod, mod_store) -> None:
        resp = api_client.patch(
            "/api/v1/mod",
            data={"username": "bob", "accessToken": bob[1], "modId": alice_mod.id, "description": "mine now"},
        )
        assert resp.status_code == 403
        assert mod_store.get_mod(alice_mod.id).version == 1

    def test_unknown_mod_is_404(self, api_client: TestClient, alice) -> None:
        resp = api_client.patch(
            "/api/v1/mod",
            data={"username": "alice", "accessToken": alice[1], "modId": str(uuid.uuid4()), "description": "x"},
        )
        assert resp.status_code == 404

    def test_malformed_mod_id_is_400(self, api_client: TestClient, alice) -> None:
        resp = api_client.patch(
            "/api/v1/mod",
            data={"username": "alice", "accessToken": alice[1], "modId": "not-a-uuid", "description": "x"},
        )
        assert resp.status_code == 400
        assert "modId" in resp.json()["error"]["message"]

    def test_bad_credentials_is_401_even_for_owner_mod(self, api_client: TestClient, alice, alice_mod) -> None:
        resp = api_client.patch(
            "/api/v1/mod",
            data={"username": "alice", "accessToken": "stolen?", "modId": alice_mod.id, "description": "x"},
        )
        assert resp.status_code == 401


class TestDelete:
    def test_author_can_delete(self, api_client: TestClient, alice, alice_mod, mod_store) -> None:
        resp = api_client.request(
            "DELETE",
            "/api/v1/mod",
            data={"username": "alice", "accessToken": alice[1], "modId": alice_mod.id},
        )
        assert resp.status_code == 204, resp.text
        assert mod_store.get_mod(alice_mod.id) is None

    def test_non_author_is_403(self, api_client: TestClient, bob, alice_mod, mod_store) -> None:
        resp = api_client.request(
            "DELETE",
            "/api/v1/mod",
            data={"username": "bob", "accessToken": bob[1], "modId": alice_mod.id},
        )
        assert resp.status_code == 403
        assert mod_store.get_mod(alice_mod.id) is not None


class TestReads:
    def test_get_mod_metadata(self, api_client: TestClient, alice_mod) -> None:
        resp = api_client.get(f"/api/v1/mod/{alice_mod.id}")
        assert resp.status_code == 200
        data = resp.json()
        assert data["id"] == alice_mod.id
        assert data["gameName"] == "Acorn Quest"
        assert data["gameVersion"] == "1.4"
        assert data["version"] == 1
        assert "fileData" not in data

    def test_get_unknown_mod_is_404(self, api_client: TestClient) -> None:
        resp = api_client.get(f"/api/v1/mod/{uuid.uuid4()}")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "mod_not_found"

    def test_search(self, api_client: TestClient, alice_mod) -> None:
        resp = api_client.get("/api/v1/mods/search", params={"query": "heads"})
        assert resp.status_code == 200
        assert [m["id"] for m in resp.json()] == [alice_mod.id]

    def test_search_requires_query(self, api_client: TestClient) -> None:
        assert api_client.get("/api/v1/mods/search").status_code == 400
