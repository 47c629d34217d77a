"""Unit tests for auth/registration.py -- account registration flow.

Covers:
- happy path creates the account bound to the resolved Discord id
- username policy violations fail before Discord is contacted
- a token owned by a different Discord user is rejected (401)
- provider failures map to 401 (client-caused) or 500 (provider-caused)
- duplicate username / Discord id is a ConflictError
- N concurrent registrations of one username: exactly one succeeds
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from auth.discord import MalformedResponseError
from auth.registration import register_account, validate_username
from core.errors import ConflictError, UnauthorizedError, UpstreamFailureError, ValidationError


class TestValidateUsername:
    @pytest.mark.parametrize("name", ["abc", "Alice_01", "a-b-c", "x" * 32])
    def test_accepts_valid_names(self, name):
        assert validate_username(name) == name

    @pytest.mark.parametrize("name", ["", "ab", "x" * 33, "has space", "semi;colon", "émile"])
    def test_rejects_invalid_names(self, name):
        with pytest.raises(ValidationError):
            validate_username(name)


class TestRegisterAccount:
    def test_happy_path(self, account_store, resolver):
        resolver.add_user("1001", "Alice", access_token="discord-token-alice")
        account = register_account(account_store, resolver, "alice", "1001", "discord-token-alice")
        assert account.username == "alice"
        assert account_store.get_by_external_id("1001").username == "alice"

    def test_bad_username_never_calls_resolver(self, account_store, resolver):
        resolver.add_user("1001", "Alice", access_token="discord-token-alice")
        with pytest.raises(ValidationError):
            register_account(account_store, resolver, "a b", "1001", "discord-token-alice")
        assert resolver.resolve_calls == 0

    def test_identity_mismatch_is_unauthorized(self, account_store, resolver):
        resolver.add_user("1001", "Alice", access_token="discord-token-alice")
        with pytest.raises(UnauthorizedError) as excinfo:
            register_account(account_store, resolver, "mallory", "2002", "discord-token-alice")
        assert excinfo.value.code == "identity_mismatch"
        assert account_store.get_by_username("mallory") is None

    def test_rejected_discord_token_is_unauthorized(self, account_store, resolver):
        with pytest.raises(UnauthorizedError):
            register_account(account_store, resolver, "alice", "1001", "expired-token")

    def test_provider_failure_is_upstream_error(self, account_store, resolver, monkeypatch):
        def broken(_token):
            raise MalformedResponseError("no id")

        monkeypatch.setattr(resolver, "resolve", broken)
        with pytest.raises(UpstreamFailureError) as excinfo:
            register_account(account_store, resolver, "alice", "1001", "whatever")
        assert excinfo.value.status_code == 500

    def test_duplicate_username_conflicts(self, account_store, resolver):
        resolver.add_user("1001", "Alice", access_token="tok-1")
        resolver.add_user("2002", "Other Alice", access_token="tok-2")
        register_account(account_store, resolver, "alice", "1001", "tok-1")
        with pytest.raises(ConflictError):
            register_account(account_store, resolver, "alice", "2002", "tok-2")

    def test_duplicate_discord_user_conflicts(self, account_store, resolver):
        resolver.add_user("1001", "Alice", access_token="tok-1")
        register_account(account_store, resolver, "alice", "1001", "tok-1")
        with pytest.raises(ConflictError):
            register_account(account_store, resolver, "alice_alt", "1001", "tok-1")

    def test_concurrent_registration_has_one_winner(self, account_store, resolver):
        attempts = 8
        for i in range(attempts):
            resolver.add_user(f"ext-{i}", f"User {i}", access_token=f"tok-{i}")

        def attempt(i: int) -> str:
            try:
                register_account(account_store, resolver, "contested", f"ext-{i}", f"tok-{i}")
            except ConflictError:
                return "conflict"
            return "created"

        with ThreadPoolExecutor(max_workers=attempts) as pool:
            outcomes = list(pool.map(attempt, range(attempts)))

        assert outcomes.count("created") == 1
        assert outcomes.count("conflict") == attempts - 1
