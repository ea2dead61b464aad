"""
Unit tests for the in-memory credential store.
"""

import asyncio

import pytest

from service_reporting.app.auth.credential_store import InMemoryCredentialStore
from shared.errors import ConflictError


class TestInMemoryCredentialStore:
    """Test cases for InMemoryCredentialStore."""

    @pytest.fixture
    def store(self):
        return InMemoryCredentialStore(bcrypt_rounds=4)

    @pytest.mark.asyncio
    async def test_create_and_find_user_case_insensitively(self, store):
        user = await store.create_user("Ann", "Ann@Example.com", "correct-horse")

        found = await store.find_user("ann@example.COM")
        assert found == user
        assert user.email == "ann@example.com"
        assert user.public() == {"id": user.id, "name": "Ann", "email": "ann@example.com"}
        assert await store.get_user(user.id) == user

    @pytest.mark.asyncio
    async def test_password_is_hashed(self, store):
        user = await store.create_user("Ann", "ann@example.com", "correct-horse")
        assert user.password_hash != b"correct-horse"
        assert store.verify_password(user, "correct-horse")
        assert not store.verify_password(user, "wrong-horse")

    @pytest.mark.asyncio
    async def test_duplicate_email_conflicts(self, store):
        await store.create_user("Ann", "ann@example.com", "correct-horse")
        with pytest.raises(ConflictError) as exc_info:
            await store.create_user("Other", "ANN@example.com", "another-pass")
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_unknown_user(self, store):
        assert await store.find_user("nobody@example.com") is None
        assert await store.get_user("missing") is None

    @pytest.mark.asyncio
    async def test_set_status(self, store):
        user = await store.create_user("Ann", "ann@example.com", "correct-horse")
        await store.set_status(user.id, "suspended")
        assert not (await store.get_user(user.id)).is_active

    @pytest.mark.asyncio
    async def test_save_overwrites_refresh_token(self, store):
        await store.save_refresh_token("u1", "first")
        await store.save_refresh_token("u1", "second")
        assert await store.get_stored_refresh_token("u1") == "second"

    @pytest.mark.asyncio
    async def test_compare_and_swap(self, store):
        await store.save_refresh_token("u1", "current")

        assert await store.compare_and_swap_refresh_token("u1", "stale", "next") is False
        assert await store.get_stored_refresh_token("u1") == "current"

        assert await store.compare_and_swap_refresh_token("u1", "current", "next") is True
        assert await store.get_stored_refresh_token("u1") == "next"

    @pytest.mark.asyncio
    async def test_compare_and_swap_without_stored_token(self, store):
        assert await store.compare_and_swap_refresh_token("u1", "anything", "next") is False

    @pytest.mark.asyncio
    async def test_concurrent_swaps_have_one_winner(self, store):
        await store.save_refresh_token("u1", "current")
        results = await asyncio.gather(
            store.compare_and_swap_refresh_token("u1", "current", "a"),
            store.compare_and_swap_refresh_token("u1", "current", "b"),
        )
        assert sorted(results) == [False, True]

    @pytest.mark.asyncio
    async def test_clear_refresh_token(self, store):
        await store.save_refresh_token("u1", "current")
        await store.clear_refresh_token("u1")
        await store.clear_refresh_token("u1")
        assert await store.get_stored_refresh_token("u1") is None
