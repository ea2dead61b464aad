"""
Unit tests for the token lifecycle manager.
"""

import asyncio

import jwt
import pytest
import pytest_asyncio

from service_reporting.app.auth.credential_store import InMemoryCredentialStore
from service_reporting.app.auth.tokens import (INVALID_ACCESS_TOKEN, INVALID_CREDENTIALS,
                                               INVALID_REFRESH_TOKEN, TokenLifecycleManager)
from shared.errors import AuthenticationError, AuthorizationError
from shared.metrics import MetricsCollector
from shared.test_helpers import FakeUtcClock, MockTokenGenerator, make_test_config

EMAIL = "ann@example.com"
PASSWORD = "correct-horse"


class TestTokenLifecycleManager:
    """Test cases for TokenLifecycleManager."""

    @pytest.fixture
    def config(self):
        return make_test_config()

    @pytest.fixture
    def clock(self):
        return FakeUtcClock()

    @pytest.fixture
    def store(self):
        return InMemoryCredentialStore(bcrypt_rounds=4)

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("token-test")

    @pytest.fixture
    def tokens(self, config, store, clock, metrics):
        return TokenLifecycleManager.from_config(config, store, metrics=metrics, clock=clock)

    @pytest_asyncio.fixture
    async def user(self, store):
        return await store.create_user("Ann", EMAIL, PASSWORD)

    @pytest.mark.asyncio
    async def test_login_issues_pair_and_stores_refresh_token(self, tokens, store, user, clock, config):
        session, logged_in = await tokens.login(EMAIL, PASSWORD)

        assert logged_in.id == user.id
        assert session.user_id == user.id
        assert await store.get_stored_refresh_token(user.id) == session.refresh_token
        assert (session.access_token_expiry - clock.now).total_seconds() == config.access_token_ttl_seconds
        assert (session.refresh_token_expiry - clock.now).total_seconds() == config.refresh_token_ttl_seconds

        claims = tokens.verify_access_token(session.access_token)
        assert claims["sub"] == user.id
        assert claims["type"] == "access"

    @pytest.mark.asyncio
    async def test_login_rejects_bad_credentials(self, tokens, user):
        with pytest.raises(AuthenticationError) as wrong_password:
            await tokens.login(EMAIL, "wrong-horse")
        with pytest.raises(AuthenticationError) as unknown_email:
            await tokens.login("nobody@example.com", PASSWORD)
        assert wrong_password.value.message == unknown_email.value.message == INVALID_CREDENTIALS

    @pytest.mark.asyncio
    async def test_login_rejects_inactive_account(self, tokens, store, user):
        await store.set_status(user.id, "suspended")
        with pytest.raises(AuthorizationError) as exc_info:
            await tokens.login(EMAIL, PASSWORD)
        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_second_login_revokes_previous_refresh_token(self, tokens, user):
        first, _ = await tokens.login(EMAIL, PASSWORD)
        await tokens.login(EMAIL, PASSWORD)
        with pytest.raises(AuthenticationError):
            await tokens.refresh(first.refresh_token)

    @pytest.mark.asyncio
    async def test_refresh_rotates_and_rejects_pre_rotation_token(self, tokens, store, user):
        original, _ = await tokens.login(EMAIL, PASSWORD)

        rotated = await tokens.refresh(original.refresh_token)
        assert rotated.refresh_token != original.refresh_token
        assert await store.get_stored_refresh_token(user.id) == rotated.refresh_token

        with pytest.raises(AuthenticationError) as exc_info:
            await tokens.refresh(original.refresh_token)
        assert exc_info.value.message == INVALID_REFRESH_TOKEN

        again = await tokens.refresh(rotated.refresh_token)
        assert tokens.verify_access_token(again.access_token)["sub"] == user.id

    @pytest.mark.asyncio
    async def test_concurrent_refresh_has_exactly_one_winner(self, tokens, user):
        session, _ = await tokens.login(EMAIL, PASSWORD)

        results = await asyncio.gather(
            tokens.refresh(session.refresh_token),
            tokens.refresh(session.refresh_token),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, AuthenticationError)]
        assert len(winners) == 1
        assert len(losers) == 1

        follow_up = await tokens.refresh(winners[0].refresh_token)
        assert follow_up.user_id == user.id

    @pytest.mark.asyncio
    async def test_expired_refresh_token_gets_same_error(self, tokens, user, clock, config):
        session, _ = await tokens.login(EMAIL, PASSWORD)
        clock.advance(config.refresh_token_ttl_seconds + 1)

        with pytest.raises(AuthenticationError) as exc_info:
            await tokens.refresh(session.refresh_token)
        assert exc_info.value.message == INVALID_REFRESH_TOKEN

    @pytest.mark.asyncio
    async def test_forged_and_wrong_kind_tokens_rejected(self, tokens, user, clock, config):
        session, _ = await tokens.login(EMAIL, PASSWORD)
        forged = MockTokenGenerator("x" * 40).generate(user.id, "refresh", clock.now)
        access_as_refresh = session.access_token
        wrong_type = MockTokenGenerator(config.jwt_refresh_secret).generate(user.id, "access", clock.now)

        for token in (forged, access_as_refresh, wrong_type, "not-a-jwt"):
            with pytest.raises(AuthenticationError) as exc_info:
                await tokens.refresh(token)
            assert exc_info.value.message == INVALID_REFRESH_TOKEN

    @pytest.mark.asyncio
    async def test_refresh_for_deactivated_user_rejected(self, tokens, store, user):
        session, _ = await tokens.login(EMAIL, PASSWORD)
        await store.set_status(user.id, "suspended")
        with pytest.raises(AuthenticationError):
            await tokens.refresh(session.refresh_token)

    @pytest.mark.asyncio
    async def test_access_token_expires(self, tokens, user, clock, config):
        session, _ = await tokens.login(EMAIL, PASSWORD)
        clock.advance(config.access_token_ttl_seconds - 1)
        assert tokens.verify_access_token(session.access_token)

        clock.advance(1)
        with pytest.raises(AuthenticationError) as exc_info:
            tokens.verify_access_token(session.access_token)
        assert exc_info.value.message == INVALID_ACCESS_TOKEN

    @pytest.mark.asyncio
    async def test_refresh_token_is_not_an_access_token(self, tokens, user):
        session, _ = await tokens.login(EMAIL, PASSWORD)
        with pytest.raises(AuthenticationError):
            tokens.verify_access_token(session.refresh_token)

    @pytest.mark.asyncio
    async def test_token_missing_claims_rejected(self, tokens, user, config, clock):
        token = jwt.encode({"sub": user.id, "type": "access"}, config.jwt_access_secret, algorithm="HS256")
        with pytest.raises(AuthenticationError):
            tokens.verify_access_token(token)

    @pytest.mark.asyncio
    async def test_logout_clears_refresh_token(self, tokens, store, user):
        session, _ = await tokens.login(EMAIL, PASSWORD)
        await tokens.logout(user.id)

        assert await store.get_stored_refresh_token(user.id) is None
        with pytest.raises(AuthenticationError):
            await tokens.refresh(session.refresh_token)

    @pytest.mark.asyncio
    async def test_token_events_recorded(self, tokens, user, metrics):
        session, _ = await tokens.login(EMAIL, PASSWORD)
        await tokens.refresh(session.refresh_token)
        with pytest.raises(AuthenticationError):
            await tokens.refresh(session.refresh_token)

        sample = metrics.registry.get_sample_value
        assert sample("token_events_total", {"event": "issued"}) == 1.0
        assert sample("token_events_total", {"event": "refreshed"}) == 1.0
        assert sample("token_events_total", {"event": "rejected"}) == 1.0
