"""
Unit tests for the authentication rate limiter.
"""

from unittest.mock import MagicMock

import pytest

from service_reporting.app.ratelimit.limiter import FixedWindowRateLimiter, client_id
from shared.errors import RateLimitError
from shared.test_helpers import FakeClock


class TestFixedWindowRateLimiter:
    """Test cases for FixedWindowRateLimiter."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def rate_limiter(self, clock):
        return FixedWindowRateLimiter(limit=3, window_seconds=60, clock=clock)

    @pytest.fixture
    def mock_request(self):
        """Mock FastAPI Request object."""
        request = MagicMock()
        request.headers = {}
        request.client.host = "127.0.0.1"
        return request

    @pytest.mark.asyncio
    async def test_allows_up_to_limit(self, rate_limiter):
        results = [await rate_limiter.check_rate_limit("127.0.0.1") for _ in range(3)]

        assert all(r["allowed"] for r in results)
        assert [r["remaining"] for r in results] == [2, 1, 0]
        assert results[-1]["current_count"] == 3

    @pytest.mark.asyncio
    async def test_blocks_over_limit(self, rate_limiter, clock):
        for _ in range(3):
            await rate_limiter.check_rate_limit("127.0.0.1")
        clock.advance(20)

        result = await rate_limiter.check_rate_limit("127.0.0.1")
        assert result["allowed"] is False
        assert result["current_count"] == 3
        assert result["retry_after"] == 40

    @pytest.mark.asyncio
    async def test_window_resets(self, rate_limiter, clock):
        for _ in range(4):
            await rate_limiter.check_rate_limit("127.0.0.1")
        clock.advance(60)

        result = await rate_limiter.check_rate_limit("127.0.0.1")
        assert result["allowed"] is True
        assert result["current_count"] == 1

    @pytest.mark.asyncio
    async def test_clients_and_scopes_are_independent(self, rate_limiter):
        for _ in range(3):
            await rate_limiter.check_rate_limit("10.0.0.1")

        assert (await rate_limiter.check_rate_limit("10.0.0.2"))["allowed"]
        assert (await rate_limiter.check_rate_limit("10.0.0.1", scope="other"))["allowed"]
        assert not (await rate_limiter.check_rate_limit("10.0.0.1"))["allowed"]

    @pytest.mark.asyncio
    async def test_reset(self, rate_limiter):
        for _ in range(3):
            await rate_limiter.check_rate_limit("127.0.0.1")
        rate_limiter.reset("127.0.0.1")
        assert (await rate_limiter.check_rate_limit("127.0.0.1"))["allowed"]

    @pytest.mark.asyncio
    async def test_enforce_raises_rate_limit_error(self, rate_limiter, mock_request):
        for _ in range(3):
            await rate_limiter.enforce(mock_request)

        with pytest.raises(RateLimitError) as exc_info:
            await rate_limiter.enforce(mock_request)
        assert exc_info.value.status_code == 429
        assert exc_info.value.details["retry_after"] == 60

    @pytest.mark.asyncio
    async def test_expired_windows_are_released(self, rate_limiter, clock):
        for n in range(1000):
            await rate_limiter.check_rate_limit(f"10.0.{n // 256}.{n % 256}")
        assert rate_limiter.tracked_windows() == 1000

        clock.advance(10_000)
        await rate_limiter.check_rate_limit("10.9.9.9")
        assert rate_limiter.tracked_windows() == 1

    @pytest.mark.asyncio
    async def test_forwarded_headers_ignored_by_default(self, rate_limiter, mock_request):
        for n in range(3):
            mock_request.headers = {"X-Forwarded-For": f"203.0.113.{n}"}
            await rate_limiter.enforce(mock_request)

        mock_request.headers = {"X-Forwarded-For": "203.0.113.99"}
        with pytest.raises(RateLimitError):
            await rate_limiter.enforce(mock_request)

    @pytest.mark.asyncio
    async def test_trusted_proxy_headers_separate_clients(self, clock, mock_request):
        limiter = FixedWindowRateLimiter(limit=1, window_seconds=60, clock=clock, trust_proxy_headers=True)
        mock_request.headers = {"X-Forwarded-For": "203.0.113.1"}
        await limiter.enforce(mock_request)

        mock_request.headers = {"X-Forwarded-For": "203.0.113.2"}
        assert (await limiter.enforce(mock_request))["allowed"]


class TestClientId:
    """Client address resolution."""

    def test_forwarded_for_wins(self):
        request = MagicMock()
        request.headers = {"X-Forwarded-For": "203.0.113.5, 10.0.0.1", "X-Real-IP": "10.0.0.9"}
        assert client_id(request, trust_proxy_headers=True) == "203.0.113.5"

    def test_real_ip(self):
        request = MagicMock()
        request.headers = {"X-Real-IP": "10.0.0.9"}
        assert client_id(request, trust_proxy_headers=True) == "10.0.0.9"

    def test_socket_address(self):
        request = MagicMock()
        request.headers = {}
        request.client.host = "127.0.0.1"
        assert client_id(request) == "127.0.0.1"

    def test_no_client(self):
        request = MagicMock()
        request.headers = {}
        request.client = None
        assert client_id(request) == "unknown"

    def test_proxy_headers_untrusted_by_default(self):
        request = MagicMock()
        request.headers = {"X-Forwarded-For": "203.0.113.5", "X-Real-IP": "10.0.0.9"}
        request.client.host = "127.0.0.1"
        assert client_id(request) == "127.0.0.1"
