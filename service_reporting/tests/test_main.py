"""
HTTP tests for the reporting service.
"""

from datetime import date

import pytest
from fastapi.testclient import TestClient

from service_reporting.app.adapters.vendor_client import StaticVendorClient, by_query_field
from service_reporting.app.auth.tokens import INVALID_CREDENTIALS
from service_reporting.app.domain.validation import DateRange
from service_reporting.app.main import create_app, envelope
from shared.errors import ExternalServiceError
from shared.test_helpers import ReportingDataFactory as factory, make_test_config

TODAY = date(2024, 1, 31)
PERIOD = {"startDate": "2024-01-01", "endDate": "2024-01-03"}
USER = {"name": "Ann", "email": "ann@example.com", "password": "correct-horse"}


def sales_vendor(config):
    return StaticVendorClient({
        "sheets": by_query_field("range", {
            config.sales_sheet_range: factory.sales_sheet([
                factory.sales_row("2024-01-01", "a@example.com", "100", name="Ann"),
                factory.sales_row("2024-01-02", "b@example.com", "50", name="Bob"),
            ]),
        }),
        "ads": [factory.ads_row("2024-01-02")],
    })


def login(client, headers=None):
    client.post("/api/auth/register", json=USER, headers=headers)
    response = client.post(
        "/api/auth/login",
        json={"email": USER["email"], "password": USER["password"]},
        headers=headers,
    )
    return response.json()


def test_envelope():
    assert envelope([1]) == {"success": True, "data": [1]}
    assert envelope({}, DateRange("2024-01-01", "2024-01-02"), filters={"a": None}) == {
        "success": True,
        "data": {},
        "period": {"startDate": "2024-01-01", "endDate": "2024-01-02"},
        "filters": {"a": None},
    }


class TestReportingService:
    """Test cases for the reporting HTTP surface."""

    @pytest.fixture
    def config(self):
        return make_test_config()

    @pytest.fixture
    def vendor(self, config):
        return sales_vendor(config)

    @pytest.fixture
    def client(self, config, vendor):
        app = create_app(config, vendor_client=vendor, today=lambda: TODAY)
        with TestClient(app) as client:
            yield client

    @pytest.fixture
    def auth_headers(self, client):
        return {"Authorization": f"Bearer {login(client)['token']}"}

    def test_health_check(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["service"] == "reporting"
        assert body["status"] == "ok"
        assert "cache" in body["dependencies"]

    def test_metrics_endpoint(self, client):
        client.get("/health")
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "http_requests_total" in response.text

    def test_request_id_header(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"

    def test_reports_require_token(self, client):
        response = client.get("/api/sales", params=PERIOD)
        assert response.status_code == 401
        assert response.json()["code"] == "AUTHENTICATION_ERROR"

    def test_register_and_login(self, client):
        registered = client.post("/api/auth/register", json=USER)
        assert registered.status_code == 201
        assert registered.json() == {"success": True, "message": "Registration successful"}

        response = client.post("/api/auth/login", json={"email": "ANN@example.com", "password": USER["password"]})
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["token"] and body["refreshToken"]
        assert body["user"]["email"] == "ann@example.com"
        assert "password_hash" not in body["user"]

    def test_duplicate_registration_conflicts(self, client):
        client.post("/api/auth/register", json=USER)
        response = client.post("/api/auth/register", json=USER)
        assert response.status_code == 409

    def test_invalid_registration_body(self, client):
        response = client.post("/api/auth/register", json={**USER, "email": "nope"})
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_bad_credentials(self, client):
        client.post("/api/auth/register", json=USER)
        response = client.post("/api/auth/login", json={"email": USER["email"], "password": "wrong-horse"})
        assert response.status_code == 401
        assert response.json()["message"] == INVALID_CREDENTIALS

    def test_refresh_rotates_tokens(self, client):
        tokens = login(client)

        response = client.post("/api/auth/refresh-token", json={"refreshToken": tokens["refreshToken"]})
        assert response.status_code == 200
        rotated = response.json()
        assert rotated["refreshToken"] != tokens["refreshToken"]

        replay = client.post("/api/auth/refresh-token", json={"refreshToken": tokens["refreshToken"]})
        assert replay.status_code == 401

    def test_refresh_requires_token(self, client):
        response = client.post("/api/auth/refresh-token")
        assert response.status_code == 400
        assert response.json()["message"] == "Refresh token is required"

    def test_logout_revokes_refresh_token(self, client):
        tokens = login(client)
        headers = {"Authorization": f"Bearer {tokens['token']}"}

        assert client.post("/api/auth/logout", headers=headers).json()["success"] is True
        response = client.post("/api/auth/refresh-token", json={"refreshToken": tokens["refreshToken"]})
        assert response.status_code == 401

    def test_auth_endpoints_rate_limited(self, client):
        statuses = [
            client.post("/api/auth/login", json={"email": "x@example.com", "password": "p"}).status_code
            for _ in range(6)
        ]
        assert statuses == [401] * 5 + [429]

        # Spoofed proxy headers do not buy a fresh window
        spoofed = client.post("/api/auth/register", json=USER, headers={"X-Forwarded-For": "198.51.100.8"})
        assert spoofed.status_code == 429

    def test_rate_limit_behind_trusted_proxy(self, vendor):
        config = make_test_config(auth_trust_proxy_headers=True)
        with TestClient(create_app(config, vendor_client=vendor, today=lambda: TODAY)) as client:
            headers = {"X-Forwarded-For": "198.51.100.7"}
            for _ in range(5):
                client.post("/api/auth/login", json={"email": "x@example.com", "password": "p"}, headers=headers)
            assert client.post("/api/auth/register", json=USER, headers=headers).status_code == 429

            other = client.post("/api/auth/register", json=USER, headers={"X-Forwarded-For": "198.51.100.8"})
            assert other.status_code == 201

    def test_sales_envelope(self, client, auth_headers):
        response = client.get("/api/sales", params={**PERIOD, "minAmount": "60"}, headers=auth_headers)
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["period"] == PERIOD
        assert body["filters"] == {
            "customerEmail": None,
            "customerName": None,
            "minAmount": 60.0,
            "maxAmount": None,
        }
        assert [r["customerEmail"] for r in body["data"]] == ["a@example.com"]

    def test_repeat_request_served_from_response_cache(self, client, auth_headers, vendor):
        first = client.get("/api/sales/summary", params=PERIOD, headers=auth_headers)
        second = client.get("/api/sales/summary", params=dict(reversed(list(PERIOD.items()))), headers=auth_headers)

        assert first.headers["X-Cache"] == "MISS"
        assert second.headers["X-Cache"] == "HIT"
        assert second.json() == first.json()
        assert len(vendor.calls_for("sheets")) == 1

    def test_cached_response_still_requires_token(self, client, auth_headers):
        client.get("/api/sales/summary", params=PERIOD, headers=auth_headers)
        assert client.get("/api/sales/summary", params=PERIOD).status_code == 401

    @pytest.mark.parametrize("params, message", [
        ({"endDate": "2024-01-03"}, "Start date is required"),
        ({"startDate": "2024/01/01", "endDate": "2024-01-03"}, "Start date must be in YYYY-MM-DD format"),
        ({"startDate": "2024-01-01", "endDate": "2024-02-01"}, "End date cannot be in the future"),
        ({"startDate": "2024-01-03", "endDate": "2024-01-01"}, "End date must be after start date"),
    ])
    def test_invalid_period(self, client, auth_headers, params, message):
        response = client.get("/api/ads/performance", params=params, headers=auth_headers)
        assert response.status_code == 400
        assert response.json() == {"success": False, "code": "VALIDATION_ERROR", "message": message}

    def test_invalid_filters(self, client, auth_headers):
        amount = client.get("/api/sales", params={**PERIOD, "maxAmount": "lots"}, headers=auth_headers)
        assert amount.json()["message"] == "maxAmount must be a number"

        status = client.get("/api/appraisals", params={**PERIOD, "status": "archived"}, headers=auth_headers)
        assert status.status_code == 400

        limit = client.get("/api/errors/recent", params={"limit": "0"}, headers=auth_headers)
        assert limit.status_code == 400

    def test_report_routes_respond(self, client, auth_headers):
        routes = [
            "/api/ads/performance", "/api/ads/costs",
            "/api/analytics/overview", "/api/analytics/traffic-sources", "/api/analytics/user-behavior",
            "/api/seo/overview", "/api/seo/keywords", "/api/seo/pages",
            "/api/appraisals", "/api/appraisals/summary",
            "/api/chat", "/api/chat/summary", "/api/chat/agent-performance",
            "/api/errors/count", "/api/errors/by-component", "/api/performance/metrics",
        ]
        for route in routes:
            response = client.get(route, params=PERIOD, headers=auth_headers)
            assert response.status_code == 200, route
            assert response.json()["period"] == PERIOD

        recent = client.get("/api/errors/recent", headers=auth_headers)
        assert recent.json() == {"success": True, "data": []}

    def test_site_status_and_daily_metrics(self, client, auth_headers):
        status = client.get("/api/performance/status", headers=auth_headers)
        assert status.status_code == 200
        assert status.json()["data"]["isLive"] is False

        daily = client.get("/api/performance/daily", params={"date": "2024-01-30"}, headers=auth_headers)
        assert daily.json()["date"] == "2024-01-30"
        assert daily.json()["data"]["bandwidth"] == "0 B"

        missing = client.get("/api/performance/daily", headers=auth_headers)
        assert missing.status_code == 400
        assert missing.json()["message"] == "Date is required"

        future = client.get("/api/performance/daily", params={"date": "2024-02-01"}, headers=auth_headers)
        assert future.json()["message"] == "Date cannot be in the future"

    def test_display_settings_update_replaces_cached_read(self, client, auth_headers):
        first = client.get("/api/config/display", headers=auth_headers)
        assert first.json()["settings"]["theme"] == "light"
        assert first.json()["lastUpdated"] is None
        assert client.get("/api/config/display", headers=auth_headers).headers["X-Cache"] == "HIT"

        updated = client.post("/api/config/display", json={"theme": "dark", "itemsPerPage": 50}, headers=auth_headers)
        assert updated.status_code == 200
        assert updated.json()["message"] == "Configuration settings updated successfully"
        assert updated.json()["lastUpdated"] is not None

        after = client.get("/api/config/display", headers=auth_headers)
        assert after.headers["X-Cache"] == "MISS"
        assert after.json()["settings"]["theme"] == "dark"
        assert after.json()["settings"]["itemsPerPage"] == 50
        assert after.json()["settings"]["language"] == "en"

    @pytest.mark.parametrize("body", [
        {"theme": "neon"},
        {"itemsPerPage": 500},
        {"language": "de"},
        {"fontSize": 12},
    ])
    def test_invalid_display_settings(self, client, auth_headers, body):
        response = client.post("/api/config/display", json=body, headers=auth_headers)
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_display_settings_require_token(self, client):
        assert client.post("/api/config/display", json={"theme": "dark"}).status_code == 401


class TestUpstreamFailures:
    """Failed reports are reported as errors and never cached."""

    def test_failure_not_cached(self):
        config = make_test_config()
        attempts = []

        def flaky_ads(query):
            attempts.append(query)
            if len(attempts) == 1:
                raise ExternalServiceError("ads", "status 503")
            return [factory.ads_row("2024-01-02")]

        app = create_app(config, vendor_client=StaticVendorClient({"ads": flaky_ads}), today=lambda: TODAY)
        with TestClient(app) as client:
            headers = {"Authorization": f"Bearer {login(client)['token']}"}

            failed = client.get("/api/ads/performance", params=PERIOD, headers=headers)
            assert failed.status_code == 500
            assert failed.json() == {
                "success": False,
                "code": "EXTERNAL_SERVICE_ERROR",
                "message": "Internal server error",
            }
            assert "X-Cache" not in failed.headers

            recovered = client.get("/api/ads/performance", params=PERIOD, headers=headers)
            assert recovered.status_code == 200
            assert recovered.headers["X-Cache"] == "MISS"
            assert recovered.json()["data"]["summary"]["totalClicks"] == 10
            assert len(attempts) == 2

    def test_development_exposes_details(self):
        config = make_test_config(env="development")

        def broken(query):
            raise ExternalServiceError("ads", "status 503")

        app = create_app(config, vendor_client=StaticVendorClient({"ads": broken}), today=lambda: TODAY)
        with TestClient(app) as client:
            headers = {"Authorization": f"Bearer {login(client)['token']}"}
            response = client.get("/api/ads/costs", params=PERIOD, headers=headers)
            assert response.json()["message"] == "ads: status 503"
