"""
Reporting service.

Serves aggregated reports over advertising, analytics, search, sales,
appraisal, chat, error-log and site hosting data, plus dashboard display
settings, behind bearer-token authentication and a response cache.
"""

import time
from datetime import date, datetime
from typing import Any, Callable, Dict, Optional

from fastapi import Depends, Query, Request

from shared.base_service import BaseService
from shared.config import ReportingConfig
from shared.errors import ValidationError

from .adapters.vendor_client import HttpVendorClient, StaticVendorClient, VendorClient
from .auth.credential_store import CredentialStore, InMemoryCredentialStore
from .auth.middleware import AuthGuardMiddleware
from .auth.tokens import TokenLifecycleManager, utc_now
from .caching.keys import request_cache_key
from .caching.response_cache import ResponseCacheMiddleware
from .caching.ttl_store import TTLCacheStore
from .domain.display import DisplaySettingsStore, DisplaySettingsUpdate
from .domain.service import ReportingDataService
from .domain.validation import (
    DateRange,
    DateRangeQuery,
    LoginRequest,
    RefreshTokenRequest,
    RegisterRequest,
    parse_amount,
    parse_appraisal_status,
    parse_limit,
    utc_today,
    validate_day,
)
from .ratelimit.limiter import FixedWindowRateLimiter


def envelope(data: Any, period: Optional[DateRange] = None, **extra: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True, "data": data}
    if period is not None:
        body["period"] = period.period()
    body.update(extra)
    return body


class ReportingService(BaseService):
    """Reporting API service implementation."""

    def __init__(self,
                 config: Optional[ReportingConfig] = None,
                 vendor_client: Optional[VendorClient] = None,
                 credential_store: Optional[CredentialStore] = None,
                 cache_store: Optional[TTLCacheStore] = None,
                 today: Callable[[], date] = utc_today,
                 token_clock: Callable[[], datetime] = utc_now,
                 rate_limit_clock: Callable[[], float] = time.monotonic):
        self._vendor_client = vendor_client
        self._credential_store = credential_store
        self._cache_store = cache_store
        self._today = today
        self._token_clock = token_clock
        self._rate_limit_clock = rate_limit_clock
        super().__init__("reporting", config)

    def _setup_components(self):
        self.cache_store = self._cache_store or TTLCacheStore(
            sweep_interval_seconds=self.config.cache_sweep_interval_seconds
        )
        self.credential_store = self._credential_store or InMemoryCredentialStore(
            bcrypt_rounds=self.config.bcrypt_rounds
        )
        self.tokens = TokenLifecycleManager.from_config(
            self.config, self.credential_store, metrics=self.metrics, clock=self._token_clock
        )
        self.rate_limiter = FixedWindowRateLimiter(
            self.config.auth_rate_limit_requests,
            self.config.auth_rate_limit_window_seconds,
            clock=self._rate_limit_clock,
            trust_proxy_headers=self.config.auth_trust_proxy_headers,
        )
        self.vendor_client = self._vendor_client or self._build_vendor_client()
        self.data = ReportingDataService(
            self.vendor_client, self.cache_store, self.config, metrics=self.metrics, now=self._token_clock
        )
        self.display_settings = DisplaySettingsStore(clock=self._token_clock)
        self.date_range = DateRangeQuery(today=self._today)

    def _build_vendor_client(self) -> VendorClient:
        if not self.config.vendor_base_url:
            self.logger.warning("No vendor base URL configured, serving empty reports")
            return StaticVendorClient()
        return HttpVendorClient(
            self.config.vendor_base_url,
            timeout=self.config.vendor_timeout_seconds,
            retry_attempts=self.config.vendor_retry_attempts,
            failure_threshold=self.config.vendor_failure_threshold,
            recovery_timeout=self.config.vendor_recovery_timeout_seconds,
            metrics=self.metrics,
        )

    def _setup_service_middleware(self):
        # Added first so it sits inside the auth guard
        self.app.add_middleware(ResponseCacheMiddleware, store=self.cache_store, metrics=self.metrics)
        self.app.add_middleware(AuthGuardMiddleware, tokens=self.tokens)

    async def on_startup(self):
        await self.cache_store.start()

    async def on_shutdown(self):
        await self.cache_store.stop()
        await self.vendor_client.aclose()

    async def _check_dependencies(self) -> Dict[str, Any]:
        dependencies: Dict[str, Any] = {"cache": self.cache_store.stats()}
        if isinstance(self.vendor_client, HttpVendorClient):
            dependencies["vendor"] = self.vendor_client.get_breaker_states()
        return dependencies

    def _setup_service_routes(self):
        self._setup_auth_routes()
        self._setup_marketing_routes()
        self._setup_business_routes()
        self._setup_operations_routes()
        self._setup_config_routes()

    def _setup_auth_routes(self):
        throttled = [Depends(self.rate_limiter.enforce)]

        @self.app.post("/api/auth/register", status_code=201, dependencies=throttled)
        async def register(body: RegisterRequest):
            user = await self.credential_store.create_user(body.name, body.email, body.password)
            self.logger.info("User registered", user_id=user.id)
            return {"success": True, "message": "Registration successful"}

        @self.app.post("/api/auth/login", dependencies=throttled)
        async def login(body: LoginRequest):
            session, user = await self.tokens.login(body.email, body.password)
            return {
                "success": True,
                "token": session.access_token,
                "refreshToken": session.refresh_token,
                "user": user.public(),
            }

        @self.app.post("/api/auth/refresh-token", dependencies=throttled)
        async def refresh_token(body: Optional[RefreshTokenRequest] = None):
            if body is None or not body.refreshToken:
                raise ValidationError("Refresh token is required")
            session = await self.tokens.refresh(body.refreshToken)
            return {
                "success": True,
                "token": session.access_token,
                "refreshToken": session.refresh_token,
            }

        @self.app.post("/api/auth/logout")
        async def logout(request: Request):
            await self.tokens.logout(request.state.user_info["user_id"])
            return {"success": True, "message": "Logged out"}

    def _setup_marketing_routes(self):
        period_dependency = Depends(self.date_range)

        @self.app.get("/api/ads/performance")
        async def ads_performance(period: DateRange = period_dependency,
                                  campaignId: Optional[str] = Query(None)):
            return envelope(await self.data.ads_performance(period, campaignId or None), period)

        @self.app.get("/api/ads/costs")
        async def ads_costs(period: DateRange = period_dependency,
                            campaignId: Optional[str] = Query(None)):
            return envelope(await self.data.ads_costs(period, campaignId or None), period)

        @self.app.get("/api/analytics/overview")
        async def analytics_overview(period: DateRange = period_dependency):
            return envelope(await self.data.analytics_overview(period), period)

        @self.app.get("/api/analytics/traffic-sources")
        async def traffic_sources(period: DateRange = period_dependency):
            return envelope(await self.data.traffic_sources(period), period)

        @self.app.get("/api/analytics/user-behavior")
        async def user_behavior(period: DateRange = period_dependency):
            return envelope(await self.data.user_behavior(period), period)

        @self.app.get("/api/seo/overview")
        async def seo_overview(period: DateRange = period_dependency):
            return envelope(await self.data.seo_overview(period), period)

        @self.app.get("/api/seo/keywords")
        async def seo_keywords(period: DateRange = period_dependency):
            return envelope(await self.data.seo_keywords(period), period)

        @self.app.get("/api/seo/pages")
        async def seo_pages(period: DateRange = period_dependency):
            return envelope(await self.data.seo_pages(period), period)

    def _setup_business_routes(self):
        period_dependency = Depends(self.date_range)

        @self.app.get("/api/sales")
        async def sales(period: DateRange = period_dependency,
                        customerEmail: Optional[str] = Query(None),
                        customerName: Optional[str] = Query(None),
                        minAmount: Optional[str] = Query(None),
                        maxAmount: Optional[str] = Query(None)):
            min_amount = parse_amount(minAmount, "minAmount")
            max_amount = parse_amount(maxAmount, "maxAmount")
            records = await self.data.sales(
                period,
                customer_email=customerEmail or None,
                customer_name=customerName or None,
                min_amount=min_amount,
                max_amount=max_amount,
            )
            filters = {
                "customerEmail": customerEmail or None,
                "customerName": customerName or None,
                "minAmount": min_amount,
                "maxAmount": max_amount,
            }
            return envelope(records, period, filters=filters)

        @self.app.get("/api/sales/summary")
        async def sales_summary(period: DateRange = period_dependency):
            return envelope(await self.data.sales_summary(period), period)

        @self.app.get("/api/appraisals")
        async def appraisals(period: DateRange = period_dependency,
                             status: Optional[str] = Query(None)):
            return envelope(await self.data.appraisals(period, parse_appraisal_status(status)), period)

        @self.app.get("/api/appraisals/summary")
        async def appraisals_summary(period: DateRange = period_dependency):
            return envelope(await self.data.appraisals_summary(period), period)

        @self.app.get("/api/chat")
        async def chats(period: DateRange = period_dependency):
            return envelope(await self.data.chats(period), period)

        @self.app.get("/api/chat/summary")
        async def chat_summary(period: DateRange = period_dependency):
            return envelope(await self.data.chat_summary(period), period)

        @self.app.get("/api/chat/agent-performance")
        async def agent_performance(period: DateRange = period_dependency):
            return envelope(await self.data.agent_performance(period), period)

    def _setup_operations_routes(self):
        @self.app.get("/api/errors/recent")
        async def recent_errors(limit: Optional[str] = Query(None)):
            count = parse_limit(limit, self.config.recent_errors_limit)
            return envelope(await self.data.recent_errors(count))

        @self.app.get("/api/errors/count")
        async def error_count(period: DateRange = Depends(self.date_range),
                              severity: Optional[str] = Query(None)):
            return envelope(await self.data.error_count(period, severity or None), period)

        @self.app.get("/api/errors/by-component")
        async def errors_by_component(period: DateRange = Depends(self.date_range)):
            return envelope(await self.data.errors_by_component(period), period)

        @self.app.get("/api/performance/status")
        async def site_status():
            return envelope(await self.data.site_status())

        @self.app.get("/api/performance/metrics")
        async def performance_metrics(period: DateRange = Depends(self.date_range)):
            return envelope(await self.data.performance_metrics(period), period)

        @self.app.get("/api/performance/daily")
        async def daily_metrics(date: Optional[str] = Query(None)):
            day = validate_day(date, self._today())
            return envelope(await self.data.daily_metrics(day), date=day)

    def _setup_config_routes(self):
        @self.app.get("/api/config/display")
        async def display_settings():
            settings = await self.display_settings.get()
            return {"success": True, "settings": settings, "lastUpdated": settings["updatedAt"]}

        @self.app.post("/api/config/display")
        async def update_display_settings(request: Request, body: DisplaySettingsUpdate):
            settings = await self.display_settings.update(body, request.state.user_info["user_id"])
            # Drop the cached read so the next GET sees the change
            self.cache_store.delete(request_cache_key("/api/config/display"))
            return {
                "success": True,
                "message": "Configuration settings updated successfully",
                "settings": settings,
                "lastUpdated": settings["updatedAt"],
            }


def create_app(config: Optional[ReportingConfig] = None, **components: Any):
    """Create FastAPI application."""
    service = ReportingService(config, **components)
    return service.app


if __name__ == "__main__":
    service = ReportingService()
    service.run()
