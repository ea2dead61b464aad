"""
Domain handlers for the reporting endpoints.

Each operation fetches raw rows from the vendor client, adapts them into
records and builds a report, with cache-aside per operation keyed by the
operation cache key. Vendor failures surface as ``ExternalServiceError``
and anything else that escapes a builder as ``ServiceError``; neither is
cached.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from shared.config import ReportingConfig
from shared.errors import AccessLayerException, ExternalServiceError, ServiceError
from shared.logging import get_logger, log_context
from shared.metrics import MetricsCollector

from ..adapters import row_adapters as adapters
from ..adapters.vendor_client import VendorClient
from ..aggregation.engine import parse_day
from ..aggregation.records import Record
from ..auth.tokens import utc_now
from ..caching.keys import operation_cache_key
from ..caching.policies import operation_ttl
from ..caching.ttl_store import MISS, TTLCacheStore
from . import reports
from .validation import DateRange

MAIL_MAX_RESULTS = 500
RECENT_DEPLOYS = 5


class ReportingDataService:
    """Report operations with operation-level cache-aside."""

    def __init__(self,
                 vendor: VendorClient,
                 store: TTLCacheStore,
                 config: ReportingConfig,
                 metrics: Optional[MetricsCollector] = None,
                 now: Callable[[], datetime] = utc_now):
        self.vendor = vendor
        self.store = store
        self.config = config
        self.metrics = metrics
        self._now = now
        self.logger = get_logger("reporting.service")

    async def _cached(self,
                      operation: str,
                      compute: Callable[[], Awaitable[Any]],
                      period: Optional[DateRange] = None,
                      **filters: Any) -> Any:
        key = operation_cache_key(
            operation,
            period.start_date if period else None,
            period.end_date if period else None,
            **filters,
        )
        with log_context(cache_layer="operation", operation=operation):
            cached = self.store.get(key)
            if cached is not MISS:
                self._record_cache(hit=True)
                self.logger.debug("Operation cache hit")
                return cached

            self._record_cache(hit=False)
            try:
                result = await compute()
            except AccessLayerException:
                raise
            except Exception as e:
                self.logger.error("Report build failed", error=str(e), exc_info=True)
                raise ServiceError(f"Failed to build {operation}", details={"error": str(e)}) from e

            ttl = operation_ttl(operation)
            self.store.set(key, result, ttl)
            self.logger.debug("Operation cached", ttl=ttl)
            return result

    def _record_cache(self, hit: bool):
        if self.metrics:
            self.metrics.record_cache_access("operation", hit)

    async def _fetch(self, source: str, query: Dict[str, Any]) -> List[Any]:
        try:
            return await self.vendor.fetch_rows(source, query)
        except AccessLayerException:
            raise
        except Exception as e:
            self.logger.error("Vendor fetch failed", source=source, error=str(e))
            if self.metrics:
                self.metrics.record_upstream_error(source)
            raise ExternalServiceError(source, "fetch failed", details={"error": str(e)}) from e

    async def _sheet(self, spreadsheet_id: str, sheet_range: str) -> List[Any]:
        rows = await self._fetch("sheets", {"spreadsheetId": spreadsheet_id, "range": sheet_range})
        return adapters.data_rows(rows)

    # Ads

    async def _ads_records(self, report: str, period: DateRange, campaign_id: Optional[str]) -> List[Record]:
        rows = await self._fetch("ads", {
            "report": report,
            "startDate": period.start_date,
            "endDate": period.end_date,
            "campaignId": campaign_id,
        })
        return adapters.adapt(rows, adapters.ads_record)

    async def ads_performance(self, period: DateRange, campaign_id: Optional[str] = None) -> Dict[str, Any]:
        async def compute():
            records = await self._ads_records("performance", period, campaign_id)
            return reports.ads_performance_report(records, period.start_date, period.end_date)
        return await self._cached("ads.performance", compute, period, campaignId=campaign_id)

    async def ads_costs(self, period: DateRange, campaign_id: Optional[str] = None) -> Dict[str, Any]:
        async def compute():
            records = await self._ads_records("costs", period, campaign_id)
            return reports.ads_costs_report(records, period.start_date, period.end_date)
        return await self._cached("ads.costs", compute, period, campaignId=campaign_id)

    # Analytics

    async def _analytics_rows(self, period: DateRange, dimensions: List[str], metrics) -> List[Any]:
        return await self._fetch("analytics", {
            "startDate": period.start_date,
            "endDate": period.end_date,
            "dimensions": dimensions,
            "metrics": list(metrics),
        })

    async def analytics_overview(self, period: DateRange) -> Dict[str, Any]:
        async def compute():
            rows = await self._analytics_rows(period, ["date"], adapters.ANALYTICS_OVERVIEW_METRICS)
            records = adapters.adapt(rows, adapters.analytics_overview_record)
            return reports.analytics_overview_report(records, period.start_date, period.end_date)
        return await self._cached("analytics.overview", compute, period)

    async def traffic_sources(self, period: DateRange) -> List[Dict[str, Any]]:
        async def compute():
            rows = await self._analytics_rows(
                period, ["sessionSource", "sessionMedium"], adapters.ANALYTICS_TRAFFIC_METRICS
            )
            return reports.traffic_sources_report(adapters.adapt(rows, adapters.analytics_traffic_record))
        return await self._cached("analytics.traffic_sources", compute, period)

    async def user_behavior(self, period: DateRange) -> List[Dict[str, Any]]:
        async def compute():
            rows = await self._analytics_rows(
                period, ["pageTitle", "pageLocation", "deviceCategory"], adapters.ANALYTICS_BEHAVIOR_METRICS
            )
            return reports.user_behavior_report(adapters.adapt(rows, adapters.analytics_behavior_record))
        return await self._cached("analytics.user_behavior", compute, period)

    # Search

    async def _search_records(self, period: DateRange, dimension: str,
                              row_limit: Optional[int] = None) -> List[Record]:
        query: Dict[str, Any] = {
            "startDate": period.start_date,
            "endDate": period.end_date,
            "dimensions": [dimension],
        }
        if row_limit:
            query["rowLimit"] = row_limit
        rows = await self._fetch("search_console", query)
        return adapters.adapt(rows, adapters.search_record, [dimension])

    async def seo_overview(self, period: DateRange) -> Dict[str, Any]:
        async def compute():
            daily, devices, countries = await asyncio.gather(
                self._search_records(period, "date"),
                self._search_records(period, "device"),
                self._search_records(period, "country", reports.TOP_COUNTRIES),
            )
            return reports.seo_overview_report(daily, devices, countries, period.start_date, period.end_date)
        return await self._cached("seo.overview", compute, period)

    async def seo_keywords(self, period: DateRange) -> List[Dict[str, Any]]:
        async def compute():
            records = await self._search_records(period, "query", reports.TOP_SEARCH_ROWS)
            return reports.keywords_report(records)
        return await self._cached("seo.keywords", compute, period)

    async def seo_pages(self, period: DateRange) -> List[Dict[str, Any]]:
        async def compute():
            records = await self._search_records(period, "page", reports.TOP_SEARCH_ROWS)
            return reports.pages_report(records)
        return await self._cached("seo.pages", compute, period)

    # Sales

    async def _sales_records(self) -> List[Record]:
        rows = await self._sheet(self.config.sales_sheet_id, self.config.sales_sheet_range)
        return adapters.adapt(rows, adapters.sales_record)

    async def sales(self,
                    period: DateRange,
                    customer_email: Optional[str] = None,
                    customer_name: Optional[str] = None,
                    min_amount: Optional[float] = None,
                    max_amount: Optional[float] = None) -> List[Dict[str, Any]]:
        async def compute():
            filters = reports.sales_filters(customer_email, customer_name, min_amount, max_amount)
            return reports.sales_records_report(
                await self._sales_records(), period.start_date, period.end_date, filters
            )
        return await self._cached(
            "sales.records", compute, period,
            customerEmail=customer_email,
            customerName=customer_name,
            minAmount=min_amount,
            maxAmount=max_amount,
        )

    async def sales_summary(self, period: DateRange) -> Dict[str, Any]:
        async def compute():
            return reports.sales_summary_report(
                await self._sales_records(), period.start_date, period.end_date
            )
        return await self._cached("sales.summary", compute, period)

    # Appraisals

    async def _appraisal_records(self) -> List[Record]:
        pending, completed = await asyncio.gather(
            self._sheet(self.config.appraisals_sheet_id, self.config.appraisals_pending_range),
            self._sheet(self.config.appraisals_sheet_id, self.config.appraisals_completed_range),
        )
        return (adapters.adapt(pending, adapters.appraisal_record, "pending")
                + adapters.adapt(completed, adapters.appraisal_record, "completed"))

    async def appraisals(self, period: DateRange, status: Optional[str] = None) -> List[Dict[str, Any]]:
        async def compute():
            return reports.appraisals_records_report(
                await self._appraisal_records(), period.start_date, period.end_date, status
            )
        return await self._cached("appraisals.records", compute, period, status=status)

    async def appraisals_summary(self, period: DateRange) -> Dict[str, Any]:
        async def compute():
            return reports.appraisals_summary_report(
                await self._appraisal_records(), period.start_date, period.end_date
            )
        return await self._cached("appraisals.summary", compute, period)

    # Chat

    async def _chat_records(self, period: DateRange) -> List[Record]:
        """Normalized chat transcripts, cached for the list, summary and agent reports."""
        async def compute():
            before = parse_day(period.end_date) + timedelta(days=1)
            messages = await self._fetch("mail", {
                "q": f"to:{self.config.chat_mailbox} after:{period.start_date} before:{before.isoformat()}",
                "maxResults": MAIL_MAX_RESULTS,
            })
            return adapters.adapt(messages, adapters.chat_record)
        return await self._cached("chat.records", compute, period)

    async def chats(self, period: DateRange) -> List[Dict[str, Any]]:
        records = await self._chat_records(period)
        return reports.chat_records_report(records, period.start_date, period.end_date)

    async def chat_summary(self, period: DateRange) -> Dict[str, Any]:
        async def compute():
            records = await self._chat_records(period)
            return reports.chat_summary_report(records, period.start_date, period.end_date)
        return await self._cached("chat.summary", compute, period)

    async def agent_performance(self, period: DateRange) -> List[Dict[str, Any]]:
        async def compute():
            records = await self._chat_records(period)
            return reports.agent_performance_report(records, period.start_date, period.end_date)
        return await self._cached("chat.agent_performance", compute, period)

    # Error log

    async def _error_records(self) -> List[Record]:
        rows = await self._sheet(self.config.error_logs_sheet_id, self.config.error_logs_range)
        return adapters.adapt(rows, adapters.error_log_record)

    async def recent_errors(self, limit: int) -> List[Dict[str, Any]]:
        async def compute():
            return reports.recent_errors_report(await self._error_records(), limit)
        return await self._cached("errors.recent", compute, limit=limit)

    async def error_count(self, period: DateRange, severity: Optional[str] = None) -> Dict[str, Any]:
        async def compute():
            return reports.error_count_report(
                await self._error_records(), period.start_date, period.end_date, severity
            )
        return await self._cached("errors.count", compute, period, severity=severity)

    async def errors_by_component(self, period: DateRange) -> List[Dict[str, Any]]:
        async def compute():
            return reports.errors_by_component_report(
                await self._error_records(), period.start_date, period.end_date
            )
        return await self._cached("errors.by_component", compute, period)

    # Hosting

    async def _hosting(self, report: str, **params: Any) -> List[Any]:
        return await self._fetch("hosting", {"siteId": self.config.hosting_site_id, "report": report, **params})

    async def site_status(self) -> Dict[str, Any]:
        async def compute():
            site_rows, deploy_rows = await asyncio.gather(
                self._hosting("site"),
                self._hosting("deploys", limit=RECENT_DEPLOYS),
            )
            sites = adapters.adapt(site_rows, adapters.site_record)
            return reports.site_status_report(
                sites[0] if sites else None,
                adapters.adapt(deploy_rows, adapters.deploy_record),
                self._now().isoformat().replace("+00:00", "Z"),
            )
        return await self._cached("performance.status", compute)

    async def performance_metrics(self, period: DateRange) -> Dict[str, Any]:
        async def compute():
            window = {"from": period.start_date, "to": period.end_date}
            functions, bandwidth, builds = await asyncio.gather(
                self._hosting("functions", **window),
                self._hosting("bandwidth", **window),
                self._hosting("builds", **window),
            )
            return reports.performance_metrics_report(
                adapters.adapt(functions, adapters.function_usage_record),
                adapters.adapt(bandwidth, adapters.bandwidth_record),
                adapters.adapt(builds, adapters.build_record),
                period.start_date,
                period.end_date,
            )
        return await self._cached("performance.metrics", compute, period)

    async def daily_metrics(self, day: str) -> Dict[str, Any]:
        async def compute():
            rows = await self._hosting("traffic", **{"from": day})
            return reports.daily_metrics_report(adapters.adapt(rows, adapters.daily_traffic_record, day))
        return await self._cached("performance.daily", compute, day=day)
