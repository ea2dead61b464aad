"""
Declarative cache TTL table.

Fast-changing feeds get short TTLs, stable reports five minutes. Routes
absent from ``ROUTE_TTLS`` are never cached by the response cache.
"""

from typing import Dict, Optional

SHORT_TTL = 30
LIVE_TTL = 60
REPORT_TTL = 300

ROUTE_TTLS: Dict[str, int] = {
    "/api/ads/performance": REPORT_TTL,
    "/api/ads/costs": REPORT_TTL,
    "/api/analytics/overview": REPORT_TTL,
    "/api/analytics/traffic-sources": REPORT_TTL,
    "/api/analytics/user-behavior": REPORT_TTL,
    "/api/seo/overview": REPORT_TTL,
    "/api/seo/keywords": REPORT_TTL,
    "/api/seo/pages": REPORT_TTL,
    "/api/sales": REPORT_TTL,
    "/api/sales/summary": REPORT_TTL,
    "/api/appraisals": REPORT_TTL,
    "/api/appraisals/summary": REPORT_TTL,
    "/api/chat": LIVE_TTL,
    "/api/chat/summary": REPORT_TTL,
    "/api/chat/agent-performance": REPORT_TTL,
    "/api/errors/recent": SHORT_TTL,
    "/api/errors/count": REPORT_TTL,
    "/api/errors/by-component": REPORT_TTL,
    "/api/performance/status": LIVE_TTL,
    "/api/performance/metrics": REPORT_TTL,
    "/api/performance/daily": REPORT_TTL,
    "/api/config/display": REPORT_TTL,
}

# Domain-level cache-aside inside the handlers
OPERATION_TTLS: Dict[str, int] = {
    "ads.performance": REPORT_TTL,
    "ads.costs": REPORT_TTL,
    "analytics.overview": REPORT_TTL,
    "analytics.traffic_sources": REPORT_TTL,
    "analytics.user_behavior": REPORT_TTL,
    "seo.overview": REPORT_TTL,
    "seo.keywords": REPORT_TTL,
    "seo.pages": REPORT_TTL,
    "sales.records": REPORT_TTL,
    "sales.summary": REPORT_TTL,
    "appraisals.records": REPORT_TTL,
    "appraisals.summary": REPORT_TTL,
    "chat.records": LIVE_TTL,
    "chat.summary": REPORT_TTL,
    "chat.agent_performance": REPORT_TTL,
    "errors.recent": SHORT_TTL,
    "errors.count": REPORT_TTL,
    "errors.by_component": REPORT_TTL,
    "performance.status": LIVE_TTL,
    "performance.metrics": REPORT_TTL,
    "performance.daily": REPORT_TTL,
}


def route_ttl(path: str) -> Optional[int]:
    """TTL for a request path, or None when the route is not cacheable."""
    return ROUTE_TTLS.get(path.rstrip("/") or "/")


def operation_ttl(operation: str) -> int:
    try:
        return OPERATION_TTLS[operation]
    except KeyError:
        raise KeyError(f"No cache TTL declared for operation '{operation}'") from None
