"""
Report builders.

Each builder takes normalized records plus the requested period and
returns the client-facing payload. Empty input always yields the same
shape as populated input, with zero totals and zero-filled series.
"""

from typing import Any, Dict, List, Optional, Sequence

from ..aggregation.engine import (Contains, DimensionGroup, Equals, Filter, Range, RateSpec,
                                  TimeBucket, bucket_by_date, filter_records, group_by_dimension,
                                  rank, round_money, round_number, summarize)
from ..aggregation.records import Record

MINUTES = 1 / 60

# Ads
ADS_METRICS = ("clicks", "impressions", "cost", "conversions")
ADS_RATES = (
    RateSpec("ctr", "clicks", "impressions", scale=100),
    RateSpec("averageCpc", "cost", "clicks"),
    RateSpec("conversionRate", "conversions", "clicks", scale=100),
)
COST_METRICS = ("cost", "conversions")
COST_RATES = (RateSpec("costPerConversion", "cost", "conversions"),)

# Analytics
OVERVIEW_METRICS = (
    "totalUsers", "newUsers", "activeUsers", "pageViews",
    "sessions", "sessionDurationTotal", "bouncedSessions",
)
SESSION_RATES = (
    RateSpec("avgSessionDuration", "sessionDurationTotal", "sessions", scale=MINUTES),
    RateSpec("bounceRate", "bouncedSessions", "sessions", scale=100),
)
TRAFFIC_METRICS = ("users", "sessions", "pageViews", "bouncedSessions")
BEHAVIOR_METRICS = ("pageViews", "sessions", "sessionDurationTotal", "bouncedSessions", "engagedSessions")
BEHAVIOR_RATES = SESSION_RATES + (
    RateSpec("engagementRate", "engagedSessions", "sessions", scale=100),
)

# Search
SEARCH_METRICS = ("clicks", "impressions", "positionWeighted")
SEARCH_RATES = (
    RateSpec("ctr", "clicks", "impressions", scale=100),
    RateSpec("position", "positionWeighted", "impressions"),
)
TOP_COUNTRIES = 10
TOP_SEARCH_ROWS = 100

# Sales
SALES_METRICS = ("amount",)
SALES_RATES = (RateSpec("averageTransactionAmount", "amount", "count"),)
TOP_CUSTOMERS = 10

# Appraisals
APPRAISAL_METRICS = ("completed", "pending", "completedValue")
APPRAISAL_RATES = (
    RateSpec("completionRate", "completed", "count", scale=100),
    RateSpec("averageAppraisalValue", "completedValue", "completed"),
)

# Chat
CHAT_METRICS = (
    "chats", "messageCount", "agentMessages", "duration",
    "firstResponseTime", "firstResponseCount", "responseTimeTotal", "responseCount",
)
CHAT_RATES = (
    RateSpec("averageMessages", "messageCount", "chats"),
    RateSpec("averageDuration", "duration", "chats"),
    RateSpec("averageFirstResponseTime", "firstResponseTime", "firstResponseCount"),
    RateSpec("averageResponseTime", "responseTimeTotal", "responseCount"),
)
AGENT_RATES = (
    RateSpec("averageMessages", "agentMessages", "chats"),
    RateSpec("averageFirstResponseTime", "firstResponseTime", "firstResponseCount"),
    RateSpec("averageResponseTime", "responseTimeTotal", "responseCount"),
)

# Hosting
BYTE_UNITS = ("B", "KB", "MB", "GB", "TB")
FUNCTION_METRICS = ("invocations", "errors", "timeouts", "executionTimeTotal")
FUNCTION_RATES = (RateSpec("averageExecutionTime", "executionTimeTotal", "invocations"),)
BANDWIDTH_METRICS = ("totalBytes", "cdnBytes", "originBytes")
BUILD_METRICS = ("builds", "successful", "failed", "buildTime")
BUILD_RATES = (RateSpec("averageBuildTime", "buildTime", "builds"),)
DAILY_TRAFFIC_METRICS = ("pageViews", "visitors", "bandwidthBytes", "requests")
PERCENTILES = ("p50", "p90", "p99")


def _int(value: float) -> int:
    return int(round_number(value, 0))


def _totals(group: DimensionGroup, name: str) -> float:
    return group.totals.get(name, 0)


# Ads

def _ads_metrics(group: DimensionGroup) -> Dict[str, Any]:
    return {
        "clicks": _int(_totals(group, "clicks")),
        "impressions": _int(_totals(group, "impressions")),
        "cost": round_money(_totals(group, "cost")),
        "conversions": round_money(_totals(group, "conversions")),
        **group.derived_rates,
    }


def _ads_daily(buckets: Sequence[TimeBucket]) -> List[Dict[str, Any]]:
    return [
        {
            "date": bucket.date,
            "clicks": _int(bucket.metrics["clicks"]),
            "impressions": _int(bucket.metrics["impressions"]),
            "cost": round_money(bucket.metrics["cost"]),
            "conversions": round_money(bucket.metrics["conversions"]),
            **bucket.rates,
        }
        for bucket in buckets
    ]


def ads_performance_report(records: Sequence[Record], start_date: str, end_date: str) -> Dict[str, Any]:
    """Per-campaign and overall performance, campaigns by cost descending."""
    rows = filter_records(records, start_date, end_date)

    campaigns = []
    groups = group_by_dimension(rows, ("campaignId",), ADS_METRICS, ADS_RATES)
    for group in rank(groups, "cost"):
        members = [r for r in rows if r.dimension("campaignId") == group.key[0]]
        campaigns.append({
            "campaignId": group.key[0],
            "campaignName": members[0].dimension("campaignName"),
            "status": members[0].dimension("status"),
            "metrics": _ads_metrics(group),
            "dailyData": _ads_daily(bucket_by_date(members, start_date, end_date, ADS_METRICS, ADS_RATES)),
        })

    overall = summarize(rows, ADS_METRICS, ADS_RATES)
    return {
        "campaigns": campaigns,
        "dailyData": _ads_daily(bucket_by_date(rows, start_date, end_date, ADS_METRICS, ADS_RATES)),
        "summary": {
            "totalClicks": _int(_totals(overall, "clicks")),
            "totalImpressions": _int(_totals(overall, "impressions")),
            "totalCost": round_money(_totals(overall, "cost")),
            "totalConversions": round_money(_totals(overall, "conversions")),
            "averageCtr": overall.derived_rates["ctr"],
            "averageCpc": overall.derived_rates["averageCpc"],
            "averageConversionRate": overall.derived_rates["conversionRate"],
        },
    }


def ads_costs_report(records: Sequence[Record], start_date: str, end_date: str) -> Dict[str, Any]:
    """Daily costs and per-campaign spend, campaigns by cost descending."""
    rows = filter_records(records, start_date, end_date)
    buckets = bucket_by_date(rows, start_date, end_date, COST_METRICS, COST_RATES)

    campaigns = []
    groups = group_by_dimension(rows, ("campaignId", "campaignName"), COST_METRICS, COST_RATES)
    for group in rank(groups, "cost"):
        campaigns.append({
            "campaignId": group.key[0],
            "campaignName": group.key[1],
            "totalCost": round_money(_totals(group, "cost")),
            "totalConversions": round_money(_totals(group, "conversions")),
            "averageCostPerConversion": group.derived_rates["costPerConversion"],
        })

    overall = summarize(rows, COST_METRICS, COST_RATES)
    total_cost = _totals(overall, "cost")
    return {
        "costsOverTime": [
            {
                "date": bucket.date,
                "cost": round_money(bucket.metrics["cost"]),
                "conversions": round_money(bucket.metrics["conversions"]),
                "costPerConversion": bucket.rates["costPerConversion"],
            }
            for bucket in buckets
        ],
        "campaigns": campaigns,
        "summary": {
            "totalCost": round_money(total_cost),
            "totalConversions": round_money(_totals(overall, "conversions")),
            "averageCostPerConversion": overall.derived_rates["costPerConversion"],
            "averageDailyCost": round_money(total_cost / len(buckets)) if buckets else 0.0,
        },
    }


# Analytics

def _session_values(totals: Dict[str, float], rates: Dict[str, float]) -> Dict[str, Any]:
    return {
        "totalUsers": _int(totals.get("totalUsers", 0)),
        "newUsers": _int(totals.get("newUsers", 0)),
        "activeUsers": _int(totals.get("activeUsers", 0)),
        "pageViews": _int(totals.get("pageViews", 0)),
        "sessions": _int(totals.get("sessions", 0)),
        "avgSessionDuration": rates["avgSessionDuration"],
        "bounceRate": rates["bounceRate"],
    }


def analytics_overview_report(records: Sequence[Record], start_date: str, end_date: str) -> Dict[str, Any]:
    """Site totals; duration in minutes and bounce rate weighted by sessions."""
    rows = filter_records(records, start_date, end_date)
    overall = summarize(rows, OVERVIEW_METRICS, SESSION_RATES)
    buckets = bucket_by_date(rows, start_date, end_date, OVERVIEW_METRICS, SESSION_RATES)

    result = _session_values(overall.totals, overall.derived_rates)
    result["dailyData"] = [
        {"date": bucket.date, **_session_values(bucket.metrics, bucket.rates)}
        for bucket in buckets
    ]
    return result


def traffic_sources_report(records: Sequence[Record]) -> List[Dict[str, Any]]:
    groups = group_by_dimension(
        records, ("source", "medium"), TRAFFIC_METRICS, SESSION_RATES[1:]
    )
    return [
        {
            "source": group.key[0],
            "medium": group.key[1],
            "metrics": {
                "users": _int(_totals(group, "users")),
                "sessions": _int(_totals(group, "sessions")),
                "pageViews": _int(_totals(group, "pageViews")),
                "bounceRate": group.derived_rates["bounceRate"],
            },
        }
        for group in rank(groups, "sessions")
    ]


def user_behavior_report(records: Sequence[Record]) -> List[Dict[str, Any]]:
    groups = group_by_dimension(
        records, ("pageTitle", "pageUrl", "deviceCategory"), BEHAVIOR_METRICS, BEHAVIOR_RATES
    )
    return [
        {
            "pageTitle": group.key[0],
            "pageUrl": group.key[1],
            "deviceCategory": group.key[2],
            "metrics": {
                "pageViews": _int(_totals(group, "pageViews")),
                "avgSessionDuration": group.derived_rates["avgSessionDuration"],
                "bounceRate": group.derived_rates["bounceRate"],
                "engagementRate": group.derived_rates["engagementRate"],
            },
        }
        for group in rank(groups, "pageViews")
    ]


# Search

def _search_values(totals: Dict[str, float], rates: Dict[str, float]) -> Dict[str, Any]:
    return {
        "clicks": _int(totals.get("clicks", 0)),
        "impressions": _int(totals.get("impressions", 0)),
        "ctr": rates["ctr"],
        "position": rates["position"],
    }


def _search_groups(records: Sequence[Record], dimension: str, label: str,
                   limit: Optional[int] = None) -> List[Dict[str, Any]]:
    groups = group_by_dimension(records, (dimension,), SEARCH_METRICS, SEARCH_RATES)
    return [
        {label: group.key[0], **_search_values(group.totals, group.derived_rates)}
        for group in rank(groups, "clicks", limit=limit)
    ]


def seo_overview_report(daily: Sequence[Record],
                        by_device: Sequence[Record],
                        by_country: Sequence[Record],
                        start_date: str,
                        end_date: str) -> Dict[str, Any]:
    rows = filter_records(daily, start_date, end_date)
    overall = summarize(rows, SEARCH_METRICS, SEARCH_RATES)
    buckets = bucket_by_date(rows, start_date, end_date, SEARCH_METRICS, SEARCH_RATES)
    return {
        "totals": {
            "totalClicks": _int(_totals(overall, "clicks")),
            "totalImpressions": _int(_totals(overall, "impressions")),
            "averageCTR": overall.derived_rates["ctr"],
            "averagePosition": overall.derived_rates["position"],
        },
        "dailyMetrics": [
            {"date": bucket.date, **_search_values(bucket.metrics, bucket.rates)}
            for bucket in buckets
        ],
        "byDevice": _search_groups(by_device, "device", "device"),
        "byCountry": _search_groups(by_country, "country", "country", limit=TOP_COUNTRIES),
    }


def keywords_report(records: Sequence[Record]) -> List[Dict[str, Any]]:
    return _search_groups(records, "query", "keyword", limit=TOP_SEARCH_ROWS)


def pages_report(records: Sequence[Record]) -> List[Dict[str, Any]]:
    return _search_groups(records, "page", "url", limit=TOP_SEARCH_ROWS)


# Sales

def sales_filters(customer_email: Optional[str] = None,
                  customer_name: Optional[str] = None,
                  min_amount: Optional[float] = None,
                  max_amount: Optional[float] = None) -> List[Filter]:
    filters: List[Filter] = []
    if customer_email:
        filters.append(Equals("customerEmail", customer_email))
    if customer_name:
        filters.append(Contains("customerName", customer_name))
    if min_amount is not None or max_amount is not None:
        filters.append(Range("amount", minimum=min_amount, maximum=max_amount))
    return filters


def sales_records_report(records: Sequence[Record], start_date: str, end_date: str,
                         filters: Sequence[Filter] = ()) -> List[Dict[str, Any]]:
    return [dict(record.attributes) for record in filter_records(records, start_date, end_date, filters)]


def sales_summary_report(records: Sequence[Record], start_date: str, end_date: str) -> Dict[str, Any]:
    rows = filter_records(records, start_date, end_date)
    distinct = {"uniqueCustomers": "customerEmail"}
    overall = summarize(rows, SALES_METRICS, SALES_RATES, distinct=distinct)
    buckets = bucket_by_date(rows, start_date, end_date, SALES_METRICS, SALES_RATES, distinct=distinct)

    names: Dict[str, str] = {}
    for record in rows:
        names.setdefault(record.dimension("customerEmail"), record.dimension("customerName"))
    customers = group_by_dimension(rows, ("customerEmail",), SALES_METRICS, SALES_RATES)

    return {
        "summary": {
            "totalAmount": round_money(_totals(overall, "amount")),
            "totalTransactions": overall.count,
            "averageTransactionAmount": overall.derived_rates["averageTransactionAmount"],
            "uniqueCustomers": len(overall.distinct["uniqueCustomers"]),
            "repeatCustomers": sum(1 for group in customers if group.count > 1),
        },
        "dailyStats": [
            {
                "date": bucket.date,
                "totalAmount": round_money(bucket.metrics["amount"]),
                "transactions": bucket.count,
                "uniqueCustomers": len(bucket.distinct["uniqueCustomers"]),
                "averageTransactionAmount": bucket.rates["averageTransactionAmount"],
            }
            for bucket in buckets
        ],
        "customerStats": [
            {
                "customerName": names.get(group.key[0], group.key[0]),
                "email": group.key[0],
                "totalAmount": round_money(_totals(group, "amount")),
                "transactions": group.count,
                "averageTransactionAmount": group.derived_rates["averageTransactionAmount"],
            }
            for group in rank(customers, "amount", limit=TOP_CUSTOMERS)
        ],
    }


# Appraisals

def appraisals_records_report(records: Sequence[Record], start_date: str, end_date: str,
                              status: Optional[str] = None) -> List[Dict[str, Any]]:
    """Appraisals newest first; ``status`` of None or "all" keeps both sheets."""
    filters: List[Filter] = []
    if status and status != "all":
        filters.append(Equals("status", status))
    rows = filter_records(records, start_date, end_date, filters)
    return [dict(record.attributes) for record in rank(rows, lambda r: r.date)]


def appraisals_summary_report(records: Sequence[Record], start_date: str, end_date: str) -> Dict[str, Any]:
    rows = filter_records(records, start_date, end_date)
    overall = summarize(rows, APPRAISAL_METRICS, APPRAISAL_RATES)
    buckets = bucket_by_date(rows, start_date, end_date, APPRAISAL_METRICS, APPRAISAL_RATES)
    service_types = group_by_dimension(rows, ("serviceType",), APPRAISAL_METRICS, APPRAISAL_RATES)

    return {
        "totalAppraisals": overall.count,
        "pendingAppraisals": _int(_totals(overall, "pending")),
        "completedAppraisals": _int(_totals(overall, "completed")),
        "completionRate": overall.derived_rates["completionRate"],
        "averageAppraisalValue": overall.derived_rates["averageAppraisalValue"],
        "serviceTypeBreakdown": [
            {
                "serviceType": group.key[0],
                "total": group.count,
                "pending": _int(_totals(group, "pending")),
                "completed": _int(_totals(group, "completed")),
                "completionRate": group.derived_rates["completionRate"],
            }
            for group in service_types
        ],
        "dailyStats": [
            {
                "date": bucket.date,
                "totalAppraisals": bucket.count,
                "pendingAppraisals": _int(bucket.metrics["pending"]),
                "completedAppraisals": _int(bucket.metrics["completed"]),
                "totalValue": round_money(bucket.metrics["completedValue"]),
                "completionRate": bucket.rates["completionRate"],
                "averageValue": bucket.rates["averageAppraisalValue"],
            }
            for bucket in buckets
        ],
    }


# Chat

def chat_records_report(records: Sequence[Record], start_date: str, end_date: str) -> List[Dict[str, Any]]:
    rows = filter_records(records, start_date, end_date)
    chats = []
    for record in rank(rows, lambda r: r.attributes.get("date", "")):
        metrics = record.metrics
        chats.append({
            "chatId": record.attributes.get("chatId", ""),
            "subject": record.attributes.get("subject", ""),
            "customerEmail": record.attributes.get("customerEmail", ""),
            "customerName": record.attributes.get("customerName", ""),
            "date": record.attributes.get("date", ""),
            "agentId": record.dimension("agentId"),
            "metrics": {
                "messageCount": _int(metrics.get("messageCount", 0)),
                "duration": _int(metrics.get("duration", 0)),
                "firstResponseTime": _int(metrics.get("firstResponseTime", 0)),
                "averageResponseTime": round_number(
                    metrics.get("responseTimeTotal", 0) / metrics["responseCount"]
                    if metrics.get("responseCount") else 0.0
                ),
                "customerMessages": _int(metrics.get("customerMessages", 0)),
                "agentMessages": _int(metrics.get("agentMessages", 0)),
            },
        })
    return chats


def chat_summary_report(records: Sequence[Record], start_date: str, end_date: str) -> Dict[str, Any]:
    rows = filter_records(records, start_date, end_date)
    overall = summarize(rows, CHAT_METRICS, CHAT_RATES)
    buckets = bucket_by_date(rows, start_date, end_date, CHAT_METRICS, CHAT_RATES)
    return {
        "totalChats": overall.count,
        "averageMessages": overall.derived_rates["averageMessages"],
        "averageDuration": overall.derived_rates["averageDuration"],
        "averageFirstResponseTime": overall.derived_rates["averageFirstResponseTime"],
        "averageResponseTime": overall.derived_rates["averageResponseTime"],
        "chatsByDay": [
            {
                "date": bucket.date,
                "totalChats": bucket.count,
                "totalMessages": _int(bucket.metrics["messageCount"]),
                "averageResponseTime": bucket.rates["averageResponseTime"],
            }
            for bucket in buckets
        ],
    }


def agent_performance_report(records: Sequence[Record], start_date: str, end_date: str) -> List[Dict[str, Any]]:
    rows = filter_records(records, start_date, end_date)
    groups = group_by_dimension(rows, ("agentId",), CHAT_METRICS, AGENT_RATES)
    return [
        {
            "agentId": group.key[0],
            "totalChats": group.count,
            "averageMessages": group.derived_rates["averageMessages"],
            "averageResponseTime": group.derived_rates["averageResponseTime"],
            "averageFirstResponseTime": group.derived_rates["averageFirstResponseTime"],
        }
        for group in rank(groups, "count")
    ]


# Error log

def recent_errors_report(records: Sequence[Record], limit: int) -> List[Dict[str, Any]]:
    """Newest entries first; entries without a parseable timestamp sort last."""
    ordered = rank(records, lambda r: r.attributes.get("sortKey", ""))
    return [
        {
            "timestamp": record.attributes.get("timestamp", ""),
            "errorType": record.attributes.get("errorType", ""),
            "message": record.attributes.get("message", ""),
            "stackTrace": record.attributes.get("stackTrace", ""),
            "severity": record.attributes.get("severity", ""),
        }
        for record in ordered[:max(0, limit)]
    ]


def error_count_report(records: Sequence[Record], start_date: str, end_date: str,
                       severity: Optional[str] = None) -> Dict[str, Any]:
    filters: List[Filter] = [Equals("severity", severity)] if severity else []
    rows = filter_records(records, start_date, end_date, filters)
    buckets = bucket_by_date(rows, start_date, end_date, ("errors",))
    by_type = group_by_dimension(rows, ("errorType",), ("errors",))
    return {
        "severity": severity,
        "totalErrors": len(rows),
        "errorsOverTime": [{"date": bucket.date, "errorCount": bucket.count} for bucket in buckets],
        "byType": [
            {"errorType": group.key[0], "count": group.count}
            for group in rank(by_type, "count")
        ],
    }


def errors_by_component_report(records: Sequence[Record], start_date: str,
                               end_date: str) -> List[Dict[str, Any]]:
    """Error totals per component, busiest first."""
    rows = filter_records(records, start_date, end_date)
    groups = group_by_dimension(rows, ("component",), ("errors", "critical", "high"))
    return [
        {
            "component": group.key[0],
            "totalErrors": group.count,
            "criticalErrors": int(group.totals["critical"]),
            "highPriorityErrors": int(group.totals["high"]),
        }
        for group in rank(groups, "count")
    ]


# Hosting

def format_bytes(value: float) -> str:
    """Human-readable byte count in powers of 1024, e.g. ``1.5 KB``."""
    if value <= 0:
        return "0 B"
    unit = 0
    while value >= 1024 and unit < len(BYTE_UNITS) - 1:
        value /= 1024
        unit += 1
    return f"{round_number(value):g} {BYTE_UNITS[unit]}"


def site_status_report(site: Optional[Record], deploys: Sequence[Record], checked_at: str) -> Dict[str, Any]:
    ordered = rank(deploys, lambda r: r.attributes.get("sortKey", ""))
    last_deploy = ordered[0] if ordered else None
    published = site.attributes.get("publishedDeployId") if site else ""
    return {
        "site": dict(site.attributes) if site else {},
        "lastDeploy": dict(last_deploy.attributes) if last_deploy else None,
        "isLive": bool(published and last_deploy and published == last_deploy.attributes.get("deployId")),
        "timestamp": checked_at,
    }


def performance_metrics_report(functions: Sequence[Record], bandwidth: Sequence[Record],
                               builds: Sequence[Record], start_date: str, end_date: str) -> Dict[str, Any]:
    usage = summarize(functions, FUNCTION_METRICS, FUNCTION_RATES)
    invocations = usage.totals["invocations"]
    transfer = summarize(bandwidth, BANDWIDTH_METRICS)
    built = summarize(builds, BUILD_METRICS, BUILD_RATES)
    return {
        "functions": {
            "totalInvocations": int(invocations),
            "averageExecutionTime": usage.derived_rates["averageExecutionTime"],
            "timeouts": int(usage.totals["timeouts"]),
            "errors": int(usage.totals["errors"]),
            # No invocations means nothing failed
            "successRate": round_number((invocations - usage.totals["errors"]) / invocations * 100)
            if invocations else 100.0,
        },
        "bandwidth": {
            "totalBandwidth": format_bytes(transfer.totals["totalBytes"]),
            "cdnBandwidth": format_bytes(transfer.totals["cdnBytes"]),
            "originBandwidth": format_bytes(transfer.totals["originBytes"]),
        },
        "builds": {
            "totalBuilds": int(built.totals["builds"]),
            "successfulBuilds": int(built.totals["successful"]),
            "failedBuilds": int(built.totals["failed"]),
            "averageBuildTime": built.derived_rates["averageBuildTime"],
        },
        "period": {"startDate": start_date, "endDate": end_date},
    }


def daily_metrics_report(records: Sequence[Record]) -> Dict[str, Any]:
    totals = summarize(records, DAILY_TRAFFIC_METRICS).totals
    response_time = records[0].attributes.get("responseTime", {}) if records else {}
    return {
        "pageViews": int(totals["pageViews"]),
        "visitors": int(totals["visitors"]),
        "bandwidth": format_bytes(totals["bandwidthBytes"]),
        "requests": int(totals["requests"]),
        "responseTime": {name: response_time.get(name, 0.0) for name in PERCENTILES},
    }
