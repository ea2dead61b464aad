"""
Per-domain row adapters.

Each adapter maps raw vendor rows into ``Record`` instances. Adapters never
raise on malformed rows: missing numbers become 0, missing categories
``"unknown"``, unparseable dates an empty date (the row then falls outside
every date range). Per-row averages are turned back into weighted
numerators so rates are always re-derived from totals.
"""

import base64
import binascii
import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from ..aggregation.records import (Record, coerce_category, coerce_int, coerce_number,
                                   micros_to_units, normalize_date, normalize_timestamp)

_TIMESTAMP = re.compile(r"\[(.*?)\]")
_AGENT_ID = re.compile(r"Agent ID: (\w+)")
_ADDRESS = re.compile(r"<(.+?)>")
_DISPLAY_NAME = re.compile(r'^"?([^"<]+)"?\s*<')


def _cell(row: Sequence[Any], index: int) -> Any:
    return row[index] if isinstance(row, (list, tuple)) and index < len(row) else None


def _nested(row: Mapping[str, Any], section: str, name: str) -> Any:
    part = row.get(section) if isinstance(row, Mapping) else None
    return part.get(name) if isinstance(part, Mapping) else None


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def data_rows(rows: Optional[Sequence[Any]]) -> List[Any]:
    """Spreadsheet rows without the header row."""
    if not rows or len(rows) < 2:
        return []
    return list(rows[1:])


# Ads

def ads_record(row: Mapping[str, Any]) -> Record:
    """Campaign x day row; cost arrives in micros."""
    return Record(
        date=normalize_date(_nested(row, "segments", "date")) or "",
        metrics={
            "clicks": coerce_int(_nested(row, "metrics", "clicks")),
            "impressions": coerce_int(_nested(row, "metrics", "impressions")),
            "cost": micros_to_units(_nested(row, "metrics", "cost_micros")),
            "conversions": coerce_number(_nested(row, "metrics", "conversions")),
        },
        dimensions={
            "campaignId": coerce_category(_nested(row, "campaign", "id")),
            "campaignName": coerce_category(_nested(row, "campaign", "name")),
            "status": coerce_category(_nested(row, "campaign", "status")),
        },
    )


# Analytics

ANALYTICS_OVERVIEW_METRICS = (
    "totalUsers", "newUsers", "activeUsers", "screenPageViews",
    "sessions", "averageSessionDuration", "bounceRate",
)
ANALYTICS_TRAFFIC_METRICS = ("totalUsers", "sessions", "screenPageViews", "bounceRate")
ANALYTICS_BEHAVIOR_METRICS = (
    "screenPageViews", "sessions", "averageSessionDuration", "bounceRate", "engagementRate",
)


def _values(row: Mapping[str, Any], section: str) -> List[Any]:
    values = row.get(section) if isinstance(row, Mapping) else None
    if not isinstance(values, list):
        return []
    return [v.get("value") if isinstance(v, Mapping) else v for v in values]


def _named_metrics(row: Mapping[str, Any], names: Sequence[str]) -> Dict[str, float]:
    values = _values(row, "metricValues")
    return {name: coerce_number(_cell(values, i)) for i, name in enumerate(names)}


def _session_weighted(raw: Mapping[str, float]) -> Dict[str, float]:
    sessions = raw.get("sessions", 0)
    return {
        "sessions": sessions,
        "sessionDurationTotal": raw.get("averageSessionDuration", 0) * sessions,
        "bouncedSessions": raw.get("bounceRate", 0) * sessions,
    }


def analytics_overview_record(row: Mapping[str, Any]) -> Record:
    raw = _named_metrics(row, ANALYTICS_OVERVIEW_METRICS)
    metrics = {
        "totalUsers": int(raw["totalUsers"]),
        "newUsers": int(raw["newUsers"]),
        "activeUsers": int(raw["activeUsers"]),
        "pageViews": int(raw["screenPageViews"]),
    }
    metrics.update(_session_weighted(raw))
    return Record(
        date=normalize_date(_cell(_values(row, "dimensionValues"), 0)) or "",
        metrics=metrics,
    )


def analytics_traffic_record(row: Mapping[str, Any]) -> Record:
    """Source/medium row; empty source is direct traffic."""
    dims = _values(row, "dimensionValues")
    raw = _named_metrics(row, ANALYTICS_TRAFFIC_METRICS)
    metrics = {
        "users": int(raw["totalUsers"]),
        "pageViews": int(raw["screenPageViews"]),
    }
    metrics.update(_session_weighted(raw))
    return Record(
        date="",
        metrics=metrics,
        dimensions={
            "source": coerce_category(_cell(dims, 0), "(direct)"),
            "medium": coerce_category(_cell(dims, 1), "(none)"),
        },
    )


def analytics_behavior_record(row: Mapping[str, Any]) -> Record:
    dims = _values(row, "dimensionValues")
    raw = _named_metrics(row, ANALYTICS_BEHAVIOR_METRICS)
    metrics = {"pageViews": int(raw["screenPageViews"])}
    metrics.update(_session_weighted(raw))
    metrics["engagedSessions"] = raw["engagementRate"] * raw["sessions"]
    return Record(
        date="",
        metrics=metrics,
        dimensions={
            "pageTitle": coerce_category(_cell(dims, 0)),
            "pageUrl": coerce_category(_cell(dims, 1)),
            "deviceCategory": coerce_category(_cell(dims, 2)),
        },
    )


# Search console

def search_record(row: Mapping[str, Any], dimensions: Sequence[str]) -> Record:
    """Search analytics row keyed by ``dimensions`` (e.g. ``["date"]``)."""
    keys = row.get("keys") if isinstance(row, Mapping) else None
    keys = keys if isinstance(keys, list) else []
    impressions = coerce_int(row.get("impressions") if isinstance(row, Mapping) else None)
    position = coerce_number(row.get("position") if isinstance(row, Mapping) else None)

    values = {name: _cell(keys, i) for i, name in enumerate(dimensions)}
    day = normalize_date(values.pop("date")) if "date" in values else None
    return Record(
        date=day or "",
        metrics={
            "clicks": coerce_int(row.get("clicks") if isinstance(row, Mapping) else None),
            "impressions": impressions,
            "positionWeighted": position * impressions,
        },
        dimensions={name: coerce_category(value) for name, value in values.items()},
    )


# Sales ledger

def sales_record(row: Sequence[Any]) -> Record:
    """Ledger row: session, charge, customer id, name, email, amount, date."""
    amount = coerce_number(_cell(row, 5))
    email = _text(_cell(row, 4))
    name = _text(_cell(row, 3))
    raw_date = _text(_cell(row, 6))
    return Record(
        date=normalize_date(raw_date) or "",
        metrics={"amount": amount},
        dimensions={
            "customerEmail": coerce_category(email),
            "customerName": coerce_category(name),
        },
        attributes={
            "sessionId": _text(_cell(row, 0)),
            "chargeId": _text(_cell(row, 1)),
            "stripeCustomerId": _text(_cell(row, 2)),
            "customerName": name,
            "customerEmail": email,
            "amount": amount,
            "date": raw_date,
        },
    )


# Appraisal ledger

APPRAISAL_STATUSES = ("pending", "completed")


def appraisal_record(row: Sequence[Any], status: str) -> Record:
    """Appraisal row; ``status`` comes from the sheet the row was read from."""
    value = coerce_number(_cell(row, 9))
    completed = status == "completed"
    raw_date = _text(_cell(row, 0))
    return Record(
        date=normalize_date(raw_date) or "",
        metrics={
            "appraisalValue": value,
            "completed": 1 if completed else 0,
            "pending": 0 if completed else 1,
            "completedValue": value if completed else 0,
        },
        dimensions={
            "serviceType": coerce_category(_cell(row, 1)),
            "status": status,
        },
        attributes={
            "date": raw_date,
            "serviceType": _text(_cell(row, 1)),
            "sessionId": _text(_cell(row, 2)),
            "customerEmail": _text(_cell(row, 3)),
            "customerName": _text(_cell(row, 4)),
            "status": status,
            "imageDescription": _text(_cell(row, 7)),
            "customerDescription": _text(_cell(row, 8)),
            "appraisalValue": value,
            "appraisersDescription": _text(_cell(row, 10)),
            "finalDescription": _text(_cell(row, 11)),
            "pdfLink": _text(_cell(row, 12)),
            "docLink": _text(_cell(row, 13)),
        },
    )


# Error log

def error_log_record(row: Sequence[Any]) -> Record:
    """Error log row: timestamp, type, message, stack trace, severity, component."""
    raw_timestamp = _text(_cell(row, 0))
    severity = _text(_cell(row, 4)).lower()
    return Record(
        date=normalize_date(raw_timestamp) or "",
        metrics={
            "errors": 1,
            "critical": int(severity == "critical"),
            "high": int(severity == "high"),
        },
        dimensions={
            "errorType": coerce_category(_cell(row, 1)),
            "severity": coerce_category(_cell(row, 4)),
            "component": coerce_category(_cell(row, 5)),
        },
        attributes={
            "timestamp": raw_timestamp,
            "sortKey": normalize_timestamp(raw_timestamp) or "",
            "errorType": _text(_cell(row, 1)),
            "message": _text(_cell(row, 2)),
            "stackTrace": _text(_cell(row, 3)),
            "severity": _text(_cell(row, 4)),
            "component": _text(_cell(row, 5)),
        },
    )


# Hosting

def _field(row: Any, name: str) -> Any:
    return row.get(name) if isinstance(row, Mapping) else None


def site_record(row: Mapping[str, Any]) -> Record:
    """Site description; the published deploy decides whether a deploy is live."""
    return Record(
        date="",
        attributes={
            "siteId": _text(_field(row, "id")),
            "name": _text(_field(row, "name")),
            "url": _text(_field(row, "url")),
            "state": _text(_field(row, "state")),
            "publishedDeployId": _text(_nested(row, "published_deploy", "id")),
            "updatedAt": _text(_field(row, "updated_at")),
        },
    )


def deploy_record(row: Mapping[str, Any]) -> Record:
    created = _text(_field(row, "created_at"))
    return Record(
        date=normalize_date(created) or "",
        attributes={
            "deployId": _text(_field(row, "id")),
            "state": _text(_field(row, "state")),
            "createdAt": created,
            "sortKey": normalize_timestamp(created) or "",
            "publishedAt": _text(_field(row, "published_at")),
            "errorMessage": _text(_field(row, "error_message")),
        },
    )


def build_record(row: Mapping[str, Any]) -> Record:
    """One build; ``done`` marks success and any ``error`` marks failure."""
    failed = bool(_field(row, "error"))
    return Record(
        date=normalize_date(_field(row, "created_at")) or "",
        metrics={
            "builds": 1,
            "successful": int(bool(_field(row, "done"))),
            "failed": int(failed),
            "buildTime": coerce_number(_field(row, "duration")),
        },
    )


def function_usage_record(row: Mapping[str, Any]) -> Record:
    invocations = coerce_int(_field(row, "invocations"))
    return Record(
        date="",
        metrics={
            "invocations": invocations,
            "errors": coerce_int(_field(row, "errors")),
            "timeouts": coerce_int(_field(row, "timeouts")),
            "executionTimeTotal": coerce_number(_field(row, "average_execution_time")) * invocations,
        },
    )


def bandwidth_record(row: Mapping[str, Any]) -> Record:
    return Record(
        date="",
        metrics={
            "totalBytes": coerce_number(_field(row, "total")),
            "cdnBytes": coerce_number(_field(row, "cdn")),
            "originBytes": coerce_number(_field(row, "origin")),
        },
    )


def daily_traffic_record(row: Mapping[str, Any], day: str) -> Record:
    """Site traffic for one day, with response time percentiles."""
    return Record(
        date=day,
        metrics={
            "pageViews": coerce_int(_field(row, "pageviews")),
            "visitors": coerce_int(_field(row, "visitors")),
            "bandwidthBytes": coerce_number(_field(row, "bandwidth")),
            "requests": coerce_int(_field(row, "requests")),
        },
        attributes={
            "responseTime": {
                name: coerce_number(_nested(row, "response_time", name))
                for name in ("p50", "p90", "p99")
            },
        },
    )


# Chat transcripts

def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _decode_body(data: Any) -> str:
    if not data or not isinstance(data, str):
        return ""
    padded = data + "=" * (-len(data) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError):
        return ""


def extract_transcript(message: Mapping[str, Any]) -> str:
    """Plain-text body of a mail message; anything malformed reads as empty."""
    payload = _mapping(_mapping(message).get("payload"))
    parts = payload.get("parts")
    if parts:
        if not isinstance(parts, (list, tuple)):
            return ""
        for part in parts:
            part = _mapping(part)
            if part.get("mimeType") == "text/plain":
                return _decode_body(_mapping(part.get("body")).get("data"))
        return ""
    return _decode_body(_mapping(payload.get("body")).get("data"))


def _parse_instant(text: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(text.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_transcript(transcript: str) -> List[Dict[str, Any]]:
    """Timestamped ``[ts] Speaker: text`` lines; other lines are dropped."""
    messages = []
    for line in transcript.splitlines():
        if not line.strip():
            continue
        match = _TIMESTAMP.search(line)
        if not match:
            continue
        instant = _parse_instant(match.group(1))
        if instant is None:
            continue
        messages.append({
            "timestamp": instant,
            "type": "agent" if "Agent:" in line else "customer",
        })
    return messages


def transcript_metrics(messages: Sequence[Mapping[str, Any]]) -> Dict[str, float]:
    """Per-chat totals; averages are derived later from these totals."""
    duration = 0.0
    if len(messages) >= 2:
        duration = (messages[-1]["timestamp"] - messages[0]["timestamp"]).total_seconds()

    first_response = 0.0
    first_response_count = 0
    first_customer = next((m for m in messages if m["type"] == "customer"), None)
    if first_customer is not None:
        reply = next(
            (m for m in messages
             if m["type"] == "agent" and m["timestamp"] >= first_customer["timestamp"]),
            None,
        )
        if reply is not None:
            first_response = (reply["timestamp"] - first_customer["timestamp"]).total_seconds()
            first_response_count = 1

    response_total = 0.0
    response_count = 0
    waiting = None
    for message in messages:
        if message["type"] == "customer":
            waiting = message
        elif waiting is not None:
            response_total += (message["timestamp"] - waiting["timestamp"]).total_seconds()
            response_count += 1
            waiting = None

    agent_messages = sum(1 for m in messages if m["type"] == "agent")
    return {
        "chats": 1,
        "messageCount": len(messages),
        "customerMessages": len(messages) - agent_messages,
        "agentMessages": agent_messages,
        "duration": duration,
        "firstResponseTime": first_response,
        "firstResponseCount": first_response_count,
        "responseTimeTotal": response_total,
        "responseCount": response_count,
    }


def _header(message: Mapping[str, Any], name: str) -> str:
    headers = _mapping(_mapping(message).get("payload")).get("headers")
    if not isinstance(headers, (list, tuple)):
        return ""
    for header in headers:
        header = _mapping(header)
        if header.get("name") == name:
            return _text(header.get("value"))
    return ""


def chat_record(message: Mapping[str, Any]) -> Record:
    """Mail message carrying one chat transcript."""
    message = _mapping(message)
    transcript = extract_transcript(message)
    sender = _header(message, "From")
    address = _ADDRESS.search(sender)
    display_name = _DISPLAY_NAME.search(sender)
    agent = _AGENT_ID.search(transcript)
    sent = _header(message, "Date")

    return Record(
        date=normalize_date(sent) or "",
        metrics=transcript_metrics(parse_transcript(transcript)),
        dimensions={"agentId": agent.group(1) if agent else "unknown"},
        attributes={
            "chatId": _text(message.get("id")),
            "subject": _header(message, "Subject"),
            "customerEmail": address.group(1) if address else sender,
            "customerName": display_name.group(1).strip() if display_name else "",
            "date": normalize_timestamp(sent) or "",
            "transcript": transcript,
        },
    )


def adapt(rows: Iterable[Any], adapter, *args) -> List[Record]:
    return [adapter(row, *args) for row in rows]
