"""
Normalized record type and field coercion.

Every domain adapter maps raw vendor rows into ``Record`` instances so the
aggregation engine never sees a vendor schema. Coercion never raises: an
unparseable number becomes 0 and a missing category becomes ``"unknown"``,
so one malformed row cannot blank a whole report.
"""

import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional

UNKNOWN = "unknown"
MICROS_PER_UNIT = 1_000_000

_NON_NUMERIC = re.compile(r"[^0-9.\-]+")
_DATE_FORMATS = ("%Y-%m-%d", "%Y%m%d", "%m/%d/%Y", "%Y/%m/%d")


@dataclass(frozen=True)
class Record:
    """One atomic event or one (date x dimension) slice.

    ``date`` is an ISO calendar day (``YYYY-MM-DD``), or an empty string
    when the source row carried no usable date.
    """
    date: str
    metrics: Dict[str, float] = field(default_factory=dict)
    dimensions: Dict[str, str] = field(default_factory=dict)
    attributes: Dict[str, Any] = field(default_factory=dict)

    def metric(self, name: str) -> float:
        return self.metrics.get(name, 0)

    def dimension(self, name: str) -> str:
        return self.dimensions.get(name, UNKNOWN)

    def value(self, name: str) -> Any:
        """Look a field up across metrics, dimensions and attributes."""
        if name in self.metrics:
            return self.metrics[name]
        if name in self.dimensions:
            return self.dimensions[name]
        return self.attributes.get(name)


def coerce_number(value: Any) -> float:
    """Parse a numeric field; currency strings are accepted, junk is 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = _NON_NUMERIC.sub("", str(value))
        try:
            number = float(text)
        except ValueError:
            return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def coerce_int(value: Any) -> int:
    return int(coerce_number(value))


def coerce_category(value: Any, default: str = UNKNOWN) -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text or default


def micros_to_units(value: Any) -> float:
    """Convert a micro-unit monetary value into standard units."""
    return coerce_number(value) / MICROS_PER_UNIT


def normalize_date(value: Any) -> Optional[str]:
    """Normalize a date-like value to ``YYYY-MM-DD``.

    Accepts dates, datetimes, ISO timestamps, compact ``YYYYMMDD`` values,
    ``M/D/YYYY`` sheet dates and RFC 2822 mail dates. Aware datetimes are
    converted to UTC first. Returns None when nothing parses.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return _utc_day(value)
    if isinstance(value, date):
        return value.isoformat()

    text = str(value).strip()
    if not text:
        return None

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue

    try:
        return _utc_day(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        pass

    try:
        return _utc_day(parsedate_to_datetime(text))
    except (TypeError, ValueError, IndexError):
        return None


def normalize_timestamp(value: Any) -> Optional[str]:
    """Normalize a timestamp to ISO-8601 UTC, or None when unparseable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            try:
                parsed = parsedate_to_datetime(text)
            except (TypeError, ValueError, IndexError):
                return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _utc_day(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.date().isoformat()
