"""
Request validation for report and authentication endpoints.

Failures raise ``ValidationError`` (400) before any cache or aggregation
work happens.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, Dict, Optional

from fastapi import Query
from pydantic import BaseModel, Field, field_validator

from shared.errors import ValidationError

_ISO_DAY = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

APPRAISAL_STATUS_VALUES = ("pending", "completed", "all")
MAX_RECENT_ERRORS = 100


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


@dataclass(frozen=True)
class DateRange:
    """Validated inclusive reporting period."""
    start_date: str
    end_date: str

    def period(self) -> Dict[str, str]:
        return {"startDate": self.start_date, "endDate": self.end_date}


def _parse_day(value: Optional[str], label: str, today: date) -> date:
    if value is None or not value.strip():
        raise ValidationError(f"{label} is required")
    value = value.strip()
    if not _ISO_DAY.match(value):
        raise ValidationError(f"{label} must be in YYYY-MM-DD format")
    try:
        parsed = date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"{label} must be in YYYY-MM-DD format") from None
    if parsed > today:
        raise ValidationError(f"{label} cannot be in the future")
    return parsed


def validate_date_range(start_date: Optional[str],
                        end_date: Optional[str],
                        today: Optional[date] = None) -> DateRange:
    """Both dates required, ISO formatted, not in the future, end >= start."""
    today = today or utc_today()
    start = _parse_day(start_date, "Start date", today)
    end = _parse_day(end_date, "End date", today)
    if end < start:
        raise ValidationError("End date must be after start date")
    return DateRange(start.isoformat(), end.isoformat())


def validate_day(value: Optional[str], today: Optional[date] = None) -> str:
    return _parse_day(value, "Date", today or utc_today()).isoformat()


class DateRangeQuery:
    """FastAPI dependency reading ``startDate``/``endDate`` query parameters."""

    def __init__(self, today: Callable[[], date] = utc_today):
        self.today = today

    async def __call__(self,
                       startDate: Optional[str] = Query(default=None),
                       endDate: Optional[str] = Query(default=None)) -> DateRange:
        return validate_date_range(startDate, endDate, self.today())


def parse_amount(value: Optional[str], name: str) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except ValueError:
        raise ValidationError(f"{name} must be a number") from None


def parse_limit(value: Optional[str], default: int) -> int:
    if value is None or value == "":
        return default
    try:
        limit = int(value)
    except ValueError:
        raise ValidationError("limit must be a positive integer") from None
    if limit < 1:
        raise ValidationError("limit must be a positive integer")
    return min(limit, MAX_RECENT_ERRORS)


def parse_appraisal_status(value: Optional[str]) -> Optional[str]:
    if value is None or value == "":
        return None
    status = value.strip().lower()
    if status not in APPRAISAL_STATUS_VALUES:
        raise ValidationError("status must be one of pending, completed, all")
    return None if status == "all" else status


# Authentication bodies

class RegisterRequest(BaseModel):
    """Registration body."""
    name: str = Field(..., min_length=1, max_length=100)
    email: str
    password: str = Field(..., min_length=8, max_length=72)

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        value = value.strip().lower()
        if not _EMAIL.match(value):
            raise ValueError("must be a valid email address")
        return value

    @field_validator("password")
    @classmethod
    def check_password_bytes(cls, value: str) -> str:
        # bcrypt only accepts 72 bytes of input
        if len(value.encode("utf-8")) > 72:
            raise ValueError("must be at most 72 bytes")
        return value


class LoginRequest(BaseModel):
    """Login body."""
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class RefreshTokenRequest(BaseModel):
    refreshToken: Optional[str] = None
