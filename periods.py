from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import func
from sqlalchemy.sql.elements import ColumnElement

from config import get_settings
from errors import ValidationError


class Granularity(str, Enum):
    day = "day"
    month = "month"
    year = "year"


_STRFTIME_FORMATS = {
    Granularity.day: "%Y-%m-%d",
    Granularity.month: "%Y-%m",
    Granularity.year: "%Y",
}

_TO_CHAR_FORMATS = {
    Granularity.day: "YYYY-MM-DD",
    Granularity.month: "YYYY-MM",
    Granularity.year: "YYYY",
}


@dataclass(frozen=True)
class Window:
    start: datetime
    end: datetime


def local_now() -> datetime:
    """Current wall-clock time in the configured zone, as a naive datetime."""
    tz = ZoneInfo(get_settings().timezone)
    return datetime.now(tz).replace(tzinfo=None)


def to_local_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    tz = ZoneInfo(get_settings().timezone)
    return value.astimezone(tz).replace(tzinfo=None)


def resolve_window(
    start: Optional[datetime],
    end: Optional[datetime],
    *,
    now: Optional[datetime] = None,
    days: Optional[int] = None,
) -> Window:
    """Fill in missing bounds: end defaults to now, start to ``days`` before now."""
    now = now or local_now()
    if days is None:
        days = get_settings().summary_window_days
    start_at = to_local_naive(start) if start else now - timedelta(days=days)
    end_at = to_local_naive(end) if end else now
    if start_at > end_at:
        raise ValidationError("Start time must not be after end time")
    return Window(start_at, end_at)


def resolve_granularity(value: Optional[str]) -> Granularity:
    """Missing or unrecognized values fall back to month."""
    if isinstance(value, Granularity):
        return value
    try:
        return Granularity((value or "").strip().lower())
    except ValueError:
        return Granularity.month


def bucket_expression(
    column, granularity: Granularity, dialect_name: str
) -> ColumnElement[str]:
    """SQL expression rendering ``column`` as the bucket label."""
    if dialect_name == "postgresql":
        return func.to_char(column, _TO_CHAR_FORMATS[granularity])
    if dialect_name in ("mysql", "mariadb"):
        return func.date_format(column, _STRFTIME_FORMATS[granularity])
    return func.strftime(_STRFTIME_FORMATS[granularity], column)
