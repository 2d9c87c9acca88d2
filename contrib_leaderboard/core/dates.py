"""UTC calendar-day helpers.

Every contribution row is keyed by a UTC calendar day. These helpers
normalise the various inputs (dates, datetimes, ISO strings) to midnight
UTC so that day boundaries are computed the same way everywhere.
"""

from collections.abc import Iterator
from datetime import UTC, date, datetime, timedelta

DayLike = date | datetime | str


def start_of_utc_day(value: DayLike) -> datetime:
    """Truncate ``value`` to 00:00 UTC of its calendar day.

    Naive datetimes are treated as UTC. Aware datetimes are converted to UTC
    before truncation, so ``2025-01-02T01:00+03:00`` maps to 2025-01-01.
    """
    if isinstance(value, str):
        value = _parse(value)

    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        value = value.astimezone(UTC)
        return datetime(value.year, value.month, value.day, tzinfo=UTC)

    return datetime(value.year, value.month, value.day, tzinfo=UTC)


def _parse(value: str) -> datetime | date:
    text = value.strip()
    if len(text) == 10:
        return date.fromisoformat(text)
    return datetime.fromisoformat(text.replace("Z", "+00:00"))


def parse_day(value: str) -> datetime:
    """Parse a strict ``YYYY-MM-DD`` string into midnight UTC."""
    return start_of_utc_day(date.fromisoformat(value))


def add_days(day: datetime, days: int) -> datetime:
    return day + timedelta(days=days)


def utc_today(now: datetime | None = None) -> datetime:
    return start_of_utc_day(now or datetime.now(UTC))


def ymd(day: DayLike) -> str:
    """Format as ``YYYY-MM-DD``."""
    return start_of_utc_day(day).strftime("%Y-%m-%d")


def yyyymmdd(day: DayLike) -> str:
    """Format as ``YYYYMMDD`` (used in lock keys)."""
    return start_of_utc_day(day).strftime("%Y%m%d")


def day_range(from_day: DayLike, to_day: DayLike) -> Iterator[datetime]:
    """Yield every UTC day from ``from_day`` to ``to_day`` inclusive."""
    current = start_of_utc_day(from_day)
    last = start_of_utc_day(to_day)
    while current <= last:
        yield current
        current = add_days(current, 1)
