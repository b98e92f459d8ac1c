"""UTC calendar-date helpers.

Every daily snapshot in the system is keyed by a UTC calendar date, so all
"today" computations go through this module instead of ``date.today()``.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Union


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (how it is stored in the database)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def today_utc() -> date:
    """Current UTC calendar date."""
    return datetime.now(timezone.utc).date()


def parse_as_of_date(value: Optional[Union[str, date, datetime]]) -> date:
    """Coerce an as-of date argument to a ``date``.

    ``None`` means today (UTC). Strings must be ISO ``YYYY-MM-DD``; anything
    else raises ``ValueError`` so a malformed date never reaches a snapshot key.
    """
    if value is None:
        return today_utc()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError as e:
            raise ValueError(f"Invalid as-of date {value!r}: expected YYYY-MM-DD") from e
    raise ValueError(f"Invalid as-of date {value!r}: expected YYYY-MM-DD")


def end_of_day(day: date) -> datetime:
    """Last representable instant of ``day`` (naive UTC)."""
    return datetime.combine(day + timedelta(days=1), time.min) - timedelta(microseconds=1)
