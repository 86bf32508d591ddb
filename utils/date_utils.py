"""
Calendar date helpers for planning maps.

Planning entries are keyed by local calendar day with no time component.
Keys are parsed into datetime.date once at the boundary and all arithmetic
is done on date objects, so there is no timezone offset to drift.
"""

import math
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Optional, Union

DateLike = Union[date, str]


def parse_date(value: DateLike) -> date:
    """
    Parse an ISO calendar key ("YYYY-MM-DD") into a date.

    Full ISO timestamps are truncated to their calendar day as written,
    never shifted through UTC.

    Raises:
        ValueError: If the value is not a valid calendar date
    """
    if isinstance(value, date):
        return value
    text = str(value).strip()
    return date.fromisoformat(text[:10])


def format_date(value: date) -> str:
    """Format a date as a zero-padded ISO key."""
    return value.isoformat()


def add_days(value: DateLike, days: int) -> date:
    """Shift a calendar date by a number of days."""
    return parse_date(value) + timedelta(days=days)


def date_range(start: DateLike, days: int) -> list[date]:
    """Consecutive days starting at start (inclusive)."""
    first = parse_date(start)
    return [first + timedelta(days=i) for i in range(max(0, days))]


def days_between(start: DateLike, end: DateLike) -> int:
    """Whole days from start to end (negative when end is earlier)."""
    return (parse_date(end) - parse_date(start)).days


def coerce_quantity(value: Any) -> Decimal:
    """
    Coerce a user-entered quantity to a non-negative Decimal.

    Anything missing, non-numeric, non-finite or negative becomes 0.

    Examples:
        "1,200" -> Decimal("1200")
        -5      -> Decimal("0")
        None    -> Decimal("0")
    """
    if value is None or isinstance(value, bool):
        return Decimal("0")
    if isinstance(value, float) and not math.isfinite(value):
        return Decimal("0")
    try:
        number = Decimal(str(value).replace(",", "").strip())
    except (InvalidOperation, ValueError):
        return Decimal("0")
    if not number.is_finite() or number < 0:
        return Decimal("0")
    return number


def normalize_date_map(
    entries: Optional[Mapping[Any, Any]],
    drop_none: bool = False,
) -> dict[date, Decimal]:
    """
    Parse a sparse {date-key: quantity} map.

    Keys that are not calendar dates are dropped. Values are coerced with
    coerce_quantity(). With drop_none, None values are treated as absent
    rather than 0 (an actual that was never recorded).
    """
    result: dict[date, Decimal] = {}
    for key, value in (entries or {}).items():
        if drop_none and value is None:
            continue
        try:
            day = parse_date(key)
        except (TypeError, ValueError):
            continue
        result[day] = coerce_quantity(value)
    return result


def to_iso_map(entries: Mapping[date, Any]) -> dict[str, Any]:
    """Inverse of normalize_date_map for persistence and JSON output."""
    return {format_date(day): value for day, value in sorted(entries.items())}


def union_dates(*maps: Iterable[date]) -> list[date]:
    """Sorted union of the keys of several date maps."""
    seen: set[date] = set()
    for entries in maps:
        seen.update(entries)
    return sorted(seen)
