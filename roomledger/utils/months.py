"""Calendar month helpers. Months are keyed as ``YYYY-MM`` strings throughout."""

from __future__ import annotations

import calendar
from datetime import date, datetime
from typing import List, Optional, Tuple, Union

MonthLike = Union[str, date, datetime]


def parse_month(key: str) -> Tuple[int, int]:
    """Split a ``YYYY-MM`` key (or a longer ISO date) into (year, month)."""
    try:
        year_str, month_str = key.strip()[:7].split("-")
        year, month = int(year_str), int(month_str)
    except (AttributeError, ValueError) as e:
        raise ValueError(f"Invalid month key: {key!r}") from e
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month key: {key!r}")
    return year, month


def month_key(value: MonthLike) -> str:
    """Normalize a date, datetime or ISO string to its ``YYYY-MM`` key."""
    if isinstance(value, (date, datetime)):
        return f"{value.year:04d}-{value.month:02d}"
    year, month = parse_month(value)
    return f"{year:04d}-{month:02d}"


def current_month(today: Optional[date] = None) -> str:
    return month_key(today or date.today())


def shift_month(key: str, delta: int) -> str:
    """Move a month key forward (or back, for negative ``delta``) by whole months."""
    year, month = parse_month(key)
    index = year * 12 + (month - 1) + delta
    return f"{index // 12:04d}-{index % 12 + 1:02d}"


def months_between(start: str, end: str) -> List[str]:
    """Inclusive list of month keys from ``start`` to ``end``."""
    months = []
    cursor = month_key(start)
    end = month_key(end)
    while cursor <= end:
        months.append(cursor)
        cursor = shift_month(cursor, 1)
    return months


def month_label(key: str) -> str:
    """Human label for a month key, e.g. ``2025-10`` -> ``October 2025``."""
    year, month = parse_month(key)
    return f"{calendar.month_name[month]} {year}"


def label_to_month_key(label: str) -> str:
    """Inverse of :func:`month_label`: ``October 2025`` -> ``2025-10``."""
    try:
        name, year = label.strip().split()
        month = list(calendar.month_name).index(name.capitalize(), 1)
    except ValueError as e:
        raise ValueError(f"Invalid month label: {label!r}") from e
    return f"{int(year):04d}-{month:02d}"
