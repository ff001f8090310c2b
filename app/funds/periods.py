"""
Date-window helpers.

Commission rules carry optional effective bounds where None means unbounded.
Settlements cover calendar months as half-open UTC intervals
[period_start, period_end).

Usage:
    from funds.periods import month_bounds, window_contains, windows_overlap

    start, end = month_bounds(2024, 5)   # 2024-05-01T00:00Z, 2024-06-01T00:00Z
    windows_overlap(None, jan_31, jan_1, None)   # True
"""

from __future__ import annotations

from datetime import UTC, datetime

from funds.exceptions import InvalidRangeError

MIN_SETTLEMENT_YEAR = 2020
MAX_SETTLEMENT_YEAR = 2100

_NEG_INF = datetime.min.replace(tzinfo=UTC)
_POS_INF = datetime.max.replace(tzinfo=UTC)


def _lower(value: datetime | None) -> datetime:
    return _NEG_INF if value is None else value


def _upper(value: datetime | None) -> datetime:
    return _POS_INF if value is None else value


def windows_overlap(
    from1: datetime | None,
    to1: datetime | None,
    from2: datetime | None,
    to2: datetime | None,
) -> bool:
    """
    Closed-interval overlap test with None as -inf/+inf.

    Two windows overlap when ``from1 <= to2 and from2 <= to1``. Touching
    endpoints count as overlap since both bounds are inclusive.
    """
    return _lower(from1) <= _upper(to2) and _lower(from2) <= _upper(to1)


def window_contains(
    effective_from: datetime | None,
    effective_to: datetime | None,
    instant: datetime,
) -> bool:
    """True when ``instant`` lies inside the inclusive window."""
    return _lower(effective_from) <= instant <= _upper(effective_to)


def validate_period(year: int, month: int) -> None:
    """
    Raises:
        InvalidRangeError: month outside 1..12 or year outside 2020..2100
    """
    if not 1 <= month <= 12:
        raise InvalidRangeError(
            "Month must be between 1 and 12",
            details={"month": month},
        )
    if not MIN_SETTLEMENT_YEAR <= year <= MAX_SETTLEMENT_YEAR:
        raise InvalidRangeError(
            f"Year must be between {MIN_SETTLEMENT_YEAR} and {MAX_SETTLEMENT_YEAR}",
            details={"year": year},
        )


def month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    """Return [start, end) of a calendar month in UTC."""
    validate_period(year, month)
    start = datetime(year, month, 1, tzinfo=UTC)
    if month == 12:
        end = datetime(year + 1, 1, 1, tzinfo=UTC)
    else:
        end = datetime(year, month + 1, 1, tzinfo=UTC)
    return start, end


def previous_month(instant: datetime) -> tuple[int, int]:
    """(year, month) of the calendar month before ``instant``."""
    if instant.month == 1:
        return instant.year - 1, 12
    return instant.year, instant.month - 1
