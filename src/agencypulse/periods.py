"""Calendar-month helpers shared by the aggregation engine and the adapters."""

from __future__ import annotations

import math
from datetime import date
from typing import Optional

import pandas as pd


def month_key(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}"


def month_bounds(key: str) -> tuple[date, date]:
    """Return the first and last calendar day of a ``YYYY-MM`` month."""
    period = pd.Period(key, freq="M")
    first = period.start_time.date()
    return first, first.replace(day=period.days_in_month)


def active_months(start: Optional[date], end: Optional[date]) -> list[str]:
    """Ordered month keys intersected by ``[start, end]``.

    Empty when either bound is missing or when the range is inverted.
    """
    if start is None or end is None or start > end:
        return []
    periods = pd.period_range(start=month_key(start), end=month_key(end), freq="M")
    return [str(p) for p in periods]


def pro_rata_ratio(key: str, start: Optional[date], end: Optional[date]) -> float:
    """Fraction of the month ``key`` covered by the inclusive range ``[start, end]``.

    Without a complete range the whole month counts (ratio 1).
    """
    if start is None or end is None:
        return 1.0

    month_start, month_end = month_bounds(key)
    effective_start = max(start, month_start)
    effective_end = min(end, month_end)
    if effective_start > effective_end:
        return 0.0

    total_days = month_end.day
    overlap = (effective_end - effective_start).days + 1
    overlap = max(0, min(overlap, total_days))
    return overlap / total_days


def tenure_months(contract_start: Optional[date], today: date) -> int:
    """Months since contract start, counted in 30-day blocks and rounded up."""
    if contract_start is None:
        return 0
    days = abs((today - contract_start).days)
    return math.ceil(days / 30)
