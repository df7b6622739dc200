from __future__ import annotations

import pandas as pd
from typing import Callable, Dict, List, Tuple
from functools import lru_cache


TIME_DAY_COUNT = "ACT/365F"


def _actual(denominator: float) -> Callable[[pd.Timestamp, pd.Timestamp], float]:
    return lambda start, end: (end - start).days / denominator


def _thirty_360_us(start: pd.Timestamp, end: pd.Timestamp) -> float:
    d1 = min(start.day, 30)
    d2 = 30 if (end.day == 31 and d1 == 30) else end.day
    months = (end.year - start.year) * 12 + (end.month - start.month)
    return (months * 30 + (d2 - d1)) / 360.0


DAY_COUNTS: Dict[str, Callable[[pd.Timestamp, pd.Timestamp], float]] = {
    "ACT/365": _actual(365.0),
    "ACT/365F": _actual(365.0),
    "ACT/360": _actual(360.0),
    "30/360": _thirty_360_us,
    "30/360US": _thirty_360_us,
}


def yearfrac(start: pd.Timestamp, end: pd.Timestamp, convention: str) -> float:
    """Year fraction from `start` to `end`; conventions are the keys of DAY_COUNTS."""
    start, end = pd.Timestamp(start), pd.Timestamp(end)
    if end < start:
        raise ValueError(f"Period ends before it starts: {start.date()} -> {end.date()}")
    try:
        accrual = DAY_COUNTS[convention.upper().replace(" ", "")]
    except KeyError:
        raise ValueError(f"Unsupported day count convention: {convention}") from None
    return accrual(start, end)


def time_from(val_date: pd.Timestamp, date: pd.Timestamp) -> float:
    """Curve time of `date`: ACT/365F years after the valuation date."""
    return yearfrac(val_date, date, TIME_DAY_COUNT)


def add_months(date: pd.Timestamp, months: int) -> pd.Timestamp:
    return pd.Timestamp(date) + pd.DateOffset(months=int(months))


def period_dates(start: pd.Timestamp, maturity: pd.Timestamp, months: int) -> List[pd.Timestamp]:
    """
    Period end dates of a regular schedule from `start` to `maturity`.

    The schedule is rolled backward from maturity, so a broken period (if any)
    is the first one. `start` itself is not included.
    """
    start = pd.Timestamp(start)
    maturity = pd.Timestamp(maturity)

    if months <= 0:
        raise ValueError("months must be positive")
    if maturity <= start:
        raise ValueError("Maturity must be after start date.")

    dates: List[pd.Timestamp] = []
    k = 0
    d = maturity
    while d > start:
        dates.append(d)
        k += 1
        d = maturity - pd.DateOffset(months=int(months) * k)

    dates.reverse()
    return dates


@lru_cache(maxsize=10_000)
def cached_periods(start: pd.Timestamp, maturity: pd.Timestamp, months: int) -> Tuple[Tuple[pd.Timestamp, pd.Timestamp], ...]:
    """(period start, period end) pairs, cached by (start, maturity, months)."""
    ends = period_dates(pd.Timestamp(start), pd.Timestamp(maturity), int(months))
    starts = [pd.Timestamp(start)] + ends[:-1]
    return tuple(zip(starts, ends))
