from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class IborIndex:
    """Term rate index (e.g. USD LIBOR 3M) projected off a forward curve."""
    name: str
    currency: str
    tenor_months: int
    day_count: str = "ACT/360"


@dataclass(frozen=True)
class OvernightIndex:
    """Overnight index (e.g. Fed Funds); compounded over each coupon period."""
    name: str
    currency: str
    day_count: str = "ACT/360"
