"""
Calibration instruments.

Instruments are plain immutable records on curve time (years from the
valuation date, ACT/365F). Pricing lives in `calculators`; the `make_*`
factories turn market conventions and dates into these records.
"""
from __future__ import annotations

import pandas as pd
from dataclasses import dataclass
from typing import Tuple, Union

from .indices import IborIndex, OvernightIndex
from .utils import yearfrac, time_from, add_months, cached_periods


@dataclass(frozen=True)
class CashDeposit:
    """Deposit discounted on the currency's discounting curve."""
    currency: str
    start_time: float
    end_time: float
    accrual_factor: float
    rate: float
    notional: float = 1.0

    @property
    def last_time(self) -> float:
        return self.end_time


@dataclass(frozen=True)
class IborDeposit:
    """Ibor fixing: its par rate is the forward rate of the index."""
    index: IborIndex
    fixing_start: float
    fixing_end: float
    accrual_factor: float
    rate: float

    @property
    def last_time(self) -> float:
        return self.fixing_end


@dataclass(frozen=True)
class ForwardRateAgreement:
    index: IborIndex
    payment_time: float
    fixing_start: float
    fixing_end: float
    accrual_factor: float
    rate: float

    @property
    def last_time(self) -> float:
        return max(self.fixing_end, self.payment_time)


@dataclass(frozen=True)
class InterestRateFuture:
    """STIR future quoted in price: 1 - rate."""
    index: IborIndex
    last_trading_time: float
    fixing_start: float
    fixing_end: float
    accrual_factor: float
    price: float

    @property
    def last_time(self) -> float:
        return self.fixing_end


@dataclass(frozen=True)
class FloatingCoupon:
    """
    Floating coupon paying index rate * accrual at `payment_time`.

    Overnight coupons are compounded over [fixing_start, fixing_end]; the
    compounded amount telescopes to the same forward discount ratio as an
    Ibor fixing, so one record serves both index types.
    """
    index: Union[IborIndex, OvernightIndex]
    fixing_start: float
    fixing_end: float
    accrual_factor: float
    payment_time: float


@dataclass(frozen=True)
class FixedFloatSwap:
    """Receive-float / pay-fixed swap (OIS or Ibor) with unit notional."""
    currency: str
    fixed_payment_times: Tuple[float, ...]
    fixed_accrual_factors: Tuple[float, ...]
    floating_coupons: Tuple[FloatingCoupon, ...]
    rate: float

    def __post_init__(self):
        if len(self.fixed_payment_times) != len(self.fixed_accrual_factors):
            raise ValueError("Fixed leg payment times and accrual factors differ in length.")
        if not self.fixed_payment_times or not self.floating_coupons:
            raise ValueError("Swap legs must not be empty.")

    @property
    def last_time(self) -> float:
        return max(
            max(self.fixed_payment_times),
            max(max(c.payment_time, c.fixing_end) for c in self.floating_coupons),
        )


@dataclass(frozen=True)
class FxSwap:
    """
    FX swap quoted in forward points: units of `domestic` per unit of
    `foreign`, far outright minus near outright.
    """
    domestic: str
    foreign: str
    near_time: float
    far_time: float
    forward_points: float

    @property
    def last_time(self) -> float:
        return self.far_time


Instrument = Union[CashDeposit, IborDeposit, ForwardRateAgreement, InterestRateFuture, FixedFloatSwap, FxSwap]


# ---------- Factories from dates ----------

def make_cash_deposit(
    val_date: pd.Timestamp,
    currency: str,
    start: pd.Timestamp,
    end: pd.Timestamp,
    rate: float,
    day_count: str = "ACT/360",
) -> CashDeposit:
    return CashDeposit(
        currency=currency,
        start_time=time_from(val_date, start),
        end_time=time_from(val_date, end),
        accrual_factor=yearfrac(start, end, day_count),
        rate=rate,
    )


def make_ibor_deposit(val_date: pd.Timestamp, index: IborIndex, start: pd.Timestamp, rate: float) -> IborDeposit:
    end = add_months(start, index.tenor_months)
    return IborDeposit(
        index=index,
        fixing_start=time_from(val_date, start),
        fixing_end=time_from(val_date, end),
        accrual_factor=yearfrac(start, end, index.day_count),
        rate=rate,
    )


def make_fra(val_date: pd.Timestamp, index: IborIndex, start: pd.Timestamp, rate: float) -> ForwardRateAgreement:
    end = add_months(start, index.tenor_months)
    return ForwardRateAgreement(
        index=index,
        payment_time=time_from(val_date, start),
        fixing_start=time_from(val_date, start),
        fixing_end=time_from(val_date, end),
        accrual_factor=yearfrac(start, end, index.day_count),
        rate=rate,
    )


def make_future(
    val_date: pd.Timestamp,
    index: IborIndex,
    last_trading: pd.Timestamp,
    price: float,
) -> InterestRateFuture:
    end = add_months(last_trading, index.tenor_months)
    return InterestRateFuture(
        index=index,
        last_trading_time=time_from(val_date, last_trading),
        fixing_start=time_from(val_date, last_trading),
        fixing_end=time_from(val_date, end),
        accrual_factor=yearfrac(last_trading, end, index.day_count),
        price=price,
    )


def _fixed_leg(val_date, start, maturity, months, day_count) -> Tuple[Tuple[float, ...], Tuple[float, ...]]:
    periods = cached_periods(pd.Timestamp(start), pd.Timestamp(maturity), int(months))
    times = tuple(time_from(val_date, e) for _, e in periods)
    accruals = tuple(yearfrac(s, e, day_count) for s, e in periods)
    return times, accruals


def _floating_leg(val_date, index, start, maturity, months) -> Tuple[FloatingCoupon, ...]:
    periods = cached_periods(pd.Timestamp(start), pd.Timestamp(maturity), int(months))
    return tuple(
        FloatingCoupon(
            index=index,
            fixing_start=time_from(val_date, s),
            fixing_end=time_from(val_date, e),
            accrual_factor=yearfrac(s, e, index.day_count),
            payment_time=time_from(val_date, e),
        )
        for s, e in periods
    )


def make_ois(
    val_date: pd.Timestamp,
    index: OvernightIndex,
    start: pd.Timestamp,
    maturity: pd.Timestamp,
    rate: float,
    frequency_months: int = 12,
    fixed_day_count: str = "ACT/360",
) -> FixedFloatSwap:
    """Overnight indexed swap; both legs pay on the same schedule."""
    times, accruals = _fixed_leg(val_date, start, maturity, frequency_months, fixed_day_count)
    return FixedFloatSwap(
        currency=index.currency,
        fixed_payment_times=times,
        fixed_accrual_factors=accruals,
        floating_coupons=_floating_leg(val_date, index, start, maturity, frequency_months),
        rate=rate,
    )


def make_ibor_swap(
    val_date: pd.Timestamp,
    index: IborIndex,
    start: pd.Timestamp,
    maturity: pd.Timestamp,
    rate: float,
    fixed_frequency_months: int = 6,
    fixed_day_count: str = "30/360",
) -> FixedFloatSwap:
    """Fixed vs Ibor swap; the floating leg resets at the index tenor."""
    times, accruals = _fixed_leg(val_date, start, maturity, fixed_frequency_months, fixed_day_count)
    return FixedFloatSwap(
        currency=index.currency,
        fixed_payment_times=times,
        fixed_accrual_factors=accruals,
        floating_coupons=_floating_leg(val_date, index, start, maturity, index.tenor_months),
        rate=rate,
    )


def make_fx_swap(
    val_date: pd.Timestamp,
    domestic: str,
    foreign: str,
    near: pd.Timestamp,
    far: pd.Timestamp,
    forward_points: float,
) -> FxSwap:
    return FxSwap(
        domestic=domestic,
        foreign=foreign,
        near_time=time_from(val_date, near),
        far_time=time_from(val_date, far),
        forward_points=forward_points,
    )
