"""
Calibration calculators, dispatched on instrument type.

- par_spread_market_quote: model par quote minus market quote (the value the
  root finder drives to zero).
- par_spread_market_quote_sensitivity: its zero-rate sensitivities.
- rates_initialization / last_time: initial guess and node time per instrument.

All four are `functools.singledispatch` functions, so callers can register
further instrument types without touching this module.
"""
from __future__ import annotations

from functools import singledispatch
from typing import List, Tuple

from .errors import CalibrationConfigurationError
from .instruments import (
    CashDeposit,
    IborDeposit,
    ForwardRateAgreement,
    InterestRateFuture,
    FixedFloatSwap,
    FxSwap,
)
from .provider import MulticurveProvider
from .sensitivity import MulticurveSensitivity


def _unsupported(kind: str, instrument) -> CalibrationConfigurationError:
    return CalibrationConfigurationError(f"No {kind} registered for {type(instrument).__name__}")


def _ratio_points(start: float, end: float, ratio: float, factor: float) -> List[Tuple[float, float]]:
    """Zero-rate sensitivity of factor * D(start) / D(end)."""
    return [(start, -start * ratio * factor), (end, end * ratio * factor)]


def _forward_period(curve, start: float, end: float, accrual: float) -> Tuple[float, float]:
    ratio = curve.df(start) / curve.df(end)
    return ratio, (ratio - 1.0) / accrual


# ---------- par spread (market quote) ----------

@singledispatch
def par_spread_market_quote(instrument, multicurves: MulticurveProvider) -> float:
    raise _unsupported("par spread calculator", instrument)


@par_spread_market_quote.register(CashDeposit)
def _(instrument: CashDeposit, multicurves: MulticurveProvider) -> float:
    curve = multicurves.discount_curve(instrument.currency)
    _, par = _forward_period(curve, instrument.start_time, instrument.end_time, instrument.accrual_factor)
    return par - instrument.rate


@par_spread_market_quote.register(IborDeposit)
@par_spread_market_quote.register(ForwardRateAgreement)
def _(instrument, multicurves: MulticurveProvider) -> float:
    curve = multicurves.forward_curve(instrument.index)
    _, fwd = _forward_period(curve, instrument.fixing_start, instrument.fixing_end, instrument.accrual_factor)
    return fwd - instrument.rate


@par_spread_market_quote.register(InterestRateFuture)
def _(instrument: InterestRateFuture, multicurves: MulticurveProvider) -> float:
    curve = multicurves.forward_curve(instrument.index)
    _, fwd = _forward_period(curve, instrument.fixing_start, instrument.fixing_end, instrument.accrual_factor)
    return (1.0 - fwd) - instrument.price


def _swap_legs(instrument: FixedFloatSwap, multicurves: MulticurveProvider) -> Tuple[float, float]:
    dsc = multicurves.discount_curve(instrument.currency)
    annuity = sum(a * dsc.df(t) for t, a in zip(instrument.fixed_payment_times, instrument.fixed_accrual_factors))
    floating = 0.0
    for c in instrument.floating_coupons:
        fwd = multicurves.forward_curve(c.index)
        floating += (fwd.df(c.fixing_start) / fwd.df(c.fixing_end) - 1.0) * dsc.df(c.payment_time)
    return annuity, floating


@par_spread_market_quote.register(FixedFloatSwap)
def _(instrument: FixedFloatSwap, multicurves: MulticurveProvider) -> float:
    annuity, floating = _swap_legs(instrument, multicurves)
    return floating / annuity - instrument.rate


def _fx_outright_ratio(instrument: FxSwap, multicurves: MulticurveProvider, t: float) -> float:
    dom = multicurves.discount_curve(instrument.domestic)
    fgn = multicurves.discount_curve(instrument.foreign)
    return fgn.df(t) / dom.df(t)


@par_spread_market_quote.register(FxSwap)
def _(instrument: FxSwap, multicurves: MulticurveProvider) -> float:
    spot = multicurves.fx_rate(instrument.foreign, instrument.domestic)
    far = _fx_outright_ratio(instrument, multicurves, instrument.far_time)
    near = _fx_outright_ratio(instrument, multicurves, instrument.near_time)
    return spot * (far - near) - instrument.forward_points


# ---------- par spread sensitivity ----------

@singledispatch
def par_spread_market_quote_sensitivity(instrument, multicurves: MulticurveProvider) -> MulticurveSensitivity:
    raise _unsupported("par spread sensitivity calculator", instrument)


@par_spread_market_quote_sensitivity.register(CashDeposit)
def _(instrument: CashDeposit, multicurves: MulticurveProvider) -> MulticurveSensitivity:
    curve = multicurves.discount_curve(instrument.currency)
    ratio, _ = _forward_period(curve, instrument.start_time, instrument.end_time, instrument.accrual_factor)
    points = _ratio_points(instrument.start_time, instrument.end_time, ratio, 1.0 / instrument.accrual_factor)
    return MulticurveSensitivity.of(curve.name, points)


@par_spread_market_quote_sensitivity.register(IborDeposit)
@par_spread_market_quote_sensitivity.register(ForwardRateAgreement)
def _(instrument, multicurves: MulticurveProvider) -> MulticurveSensitivity:
    curve = multicurves.forward_curve(instrument.index)
    ratio, _ = _forward_period(curve, instrument.fixing_start, instrument.fixing_end, instrument.accrual_factor)
    points = _ratio_points(instrument.fixing_start, instrument.fixing_end, ratio, 1.0 / instrument.accrual_factor)
    return MulticurveSensitivity.of(curve.name, points)


@par_spread_market_quote_sensitivity.register(InterestRateFuture)
def _(instrument: InterestRateFuture, multicurves: MulticurveProvider) -> MulticurveSensitivity:
    curve = multicurves.forward_curve(instrument.index)
    ratio, _ = _forward_period(curve, instrument.fixing_start, instrument.fixing_end, instrument.accrual_factor)
    points = _ratio_points(instrument.fixing_start, instrument.fixing_end, ratio, -1.0 / instrument.accrual_factor)
    return MulticurveSensitivity.of(curve.name, points)


@par_spread_market_quote_sensitivity.register(FixedFloatSwap)
def _(instrument: FixedFloatSwap, multicurves: MulticurveProvider) -> MulticurveSensitivity:
    # par rate = floating / annuity; d(par) = d(floating) / annuity - floating * d(annuity) / annuity^2
    dsc = multicurves.discount_curve(instrument.currency)
    annuity, floating = _swap_legs(instrument, multicurves)

    d_floating = MulticurveSensitivity()
    for c in instrument.floating_coupons:
        fwd = multicurves.forward_curve(c.index)
        ratio = fwd.df(c.fixing_start) / fwd.df(c.fixing_end)
        df_pay = dsc.df(c.payment_time)
        d_floating = d_floating.plus(
            MulticurveSensitivity.of(fwd.name, _ratio_points(c.fixing_start, c.fixing_end, ratio, df_pay))
        ).plus(
            MulticurveSensitivity.of(dsc.name, [(c.payment_time, -c.payment_time * (ratio - 1.0) * df_pay)])
        )

    d_annuity = MulticurveSensitivity.of(
        dsc.name,
        [(t, -t * a * dsc.df(t)) for t, a in zip(instrument.fixed_payment_times, instrument.fixed_accrual_factors)],
    )

    return (
        d_floating.multiplied_by(1.0 / annuity)
        .plus(d_annuity.multiplied_by(-floating / annuity ** 2))
        .cleaned()
    )


@par_spread_market_quote_sensitivity.register(FxSwap)
def _(instrument: FxSwap, multicurves: MulticurveProvider) -> MulticurveSensitivity:
    # points = S * (Df(T) / Dd(T) - Df(t0) / Dd(t0))
    spot = multicurves.fx_rate(instrument.foreign, instrument.domestic)
    dom = multicurves.discount_curve(instrument.domestic)
    fgn = multicurves.discount_curve(instrument.foreign)

    out = MulticurveSensitivity()
    for t, sign in ((instrument.far_time, 1.0), (instrument.near_time, -1.0)):
        q = spot * sign * _fx_outright_ratio(instrument, multicurves, t)
        out = out.plus(MulticurveSensitivity.of(fgn.name, [(t, -t * q)]))
        out = out.plus(MulticurveSensitivity.of(dom.name, [(t, t * q)]))
    return out.cleaned()


# ---------- initial guess and node placement ----------

@singledispatch
def rates_initialization(instrument) -> float:
    raise _unsupported("rate initialisation", instrument)


@rates_initialization.register(CashDeposit)
@rates_initialization.register(IborDeposit)
@rates_initialization.register(ForwardRateAgreement)
@rates_initialization.register(FixedFloatSwap)
def _(instrument) -> float:
    return instrument.rate


@rates_initialization.register(InterestRateFuture)
def _(instrument: InterestRateFuture) -> float:
    return 1.0 - instrument.price


@rates_initialization.register(FxSwap)
def _(instrument: FxSwap) -> float:
    return 0.01


@singledispatch
def last_time(instrument) -> float:
    """Node time used by interpolated curve generators."""
    try:
        return float(instrument.last_time)
    except AttributeError:
        raise _unsupported("node time", instrument) from None
