from __future__ import annotations

import numpy as np
import pandas as pd
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict


class Curve(ABC):
    """
    Parameterised interest rate curve on curve time (years from valuation).

    Every curve is described by continuously compounded zero rates r(t), with
    D(t) = exp(-r(t) t). Calibration needs, for any time t, the derivative of
    r(t) with respect to the parameters of each curve it is built from.
    """
    name: str

    @property
    @abstractmethod
    def n_parameters(self) -> int:
        ...

    @property
    @abstractmethod
    def parameters(self) -> np.ndarray:
        ...

    @abstractmethod
    def zero_rate(self, t):
        ...

    @abstractmethod
    def parameter_sensitivity(self, t: float) -> Dict[str, np.ndarray]:
        """d zero_rate(t) / d parameters, keyed by the name of the parameterised curve."""

    def df(self, t):
        t = np.asarray(t, dtype=float)
        out = np.exp(-self.zero_rate(t) * t)
        return float(out) if out.ndim == 0 else out

    def forward_rate(self, start: float, end: float, accrual: float) -> float:
        """Simply compounded forward rate over [start, end]."""
        if accrual <= 0:
            raise ValueError("Accrual factor must be positive.")
        return (self.df(start) / self.df(end) - 1.0) / accrual


def _check_nodes(node_times: np.ndarray, node_values: np.ndarray) -> None:
    if node_times.ndim != 1 or node_times.shape != node_values.shape:
        raise ValueError("Node times and values must be 1-d arrays of equal length.")
    if len(node_times) == 0:
        raise ValueError("A curve needs at least one node.")
    if np.any(node_times <= 0.0):
        raise ValueError("Node times must be after the valuation time.")
    if np.any(np.diff(node_times) < 0.0):
        raise ValueError("Node times must be non-decreasing.")


def linear_weights(node_times: np.ndarray, t: float) -> np.ndarray:
    """
    Weights w such that the linear interpolant (flat outside the nodes) at t
    equals w @ node_values.
    """
    n = len(node_times)
    w = np.zeros(n, dtype=float)
    i = int(np.searchsorted(node_times, t, side="right"))
    if i == 0:
        w[0] = 1.0
    elif i == n:
        w[-1] = 1.0
    else:
        lo, hi = i - 1, i
        span = node_times[hi] - node_times[lo]
        w[lo] = (node_times[hi] - t) / span
        w[hi] = (t - node_times[lo]) / span
    return w


@dataclass(frozen=True, eq=False)
class YieldCurve(Curve):
    """
    Zero-rate curve: continuously compounded rates at node times, linear
    interpolation, flat extrapolation. Parameters are the node rates.
    """
    name: str
    node_times: np.ndarray
    node_rates: np.ndarray

    def __post_init__(self):
        object.__setattr__(self, "node_times", np.asarray(self.node_times, dtype=float))
        object.__setattr__(self, "node_rates", np.asarray(self.node_rates, dtype=float))
        _check_nodes(self.node_times, self.node_rates)

    @property
    def n_parameters(self) -> int:
        return len(self.node_rates)

    @property
    def parameters(self) -> np.ndarray:
        return self.node_rates.copy()

    def zero_rate(self, t):
        out = np.interp(t, self.node_times, self.node_rates)
        return float(out) if np.ndim(out) == 0 else out

    def node_weights(self, t: float) -> np.ndarray:
        return linear_weights(self.node_times, t)

    def parameter_sensitivity(self, t: float) -> Dict[str, np.ndarray]:
        return {self.name: self.node_weights(t)}


@dataclass(frozen=True, eq=False)
class DiscountCurve(Curve):
    """
    Discount curve represented by knot log discount factors,
    interpolated linearly in log discount factor space.

    - Within knot range: log-linear interpolation on DF.
    - Short-end extrapolation: flat cc zero implied by first knot.
    - Long-end extrapolation: flat cc zero implied by last knot.
    """
    name: str
    node_times: np.ndarray
    node_log_dfs: np.ndarray

    def __post_init__(self):
        object.__setattr__(self, "node_times", np.asarray(self.node_times, dtype=float))
        object.__setattr__(self, "node_log_dfs", np.asarray(self.node_log_dfs, dtype=float))
        _check_nodes(self.node_times, self.node_log_dfs)

    @property
    def n_parameters(self) -> int:
        return len(self.node_log_dfs)

    @property
    def parameters(self) -> np.ndarray:
        return self.node_log_dfs.copy()

    def log_df_weights(self, t: float) -> np.ndarray:
        """Weights w with log D(t) = w @ node_log_dfs."""
        kx = self.node_times
        w = np.zeros(len(kx), dtype=float)
        if t <= kx[0]:
            w[0] = t / kx[0]
        elif t >= kx[-1]:
            w[-1] = t / kx[-1]
        else:
            w = linear_weights(kx, t)
        return w

    def _log_df(self, t: float) -> float:
        return float(self.log_df_weights(t) @ self.node_log_dfs)

    def zero_rate(self, t):
        t_arr = np.asarray(t, dtype=float)
        out = np.array([self._zero_rate_scalar(x) for x in t_arr.ravel()]).reshape(t_arr.shape)
        return float(out) if out.ndim == 0 else out

    def _zero_rate_scalar(self, t: float) -> float:
        if t <= 0.0:
            return -self.node_log_dfs[0] / self.node_times[0]
        return -self._log_df(t) / t

    def parameter_sensitivity(self, t: float) -> Dict[str, np.ndarray]:
        if t <= 0.0:
            w = np.zeros(self.n_parameters, dtype=float)
            w[0] = -1.0 / self.node_times[0]
            return {self.name: w}
        return {self.name: -self.log_df_weights(t) / t}


@dataclass(frozen=True, eq=False)
class SpreadYieldCurve(Curve):
    """
    Base curve plus an interpolated zero-rate spread.

    Only the spread nodes are parameters of this curve; the base curve's own
    parameter sensitivity is passed through so risk flows back to it.
    """
    name: str
    base: Curve
    spread: YieldCurve

    @property
    def n_parameters(self) -> int:
        return self.spread.n_parameters

    @property
    def parameters(self) -> np.ndarray:
        return self.spread.parameters

    def zero_rate(self, t):
        return self.base.zero_rate(t) + self.spread.zero_rate(t)

    def parameter_sensitivity(self, t: float) -> Dict[str, np.ndarray]:
        out = dict(self.base.parameter_sensitivity(t))
        own = self.spread.node_weights(t)
        if self.name in out:
            out[self.name] = out[self.name] + own
        else:
            out[self.name] = own
        return out


def curve_node_report(curve: Curve) -> pd.DataFrame:
    """Node-level QC table for a calibrated curve."""
    if isinstance(curve, SpreadYieldCurve):
        times = curve.spread.node_times
    else:
        times = curve.node_times

    zeros = np.asarray(curve.zero_rate(times), dtype=float)
    dfs = np.exp(-zeros * times)

    return pd.DataFrame(
        {
            "curve": curve.name,
            "time": times,
            "parameter": curve.parameters,
            "zero_cc": zeros,
            "df": dfs,
            "df_positive": dfs > 0,
            "df_monotone": np.r_[True, np.diff(dfs) <= 1e-10],
        }
    )
