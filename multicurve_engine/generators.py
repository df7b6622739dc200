"""
Curve generators.

A generator is finalised against the instruments of its curve (one node per
instrument, placed at the instrument's node time) and then turns a flat
parameter vector into a curve. Bound generators finalise to themselves.
"""
from __future__ import annotations

import numpy as np
from abc import ABC, abstractmethod
from typing import Callable, Optional, Sequence, Tuple

from .calculators import last_time
from .curves import Curve, DiscountCurve, SpreadYieldCurve, YieldCurve
from .errors import CalibrationConfigurationError, DependencyOrderError
from .provider import MulticurveProvider

NodeTime = Callable[[object], float]


def _node_times(instruments: Sequence, node_time: NodeTime) -> np.ndarray:
    if len(instruments) == 0:
        raise CalibrationConfigurationError("A curve generator needs at least one instrument.")
    times = np.array([node_time(instrument) for instrument in instruments], dtype=float)
    if np.any(times <= 0.0):
        raise CalibrationConfigurationError(f"Node times must be positive, got {times.tolist()}")
    if np.any(np.diff(times) < 0.0):
        raise CalibrationConfigurationError(
            f"Instruments must be ordered by node time, got {times.tolist()}"
        )
    return times


class BoundCurveGenerator(ABC):
    """Generator with fixed node times; parameter i belongs to node i."""

    dependencies: Tuple[str, ...] = ()

    def __init__(self, node_times: np.ndarray):
        self.node_times = np.asarray(node_times, dtype=float)

    @property
    def n_parameters(self) -> int:
        return len(self.node_times)

    def finalize(self, instruments: Sequence) -> "BoundCurveGenerator":
        return self

    def _checked(self, values) -> np.ndarray:
        values = np.asarray(values, dtype=float)
        if values.shape != (self.n_parameters,):
            raise CalibrationConfigurationError(
                f"Expected {self.n_parameters} values, got shape {values.shape}"
            )
        return values

    @abstractmethod
    def evaluate(self, parameters, name: str, known: Optional[MulticurveProvider] = None) -> Curve:
        ...

    def initial_guess(self, rates) -> np.ndarray:
        return self._checked(rates).copy()


class CurveGenerator(ABC):
    def __init__(self, node_time: NodeTime = last_time):
        self.node_time = node_time

    def finalize(self, instruments: Sequence) -> BoundCurveGenerator:
        return self._bind(_node_times(instruments, self.node_time))

    @abstractmethod
    def _bind(self, node_times: np.ndarray) -> BoundCurveGenerator:
        ...


class BoundInterpolatedYieldCurve(BoundCurveGenerator):
    def evaluate(self, parameters, name, known=None) -> YieldCurve:
        return YieldCurve(name, self.node_times, self._checked(parameters))


class BoundInterpolatedDiscountCurve(BoundCurveGenerator):
    def evaluate(self, parameters, name, known=None) -> DiscountCurve:
        return DiscountCurve(name, self.node_times, self._checked(parameters))

    def initial_guess(self, rates) -> np.ndarray:
        # log D(t) = -r t
        return -self._checked(rates) * self.node_times


class BoundSpreadYieldCurve(BoundCurveGenerator):
    def __init__(self, node_times: np.ndarray, base_curve_name: str):
        super().__init__(node_times)
        self.base_curve_name = base_curve_name
        self.dependencies = (base_curve_name,)

    def evaluate(self, parameters, name, known=None) -> SpreadYieldCurve:
        if known is None or not known.has_curve(self.base_curve_name):
            raise DependencyOrderError(
                f"Base curve {self.base_curve_name!r} of {name!r} is not available.",
                curve_names=(name,),
            )
        spread = YieldCurve(f"{name}:spread", self.node_times, self._checked(parameters))
        return SpreadYieldCurve(name, known.curve(self.base_curve_name), spread)

    def initial_guess(self, rates) -> np.ndarray:
        """Start from a zero spread; market rates say little about the basis."""
        return np.zeros_like(self._checked(rates))


class InterpolatedYieldCurveGenerator(CurveGenerator):
    """Zero rates linearly interpolated between instrument node times."""

    def _bind(self, node_times):
        return BoundInterpolatedYieldCurve(node_times)


class InterpolatedDiscountCurveGenerator(CurveGenerator):
    """Log discount factors linearly interpolated between instrument node times."""

    def _bind(self, node_times):
        return BoundInterpolatedDiscountCurve(node_times)


class SpreadYieldCurveGenerator(CurveGenerator):
    """Zero-rate spread on top of another, already available, curve."""

    def __init__(self, base_curve_name: str, node_time: NodeTime = last_time):
        super().__init__(node_time)
        self.base_curve_name = base_curve_name

    def _bind(self, node_times):
        return BoundSpreadYieldCurve(node_times, self.base_curve_name)
