from __future__ import annotations

import numpy as np
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .building_blocks import CurveBuildingBlock
from .provider import MulticurveProvider


class MulticurveSensitivity:
    """
    Zero-rate sensitivities of one value: curve name -> [(time, d value / d r(time))].
    """

    def __init__(self, data: Optional[Mapping[str, Iterable[Tuple[float, float]]]] = None):
        self._data: Dict[str, List[Tuple[float, float]]] = {}
        for name, points in (data or {}).items():
            self._data[name] = [(float(t), float(v)) for t, v in points]

    @classmethod
    def of(cls, name: str, points: Iterable[Tuple[float, float]]) -> "MulticurveSensitivity":
        return cls({name: points})

    @property
    def data(self) -> Dict[str, List[Tuple[float, float]]]:
        return {name: list(points) for name, points in self._data.items()}

    @property
    def curve_names(self) -> List[str]:
        return list(self._data)

    def plus(self, other: "MulticurveSensitivity") -> "MulticurveSensitivity":
        out = MulticurveSensitivity(self._data)
        for name, points in other._data.items():
            out._data.setdefault(name, []).extend(points)
        return out

    def multiplied_by(self, factor: float) -> "MulticurveSensitivity":
        return MulticurveSensitivity(
            {name: [(t, factor * v) for t, v in points] for name, points in self._data.items()}
        )

    def cleaned(self) -> "MulticurveSensitivity":
        """Merge points at equal times and drop zero entries."""
        out: Dict[str, List[Tuple[float, float]]] = {}
        for name, points in self._data.items():
            merged: Dict[float, float] = {}
            for t, v in points:
                merged[t] = merged.get(t, 0.0) + v
            out[name] = [(t, v) for t, v in sorted(merged.items()) if v != 0.0]
        return MulticurveSensitivity(out)

    def __repr__(self) -> str:
        return f"MulticurveSensitivity({self._data})"


SensitivityCalculator = Callable[[object, MulticurveProvider], MulticurveSensitivity]


class ParameterSensitivityMatrixCalculator:
    """
    Projects zero-rate sensitivities onto curve parameters.

    Only the curves named in the layout are free; every other curve in the
    provider is fixed input and contributes nothing to the rows.
    """

    def __init__(self, sensitivity_calculator: SensitivityCalculator):
        self.sensitivity_calculator = sensitivity_calculator

    def project(self, sensitivity: MulticurveSensitivity, provider: MulticurveProvider, layout: CurveBuildingBlock) -> np.ndarray:
        row = np.zeros(layout.total_parameters, dtype=float)
        for name, points in sensitivity.data.items():
            curve = provider.curve(name)
            for t, value in points:
                for param_curve, weights in curve.parameter_sensitivity(t).items():
                    if param_curve in layout:
                        row[layout.slice(param_curve)] += value * weights
        return row

    def row(self, instrument, provider: MulticurveProvider, layout: CurveBuildingBlock) -> np.ndarray:
        return self.project(self.sensitivity_calculator(instrument, provider), provider, layout)

    def matrix(self, instruments: Sequence, provider: MulticurveProvider, layout: CurveBuildingBlock) -> np.ndarray:
        if not instruments:
            return np.zeros((0, layout.total_parameters), dtype=float)
        return np.vstack([self.row(instrument, provider, layout) for instrument in instruments])
