from __future__ import annotations

import numpy as np
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from .calculators import rates_initialization
from .errors import CalibrationConfigurationError


@dataclass(frozen=True, eq=False)
class SingleCurveBundle:
    """One curve of a unit: its instruments, starting point and generator."""
    curve_name: str
    instruments: Tuple
    starting_point: np.ndarray
    generator: object

    def __post_init__(self):
        object.__setattr__(self, "instruments", tuple(self.instruments))
        object.__setattr__(self, "starting_point", np.asarray(self.starting_point, dtype=float).ravel())
        if len(self.instruments) != len(self.starting_point):
            raise CalibrationConfigurationError(
                f"{len(self.instruments)} instruments but a starting point of length {len(self.starting_point)}",
                curve_names=(self.curve_name,),
            )

    @classmethod
    def from_instruments(cls, curve_name: str, instruments: Sequence, generator) -> "SingleCurveBundle":
        """Bundle whose starting point is the generator's guess from the instruments' rates."""
        rates = [rates_initialization(instrument) for instrument in instruments]
        guess = generator.finalize(list(instruments)).initial_guess(rates)
        return cls(curve_name, tuple(instruments), guess, generator)

    @property
    def size(self) -> int:
        return len(self.instruments)


@dataclass(frozen=True, eq=False)
class MultiCurveBundle:
    """The curves of one calibration unit, in calibration order."""
    curves: Tuple[SingleCurveBundle, ...]

    def __post_init__(self):
        object.__setattr__(self, "curves", tuple(self.curves))
        if not self.curves:
            raise CalibrationConfigurationError("A unit needs at least one curve.")

    @property
    def curve_names(self) -> List[str]:
        return [c.curve_name for c in self.curves]

    @property
    def instruments(self) -> List:
        return [instrument for c in self.curves for instrument in c.instruments]

    @property
    def starting_point(self) -> np.ndarray:
        return np.concatenate([c.starting_point for c in self.curves])

    def __len__(self) -> int:
        return len(self.curves)
