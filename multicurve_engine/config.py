from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Mapping


@dataclass(frozen=True)
class CalibrationSettings:
    """
    Numeric settings shared by every unit of a calibration run.

    - absolute_tolerance: max |par spread| accepted as converged.
    - relative_tolerance: max |step| relative to max(1, |x|) accepted as converged.
    - max_steps: root-finder iteration budget per unit.
    - singular_threshold: reciprocal condition number below which a Jacobian
      is treated as singular.
    """
    absolute_tolerance: float = 1.0e-10
    relative_tolerance: float = 1.0e-10
    max_steps: int = 100
    singular_threshold: float = 1.0e-14

    def __post_init__(self):
        if not self.absolute_tolerance > 0.0:
            raise ValueError(f"absolute_tolerance must be positive, got {self.absolute_tolerance}")
        if not self.relative_tolerance > 0.0:
            raise ValueError(f"relative_tolerance must be positive, got {self.relative_tolerance}")
        if int(self.max_steps) != self.max_steps or self.max_steps < 1:
            raise ValueError(f"max_steps must be a positive integer, got {self.max_steps}")
        if not 0.0 < self.singular_threshold < 1.0:
            raise ValueError(f"singular_threshold must be in (0, 1), got {self.singular_threshold}")

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "CalibrationSettings":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(mapping) - known)
        if unknown:
            raise ValueError(f"Unknown calibration settings: {unknown}")
        return cls(**dict(mapping))
