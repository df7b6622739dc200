from __future__ import annotations

from typing import Optional, Sequence, Tuple


class CalibrationError(Exception):
    """Raised when a curve calibration cannot produce curves."""

    def __init__(self, message: str, unit: Optional[int] = None, curve_names: Sequence[str] = ()):
        self.unit = unit
        self.curve_names: Tuple[str, ...] = tuple(curve_names)
        self.detail = message
        super().__init__(self._format(message))

    def _format(self, message: str) -> str:
        context = []
        if self.unit is not None:
            context.append(f"unit {self.unit}")
        if self.curve_names:
            context.append("curves " + ", ".join(self.curve_names))
        if not context:
            return message
        return f"[{'; '.join(context)}] {message}"

    def with_context(self, unit: int, curve_names: Sequence[str]) -> "CalibrationError":
        """Same error type and message, tagged with the unit that raised it."""
        return type(self)(self.detail, unit=unit, curve_names=curve_names)


class CalibrationConfigurationError(CalibrationError, ValueError):
    """Inconsistent inputs detected before any numeric work."""


class DependencyOrderError(CalibrationConfigurationError):
    """A curve generator needs a curve that is only built later (or never)."""


class ConvergenceError(CalibrationError):
    """The root finder did not reach the configured tolerances."""


class SingularSystemError(CalibrationError):
    """A Jacobian matrix is singular or too ill-conditioned to invert."""
