from __future__ import annotations

import logging
from typing import Callable, NamedTuple, Optional, Tuple

import numpy as np
from scipy import linalg

from .config import CalibrationSettings
from .errors import ConvergenceError, SingularSystemError
from .linalg import MatrixAlgebra

logger = logging.getLogger(__name__)

VectorFunction = Callable[[np.ndarray], np.ndarray]
MatrixFunction = Callable[[np.ndarray], np.ndarray]


class RootResult(NamedTuple):
    root: np.ndarray
    iterations: int


class BroydenVectorRootFinder:
    """
    Quasi-Newton solver for F(x) = 0.

    Starts from the analytic Jacobian, then applies Broyden rank-one updates.
    Each step is damped by backtracking on |F|; when backtracking fails with
    an updated Jacobian, the analytic Jacobian is recomputed and the step
    retried. Converged when max|F| <= absolute_tolerance, or when the full
    step satisfies max|dx| <= relative_tolerance * max(1, max|x|).
    """

    def __init__(
        self,
        absolute_tolerance: float = 1.0e-10,
        relative_tolerance: float = 1.0e-10,
        max_steps: int = 100,
        singular_threshold: float = 1.0e-14,
        max_halvings: int = 20,
    ):
        self.absolute_tolerance = absolute_tolerance
        self.relative_tolerance = relative_tolerance
        self.max_steps = max_steps
        self.max_halvings = max_halvings
        self._algebra = MatrixAlgebra(singular_threshold)

    @classmethod
    def from_settings(cls, settings: CalibrationSettings) -> "BroydenVectorRootFinder":
        return cls(
            absolute_tolerance=settings.absolute_tolerance,
            relative_tolerance=settings.relative_tolerance,
            max_steps=settings.max_steps,
            singular_threshold=settings.singular_threshold,
        )

    def _residual_converged(self, y: np.ndarray) -> bool:
        return float(np.max(np.abs(y), initial=0.0)) <= self.absolute_tolerance

    def _step_converged(self, dx: np.ndarray, x: np.ndarray) -> bool:
        scale = max(1.0, float(np.max(np.abs(x), initial=0.0)))
        return float(np.max(np.abs(dx), initial=0.0)) <= self.relative_tolerance * scale

    def _newton_step(self, jac: np.ndarray, y: np.ndarray) -> np.ndarray:
        self._algebra.check_nonsingular(jac, "Root finder Jacobian")
        return -linalg.solve(jac, y)

    def _line_search(self, function: VectorFunction, x: np.ndarray, y: np.ndarray, dx: np.ndarray) -> Optional[Tuple[np.ndarray, np.ndarray]]:
        base = np.linalg.norm(y)
        lam = 1.0
        for _ in range(self.max_halvings + 1):
            x_try = x + lam * dx
            y_try = np.asarray(function(x_try), dtype=float)
            if np.all(np.isfinite(y_try)) and np.linalg.norm(y_try) < base:
                if lam < 1.0:
                    logger.debug("line search damped step to %.3e", lam)
                return x_try, y_try
            lam *= 0.5
        return None

    def get_root(self, function: VectorFunction, jacobian: MatrixFunction, start: np.ndarray) -> np.ndarray:
        return self.solve(function, jacobian, start).root

    def solve(self, function: VectorFunction, jacobian: MatrixFunction, start: np.ndarray) -> RootResult:
        """Root and the number of iterations taken to reach it."""
        x = np.array(start, dtype=float)
        y = np.asarray(function(x), dtype=float)

        if y.shape != x.shape:
            raise ValueError(f"Function returned shape {y.shape} for input of shape {x.shape}.")
        if not np.all(np.isfinite(y)):
            raise ConvergenceError("Function is not finite at the initial guess.")
        if self._residual_converged(y):
            return RootResult(x, 0)

        jac = np.array(jacobian(x), dtype=float)
        exact = True

        for step in range(1, self.max_steps + 1):
            try:
                dx = self._newton_step(jac, y)
            except SingularSystemError:
                if exact:
                    raise
                logger.debug("step %d: updated Jacobian singular, resetting", step)
                jac, exact = np.array(jacobian(x), dtype=float), True
                continue

            accepted = self._line_search(function, x, y, dx)
            if accepted is None:
                if exact:
                    raise ConvergenceError(
                        f"Line search failed at step {step} with residual {np.max(np.abs(y)):.3e}."
                    )
                logger.debug("step %d: line search failed, resetting Jacobian", step)
                jac, exact = np.array(jacobian(x), dtype=float), True
                continue

            x_new, y_new = accepted
            dx_taken = x_new - x
            jac = jac + np.outer(y_new - y - jac @ dx_taken, dx_taken) / float(dx_taken @ dx_taken)
            exact = False
            x, y = x_new, y_new

            logger.debug(
                "step %d: max|F|=%.3e max|dx|=%.3e",
                step, float(np.max(np.abs(y))), float(np.max(np.abs(dx_taken))),
            )
            if self._residual_converged(y) or self._step_converged(dx, x):
                return RootResult(x, step)

        raise ConvergenceError(
            f"Failed to converge in {self.max_steps} steps; max|F|={np.max(np.abs(y)):.3e}."
        )
