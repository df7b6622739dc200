from __future__ import annotations

import logging

import numpy as np
from scipy import linalg

from .errors import SingularSystemError

logger = logging.getLogger(__name__)


class MatrixAlgebra:
    """Dense matrix operations with an explicit singularity check."""

    def __init__(self, singular_threshold: float = 1.0e-14):
        self.singular_threshold = singular_threshold

    @staticmethod
    def condition_number(matrix: np.ndarray) -> float:
        s = linalg.svdvals(np.asarray(matrix, dtype=float))
        if s.size == 0:
            return 1.0
        if s[-1] == 0.0:
            return np.inf
        return float(s[0] / s[-1])

    def check_nonsingular(self, matrix: np.ndarray, what: str = "matrix") -> None:
        matrix = np.asarray(matrix, dtype=float)
        if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
            raise SingularSystemError(f"{what} must be square, got shape {matrix.shape}")
        if not np.all(np.isfinite(matrix)):
            raise SingularSystemError(f"{what} contains non-finite entries")
        cond = self.condition_number(matrix)
        logger.debug("%s condition number %.3e", what, cond)
        if not np.isfinite(cond) or 1.0 / cond < self.singular_threshold:
            raise SingularSystemError(f"{what} is singular (condition number {cond:.3e})")

    def inverse(self, matrix: np.ndarray) -> np.ndarray:
        self.check_nonsingular(matrix, "Jacobian")
        return linalg.inv(np.asarray(matrix, dtype=float))

    @staticmethod
    def multiply(a: np.ndarray, b: np.ndarray) -> np.ndarray:
        return np.asarray(a, dtype=float) @ np.asarray(b, dtype=float)
