"""
Least-squares polynomial fitting and evaluation for the reference path.

Coefficients are ordered by ascending power: coeffs[i] multiplies x**i.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np
from scipy.linalg import solve_triangular


class FitError(ValueError):
    """The reference path cannot be fitted this cycle."""


class DegreeTooHighError(FitError):
    """Fewer samples than coefficients (under-determined fit)."""


# Relative tolerance on the diagonal of R below which the design is rank deficient.
_RANK_TOL = 1e-12


def polyfit(xs: Sequence[float], ys: Sequence[float], degree: int) -> np.ndarray:
    """
    Fit a degree-d polynomial to (x, y) samples by least squares.

    The Vandermonde system A c = y is solved through a QR decomposition of A.

    Args:
        xs: Sample x values
        ys: Sample y values (same length as xs)
        degree: Polynomial degree (>= 0)

    Returns:
        Coefficients, ascending by power (length degree + 1)

    Raises:
        DegreeTooHighError: if len(xs) < degree + 1
        FitError: on mismatched lengths or a rank-deficient design
    """
    if degree < 0:
        raise ValueError(f"degree must be non-negative, got {degree}")
    x = np.asarray(xs, dtype=np.float64).reshape(-1)
    y = np.asarray(ys, dtype=np.float64).reshape(-1)
    if x.size != y.size:
        raise FitError(f"x/y sample counts differ: {x.size} != {y.size}")
    if x.size < degree + 1:
        raise DegreeTooHighError(
            f"degree {degree} fit needs at least {degree + 1} samples, got {x.size}"
        )
    if not (np.all(np.isfinite(x)) and np.all(np.isfinite(y))):
        raise FitError("samples contain non-finite values")

    A = np.vander(x, degree + 1, increasing=True)
    Q, R = np.linalg.qr(A, mode="reduced")
    diag = np.abs(np.diag(R))
    if diag.size and diag.min() <= _RANK_TOL * max(diag.max(), 1.0):
        raise FitError("design matrix is rank deficient (repeated x samples?)")
    return solve_triangular(R, Q.T @ y, lower=False)


def polyeval(coeffs: Sequence[float], x: float) -> float:
    """Evaluate sum(c_i * x**i) by direct summation in ascending order."""
    result = 0.0
    for i, c in enumerate(coeffs):
        result += float(c) * x ** i
    return result


def polyeval_derivative(coeffs: Sequence[float], x: float) -> float:
    """Evaluate the first derivative sum(i * c_i * x**(i-1)), i >= 1."""
    result = 0.0
    for i, c in enumerate(coeffs):
        if i == 0:
            continue
        result += (i * float(c)) * x ** (i - 1)
    return result
