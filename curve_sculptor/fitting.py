from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np
from numpy.polynomial import polynomial as P
from numpy.typing import ArrayLike

from curve_sculptor.linalg import LinearSolver
from curve_sculptor.logging import get_logger
from curve_sculptor.settings import (
    CURVE_DEGREE_RANGE,
    SURFACE_DEGREE_RANGE,
    SURFACE_RIDGE,
    FloatArray,
    clamp_degree,
)

log = get_logger(__name__)

Exponents = tuple[tuple[int, int], ...]


def compute_rmse(y_true: FloatArray, y_pred: FloatArray) -> float:
    if len(y_true) == 0:
        return float("nan")
    return float(np.sqrt(np.mean((y_true - y_pred) ** 2)))


def _as_vector(values: ArrayLike, name: str) -> FloatArray:
    arr = np.asarray(values, dtype=np.float64)
    if arr.ndim != 1:
        raise ValueError(f"{name} must be one-dimensional, got shape {arr.shape}")
    return arr


def _equilibrate(design: FloatArray) -> tuple[FloatArray, FloatArray]:
    """Scale each column of *design* to unit norm; returns (scaled, norms).

    Raw monomial columns span many orders of magnitude on wide domains, so
    the normal equations are solved in the scaled basis and the solution is
    divided by *norms* afterwards.
    """
    norms = np.linalg.norm(design, axis=0)
    norms = np.where(norms > 0, norms, 1.0)
    return design / norms, norms


# ===========================================================================
# Results
# ===========================================================================

@dataclass(frozen=True, slots=True)
class FitResult:
    """Outcome of a 1-D polynomial fit.

    ``coefficients`` run from the constant term upwards.  When ``ok`` is
    False there are no coefficients and ``reason`` says why.
    """

    ok: bool
    degree: int
    requested_degree: int
    coefficients: Optional[FloatArray] = None
    reason: Optional[str] = None
    rmse: float = float("nan")
    regularized: bool = False

    def evaluate(self, x: ArrayLike) -> FloatArray:
        if self.coefficients is None:
            return np.full(np.shape(x), np.nan)
        return np.asarray(P.polyval(np.asarray(x, dtype=np.float64), self.coefficients))


@dataclass(frozen=True, slots=True)
class SurfaceFitResult:
    """Outcome of a 2-D fit: weights over the triangular monomial basis."""

    ok: bool
    degree: int
    basis: Exponents = ()
    weights: Optional[FloatArray] = None
    reason: Optional[str] = None
    rmse: float = float("nan")

    def evaluate(self, x: ArrayLike, y: ArrayLike) -> FloatArray:
        x_arr = np.asarray(x, dtype=np.float64)
        y_arr = np.asarray(y, dtype=np.float64)
        if self.weights is None:
            return np.full(np.broadcast_shapes(x_arr.shape, y_arr.shape), np.nan)
        total = np.zeros(np.broadcast_shapes(x_arr.shape, y_arr.shape))
        for (i, j), w in zip(self.basis, self.weights):
            total = total + w * x_arr ** i * y_arr ** j
        return total


# ===========================================================================
# y = f(x)
# ===========================================================================

class PolynomialFitter1D:
    """Least squares via Vandermonde matrix and normal equations.

    The requested degree is clamped to CURVE_DEGREE_RANGE and then to
    ``n - 1`` so there are never more coefficients than points.
    """

    def __init__(self, solver: Optional[LinearSolver] = None, retry_ridge: float = 0.0) -> None:
        if retry_ridge < 0:
            raise ValueError(f"retry_ridge cannot be negative: {retry_ridge}")
        self._solver = solver or LinearSolver()
        self._retry_ridge = float(retry_ridge)

    def fit(self, x: ArrayLike, y: ArrayLike, degree: int) -> FitResult:
        x_arr = _as_vector(x, "x")
        y_arr = _as_vector(y, "y")
        if x_arr.shape != y_arr.shape:
            raise ValueError(f"x and y lengths differ: {len(x_arr)} != {len(y_arr)}")
        if len(x_arr) == 0:
            raise ValueError("at least one point is required")

        requested = clamp_degree(degree, CURVE_DEGREE_RANGE)
        finite = np.isfinite(x_arr) & np.isfinite(y_arr)
        x_arr, y_arr = x_arr[finite], y_arr[finite]
        n = len(x_arr)
        if n == 0:
            return FitResult(ok=False, degree=0, requested_degree=requested,
                             reason="no finite points")

        d_eff = min(requested, n - 1)
        if d_eff < requested:
            log.debug("degree %d clamped to %d for %d point(s)", requested, d_eff, n)

        v, norms = _equilibrate(np.vander(x_arr, d_eff + 1, increasing=True))
        a = v.T @ v
        b = v.T @ y_arr

        result = self._solver.solve(a, b)
        regularized = False
        if not result.ok and self._retry_ridge > 0:
            lam = self._retry_ridge * float(np.mean(np.diag(a)))
            log.debug("retrying 1-D normal equations with ridge %.3g", lam)
            result = self._solver.solve(a + lam * np.eye(d_eff + 1), b)
            regularized = True

        if not result.ok or result.solution is None:
            log.warning("1-D fit failed: %s", result.reason)
            return FitResult(ok=False, degree=d_eff, requested_degree=requested,
                             reason=f"normal equations could not be solved: {result.reason}")

        coeffs = result.solution / norms
        rmse = compute_rmse(y_arr, np.asarray(P.polyval(x_arr, coeffs)))
        return FitResult(
            ok=True,
            degree=d_eff,
            requested_degree=requested,
            coefficients=coeffs,
            rmse=rmse,
            regularized=regularized,
        )


# ===========================================================================
# z = f(x, y)
# ===========================================================================

def surface_basis(degree: int) -> Exponents:
    """All (i, j) with i + j <= degree, ordered by total degree then by i descending."""
    return tuple(
        (i, total - i)
        for total in range(degree + 1)
        for i in range(total, -1, -1)
    )


def basis_size(degree: int) -> int:
    return (degree + 1) * (degree + 2) // 2


class PolynomialFitter2D:
    """Ridge-stabilised least squares over the triangular monomial basis.

    Unlike the 1-D fitter there is no silent degree reduction: too few
    points for the requested degree is reported as a failed fit.  The ridge
    is added after the design columns are scaled to unit norm.
    """

    def __init__(self, solver: Optional[LinearSolver] = None, ridge: float = SURFACE_RIDGE) -> None:
        if ridge < 0:
            raise ValueError(f"ridge cannot be negative: {ridge}")
        self._solver = solver or LinearSolver()
        self._ridge = float(ridge)

    def fit(self, x: ArrayLike, y: ArrayLike, z: ArrayLike, degree: int) -> SurfaceFitResult:
        x_arr = _as_vector(x, "x")
        y_arr = _as_vector(y, "y")
        z_arr = _as_vector(z, "z")
        if not (x_arr.shape == y_arr.shape == z_arr.shape):
            raise ValueError(
                f"x, y, z lengths differ: {len(x_arr)}, {len(y_arr)}, {len(z_arr)}"
            )

        d = clamp_degree(degree, SURFACE_DEGREE_RANGE)
        finite = np.isfinite(x_arr) & np.isfinite(y_arr) & np.isfinite(z_arr)
        x_arr, y_arr, z_arr = x_arr[finite], y_arr[finite], z_arr[finite]

        basis = surface_basis(d)
        n, m = len(x_arr), len(basis)
        if n < m:
            reason = f"insufficient points ({n}/{m})"
            log.warning("2-D fit of degree %d rejected: %s", d, reason)
            return SurfaceFitResult(ok=False, degree=d, reason=reason)

        design = np.column_stack([x_arr ** i * y_arr ** j for i, j in basis])
        scaled, norms = _equilibrate(design)
        normal = scaled.T @ scaled + self._ridge * np.eye(m)
        rhs = scaled.T @ z_arr

        result = self._solver.solve(normal, rhs)
        if not result.ok or result.solution is None:
            log.warning("2-D fit failed: %s", result.reason)
            return SurfaceFitResult(ok=False, degree=d,
                                    reason=f"normal equations could not be solved: {result.reason}")

        weights = result.solution / norms
        return SurfaceFitResult(
            ok=True,
            degree=d,
            basis=basis,
            weights=weights,
            rmse=compute_rmse(z_arr, design @ weights),
        )
