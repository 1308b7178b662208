from __future__ import annotations

from typing import Callable

import numpy as np

from curve_sculptor.deformation import Marker, ParametricCurve
from curve_sculptor.expressions import Expression
from curve_sculptor.settings import CurveDomain, FloatArray, ParameterDomain, SurfaceDomain

CurveSampler = Callable[[FloatArray], FloatArray]


def _finite_or_zero(value: float) -> float:
    return float(value) if np.isfinite(value) else 0.0


def even_positions(lo: float, hi: float, count: int) -> FloatArray:
    if count < 2:
        raise ValueError(f"count must be >= 2, got {count}")
    if not lo < hi:
        raise ValueError(f"lower bound ({lo}) must be < upper bound ({hi})")
    return np.linspace(lo, hi, count)


# ===========================================================================
# Render sampling
# ===========================================================================

def sample_graph(expr: Expression, domain: CurveDomain) -> tuple[FloatArray, FloatArray]:
    """Sample y = f(x); failure values stay in place so NaN breaks the line."""
    xs = domain.grid()
    return xs, np.asarray(expr(xs), dtype=np.float64)


def sample_parametric(curve: CurveSampler, domain: ParameterDomain) -> FloatArray:
    """Sample a curve (or deformation field) over t, keeping fully finite rows."""
    pts = np.asarray(curve(domain.grid()), dtype=np.float64)
    return pts[np.all(np.isfinite(pts), axis=-1)]


def sample_surface(expr: Expression, domain: SurfaceDomain) -> tuple[FloatArray, FloatArray, FloatArray]:
    xs, ys = domain.axes()
    gx, gy = np.meshgrid(xs, ys)
    return gx, gy, np.asarray(expr(gx, gy), dtype=np.float64)


# ===========================================================================
# Initial marker placement
# ===========================================================================

def initial_points(expr: Expression, domain: CurveDomain, count: int = 8) -> list[Marker]:
    """Evenly spaced points on the graph of *expr*; undefined values become 0."""
    xs = even_positions(domain.x_min, domain.x_max, count)
    ys = np.asarray(expr(xs), dtype=np.float64)
    return [
        Marker(x=float(x), y=_finite_or_zero(y), id=f"p{i}")
        for i, (x, y) in enumerate(zip(xs, ys))
    ]


def initial_curve_markers(curve: ParametricCurve, domain: ParameterDomain, count: int = 5) -> list[Marker]:
    ts = even_positions(domain.t_min, domain.t_max, count)
    markers = []
    for i, t in enumerate(ts):
        p = curve.point(float(t))
        coords = {a: _finite_or_zero(v) for a, v in zip(curve.axes, p)}
        markers.append(Marker(t=float(t), id=f"m{i}", **coords))
    return markers


def initial_surface_markers(expr: Expression, domain: SurfaceDomain, nx: int = 3, ny: int = 3) -> list[Marker]:
    xs = even_positions(domain.x_min, domain.x_max, nx)
    ys = even_positions(domain.y_min, domain.y_max, ny)
    markers = []
    for j, y in enumerate(ys):
        for i, x in enumerate(xs):
            z = _finite_or_zero(expr(float(x), float(y)))
            markers.append(Marker(x=float(x), y=float(y), z=z, id=f"s{j}_{i}"))
    return markers
