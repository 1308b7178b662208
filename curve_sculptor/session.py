"""
Editing sessions: the caller-owned state around the pure engine.

A session holds the "current expression" and "current markers" of one
editor view and re-invokes compilers and fitters explicitly whenever its
inputs change.  Nothing here is shared between sessions.
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np
from numpy.typing import ArrayLike

from curve_sculptor.deformation import (
    DeformationField,
    DisplacementClamp,
    ExpressionSynthesizer,
    KernelDeformer,
    Marker,
    ParametricCurve,
    SynthesisResult,
)
from curve_sculptor.expressions import Expression, ExpressionCompiler, FailurePolicy
from curve_sculptor.fitting import FitResult, PolynomialFitter1D, PolynomialFitter2D, SurfaceFitResult
from curve_sculptor.latex_gen import PolynomialFormatter
from curve_sculptor.logging import get_logger
from curve_sculptor.sampling import (
    even_positions,
    initial_curve_markers,
    initial_points,
    initial_surface_markers,
    sample_graph,
    sample_parametric,
    sample_surface,
)
from curve_sculptor.settings import (
    CURVE_DEGREE_RANGE,
    SURFACE_DEGREE_RANGE,
    CurveDomain,
    FitSettings,
    FloatArray,
    KernelSettings,
    ParameterDomain,
    SurfaceDomain,
    clamp_degree,
)

log = get_logger(__name__)


def _index_of(markers: Sequence[Marker], marker_id: str) -> int:
    for i, m in enumerate(markers):
        if m.id == marker_id:
            return i
    raise KeyError(f"no marker with id {marker_id!r}")


# ===========================================================================
# y = f(x) with polynomial fit through dragged points
# ===========================================================================

class GraphSession:

    def __init__(
        self,
        equation: str = "0.5*x^3 - 2*x",
        domain: Optional[CurveDomain] = None,
        fit: Optional[FitSettings] = None,
        point_count: int = 8,
        formatter: Optional[PolynomialFormatter] = None,
    ) -> None:
        self._compiler = ExpressionCompiler(("x",), FailurePolicy.UNDEFINED)
        self._fit_settings = fit or FitSettings()
        self._fitter = PolynomialFitter1D(retry_ridge=self._fit_settings.retry_ridge)
        self._formatter = formatter or PolynomialFormatter()
        self._exact = PolynomialFormatter(decimals=None)
        self.domain = domain or CurveDomain()
        self.degree = clamp_degree(self._fit_settings.curve_degree, CURVE_DEGREE_RANGE)
        self.equation: Expression = self._compiler.compile(equation)
        self.points: list[Marker] = initial_points(self.equation, self.domain, point_count)

    def set_equation(self, text: str) -> Expression:
        """Recompile; a parse error is surfaced on ``Expression.error``."""
        self.equation = self._compiler.compile(text)
        return self.equation

    def set_degree(self, degree: int) -> int:
        self.degree = clamp_degree(degree, CURVE_DEGREE_RANGE)
        return self.degree

    def apply_equation(self) -> list[Marker]:
        """Move every point vertically onto the typed equation."""
        xs = np.array([p.x for p in self.points], dtype=np.float64)
        ys = np.asarray(self.equation(xs), dtype=np.float64)
        ys = np.where(np.isfinite(ys), ys, 0.0)
        self.points = [p.moved_to([y], ("y",)) for p, y in zip(self.points, ys)]
        return self.points

    def move_point(self, point_id: str, x: float, y: float) -> Marker:
        i = _index_of(self.points, point_id)
        moved = self.points[i].moved_to([x, y], ("x", "y"))
        self.points = [*self.points[:i], moved, *self.points[i + 1:]]
        return moved

    def fit(self) -> FitResult:
        return self._fitter.fit(
            [p.x for p in self.points], [p.y for p in self.points], self.degree
        )

    def fitted_text(self) -> Optional[str]:
        return self._formatter.format_fit(self.fit())

    def resample_domain(self, domain: CurveDomain) -> FitResult:
        """Spread the points across *domain*, following the current fit."""
        result = self.fit()
        if not result.ok:
            return result
        self.domain = domain
        xs = even_positions(domain.x_min, domain.x_max, len(self.points))
        ys = result.evaluate(xs)
        self.points = [
            Marker(x=float(x), y=float(y) if np.isfinite(y) else 0.0, id=f"p{i}")
            for i, (x, y) in enumerate(zip(xs, ys))
        ]
        return result

    def commit_fit(self) -> FitResult:
        """Replace the equation with the fit of the current points at full precision."""
        result = self.fit()
        text = self._exact.format_fit(result)
        if text is not None:
            self.set_equation(f"y = {text}")
            log.info("graph committed: y = %s", self._formatter.format_fit(result))
        return result

    def sample(self) -> tuple[FloatArray, FloatArray]:
        return sample_graph(self.equation, self.domain)


# ===========================================================================
# Parametric curve with local kernel edits
# ===========================================================================

class CurveSession:
    """Base curve, edit curve and markers of one parametric-curve editor.

    The base curve (failure value 0) is never modified; it is the reference
    for residuals and for the drag clamp.  The edit curve (failure value
    NaN) is what gets plotted once no live field is active, and is replaced
    on every successful commit.
    """

    def __init__(
        self,
        x: str,
        y: str,
        z: Optional[str] = None,
        domain: Optional[ParameterDomain] = None,
        kernel: Optional[KernelSettings] = None,
        markers: Optional[Sequence[Marker]] = None,
        marker_count: int = 5,
    ) -> None:
        self.domain = domain or ParameterDomain()
        self.kernel = kernel or KernelSettings()
        self.base = ParametricCurve.from_text(x, y, z, FailurePolicy.ZERO)
        self.edit = ParametricCurve.from_text(x, y, z, FailurePolicy.UNDEFINED)
        self._deformer = KernelDeformer.from_settings(self.kernel)
        self._clamp = DisplacementClamp(self.kernel.max_delta)
        self._synthesizer = ExpressionSynthesizer.from_settings(self.kernel)
        self._initial = list(markers) if markers is not None else initial_curve_markers(
            self.base, self.domain, marker_count
        )
        self.markers: list[Marker] = list(self._initial)

    @property
    def axes(self) -> tuple[str, ...]:
        return self.base.axes

    def move_marker(self, marker_id: str, position: ArrayLike) -> Marker:
        """Move a marker, clamped to max_delta around its base-curve point."""
        i = _index_of(self.markers, marker_id)
        marker = self.markers[i]
        proposed = np.asarray(position, dtype=np.float64)
        t = marker.t
        if t is not None and marker.has_parameter:
            if not self.domain.contains(t):
                log.debug("marker %s has t=%g outside [%g, %g]",
                          marker_id, t, self.domain.t_min, self.domain.t_max)
            proposed = self._clamp.apply(self.base.point(t), proposed)
        moved = marker.moved_to(proposed, self.axes)
        self.markers = [*self.markers[:i], moved, *self.markers[i + 1:]]
        return moved

    def field(self) -> DeformationField:
        return self._deformer.build(self.base, self.markers)

    def preview(self, t: ArrayLike) -> FloatArray:
        """Live positions: the kernel field when active, else the edit curve."""
        field = self.field()
        if field.active:
            return field(t)
        return self.edit.evaluate(t)

    def sample(self) -> FloatArray:
        return sample_parametric(self.preview, self.domain)

    def commit(self) -> SynthesisResult:
        result = self._synthesizer.synthesize(self.base, self.markers)
        if not result.ok:
            log.info("curve commit skipped: %s", result.reason)
            return result
        texts = result.expressions
        self.edit = ParametricCurve.from_text(
            texts["x"], texts["y"], texts.get("z"), FailurePolicy.UNDEFINED
        )
        log.info("curve committed from %d marker(s)", len(self.markers))
        return result

    def reset(self) -> None:
        texts = self.base.texts()
        self.edit = ParametricCurve.from_text(
            texts["x"], texts["y"], texts.get("z"), FailurePolicy.UNDEFINED
        )
        self.markers = list(self._initial)


# ===========================================================================
# z = f(x, y) with global polynomial refit
# ===========================================================================

class SurfaceSession:
    """Surface editor: markers move along z and commit refits the whole sheet."""

    def __init__(
        self,
        expression: str = "exp(-(x^2 + y^2))",
        domain: Optional[SurfaceDomain] = None,
        fit: Optional[FitSettings] = None,
        kernel: Optional[KernelSettings] = None,
        markers: Optional[Sequence[Marker]] = None,
        grid: tuple[int, int] = (3, 3),
        formatter: Optional[PolynomialFormatter] = None,
    ) -> None:
        fit_settings = fit or FitSettings()
        self.domain = domain or SurfaceDomain()
        self.degree = clamp_degree(fit_settings.surface_degree, SURFACE_DEGREE_RANGE)
        self._fitter = PolynomialFitter2D(ridge=fit_settings.ridge)
        self._formatter = formatter or PolynomialFormatter()
        self._exact = PolynomialFormatter(decimals=None)
        self._clamp = DisplacementClamp((kernel or KernelSettings()).max_delta)
        self._plot_compiler = ExpressionCompiler(("x", "y"), FailurePolicy.UNDEFINED)
        self.base = ExpressionCompiler(("x", "y"), FailurePolicy.ZERO).compile(expression)
        self.surface: Expression = self._plot_compiler.compile(expression)
        self.markers: list[Marker] = list(markers) if markers is not None else initial_surface_markers(
            self.base, self.domain, *grid
        )
        self.last_fit: Optional[SurfaceFitResult] = None

    def set_degree(self, degree: int) -> int:
        self.degree = clamp_degree(degree, SURFACE_DEGREE_RANGE)
        return self.degree

    def move_marker(self, marker_id: str, z: float) -> Marker:
        i = _index_of(self.markers, marker_id)
        marker = self.markers[i]
        base_z = float(self.base(marker.x, marker.y))
        (clamped,) = self._clamp.apply([base_z], [z])
        moved = marker.moved_to([clamped], ("z",))
        self.markers = [*self.markers[:i], moved, *self.markers[i + 1:]]
        return moved

    def add_marker(self, marker: Marker) -> None:
        self.markers = [*self.markers, marker]

    def commit(self) -> SurfaceFitResult:
        """Refit every marker and replace the surface expression outright."""
        result = self._fitter.fit(
            [m.x for m in self.markers],
            [m.y for m in self.markers],
            [np.nan if m.z is None else m.z for m in self.markers],
            self.degree,
        )
        self.last_fit = result
        text = self._exact.format_surface(result)
        if text is None:
            log.info("surface commit failed: %s", result.reason)
            return result
        self.surface = self._plot_compiler.compile(f"z = {text}")
        log.info("surface committed: z = %s", self.fitted_text())
        return result

    def fitted_text(self) -> Optional[str]:
        """Display text of the last refit, rounded by the session formatter."""
        if self.last_fit is None:
            return None
        return self._formatter.format_surface(self.last_fit)

    def sample(self) -> tuple[FloatArray, FloatArray, FloatArray]:
        return sample_surface(self.surface, self.domain)
