"""
Marker-driven deformation of parametric curves.

While a marker is dragged, KernelDeformer turns the per-marker residuals
``delta_i = target_i - base(t_i)`` into a smooth displacement field

    Delta(t) = sum_i delta_i * w(t, t_i) / (sum_i w(t, t_i) + eps),
    w(t, t_i) = exp(-((t - t_i) / sigma)^2)

evaluated independently per axis.  On release, ExpressionSynthesizer writes
the very same ratio out as formula text, so the committed curve is a plain
expression that no longer needs the marker list.  DisplacementClamp bounds
how far a single marker may be pulled away from the base curve.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from typing import Mapping, Optional, Sequence

import numpy as np
from numpy.typing import ArrayLike

from curve_sculptor.expressions import Expression, ExpressionCompiler, FailurePolicy
from curve_sculptor.logging import get_logger
from curve_sculptor.settings import KERNEL_EPSILON, ZERO_TOLERANCE, FloatArray, KernelSettings

log = get_logger(__name__)

AXES: tuple[str, ...] = ("x", "y", "z")
PARAMETER: str = "t"


def _new_id() -> str:
    return uuid.uuid4().hex


# ===========================================================================
# Data
# ===========================================================================

@dataclass(frozen=True, slots=True)
class Marker:
    """A draggable control point, optionally bound to a curve parameter."""

    x: float
    y: float
    z: Optional[float] = None
    t: Optional[float] = None
    id: str = field(default_factory=_new_id)
    label: Optional[str] = None

    @property
    def has_parameter(self) -> bool:
        return self.t is not None and bool(np.isfinite(self.t))

    def coordinate(self, axis: str) -> Optional[float]:
        if axis not in AXES:
            raise ValueError(f"unknown axis: {axis!r}")
        return getattr(self, axis)

    def position(self, axes: Sequence[str]) -> FloatArray:
        values = [self.coordinate(a) for a in axes]
        return np.array([np.nan if v is None else v for v in values], dtype=np.float64)

    def moved_to(self, position: ArrayLike, axes: Sequence[str]) -> "Marker":
        values = np.asarray(position, dtype=np.float64)
        if values.shape != (len(axes),):
            raise ValueError(f"position must have {len(axes)} component(s), got {values.shape}")
        return replace(self, **{a: float(v) for a, v in zip(axes, values)})


@dataclass(frozen=True, slots=True)
class ParametricCurve:
    """Per-axis expressions of a curve parameterised by ``t``."""

    x: Expression
    y: Expression
    z: Optional[Expression] = None

    @classmethod
    def from_text(
        cls,
        x: str,
        y: str,
        z: Optional[str] = None,
        failure: FailurePolicy = FailurePolicy.ZERO,
    ) -> "ParametricCurve":
        compiler = ExpressionCompiler((PARAMETER,), failure)
        return cls(
            x=compiler.compile(x),
            y=compiler.compile(y),
            z=compiler.compile(z) if z is not None else None,
        )

    @property
    def axes(self) -> tuple[str, ...]:
        return AXES if self.z is not None else AXES[:2]

    @property
    def errors(self) -> dict[str, str]:
        return {a: self.component(a).error for a in self.axes if not self.component(a).ok}

    def component(self, axis: str) -> Expression:
        expr = getattr(self, axis) if axis in AXES else None
        if expr is None:
            raise ValueError(f"curve has no {axis!r} component")
        return expr

    def texts(self) -> dict[str, str]:
        return {a: self.component(a).text for a in self.axes}

    def point(self, t: float) -> FloatArray:
        return np.array([self.component(a)(t) for a in self.axes], dtype=np.float64)

    def evaluate(self, t: ArrayLike) -> FloatArray:
        """Sample every axis at *t*; result has shape ``t.shape + (len(axes),)``."""
        t_arr = np.asarray(t, dtype=np.float64)
        return np.stack([np.asarray(self.component(a)(t_arr)) for a in self.axes], axis=-1)


def parameter_markers(markers: Sequence[Marker]) -> list[Marker]:
    """Markers that can take part in kernel deformation (finite ``t``)."""
    return [m for m in markers if m.has_parameter]


def compute_residuals(
    base: ParametricCurve, markers: Sequence[Marker]
) -> tuple[FloatArray, dict[str, FloatArray]]:
    """Return marker parameters and the per-axis residuals against *base*.

    A marker lacking a coordinate on some axis contributes no displacement
    on that axis.
    """
    usable = parameter_markers(markers)
    nodes = np.array([m.t for m in usable], dtype=np.float64)
    deltas: dict[str, FloatArray] = {}
    for axis in base.axes:
        expr = base.component(axis)
        values = np.empty(len(usable), dtype=np.float64)
        for k, m in enumerate(usable):
            target = m.coordinate(axis)
            values[k] = 0.0 if target is None else float(target) - float(expr(m.t))
        deltas[axis] = values
    return nodes, deltas


# ===========================================================================
# Live preview
# ===========================================================================

@dataclass(frozen=True, slots=True)
class DeformationField:
    """Displacement per axis as a function of ``t``; derived, never persisted."""

    base: ParametricCurve
    nodes: FloatArray
    deltas: Mapping[str, FloatArray]
    sigma: float
    epsilon: float
    active: bool

    def weights(self, t: ArrayLike) -> FloatArray:
        t_arr = np.asarray(t, dtype=np.float64)
        u = (t_arr[..., np.newaxis] - self.nodes) / self.sigma
        return np.exp(-(u * u))

    def displacement(self, axis: str, t: ArrayLike) -> FloatArray:
        t_arr = np.asarray(t, dtype=np.float64)
        if not self.active:
            return np.zeros(t_arr.shape)
        w = self.weights(t_arr)
        num = w @ self.deltas[axis]
        den = np.sum(w, axis=-1) + self.epsilon
        return num / den

    def evaluate(self, axis: str, t: ArrayLike) -> FloatArray:
        """Deformed coordinate: base(t) + Delta(t)."""
        t_arr = np.asarray(t, dtype=np.float64)
        return np.asarray(self.base.component(axis)(t_arr)) + self.displacement(axis, t_arr)

    def __call__(self, t: ArrayLike) -> FloatArray:
        t_arr = np.asarray(t, dtype=np.float64)
        return np.stack([self.evaluate(a, t_arr) for a in self.base.axes], axis=-1)


@dataclass(frozen=True, slots=True)
class KernelDeformer:
    """Normalised Gaussian blending of marker residuals along ``t``.

    Smaller *sigma* pulls the field closer to interpolating each residual at
    its own marker.  Between widely spaced markers the field falls back
    towards zero rather than blending linearly; that is the price of a
    C-infinity preview.
    """

    sigma: float
    epsilon: float = KERNEL_EPSILON

    def __post_init__(self) -> None:
        if not self.sigma > 0:
            raise ValueError(f"sigma must be positive, got {self.sigma}")
        if not self.epsilon > 0:
            raise ValueError(f"epsilon must be positive, got {self.epsilon}")

    @classmethod
    def from_settings(cls, settings: KernelSettings) -> "KernelDeformer":
        return cls(sigma=settings.sigma, epsilon=settings.epsilon)

    @staticmethod
    def is_active(markers: Sequence[Marker]) -> bool:
        return len(parameter_markers(markers)) >= 2

    def build(self, base: ParametricCurve, markers: Sequence[Marker]) -> DeformationField:
        """Field for *markers*; the identity field when fewer than two have ``t``.

        Callers seeing ``field.active == False`` should plot the current edit
        expression instead.
        """
        nodes, deltas = compute_residuals(base, markers)
        return DeformationField(
            base=base,
            nodes=nodes,
            deltas=deltas,
            sigma=self.sigma,
            epsilon=self.epsilon,
            active=len(nodes) >= 2,
        )


# ===========================================================================
# Drag clamp
# ===========================================================================

@dataclass(frozen=True, slots=True)
class DisplacementClamp:
    max_delta: float

    def __post_init__(self) -> None:
        if not self.max_delta > 0:
            raise ValueError(f"max_delta must be positive, got {self.max_delta}")

    def limit(self, displacement: ArrayLike) -> FloatArray:
        """Rescale *displacement* to length max_delta when it is longer."""
        d = np.asarray(displacement, dtype=np.float64)
        norm = float(np.linalg.norm(d))
        if norm <= self.max_delta:
            return d.copy()
        return d * (self.max_delta / norm)

    def apply(self, base: ArrayLike, proposed: ArrayLike) -> FloatArray:
        base_arr = np.asarray(base, dtype=np.float64)
        proposed_arr = np.asarray(proposed, dtype=np.float64)
        if base_arr.shape != proposed_arr.shape:
            raise ValueError(f"shape mismatch: {base_arr.shape} != {proposed_arr.shape}")
        d = proposed_arr - base_arr
        if float(np.linalg.norm(d)) <= self.max_delta:
            return proposed_arr.copy()
        return base_arr + self.limit(d)


# ===========================================================================
# Commit: field -> formula text
# ===========================================================================

@dataclass(frozen=True, slots=True)
class SynthesisResult:
    ok: bool
    expressions: Mapping[str, str] = field(default_factory=dict)
    reason: Optional[str] = None
    dropped: int = 0


@dataclass(frozen=True, slots=True)
class ExpressionSynthesizer:
    """Writes the kernel field out as ``(base) + (numerator/denominator)``.

    Numbers are emitted with ``repr`` so the text reproduces the preview
    closure to floating-point rounding.  Residuals below *tolerance* leave
    the numerator; every marker still weighs in the denominator.
    """

    sigma: float
    epsilon: float = KERNEL_EPSILON
    tolerance: float = ZERO_TOLERANCE

    def __post_init__(self) -> None:
        if not self.sigma > 0:
            raise ValueError(f"sigma must be positive, got {self.sigma}")
        if not self.epsilon > 0:
            raise ValueError(f"epsilon must be positive, got {self.epsilon}")

    @classmethod
    def from_settings(cls, settings: KernelSettings) -> "ExpressionSynthesizer":
        return cls(sigma=settings.sigma, epsilon=settings.epsilon)

    def weight_text(self, node: float) -> str:
        return f"exp(-((({PARAMETER})-({float(node)!r}))/{float(self.sigma)!r})^2)"

    def correction_text(self, nodes: Sequence[float], deltas: Sequence[float]) -> tuple[str, int]:
        weights = [self.weight_text(float(n)) for n in nodes]
        numer = [
            f"({float(d)!r})*{w}"
            for d, w in zip(deltas, weights)
            if abs(d) >= self.tolerance
        ]
        dropped = len(weights) - len(numer)
        numerator = " + ".join(numer) if numer else "0"
        denominator = " + ".join(weights + [repr(float(self.epsilon))])
        return f"({numerator})/({denominator})", dropped

    def synthesize(self, base: ParametricCurve, markers: Sequence[Marker]) -> SynthesisResult:
        errors = base.errors
        if errors:
            return SynthesisResult(ok=False, reason=f"base expression invalid: {errors}")

        nodes, deltas = compute_residuals(base, markers)
        if len(nodes) < 2:
            reason = f"at least two markers with a curve parameter are required (got {len(nodes)})"
            log.debug("synthesis skipped: %s", reason)
            return SynthesisResult(ok=False, reason=reason)

        texts: dict[str, str] = {}
        dropped = 0
        for axis, base_text in base.texts().items():
            correction, n_dropped = self.correction_text(nodes, deltas[axis])
            dropped += n_dropped
            texts[axis] = f"({base_text}) + ({correction})"

        log.debug("synthesized %d axis expression(s) from %d marker(s)", len(texts), len(nodes))
        return SynthesisResult(ok=True, expressions=texts, dropped=dropped)
