"""Engine constants and validated configuration records."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np
from numpy.typing import NDArray

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------

FloatArray = NDArray[np.floating[Any]]

# ---------------------------------------------------------------------------
# Numeric constants
# ---------------------------------------------------------------------------

ZERO_TOLERANCE: float = 1e-12      # coefficients / residuals below this are noise
SURFACE_RIDGE: float = 1e-8        # Tikhonov term added to the 2-D normal equations
KERNEL_EPSILON: float = 1e-12      # keeps the kernel ratio finite far from markers
DEFAULT_DECIMALS: int = 6          # rounding applied before formatting coefficients

CURVE_DEGREE_RANGE: tuple[int, int] = (1, 8)
SURFACE_DEGREE_RANGE: tuple[int, int] = (1, 6)
MIN_CURVE_SAMPLES: int = 11
MIN_SURFACE_GRID: int = 8


def clamp_degree(degree: int, bounds: tuple[int, int]) -> int:
    lo, hi = bounds
    return max(lo, min(hi, int(degree)))


# ===========================================================================
# Domains
# ===========================================================================

@dataclass(frozen=True, slots=True)
class CurveDomain:
    """Plotting interval for y = f(x)."""

    x_min: float = -3.0
    x_max: float = 3.0
    samples: int = 221

    def __post_init__(self) -> None:
        if not self.x_min < self.x_max:
            raise ValueError(f"x_min ({self.x_min}) must be < x_max ({self.x_max})")
        if self.samples < MIN_CURVE_SAMPLES:
            raise ValueError(f"samples must be > 10, got {self.samples}")

    @property
    def width(self) -> float:
        return self.x_max - self.x_min

    def grid(self) -> FloatArray:
        return np.linspace(self.x_min, self.x_max, self.samples)


@dataclass(frozen=True, slots=True)
class ParameterDomain:
    """Parameter interval [t_min, t_max] of a parametric curve."""

    t_min: float = -2.0
    t_max: float = 2.0
    samples: int = 200

    def __post_init__(self) -> None:
        if not self.t_min < self.t_max:
            raise ValueError(f"t_min ({self.t_min}) must be < t_max ({self.t_max})")
        if self.samples < MIN_CURVE_SAMPLES:
            raise ValueError(f"samples must be > 10, got {self.samples}")

    def contains(self, t: float) -> bool:
        return self.t_min <= t <= self.t_max

    def grid(self) -> FloatArray:
        return np.linspace(self.t_min, self.t_max, self.samples)


@dataclass(frozen=True, slots=True)
class SurfaceDomain:
    x_min: float = -3.0
    x_max: float = 3.0
    y_min: float = -3.0
    y_max: float = 3.0
    nx: int = 60
    ny: int = 60

    def __post_init__(self) -> None:
        if not self.x_min < self.x_max:
            raise ValueError(f"x_min ({self.x_min}) must be < x_max ({self.x_max})")
        if not self.y_min < self.y_max:
            raise ValueError(f"y_min ({self.y_min}) must be < y_max ({self.y_max})")
        # frozen: bypass __setattr__ to raise coarse grids to the minimum
        object.__setattr__(self, "nx", max(MIN_SURFACE_GRID, int(self.nx)))
        object.__setattr__(self, "ny", max(MIN_SURFACE_GRID, int(self.ny)))

    def axes(self) -> tuple[FloatArray, FloatArray]:
        return (
            np.linspace(self.x_min, self.x_max, self.nx),
            np.linspace(self.y_min, self.y_max, self.ny),
        )


# ===========================================================================
# Algorithm settings
# ===========================================================================

@dataclass(frozen=True, slots=True)
class KernelSettings:
    """Gaussian kernel bandwidth, ratio guard and drag clamp radius."""

    sigma: float = 0.35
    epsilon: float = KERNEL_EPSILON
    max_delta: float = 1.5

    def __post_init__(self) -> None:
        if not self.sigma > 0:
            raise ValueError(f"sigma must be positive, got {self.sigma}")
        if not self.epsilon > 0:
            raise ValueError(f"epsilon must be positive, got {self.epsilon}")
        if not self.max_delta > 0:
            raise ValueError(f"max_delta must be positive, got {self.max_delta}")


@dataclass(frozen=True, slots=True)
class FitSettings:
    curve_degree: int = 3
    surface_degree: int = 2
    ridge: float = SURFACE_RIDGE
    retry_ridge: float = 0.0       # 0 disables the regularised 1-D retry

    def __post_init__(self) -> None:
        if self.ridge < 0:
            raise ValueError(f"ridge cannot be negative: {self.ridge}")
        if self.retry_ridge < 0:
            raise ValueError(f"retry_ridge cannot be negative: {self.retry_ridge}")
