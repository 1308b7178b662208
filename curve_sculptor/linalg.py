from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import Optional

import numpy as np
from numpy.typing import ArrayLike
from scipy.linalg import LinAlgError, LinAlgWarning, solve

from curve_sculptor.logging import get_logger
from curve_sculptor.settings import FloatArray

log = get_logger(__name__)

# 1 / machine epsilon: beyond this the solution carries no correct digits.
MAX_CONDITION: float = 1.0 / float(np.finfo(np.float64).eps)


@dataclass(frozen=True, slots=True)
class SolveResult:
    ok: bool
    solution: Optional[FloatArray] = None
    reason: Optional[str] = None
    condition: float = float("nan")


class LinearSolver:
    """Dense solve of A·w = b that reports failure instead of raising.

    Shape mismatches are programming errors and raise ValueError; singular,
    ill-conditioned or non-finite systems come back as ``ok=False``.
    """

    def __init__(self, max_condition: float = MAX_CONDITION) -> None:
        if max_condition <= 1:
            raise ValueError(f"max_condition must be > 1, got {max_condition}")
        self._max_condition = float(max_condition)

    def solve(self, a: ArrayLike, b: ArrayLike) -> SolveResult:
        a_arr = np.asarray(a, dtype=np.float64)
        b_arr = np.asarray(b, dtype=np.float64)
        if a_arr.ndim != 2 or a_arr.shape[0] != a_arr.shape[1]:
            raise ValueError(f"A must be square, got shape {a_arr.shape}")
        if b_arr.shape != (a_arr.shape[0],):
            raise ValueError(f"b must have shape ({a_arr.shape[0]},), got {b_arr.shape}")

        if not (np.all(np.isfinite(a_arr)) and np.all(np.isfinite(b_arr))):
            return self._fail("system has non-finite entries")

        with np.errstate(divide="ignore", invalid="ignore"):
            cond = float(np.linalg.cond(a_arr))
        if not np.isfinite(cond) or cond > self._max_condition:
            return self._fail(f"matrix is singular or ill-conditioned (cond={cond:.3g})", cond)

        try:
            with warnings.catch_warnings():
                warnings.simplefilter("error", LinAlgWarning)
                w = solve(a_arr, b_arr, check_finite=False)
        except LinAlgWarning as exc:
            return self._fail(f"matrix is ill-conditioned: {exc}", cond)
        except (LinAlgError, ValueError) as exc:
            return self._fail(f"matrix is singular: {exc}", cond)

        w = np.asarray(w, dtype=np.float64)
        if not np.all(np.isfinite(w)):
            return self._fail("solution is not finite", cond)
        return SolveResult(ok=True, solution=w, condition=cond)

    @staticmethod
    def _fail(reason: str, cond: float = float("nan")) -> SolveResult:
        log.debug("linear solve failed: %s", reason)
        return SolveResult(ok=False, reason=reason, condition=cond)
