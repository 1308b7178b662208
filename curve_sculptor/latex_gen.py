from __future__ import annotations

from typing import Optional, Sequence

import sympy as sp

from curve_sculptor.expressions import Expression
from curve_sculptor.fitting import Exponents, FitResult, SurfaceFitResult
from curve_sculptor.settings import DEFAULT_DECIMALS, ZERO_TOLERANCE


def round_coefficient(value: float, decimals: Optional[int] = DEFAULT_DECIMALS) -> float:
    """Round to *decimals* places; anything that lands below ZERO_TOLERANCE is 0.

    ``decimals=None`` keeps the value as is apart from the zero cut.
    """
    if abs(value) < ZERO_TOLERANCE:
        return 0.0
    if decimals is None:
        return float(value)
    rounded = round(float(value), decimals)
    return 0.0 if abs(rounded) < ZERO_TOLERANCE else rounded


def format_number(value: float, decimals: Optional[int] = DEFAULT_DECIMALS) -> str:
    if decimals is None:
        return repr(float(value))
    text = f"{value:.{decimals}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def _monomial(powers: Sequence[tuple[str, int]]) -> str:
    parts = []
    for name, k in powers:
        if k == 1:
            parts.append(name)
        elif k > 1:
            parts.append(f"{name}^{k}")
    return "*".join(parts)


# ===========================================================================
# Plain-text formatter
# ===========================================================================

class PolynomialFormatter:
    """Renders fitted coefficients as an editable, re-compilable formula.

    Coefficients are rounded to *decimals* places, near-zero terms are
    dropped and a unit coefficient is never written as an explicit ``1*``.
    With ``decimals=None`` numbers are written with ``repr`` so the text
    evaluates back to the fitted polynomial; use that for persisted formulas.
    """

    def __init__(self, decimals: Optional[int] = DEFAULT_DECIMALS) -> None:
        self.decimals = None if decimals is None else max(0, min(12, int(decimals)))

    def format_1d(self, coefficients: Sequence[float], variable: str = "x") -> str:
        """Coefficients low-to-high in, highest power first out."""
        terms = [
            (float(c), _monomial([(variable, k)]))
            for k, c in reversed(list(enumerate(coefficients)))
        ]
        return self._join(terms)

    def format_2d(self, basis: Exponents, weights: Sequence[float],
                  variables: tuple[str, str] = ("x", "y")) -> str:
        order = sorted(range(len(basis)),
                       key=lambda m: (-(basis[m][0] + basis[m][1]), -basis[m][0]))
        vx, vy = variables
        terms = [
            (float(weights[m]), _monomial([(vx, basis[m][0]), (vy, basis[m][1])]))
            for m in order
        ]
        return self._join(terms)

    def format_fit(self, result: FitResult, variable: str = "x") -> Optional[str]:
        if not result.ok or result.coefficients is None:
            return None
        return self.format_1d(result.coefficients, variable)

    def format_surface(self, result: SurfaceFitResult) -> Optional[str]:
        if not result.ok or result.weights is None:
            return None
        return self.format_2d(result.basis, result.weights)

    def _join(self, terms: Sequence[tuple[float, str]]) -> str:
        out = ""
        for raw, monomial in terms:
            c = round_coefficient(raw, self.decimals)
            if c == 0.0:
                continue
            magnitude = abs(c)
            if not monomial:
                body = format_number(magnitude, self.decimals)
            elif magnitude == 1.0:
                body = monomial
            else:
                body = f"{format_number(magnitude, self.decimals)}*{monomial}"
            if not out:
                out = f"-{body}" if c < 0 else body
            else:
                out += f" - {body}" if c < 0 else f" + {body}"
        return out or "0"


# ===========================================================================
# LaTeX generator
# ===========================================================================

class LaTeXGenerator:
    """Display-math LaTeX for compiled expressions and fit results.

    Parameters
    ----------
    decimals : int
        Every float leaf is rounded to this many digits after the point.
    """

    def __init__(self, decimals: int = 3) -> None:
        self.decimals = max(0, min(10, int(decimals)))

    def reconfigure(self, decimals: int) -> None:
        self.decimals = max(0, min(10, int(decimals)))

    def expression(self, expr: Expression, lhs: Optional[str] = None) -> str:
        if not expr.ok or expr.tree is None:
            return r"$$\text{invalid expression}$$"
        if lhs is None:
            lhs = f"f({', '.join(expr.variables)})" if expr.variables else "f"
        return self._wrap(expr.tree, lhs)

    def fit(self, result: FitResult, variable: str = "x") -> str:
        if not result.ok or result.coefficients is None:
            return rf"$$\text{{fit failed: {result.reason}}}$$"
        v = sp.Symbol(variable)
        expr: sp.Expr = sp.Integer(0)
        for k, c in enumerate(result.coefficients):
            if abs(c) < ZERO_TOLERANCE:
                continue
            expr += self._n(float(c)) * v ** k
        return self._wrap(expr, f"f({variable})")

    def surface(self, result: SurfaceFitResult) -> str:
        if not result.ok or result.weights is None:
            return rf"$$\text{{fit failed: {result.reason}}}$$"
        x, y = sp.symbols("x y")
        expr: sp.Expr = sp.Integer(0)
        for (i, j), w in zip(result.basis, result.weights):
            if abs(w) < ZERO_TOLERANCE:
                continue
            expr += self._n(float(w)) * x ** i * y ** j
        return self._wrap(expr, "z")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _n(self, v: float) -> sp.Expr:
        return sp.Float(f"{v:.{self.decimals}f}")

    def _round_floats(self, expr: sp.Basic) -> sp.Basic:
        """Walk *expr* and round every sp.Float leaf to self.decimals places."""
        if isinstance(expr, sp.Float):
            return sp.Float(f"{float(expr):.{self.decimals}f}")
        if expr.args:
            return expr.func(*[self._round_floats(a) for a in expr.args])
        return expr

    def _wrap(self, expr: sp.Basic, lhs: str) -> str:
        return f"$${lhs} = {sp.latex(self._round_floats(expr))}$$"
