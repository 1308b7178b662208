"""
Expression compiler: formula text -> numeric evaluator.

Text is parsed with sympy (``^`` is power, ``e``/``pi`` are constants) and
compiled with ``sympy.lambdify`` onto numpy, so one compiled Expression
evaluates scalars and whole sample grids alike.

An Expression never raises while evaluating.  A parse failure yields an
evaluator that returns the configured failure value everywhere; a non-finite
result replaces only the offending inputs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from tokenize import TokenError
from typing import Any, Callable, Mapping, Optional, Sequence, Union

import numpy as np
import sympy as sp
from numpy.typing import ArrayLike
from sympy.core.function import AppliedUndef
from sympy.parsing.sympy_parser import (
    convert_xor,
    parse_expr,
    standard_transformations,
)

from curve_sculptor.logging import get_logger
from curve_sculptor.settings import FloatArray

log = get_logger(__name__)

Number = Union[float, FloatArray]

_TRANSFORMATIONS = standard_transformations + (convert_xor,)

# Constant powers beyond this many digits are rejected before sympy expands them.
MAX_POWER_DIGITS = 4096

# Names that resolve to constants / functions rather than free variables.
_BUILTIN_NAMES: dict[str, Any] = {
    "e": sp.E,
    "E": sp.E,
    "pi": sp.pi,
    "ln": sp.log,
    "abs": sp.Abs,
}

_PARSE_ERRORS = (
    SyntaxError,
    TokenError,
    TypeError,
    ValueError,
    AttributeError,
    NameError,
    sp.SympifyError,
)

_EVAL_ERRORS = (
    TypeError,
    ValueError,
    NameError,
    ZeroDivisionError,
    OverflowError,
    FloatingPointError,
)


class FailurePolicy(Enum):
    """What an Expression yields where it cannot produce a finite number.

    UNDEFINED (NaN) suits plotted curves: the renderer breaks the line.
    ZERO suits deformation baselines, where arithmetic must stay finite.
    """

    UNDEFINED = "undefined"
    ZERO = "zero"

    @property
    def fill(self) -> float:
        return float("nan") if self is FailurePolicy.UNDEFINED else 0.0


def strip_lhs(text: str) -> str:
    """Return the right-hand side of ``lhs = rhs`` (or *text* unchanged)."""
    if "=" in text:
        text = text.split("=")[-1]
    return text.strip()


def _oversized_power(tree: sp.Basic) -> Optional[sp.Pow]:
    """First constant power in an unevaluated *tree* whose value would need
    more than MAX_POWER_DIGITS decimal digits, innermost first."""
    for node in sp.postorder_traversal(tree):
        if not (isinstance(node, sp.Pow) and node.base.is_number and node.exp.is_number):
            continue
        try:
            base = abs(complex(node.base))
            exponent = abs(complex(node.exp))
        except (TypeError, ValueError):
            continue
        except OverflowError:
            return node
        if base > 0 and exponent * abs(np.log10(base)) > MAX_POWER_DIGITS:
            return node
    return None


# ===========================================================================
# Compiled expression
# ===========================================================================

@dataclass(frozen=True, slots=True)
class Expression:
    source: str
    variables: tuple[str, ...]
    failure: FailurePolicy
    tree: Optional[sp.Expr] = None
    error: Optional[str] = None
    _fn: Optional[Callable[..., Any]] = field(default=None, repr=False, compare=False)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def text(self) -> str:
        return strip_lhs(self.source)

    def evaluate(self, values: Mapping[str, ArrayLike]) -> Number:
        """Evaluate with one value (or array) per declared variable."""
        return self(*(values[name] for name in self.variables))

    def __call__(self, *args: ArrayLike) -> Number:
        if len(args) != len(self.variables):
            raise ValueError(
                f"expected {len(self.variables)} argument(s) {self.variables}, got {len(args)}"
            )
        arrays = [np.asarray(a, dtype=np.float64) for a in args]
        shape = np.broadcast_shapes(*(a.shape for a in arrays)) if arrays else ()
        fill = self.failure.fill

        if self._fn is None:
            out = np.full(shape, fill, dtype=np.float64)
        else:
            with np.errstate(all="ignore"):
                try:
                    out = self._as_real(self._fn(*arrays), shape)
                except _EVAL_ERRORS:
                    out = self._elementwise(self._fn, arrays, shape)
            out = np.where(np.isfinite(out), out, fill)

        if out.ndim == 0:
            return float(out)
        return out

    @staticmethod
    def _as_real(raw: Any, shape: tuple[int, ...]) -> FloatArray:
        arr = np.asarray(raw)
        if np.iscomplexobj(arr):
            arr = np.where(arr.imag == 0, arr.real, np.nan)
        return np.array(np.broadcast_to(arr.astype(np.float64), shape), dtype=np.float64)

    @staticmethod
    def _elementwise(
        fn: Callable[..., Any], arrays: Sequence[FloatArray], shape: tuple[int, ...]
    ) -> FloatArray:
        """Slow path: isolate the inputs that make vectorised evaluation raise."""
        out = np.full(shape, np.nan, dtype=np.float64)
        broadcast = np.broadcast_arrays(*arrays) if arrays else []
        for idx in np.ndindex(shape):
            try:
                value = complex(fn(*(float(a[idx]) for a in broadcast)))
            except _EVAL_ERRORS:
                continue
            if value.imag == 0:
                out[idx] = value.real
        return out


# ===========================================================================
# Compiler
# ===========================================================================

@dataclass(frozen=True, slots=True)
class ExpressionCompiler:
    """Compiles formula text over a fixed set of variable names.

    Parameters
    ----------
    variables : tuple of str
        Free variable names, in the positional order the evaluator takes.
    failure : FailurePolicy
        Value policy for parse errors and non-finite results.  There is no
        default on purpose: each use site states its convention.
    """

    variables: tuple[str, ...]
    failure: FailurePolicy

    def __post_init__(self) -> None:
        for name in self.variables:
            if not name.isidentifier() or name in _BUILTIN_NAMES:
                raise ValueError(f"invalid variable name: {name!r}")

    def compile(self, source: str) -> Expression:
        rhs = strip_lhs(source or "")
        if not rhs:
            return self._failed(source or "", "empty expression")

        symbols = [sp.Symbol(name) for name in self.variables]
        local_dict: dict[str, Any] = dict(_BUILTIN_NAMES)
        local_dict.update({s.name: s for s in symbols})

        try:
            raw = parse_expr(rhs, local_dict=local_dict, transformations=_TRANSFORMATIONS,
                             evaluate=False)
        except _PARSE_ERRORS as exc:
            return self._failed(source, f"could not parse {rhs!r}: {exc}")
        if isinstance(raw, sp.Basic):
            huge = _oversized_power(raw)
            if huge is not None:
                return self._failed(source, f"constant power out of range: {huge.base}^({huge.exp})")

        try:
            tree = parse_expr(rhs, local_dict=local_dict, transformations=_TRANSFORMATIONS)
        except _PARSE_ERRORS as exc:
            return self._failed(source, f"could not parse {rhs!r}: {exc}")

        if not isinstance(tree, sp.Expr):
            return self._failed(source, f"{rhs!r} is not an arithmetic expression")

        unknown = sorted(s.name for s in tree.free_symbols if s.name not in self.variables)
        if unknown:
            return self._failed(source, f"unknown variable(s): {', '.join(unknown)}")
        undefined = sorted({str(f.func) for f in tree.atoms(AppliedUndef)})
        if undefined:
            return self._failed(source, f"unknown function(s): {', '.join(undefined)}")

        try:
            fn = sp.lambdify(symbols, tree, modules="numpy")
        except _PARSE_ERRORS as exc:
            return self._failed(source, f"could not compile {rhs!r}: {exc}")

        return Expression(
            source=source,
            variables=self.variables,
            failure=self.failure,
            tree=tree,
            _fn=fn,
        )

    def _failed(self, source: str, reason: str) -> Expression:
        log.warning("expression rejected: %s", reason)
        return Expression(
            source=source,
            variables=self.variables,
            failure=self.failure,
            error=reason,
        )


def compile_expression(
    source: str, variables: Sequence[str], failure: FailurePolicy
) -> Expression:
    return ExpressionCompiler(tuple(variables), failure).compile(source)
