from __future__ import annotations

import numpy as np
import pytest

from curve_sculptor.expressions import ExpressionCompiler, FailurePolicy
from curve_sculptor.fitting import PolynomialFitter1D, PolynomialFitter2D, surface_basis
from curve_sculptor.latex_gen import (
    LaTeXGenerator,
    PolynomialFormatter,
    format_number,
    round_coefficient,
)


def test_near_zero_and_near_unit_rounding() -> None:
    assert PolynomialFormatter().format_1d([1.00000000001, 0.0, -0.0000000001]) == "1"


@pytest.mark.parametrize(
    "coefficients, expected",
    [
        ([0.0, -2.0, 0.0, 0.5], "0.5*x^3 - 2*x"),
        ([0.0, 1.0], "x"),
        ([0.0, -1.0], "-x"),
        ([-1.0, 0.0, 1.0], "x^2 - 1"),
        ([0.0, 0.0], "0"),
        ([2.5, -1.25], "-1.25*x + 2.5"),
    ],
)
def test_format_1d(coefficients: list[float], expected: str) -> None:
    assert PolynomialFormatter().format_1d(coefficients) == expected


def test_format_2d_orders_by_total_degree() -> None:
    weights = [1.0, 2.0, -1.0, 0.0, 0.5, 0.0]
    text = PolynomialFormatter().format_2d(surface_basis(2), weights)
    assert text == "0.5*x*y + 2*x - y + 1"


def test_format_2d_unit_and_powers() -> None:
    basis = ((0, 0), (2, 1), (0, 3))
    assert PolynomialFormatter().format_2d(basis, [0.0, -1.0, 1.0]) == "-x^2*y + y^3"


def test_number_helpers() -> None:
    assert format_number(2.0) == "2"
    assert format_number(0.125) == "0.125"
    assert round_coefficient(1e-13) == 0.0
    assert round_coefficient(3.0000004) == 3.0


def test_formatted_fit_recompiles_to_the_same_curve() -> None:
    xs = np.linspace(-2.0, 2.0, 9)
    result = PolynomialFitter1D().fit(xs, 0.25 * xs ** 2 - xs + 3.0, 2)
    text = PolynomialFormatter().format_fit(result)
    assert text == "0.25*x^2 - x + 3"
    expr = ExpressionCompiler(("x",), FailurePolicy.UNDEFINED).compile(text)
    np.testing.assert_allclose(expr(xs), result.evaluate(xs), atol=1e-9)


def test_failed_fits_have_no_text() -> None:
    formatter = PolynomialFormatter()
    failed = PolynomialFitter2D().fit([0.0], [0.0], [0.0], 2)
    assert formatter.format_surface(failed) is None
    bad = PolynomialFitter1D().fit([np.nan], [np.nan], 1)
    assert formatter.format_fit(bad) is None


def test_latex_for_fit_and_expression() -> None:
    xs = np.linspace(-3.0, 3.0, 8)
    result = PolynomialFitter1D().fit(xs, 0.5 * xs ** 3 - 2.0 * xs, 3)
    latex = LaTeXGenerator().fit(result)
    assert latex.startswith("$$f(x) = ")
    assert "x^{3}" in latex

    expr = ExpressionCompiler(("x", "y"), FailurePolicy.UNDEFINED).compile("sin(x)*y")
    assert LaTeXGenerator().expression(expr).startswith("$$f(x, y) = ")


def test_latex_for_failures() -> None:
    gen = LaTeXGenerator()
    bad = ExpressionCompiler(("x",), FailurePolicy.UNDEFINED).compile("x +")
    assert "invalid" in gen.expression(bad)
    failed = PolynomialFitter2D().fit([0.0], [0.0], [0.0], 1)
    assert "insufficient points" in gen.surface(failed)


def test_latex_surface_rounds_weights() -> None:
    gx, gy = np.meshgrid(np.linspace(-1.0, 1.0, 3), np.linspace(-1.0, 1.0, 3))
    x, y = gx.ravel(), gy.ravel()
    result = PolynomialFitter2D().fit(x, y, 2.0 * x * y, 2)
    gen = LaTeXGenerator(decimals=2)
    latex = gen.surface(result)
    assert latex.startswith("$$z = ")
    assert "x y" in latex


def test_full_precision_formatting() -> None:
    exact = PolynomialFormatter(decimals=None)
    assert exact.format_1d([0.0, 1.0, 3e-7]) == "3e-07*x^2 + x"
    assert exact.format_1d([1.23456789, 0.0, 0.0, 1e-13]) == "1.23456789"
    assert format_number(0.1, None) == "0.1"
    assert round_coefficient(1.2345678912, None) == 1.2345678912
    assert round_coefficient(-5e-13, None) == 0.0
