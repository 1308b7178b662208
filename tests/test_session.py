from __future__ import annotations

import numpy as np
import pytest

from curve_sculptor.deformation import Marker
from curve_sculptor.session import CurveSession, GraphSession, SurfaceSession
from curve_sculptor.settings import CurveDomain, FitSettings, KernelSettings, ParameterDomain


# ---------------------------------------------------------------------------
# GraphSession
# ---------------------------------------------------------------------------

def test_graph_session_fits_initial_points() -> None:
    session = GraphSession()
    assert len(session.points) == 8
    result = session.fit()
    assert result.ok
    np.testing.assert_allclose(result.coefficients, [0.0, -2.0, 0.0, 0.5], atol=1e-6)
    assert session.fitted_text() == "0.5*x^3 - 2*x"


def test_graph_session_commit_replaces_equation() -> None:
    session = GraphSession("x^2", fit=FitSettings(curve_degree=1), point_count=3)
    session.move_point("p1", 0.0, 1.0)
    result = session.commit_fit()
    assert result.ok
    assert result.degree == 1
    assert session.equation.ok
    assert session.equation.source.startswith("y = ")
    np.testing.assert_allclose(session.equation(np.array([-3.0, 3.0])), result.evaluate([-3.0, 3.0]),
                               atol=1e-6)


def test_graph_session_point_edits() -> None:
    session = GraphSession("x", point_count=4)
    moved = session.move_point("p2", 0.5, 9.0)
    assert (moved.x, moved.y) == (0.5, 9.0)
    assert session.points[2] is moved
    with pytest.raises(KeyError):
        session.move_point("missing", 0.0, 0.0)


def test_graph_session_apply_equation() -> None:
    session = GraphSession("x", point_count=4)
    bad = session.set_equation("x +")
    assert not bad.ok
    session.apply_equation()
    assert [p.y for p in session.points] == [0.0, 0.0, 0.0, 0.0]

    session.set_equation("y = 2*x")
    session.apply_equation()
    np.testing.assert_allclose([p.y for p in session.points], [2.0 * p.x for p in session.points])


def test_graph_session_resample_domain() -> None:
    session = GraphSession("x^2", fit=FitSettings(curve_degree=2), point_count=5)
    result = session.resample_domain(CurveDomain(0.0, 1.0))
    assert result.ok
    np.testing.assert_allclose([p.x for p in session.points], [0.0, 0.25, 0.5, 0.75, 1.0])
    np.testing.assert_allclose([p.y for p in session.points], [0.0, 0.0625, 0.25, 0.5625, 1.0],
                               atol=1e-9)
    assert session.domain.x_max == 1.0


def test_graph_session_degree_bounds() -> None:
    session = GraphSession()
    assert session.set_degree(20) == 8
    assert session.set_degree(0) == 1


def test_graph_session_sample() -> None:
    xs, ys = GraphSession("y = x", domain=CurveDomain(0.0, 1.0, 11)).sample()
    np.testing.assert_allclose(xs, ys)


# ---------------------------------------------------------------------------
# CurveSession
# ---------------------------------------------------------------------------

def _curve_session(**kwargs) -> CurveSession:
    return CurveSession(
        "t", "t^2",
        domain=ParameterDomain(-2.0, 2.0, 41),
        kernel=KernelSettings(sigma=0.3, max_delta=1.0),
        **kwargs,
    )


def test_curve_session_starts_on_base() -> None:
    session = _curve_session()
    assert len(session.markers) == 5
    ts = np.linspace(-2.0, 2.0, 9)
    np.testing.assert_allclose(session.preview(ts), session.base.evaluate(ts), atol=1e-12)
    assert session.sample().shape == (41, 2)


def test_curve_session_clamps_drags() -> None:
    session = _curve_session()
    marker = session.markers[2]
    assert marker.t == pytest.approx(0.0)
    moved = session.move_marker(marker.id, [0.0, 5.0])
    np.testing.assert_allclose([moved.x, moved.y], [0.0, 1.0], atol=1e-12)

    inside = session.move_marker(marker.id, [0.3, 0.4])
    np.testing.assert_allclose([inside.x, inside.y], [0.3, 0.4])


def test_curve_session_commit_matches_preview() -> None:
    session = _curve_session()
    session.move_marker(session.markers[2].id, [0.0, 0.8])
    ts = np.linspace(-2.0, 2.0, 17)
    preview = session.preview(ts)

    result = session.commit()
    assert result.ok
    assert session.edit.y.ok
    np.testing.assert_allclose(session.edit.evaluate(ts), preview, atol=1e-6)
    assert session.preview(0.0)[1] == pytest.approx(0.8, abs=1e-2)


def test_curve_session_falls_back_to_edit_curve() -> None:
    markers = [Marker(x=0.0, y=0.5, t=0.0, id="a"), Marker(x=1.0, y=5.0, id="b")]
    session = _curve_session(markers=markers)
    assert not session.field().active
    ts = np.array([-1.0, 0.0, 1.0])
    np.testing.assert_allclose(session.preview(ts), session.edit.evaluate(ts))

    free = session.move_marker("b", [4.0, 40.0])
    assert (free.x, free.y) == (4.0, 40.0)

    result = session.commit()
    assert not result.ok
    assert session.edit.y.text == "t^2"


def test_curve_session_reset() -> None:
    session = _curve_session()
    first = session.markers[0]
    session.move_marker(first.id, [first.x, first.y + 0.5])
    session.commit()
    session.reset()
    assert session.markers[0] == first
    assert session.edit.texts() == {"x": "t", "y": "t^2"}


# ---------------------------------------------------------------------------
# SurfaceSession
# ---------------------------------------------------------------------------

def test_surface_session_refits_from_markers() -> None:
    session = SurfaceSession("x*y + 1")
    assert len(session.markers) == 9
    result = session.commit()
    assert result.ok
    assert session.surface.ok
    assert session.surface.source.startswith("z = ")
    assert session.surface(2.0, 3.0) == pytest.approx(7.0, abs=1e-4)
    assert session.last_fit is result


def test_surface_session_drag_is_clamped() -> None:
    session = SurfaceSession("x*y + 1", kernel=KernelSettings(max_delta=0.5))
    marker = session.markers[4]
    moved = session.move_marker(marker.id, 10.0)
    base_z = float(session.base(marker.x, marker.y))
    assert moved.z == pytest.approx(base_z + 0.5)
    assert (moved.x, moved.y) == (marker.x, marker.y)


def test_surface_session_rejects_underdetermined_refit() -> None:
    session = SurfaceSession("x + y", fit=FitSettings(surface_degree=3))
    before = session.surface
    result = session.commit()
    assert not result.ok
    assert result.reason == "insufficient points (9/10)"
    assert session.surface is before

    session.add_marker(Marker(x=0.5, y=0.25, z=0.75))
    assert session.commit().ok


def test_graph_commit_keeps_full_precision() -> None:
    session = GraphSession("1.23456789*x^3", domain=CurveDomain(-30.0, 30.0))
    result = session.commit_fit()
    assert result.ok
    assert session.fitted_text() == "1.234568*x^3"
    xs = np.array([-30.0, 0.0, 30.0])
    np.testing.assert_allclose(session.equation(xs), result.evaluate(xs), rtol=1e-9, atol=1e-9)
    assert session.equation(30.0) == pytest.approx(1.23456789 * 30.0 ** 3, rel=1e-9)


def test_surface_commit_matches_fit_at_small_scale() -> None:
    session = SurfaceSession("3e-7*(x^2 + y^2)")
    result = session.commit()
    assert result.ok
    assert session.surface.text != "0"
    corners = (np.array([-3.0, -3.0, 3.0, 3.0]), np.array([-3.0, 3.0, -3.0, 3.0]))
    np.testing.assert_allclose(session.surface(*corners), result.evaluate(*corners),
                               rtol=1e-9, atol=1e-10)
    assert session.surface(3.0, 3.0) == pytest.approx(5.4e-6, rel=1e-3)
    assert session.fitted_text() == "0"
