import numpy as np
import pytest

from pynsfem.core import DofHandler, Mesh
from pynsfem.postprocess.forces import _reduce_probe, boundary_force, compute_lift_drag, probe_pressure
from pynsfem.utils.meshgen import channel_with_cylinder, structured_triangles


def closed_box(n=4):
    mesh = Mesh(*structured_triangles(1.0, 1.0, nx=n, ny=n))
    mesh.tag_boundary_edges({"box": lambda x, y: np.ones_like(x, dtype=bool)})
    return mesh


def test_closed_boundary_force_is_pressure_only():
    # no-slip everywhere: the traction reduces to int p n = int grad p
    dh = DofHandler(closed_box())
    sol = dh.interpolate(lambda x, y: (0.0 * x, 0.0 * y), lambda x, y: y)
    assert np.allclose(boundary_force(dh, sol, viscosity=0.7, boundary_tag="box"), [0.0, 1.0])


def test_uniform_shear_has_no_net_force():
    dh = DofHandler(closed_box())
    sol = dh.interpolate(lambda x, y: (y, 0.0 * x))
    assert np.allclose(boundary_force(dh, sol, viscosity=1.0, boundary_tag="box"), 0.0)


def test_viscous_traction_on_one_side():
    # u = (y^2, 0): on the top side -n = (0, -1), so the traction is -nu * d_y u = (-2 nu, 0)
    mesh = Mesh(*structured_triangles(1.0, 1.0, nx=3, ny=3))
    mesh.tag_boundary_edges({"top": lambda x, y: np.isclose(y, 1.0)})
    dh = DofHandler(mesh)
    sol = dh.interpolate(lambda x, y: (y ** 2, 0.0 * x))
    assert np.allclose(boundary_force(dh, sol, viscosity=0.1, boundary_tag="top"), [-0.2, 0.0])


def test_probe_pressure():
    dh = DofHandler(closed_box())
    sol = dh.interpolate(pressure=lambda x, y: 2 * x + y)
    ok, value = probe_pressure(dh, sol, (0.3, 0.6))
    assert ok and np.isclose(value, 1.2)
    ok, value = probe_pressure(dh, sol, (1.5, 0.5))
    assert not ok


def _lift_drag(comm, points=((0.25, 0.5), (0.75, 0.25)), mode="rank"):
    dh = DofHandler(closed_box(), comm)
    sol = dh.interpolate(lambda x, y: (0.0 * x, 0.0 * y), lambda x, y: y)
    return compute_lift_drag(dh, sol, viscosity=1.0, boundary_tag="box", scaling=2.0,
                             probe_points=points, probe_reduction=mode)


@pytest.mark.parametrize("mode", ["rank", "max"])
def test_lift_drag_serial_and_parallel(spmd, mode):
    serial = _lift_drag(None, mode=mode)
    assert np.isclose(serial.drag, 0.0)
    assert np.isclose(serial.lift, 2.0)
    assert np.isclose(serial.pressure_difference, 0.25)
    assert serial.probes_available == (True, True)
    assert np.allclose(serial.as_row(), [serial.drag, serial.lift, serial.pressure_difference])

    out = spmd(3, _lift_drag, mode=mode)
    assert all(r is None for r in out[1:])
    assert np.allclose(out[0].as_row(), serial.as_row())


def test_probe_outside_domain_is_not_an_error():
    res = _lift_drag(None, points=((0.5, 0.5), (2.0, 2.0)))
    assert res.probes_available == (True, False)
    assert np.isnan(res.pressure_difference)


def test_probe_reductions(spmd):
    def body(comm, mode, available):
        return _reduce_probe(comm, available(comm.rank), 10.0 * comm.rank, mode)

    out = spmd(3, body, "rank", lambda r: r >= 1)
    assert out == [(True, 10.0), None, None]       # lowest available rank wins
    out = spmd(3, body, "max", lambda r: r >= 1)
    assert out[0] == (True, 20.0)
    for mode in ("rank", "max"):
        ok, value = spmd(3, body, mode, lambda r: False)[0]
        assert not ok and np.isnan(value)
    with pytest.raises(ValueError):
        spmd(2, body, "mean", lambda r: True)


@pytest.mark.parametrize("n_circle", [15, 16])
def test_cylinder_front_and_back_pressure_for_any_ring_count(spmd, n_circle):
    # the hole is a polygon inscribed in the circle, so points on the
    # circle between ring vertices lie in the fluid cells next to the chords
    def body(comm):
        dh = DofHandler(channel_with_cylinder(h=0.05, n_circle=n_circle), comm)
        sol = dh.interpolate(lambda x, y: (0.0 * x, 0.0 * y), lambda x, y: x)
        return compute_lift_drag(dh, sol, viscosity=1e-3, boundary_tag="obstacle")

    for res in (body(None), spmd(2, body)[0]):
        assert np.isclose(res.pressure_difference, -0.1)
