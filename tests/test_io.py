import csv

import matplotlib.pyplot as plt
import meshio
import numpy as np
import pytest

from pynsfem.core import DofHandler, Mesh
from pynsfem.errors import DiscretizationError
from pynsfem.io import (append_csv_row, export_vtk, load_block_vector, output_directory,
                        save_block_vector, write_result)
from pynsfem.io.visualization import plot_solution
from pynsfem.utils.meshgen import structured_triangles


def square(n=4):
    return Mesh(*structured_triangles(1.0, 1.0, nx=n, ny=n))


def sample_solution(dh):
    return dh.interpolate(lambda x, y: (np.sin(3 * x) * y, x - y), lambda x, y: np.cos(x + 2 * y))


def _round_trip(comm, prefix):
    dh = DofHandler(square(), comm)
    vec = sample_solution(dh)
    save_block_vector(prefix, vec)
    comm.barrier()
    loaded = load_block_vector(prefix, dh.new_vector())
    return ([np.array_equal(a.owned, b.owned) for a, b in zip(vec.blocks, loaded.blocks)],
            [np.array_equal(a.ghost_values, b.ghost_values) for a, b in zip(vec.blocks, loaded.blocks)])


@pytest.mark.parametrize("n_ranks", [1, 2, 3])
def test_checkpoint_round_trip_is_bit_identical(spmd, tmp_path, n_ranks):
    for owned_ok, ghosts_ok in spmd(n_ranks, _round_trip, tmp_path / "ckpt" / "state"):
        assert all(owned_ok) and all(ghosts_ok)
    assert len(list((tmp_path / "ckpt").glob("state.rank*.npz"))) == n_ranks


def test_checkpoint_layout_mismatch(tmp_path):
    dh = DofHandler(square(4))
    save_block_vector(tmp_path / "v", sample_solution(dh))
    other = DofHandler(square(3))
    with pytest.raises(DiscretizationError):
        load_block_vector(tmp_path / "v", other.new_vector())


def test_append_csv_row(tmp_path):
    path = tmp_path / "out" / "lift_drag.csv"
    append_csv_row(path, [5.57, 0.0106, 0.1175])
    append_csv_row(path, [5.58, 0.0107, 0.1176])
    with open(path, newline="") as f:
        rows = list(csv.reader(f))
    assert rows[0] == ["drag", "lift", "p_diff"]
    assert len(rows) == 3
    assert np.allclose([float(v) for v in rows[2]], [5.58, 0.0107, 0.1176])


def test_output_directory(spmd, tmp_path):
    paths = spmd(2, lambda comm: output_directory(tmp_path, "Stokes", 20.0, comm))
    assert paths[0] == paths[1] == tmp_path / "Stokes" / "outputs_reynolds_20"
    assert paths[0].is_dir()


@pytest.mark.parametrize("n_ranks", [1, 2])
def test_export_vtk(spmd, tmp_path, n_ranks):
    def body(comm):
        dh = DofHandler(square(), comm)
        return export_vtk(str(tmp_path / "sol.vtu"), dh, sample_solution(dh))

    out = spmd(n_ranks, body)
    assert all(p is None for p in out[1:])
    m = meshio.read(str(out[0]))
    mesh = square()
    assert m.cells[0].type == "triangle6"
    assert len(m.cells[0].data) == mesh.n_elements
    x, y = mesh.nodes_x_y_pos.T
    assert np.allclose(m.point_data["velocity"][:, :2], np.column_stack((np.sin(3 * x) * y, x - y)))
    assert np.allclose(m.point_data["velocity"][:, 2], 0.0)
    # pressure is linear along edges, exact only on vertices
    v = mesh.vertex_nodes
    assert np.allclose(m.point_data["pressure"][v], np.cos(x[v] + 2 * y[v]))
    assert set(np.unique(m.cell_data["subdomain"][0]).tolist()) == set(range(n_ranks))


def test_write_result_component_names(tmp_path):
    dh = DofHandler(square(2))
    path = write_result(tmp_path, dh, ("ux", "uy", "p"), sample_solution(dh), basename="stokes")
    m = meshio.read(str(path))
    assert path.name == "stokes.vtu"
    assert {"ux", "uy", "p"} <= set(m.point_data)
    with pytest.raises(ValueError):
        export_vtk(str(tmp_path / "bad.vtu"), dh, sample_solution(dh), ("velocity", "pressure"))


def test_plot_solution():
    dh = DofHandler(square(3))
    sol = sample_solution(dh)
    for field in ("velocity", "pressure"):
        ax = plot_solution(dh, sol, field, show_mesh=True)
        assert ax.get_title() == field
        assert len(ax.collections) >= 1
        plt.close(ax.figure)
    with pytest.raises(ValueError):
        plot_solution(dh, sol, "vorticity")
