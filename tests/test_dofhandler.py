import numpy as np
import pytest

from pynsfem.core import DofHandler, Mesh, partition_cells
from pynsfem.errors import DiscretizationError
from pynsfem.utils.meshgen import structured_triangles


def make_mesh(n=4):
    return Mesh(*structured_triangles(1.0, 1.0, nx=n, ny=n))


def velocity_field(x, y):
    return x + 2 * y, x * y


def pressure_field(x, y):
    return 1.0 - x + 3 * y


class TestSerialLayout:
    def test_block_sizes(self):
        mesh = make_mesh(2)
        dh = DofHandler(mesh)
        assert dh.block_sizes == (50, 9)
        assert dh.owned_ranges == ((0, 50), (0, 9))
        assert len(dh.velocity_space.ghosts) == 0
        assert dh.cell_velocity_dofs.shape == (8, 2, 6)
        assert dh.cell_pressure_dofs.shape == (8, 3)

    def test_dof_component(self):
        dh = DofHandler(make_mesh(2))
        assert dh.dof_component([0, 1, 48, 49, 50, 58]).tolist() == [0, 1, 0, 1, 2, 2]
        with pytest.raises(DiscretizationError):
            dh.dof_component([59])

    def test_interpolation_is_exact_on_nodes(self):
        mesh = make_mesh(3)
        dh = DofHandler(mesh)
        vel, pres = dh.nodal_fields(dh.interpolate(velocity_field, pressure_field))
        x, y = mesh.nodes_x_y_pos.T
        assert np.allclose(vel, np.column_stack(velocity_field(x, y)))
        # linear pressure is reproduced on the mid nodes as well
        assert np.allclose(pres, pressure_field(x, y))

    def test_too_many_partitions(self):
        mesh = make_mesh(2)
        with pytest.raises(DiscretizationError):
            partition_cells(mesh, mesh.n_elements + 1)
        owner = partition_cells(mesh, 3)
        assert sorted(np.bincount(owner).tolist()) == [2, 3, 3]


def _layout(comm, n):
    mesh = make_mesh(n)
    dh = DofHandler(mesh, comm)
    vec = dh.interpolate(velocity_field, pressure_field)
    cells = dh.owned_cells
    # ghosts must hold the owner's values after the exchange
    u_rel = vec.u.values_at(dh.cell_velocity_dofs[cells].ravel()).reshape(-1, 2, 6)
    xy = mesh.nodes_x_y_pos[mesh.elements_connectivity[cells]]
    ux, uy = velocity_field(xy[..., 0], xy[..., 1])
    ghosts_ok = np.allclose(u_rel[:, 0], ux) and np.allclose(u_rel[:, 1], uy)
    vel, pres = dh.nodal_fields(vec)
    return dict(ranges=dh.owned_ranges, velocity_dofs=dh.velocity_dofs, pressure_dofs=dh.pressure_dofs,
                owned_cells=cells, ghosts_ok=ghosts_ok, vel=vel, pres=pres)


@pytest.mark.parametrize("n_ranks", [2, 3])
def test_parallel_layout(spmd, n_ranks):
    serial = _layout(None, 4)
    out = spmd(n_ranks, _layout, 4)

    # one contiguous owned range per block, covering everything exactly once
    for block in (0, 1):
        ranges = [o["ranges"][block] for o in out]
        assert ranges[0][0] == 0
        assert all(a[1] == b[0] for a, b in zip(ranges, ranges[1:]))
        assert ranges[-1][1] == serial["ranges"][block][1]

    cells = np.concatenate([o["owned_cells"] for o in out])
    assert np.array_equal(np.sort(cells), np.arange(32))
    for o in out:
        assert o["ghosts_ok"]
        assert np.array_equal(o["velocity_dofs"], out[0]["velocity_dofs"])
        assert np.array_equal(o["pressure_dofs"], out[0]["pressure_dofs"])
        assert np.allclose(o["vel"], serial["vel"])
        assert np.allclose(o["pres"], serial["pres"])
