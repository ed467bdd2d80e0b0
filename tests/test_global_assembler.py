import numpy as np
import pytest

from pynsfem.assembly.constraints import ConstraintSet
from pynsfem.assembly.global_matrix import OseenAssembler
from pynsfem.core import BoundaryCondition, DofHandler, Mesh
from pynsfem.core.bcs import constant, no_slip
from pynsfem.errors import DiscretizationError
from pynsfem.utils.meshgen import structured_triangles


def box_mesh(n=4):
    mesh = Mesh(*structured_triangles(1.0, 1.0, nx=n, ny=n))
    mesh.tag_boundary_edges({
        "outlet": lambda x, y: np.isclose(x, 1.0),
        "wall": lambda x, y: np.isclose(x, 0.0) | np.isclose(y, 0.0) | np.isclose(y, 1.0),
    })
    return mesh


def channel_bcs(outlet_pressure=0.0):
    return [BoundaryCondition("velocity", "dirichlet", "wall", no_slip()),
            BoundaryCondition("pressure", "neumann", "outlet", outlet_pressure)]


def _assemble(comm, state_field=None, n=4):
    mesh = box_mesh(n)
    dh = DofHandler(mesh, comm)
    bcs = channel_bcs()
    cons = ConstraintSet.from_boundary_conditions(dh, bcs)
    asm = OseenAssembler(dh, 0.1, cons, bcs, body_force=lambda x, y: (np.ones_like(x), 0.0))
    state = dh.interpolate(state_field) if state_field is not None else None
    K, rhs = asm.assemble(state)
    return K.to_global().toarray(), np.concatenate(dh.to_global_array(rhs)), dh


def test_stokes_system_is_symmetric_and_eliminated():
    K, rhs, _ = _assemble(None)
    assert np.allclose(K, K.T)
    mesh = box_mesh(4)
    dh = DofHandler(mesh)
    cons = ConstraintSet.from_boundary_conditions(dh, channel_bcs())
    c = cons.indices(0)
    assert len(c) > 0
    assert np.allclose(K[c][:, c], np.eye(len(c)))
    assert np.allclose(np.delete(K[c], c, axis=1), 0.0)
    assert np.allclose(rhs[c], 0.0)


def test_manufactured_stokes_solution():
    # f = (1, 0), no-slip walls, p = 0 at x = 1  ->  u = 0, p = x - 1
    K, rhs, dh = _assemble(None)
    pxy = dh.pressure_coordinates()
    x = np.linalg.solve(K, rhs)
    n_u = len(rhs) - len(pxy)
    assert np.allclose(x[:n_u], 0.0, atol=1e-10)
    assert np.allclose(x[n_u:], pxy[:, 0] - 1.0, atol=1e-10)


@pytest.mark.parametrize("n_ranks", [2, 3])
def test_parallel_assembly_matches_serial(spmd, node_order, n_ranks):
    # the numbering depends on the rank count; compare in node order
    def field(x, y):
        return np.sin(x) * y, x * x

    def run(comm):
        K, rhs, dh = _assemble(comm, field)
        perm = node_order(dh)
        return K[np.ix_(perm, perm)], rhs[perm]

    K_s, rhs_s = run(None)
    for K, rhs in spmd(n_ranks, run):
        assert np.allclose(K, K_s)
        assert np.allclose(rhs, rhs_s)


def test_numbering_depends_on_rank_count(spmd, node_order):
    _, _, serial = _assemble(None)
    parallel = spmd(2, _assemble)[0][2]
    assert not np.array_equal(node_order(parallel), node_order(serial))
    assert np.array_equal(np.sort(node_order(parallel)), np.arange(len(node_order(serial))))


def test_inhomogeneous_constraints():
    mesh = box_mesh(3)
    dh = DofHandler(mesh)
    bcs = [BoundaryCondition("velocity", "dirichlet", "wall", constant(2.0, -1.0)),
           BoundaryCondition("velocity", "dirichlet", "wall", no_slip()),
           BoundaryCondition("pressure", "neumann", "outlet", 0.0)]
    cons = ConstraintSet.from_boundary_conditions(dh, bcs)
    # first condition wins
    comps = dh.dof_component(cons.indices(0))
    assert np.allclose(cons.values(0)[comps == 0], 2.0)
    assert np.allclose(cons.values(0)[comps == 1], -1.0)

    asm = OseenAssembler(dh, 1.0, cons, bcs)
    K, rhs = asm.assemble()
    x = dh.new_vector()
    cons.distribute(x)
    assert np.allclose(rhs.u.owned[cons.indices(0)], cons.values(0))
    assert np.allclose(x.u.owned[cons.indices(0)], cons.values(0))
    cons.set_zero(x)
    assert np.allclose(x.u.owned, 0.0)


def test_constraint_validation():
    dh = DofHandler(box_mesh(2))
    with pytest.raises(DiscretizationError):
        ConstraintSet(dh, {0: (np.array([1, 1]), np.array([0.0, 1.0]))})
    with pytest.raises(DiscretizationError):
        ConstraintSet(dh, {1: (np.array([100]), np.array([0.0]))})
    with pytest.raises(DiscretizationError):
        ConstraintSet(dh, {0: (np.array([1, 2]), np.array([0.0]))})


def test_pressure_constraint_needs_diagonal_block():
    mesh = box_mesh(2)
    dh = DofHandler(mesh)
    cons = ConstraintSet(dh, {1: (np.array([0]), np.array([1.0]))})
    asm = OseenAssembler(dh, 1.0, cons)
    with pytest.raises(DiscretizationError):
        asm.assemble()


def test_pressure_mass_matrix():
    mesh = box_mesh(3)
    dh = DofHandler(mesh)
    cons = ConstraintSet.from_boundary_conditions(dh, channel_bcs())
    M = OseenAssembler(dh, 0.25, cons).assemble_pressure_mass()
    assert M.block(0, 0) is None
    Mg = M.block(1, 1).to_global().toarray()
    assert np.isclose(Mg.sum(), 1.0 / 0.25)
    assert np.all(np.linalg.eigvalsh(Mg) > 0)
