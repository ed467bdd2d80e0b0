"""pynsfem.core.dofhandler
Taylor–Hood (P2 velocity / P1 pressure) block layout on a replicated mesh.

Every rank builds the same numbering from the same mesh, so no
communication is needed to agree on ownership:

* cells are partitioned by sorted centroid (x, y, id) into contiguous chunks,
* a node belongs to the lowest rank among the cells touching it,
* velocity unknowns are numbered node by node ((owner, node id) order, two
  components per node), pressure unknowns vertex by vertex, so each rank
  owns one contiguous range per block.
"""
import logging
from typing import Callable, Optional, Tuple

import numpy as np

from pynsfem.core.mesh import Mesh
from pynsfem.errors import DiscretizationError
from pynsfem.parallel.comm import Communicator, SerialCommunicator
from pynsfem.parallel.vector import BlockVector, DistributedVector, IndexSpace

logger = logging.getLogger(__name__)

VELOCITY, PRESSURE = 0, 1
COMPONENT_NAMES = ("ux", "uy", "p")


def partition_cells(mesh: Mesh, n_parts: int) -> np.ndarray:
    """Owner rank of every cell (deterministic centroid slicing)."""
    if n_parts < 1:
        raise DiscretizationError("number of partitions must be positive")
    if n_parts > mesh.n_elements:
        raise DiscretizationError(
            f"cannot split {mesh.n_elements} cells over {n_parts} processes")
    ids = np.arange(mesh.n_elements)
    order = np.lexsort((ids, mesh.centroids[:, 1], mesh.centroids[:, 0]))
    owner = np.empty(mesh.n_elements, dtype=np.int64)
    for rank, chunk in enumerate(np.array_split(order, n_parts)):
        owner[chunk] = rank
    return owner


def _number(nodes: np.ndarray, node_owner: np.ndarray, n_nodes: int, n_ranks: int):
    """Order ``nodes`` by (owner, id); return (index per node or -1, owned counts)."""
    order = nodes[np.lexsort((nodes, node_owner[nodes]))]
    index = np.full(n_nodes, -1, dtype=np.int64)
    index[order] = np.arange(len(order))
    counts = np.bincount(node_owner[nodes], minlength=n_ranks)
    return index, order, counts


class DofHandler:
    """
    Block layout of the velocity/pressure unknowns.

    Attributes:
        velocity_space, pressure_space: :class:`IndexSpace` of each block,
            their ghosts being every unknown touched by a locally owned cell.
        owned_cells: cells assembled by this rank.
        cell_velocity_dofs: (n_cells, 2, 6) block-local velocity indices
            [component, lattice node].
        cell_pressure_dofs: (n_cells, 3) block-local pressure indices.
    """

    def __init__(self, mesh: Mesh, comm: Optional[Communicator] = None):
        self.mesh = mesh
        self.comm = comm if comm is not None else SerialCommunicator()
        size, rank = self.comm.size, self.comm.rank

        self.cell_owner = partition_cells(mesh, size)
        self.owned_cells = np.flatnonzero(self.cell_owner == rank)

        cells = mesh.elements_connectivity
        node_owner = np.full(mesh.n_nodes, size, dtype=np.int64)
        np.minimum.at(node_owner, cells.ravel(), np.repeat(self.cell_owner, cells.shape[1]))
        self.node_owner = node_owner
        used = np.flatnonzero(node_owner < size)
        if len(used) < mesh.n_nodes:
            logger.debug("%d node(s) are not referenced by any cell", mesh.n_nodes - len(used))

        node_index, self._velocity_nodes, counts = _number(used, node_owner, mesh.n_nodes, size)
        self.velocity_dofs = np.where(node_index[:, None] >= 0,
                                      2 * node_index[:, None] + np.arange(2)[None, :], -1)
        u_offsets = np.concatenate(([0], np.cumsum(2 * counts)))

        vertices = mesh.vertex_nodes
        self.pressure_dofs, self._pressure_nodes, counts = _number(vertices, node_owner, mesh.n_nodes, size)
        p_offsets = np.concatenate(([0], np.cumsum(counts)))

        self.cell_velocity_dofs = np.transpose(self.velocity_dofs[cells], (0, 2, 1))
        self.cell_pressure_dofs = self.pressure_dofs[mesh.corner_connectivity]

        own = self.owned_cells
        self.velocity_space = IndexSpace(self.comm, u_offsets, self.cell_velocity_dofs[own].ravel())
        self.pressure_space = IndexSpace(self.comm, p_offsets, self.cell_pressure_dofs[own].ravel())
        logger.debug("rank %d: %d cells, velocity [%d, %d), pressure [%d, %d)", rank, len(own),
                     self.velocity_space.start, self.velocity_space.stop,
                     self.pressure_space.start, self.pressure_space.stop)

    # ------------------------------------------------------------------
    @property
    def spaces(self) -> Tuple[IndexSpace, IndexSpace]:
        return (self.velocity_space, self.pressure_space)

    @property
    def block_sizes(self) -> Tuple[int, int]:
        return (self.velocity_space.size, self.pressure_space.size)

    @property
    def owned_ranges(self):
        return tuple((s.start, s.stop) for s in self.spaces)

    def dof_component(self, indices) -> np.ndarray:
        """Map monolithic indices (velocity block first) to 0: ux, 1: uy, 2: p."""
        idx = np.asarray(indices, dtype=np.int64)
        n_u = self.velocity_space.size
        if np.any((idx < 0) | (idx >= n_u + self.pressure_space.size)):
            raise DiscretizationError("monolithic index out of range")
        return np.where(idx < n_u, idx % 2, 2)

    def velocity_coordinates(self) -> np.ndarray:
        """Coordinates of every velocity unknown, shape (n_u, 2)."""
        return np.repeat(self.mesh.nodes_x_y_pos[self._velocity_nodes], 2, axis=0)

    def pressure_coordinates(self) -> np.ndarray:
        return self.mesh.nodes_x_y_pos[self._pressure_nodes]

    # ------------------------------------------------------------------
    def new_vector(self) -> BlockVector:
        return BlockVector.zeros(self.spaces)

    def interpolate(self, velocity: Optional[Callable] = None,
                    pressure: Optional[Callable] = None) -> BlockVector:
        """Nodal interpolation of ``velocity(x, y) -> (ux, uy)`` and ``pressure(x, y)``."""
        vec = self.new_vector()
        if velocity is not None:
            s = self.velocity_space
            xy = self.velocity_coordinates()[s.start:s.stop]
            ux, uy = velocity(xy[0::2, 0], xy[0::2, 1])
            vals = np.empty(s.n_owned)
            vals[0::2] = np.broadcast_to(ux, vals[0::2].shape)
            vals[1::2] = np.broadcast_to(uy, vals[1::2].shape)
            vec.u.owned[:] = vals
        if pressure is not None:
            s = self.pressure_space
            xy = self.pressure_coordinates()[s.start:s.stop]
            vec.p.owned[:] = np.broadcast_to(pressure(xy[:, 0], xy[:, 1]), (s.n_owned,))
        return vec.update_ghost_values()

    def to_global_array(self, vector: BlockVector):
        """(velocity, pressure) full arrays assembled on every rank."""
        out = []
        for block in vector.blocks:
            parts = self.comm.allgather(block.owned)
            out.append(np.concatenate(parts))
        return tuple(out)

    def nodal_fields(self, vector: BlockVector):
        """Velocity (n_nodes, 2) and pressure (n_nodes,) on mesh nodes.

        Pressure on mid nodes is the mean of the two edge vertices, i.e.
        the P1 field evaluated there.
        """
        u, p = self.to_global_array(vector)
        mesh = self.mesh
        vel = np.zeros((mesh.n_nodes, 2))
        has = self.velocity_dofs[:, 0] >= 0
        vel[has] = u[self.velocity_dofs[has]]
        pres = np.zeros(mesh.n_nodes)
        verts = self._pressure_nodes
        pres[verts] = p[self.pressure_dofs[verts]]
        cells = mesh.elements_connectivity
        for mid, (a, b) in zip((1, 4, 3), ((0, 2), (2, 5), (5, 0))):
            pres[cells[:, mid]] = 0.5 * (pres[cells[:, a]] + pres[cells[:, b]])
        return vel, pres
