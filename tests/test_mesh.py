import meshio
import numpy as np
import pytest

from pynsfem.core import Mesh
from pynsfem.errors import DiscretizationError
from pynsfem.utils.gmsh_loader import load_gmsh
from pynsfem.utils.meshgen import channel_with_cylinder, structured_triangles


def unit_square(n=2):
    nodes, cells = structured_triangles(1.0, 1.0, nx=n, ny=n)
    return Mesh(nodes, cells)


def test_structured_counts_and_normals():
    mesh = unit_square(2)
    assert mesh.n_elements == 8
    assert mesh.n_nodes == 9 + 16
    assert len(mesh.vertex_nodes) == 9
    assert len(mesh.boundary_edges()) == 8
    assert np.isclose(mesh.areas.sum(), 1.0)
    assert np.all(mesh.areas > 0)
    for e in mesh.boundary_edges():
        assert np.isclose(np.linalg.norm(e.normal), 1.0)
        mid = mesh.nodes_x_y_pos[e.mid_node]
        # the outward normal points away from the square's centre
        assert np.dot(e.normal, mid - 0.5) > 0


def test_mid_nodes_are_edge_midpoints():
    mesh = unit_square(3)
    xy = mesh.nodes_x_y_pos
    c = mesh.elements_connectivity
    for mid, (a, b) in zip((1, 4, 3), ((0, 2), (2, 5), (5, 0))):
        assert np.allclose(xy[c[:, mid]], 0.5 * (xy[c[:, a]] + xy[c[:, b]]))


def test_tag_boundary_edges_first_match_wins():
    mesh = unit_square(2)
    mesh.tag_boundary_edges({
        "left": lambda x, y: np.isclose(x, 0.0),
        "bottom": lambda x, y: np.isclose(y, 0.0),
        "any": lambda x, y: np.ones_like(x, dtype=bool),
    })
    assert len(mesh.boundary_edges("left")) == 2
    assert len(mesh.boundary_edges("bottom")) == 2
    assert len(mesh.boundary_edges("any")) == 4
    assert set(mesh.boundary_tags) == {"left", "bottom", "any"}


def test_clockwise_cell_is_reoriented():
    nodes = np.array([[0, 0], [0, 0.5], [0, 1], [0.5, 0], [0.5, 0.5], [1, 0]], dtype=float)
    mesh = Mesh(nodes, np.array([[0, 1, 2, 3, 4, 5]]))
    assert mesh.areas[0] > 0
    c = mesh.elements_connectivity[0]
    assert np.allclose(nodes[c[1]], 0.5 * (nodes[c[0]] + nodes[c[2]]))


def test_invalid_meshes():
    nodes = np.array([[0, 0], [0.5, 0], [1, 0], [1.5, 0], [2, 0], [2.5, 0]], dtype=float)
    with pytest.raises(DiscretizationError):
        Mesh(nodes, np.array([[0, 1, 2, 3, 4, 5]]))
    with pytest.raises(DiscretizationError):
        Mesh(nodes, np.array([[0, 1, 2, 3, 4, 6]]))
    with pytest.raises(DiscretizationError):
        Mesh(nodes, np.array([[0, 1, 2]]))


def test_channel_with_cylinder():
    radius, n = 0.05, 24
    mesh = channel_with_cylinder(h=0.05, n_circle=n)
    assert set(mesh.boundary_tags) == {"inlet", "outlet", "wall", "obstacle"}
    assert all(e.tag is not None for e in mesh.boundary_edges())

    def length(tag):
        return sum(e.length for e in mesh.boundary_edges(tag))

    assert np.isclose(length("inlet"), 0.41)
    assert np.isclose(length("outlet"), 0.41)
    assert np.isclose(length("wall"), 4.4)
    assert np.isclose(length("obstacle"), 2 * n * radius * np.sin(np.pi / n))
    hole = 0.5 * n * radius ** 2 * np.sin(2 * np.pi / n)
    assert np.isclose(mesh.areas.sum(), 2.2 * 0.41 - hole)


def test_load_gmsh_linear(tmp_path):
    # an unused geometry point at index 2 exercises the vertex renumbering
    points = np.array([[0, 0, 0], [1, 0, 0], [5, 5, 0], [1, 1, 0], [0, 1, 0]], dtype=float)
    cells = [("triangle", np.array([[0, 1, 3], [0, 3, 4]])),
             ("line", np.array([[0, 1], [1, 3], [3, 4], [4, 0]]))]
    cell_data = {"gmsh:physical": [np.array([10, 10]), np.array([1, 2, 3, 4])],
                 "gmsh:geometrical": [np.array([1, 1]), np.array([1, 2, 3, 4])]}
    field_data = {"bottom": np.array([1, 1]), "right": np.array([2, 1]), "top": np.array([3, 1]),
                  "left": np.array([4, 1]), "fluid": np.array([10, 2])}
    path = tmp_path / "square.msh"
    meshio.write(str(path), meshio.Mesh(points, cells, cell_data=cell_data, field_data=field_data),
                 file_format="gmsh22", binary=False)

    mesh = load_gmsh(str(path))
    assert mesh.n_elements == 2
    assert np.isclose(mesh.areas.sum(), 1.0)
    assert set(mesh.boundary_tags) == {"bottom", "right", "top", "left"}
    (bottom,) = mesh.boundary_edges("bottom")
    assert np.allclose(mesh.nodes_x_y_pos[list(bottom.nodes), 1], 0.0)

    renamed = load_gmsh(str(path), tag_names={2: "outlet"})
    (outlet,) = renamed.boundary_edges("outlet")
    assert np.allclose(renamed.nodes_x_y_pos[list(outlet.nodes), 0], 1.0)
