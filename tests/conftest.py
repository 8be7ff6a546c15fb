"""Pytest configuration and fixtures for the decimation tests."""

import matplotlib
matplotlib.use("Agg")

import numpy as np
import pytest
import trimesh

from qem_decimation.halfedge_mesh import HalfedgeMesh
from qem_decimation.utils import create_mesh_with_boundary


@pytest.fixture
def icosahedron():
    """Regular icosahedron: 12 vertices, 20 faces, closed."""
    return HalfedgeMesh.from_trimesh(trimesh.creation.icosahedron())


@pytest.fixture
def sphere():
    """Icosphere with 162 vertices and 320 faces."""
    return HalfedgeMesh.from_trimesh(trimesh.creation.icosphere(subdivisions=2))


@pytest.fixture
def triangle():
    return HalfedgeMesh([[0, 0, 0], [1, 0, 0], [0, 1, 0]], [[0, 1, 2]])


@pytest.fixture
def tetrahedron():
    vertices = [[0, 0, 0], [1, 0, 0], [0, 1, 0], [0, 0, 1]]
    faces = [[0, 2, 1], [0, 1, 3], [0, 3, 2], [1, 2, 3]]
    return HalfedgeMesh(vertices, faces)


@pytest.fixture
def grid():
    """Open 8x8 wavy grid with a single boundary loop."""
    return HalfedgeMesh.from_trimesh(create_mesh_with_boundary(rows=8, cols=8, seed=0))


@pytest.fixture
def tent():
    """
    Raised apex 0 over a non-convex ring 1..5.

    Moving the apex onto vertex 1 turns face (0, 2, 3) upside down, so
    collapsing halfedge (0, 1) must be rejected.
    """
    vertices = [
        [0.0, 0.0, 0.5],    # apex
        [2.0, 0.0, 0.0],
        [0.2, 0.2, 0.0],
        [-0.2, 1.0, 0.0],
        [-1.0, 0.0, 0.0],
        [0.0, -1.0, 0.0],
    ]
    faces = [[0, 1, 2], [0, 2, 3], [0, 3, 4], [0, 4, 5], [0, 5, 1]]
    return HalfedgeMesh(vertices, faces)


@pytest.fixture
def flat_hexagon():
    """Planar hexagon fan; every vertex quadric is rank one."""
    angles = np.linspace(0, 2 * np.pi, 6, endpoint=False)
    ring = np.column_stack([np.cos(angles), np.sin(angles), np.zeros(6)])
    vertices = np.vstack([[0.0, 0.0, 0.0], ring])
    faces = [[0, 1 + i, 1 + (i + 1) % 6] for i in range(6)]
    return HalfedgeMesh(vertices, faces)


@pytest.fixture
def flat_grid():
    """Planar 6x6 grid; every collapse that keeps it flat costs exactly zero."""
    mesh = create_mesh_with_boundary(rows=6, cols=6, noise=0.0)
    vertices = np.array(mesh.vertices)
    vertices[:, 2] = 0.0
    return HalfedgeMesh(vertices, mesh.faces)


@pytest.fixture
def pillow():
    """Two triangles glued back to back along all three edges."""
    vertices = [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]]
    return HalfedgeMesh(vertices, [[0, 1, 2], [1, 0, 2]])
