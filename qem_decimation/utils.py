"""
Utility Functions
=================

Mesh loading and sample mesh creation utilities.
"""

from pathlib import Path
from typing import Optional, Union
import numpy as np
import trimesh

from .halfedge_mesh import HalfedgeMesh


def load_mesh(path: Union[str, Path]) -> trimesh.Trimesh:
    """
    Load a mesh from file.

    Any format trimesh reads (OBJ, PLY, STL, OFF, ...). Scenes are merged
    into a single mesh.

    Raises:
        ValueError: If the file holds no triangles
    """
    mesh = trimesh.load(str(path), force='mesh')
    if len(mesh.faces) == 0:
        raise ValueError(f"No triangles found in {path}")
    return mesh


def save_mesh(mesh: trimesh.Trimesh, path: Union[str, Path]):
    """
    Save a mesh to file.

    Args:
        mesh: Mesh to save
        path: Output path
    """
    mesh.export(str(path))
    print(f"Saved mesh to: {path}")


def create_sample_mesh(mesh_type: str = "sphere") -> trimesh.Trimesh:
    """
    Create a sample mesh for testing.

    Args:
        mesh_type: Type of mesh to create:
            - "icosahedron": Regular icosahedron (12 vertices)
            - "sphere": Icosphere
            - "torus": Torus
            - "grid": Open wavy grid with a boundary

    Returns:
        Generated trimesh object
    """
    if mesh_type == "icosahedron":
        mesh = trimesh.creation.icosahedron()
    elif mesh_type == "torus":
        mesh = trimesh.creation.torus(major_radius=1.0, minor_radius=0.3,
                                      major_sections=32, minor_sections=16)
    elif mesh_type == "grid":
        mesh = create_mesh_with_boundary()
    elif mesh_type == "sphere":
        mesh = trimesh.creation.icosphere(subdivisions=3, radius=1.0)
    else:
        raise ValueError(f"Unknown sample mesh type '{mesh_type}'")

    return mesh


def create_mesh_with_boundary(rows: int = 20, cols: int = 20,
                              noise: float = 0.01,
                              seed: Optional[int] = None) -> trimesh.Trimesh:
    """
    Open wavy height-field grid with a single boundary loop.

    Vertex (row i, column j) has index i * cols + j. Each cell is split
    into two triangles along the same diagonal, so interior vertices have
    valence 6.

    Args:
        rows: Number of vertex rows
        cols: Number of vertex columns
        noise: Standard deviation of the random vertex jitter
        seed: Seed for the jitter

    Returns:
        Open surface mesh, unprocessed so vertex ids are kept
    """
    X, Y = np.meshgrid(np.linspace(-1, 1, cols), np.linspace(-1, 1, rows))
    heights = 0.2 * np.sin(3 * X) * np.cos(3 * Y)
    vertices = np.stack([X, Y, heights], axis=-1).reshape(-1, 3)

    corner = (np.arange(rows - 1)[:, None] * cols + np.arange(cols - 1)).ravel()
    lower = np.column_stack([corner, corner + 1, corner + cols])
    upper = np.column_stack([corner + 1, corner + cols + 1, corner + cols])
    faces = np.stack([lower, upper], axis=1).reshape(-1, 3)

    if noise > 0:
        rng = np.random.default_rng(seed)
        vertices = vertices + rng.normal(scale=noise, size=vertices.shape)

    return trimesh.Trimesh(vertices=vertices, faces=faces, process=False)


def get_mesh_info(mesh: HalfedgeMesh) -> dict:
    """
    Get information about a halfedge mesh.

    Args:
        mesh: Input mesh

    Returns:
        Dictionary of mesh properties
    """
    n_edges = mesh.n_edges
    vertices, _ = mesh.to_arrays()

    info = {
        'vertices': mesh.n_vertices,
        'faces': mesh.n_faces,
        'edges': n_edges,
        'boundary_edges': sum(1 for h in mesh.halfedges() if mesh.is_boundary_halfedge(h)),
        'boundary_vertices': sum(1 for v in mesh.vertices() if mesh.is_boundary_vertex(v)),
        'euler_number': mesh.n_vertices - n_edges + mesh.n_faces,
        'is_manifold': mesh.is_manifold(),
    }

    if len(vertices):
        info['bounds'] = [vertices.min(axis=0).tolist(), vertices.max(axis=0).tolist()]
    else:
        info['bounds'] = None

    return info


def print_mesh_info(mesh: HalfedgeMesh, name: str = "Mesh"):
    """
    Print mesh information to console.

    Args:
        mesh: Input mesh
        name: Name to display
    """
    info = get_mesh_info(mesh)

    print(f"\n{name} Information:")
    print("-" * 40)
    print(f"  Vertices:          {info['vertices']}")
    print(f"  Faces:             {info['faces']}")
    print(f"  Edges:             {info['edges']}")
    print(f"  Boundary Edges:    {info['boundary_edges']}")
    print(f"  Boundary Vertices: {info['boundary_vertices']}")
    print(f"  Euler Number:      {info['euler_number']}")
    print(f"  Manifold:          {info['is_manifold']}")
