"""Tests for evaluation metrics and helpers."""

import matplotlib.pyplot as plt
import numpy as np
import pytest
import trimesh

from qem_decimation.evaluation import MeshEvaluator
from qem_decimation.halfedge_mesh import HalfedgeMesh
from qem_decimation.mesh_decimator import MeshDecimator
from qem_decimation.utils import (
    create_mesh_with_boundary, create_sample_mesh, get_mesh_info, load_mesh, save_mesh,
)
from qem_decimation.visualization import MeshVisualizer


class TestMeshEvaluator:
    """Tests for geometric and topological metrics."""

    def test_hausdorff_between_concentric_spheres(self):
        inner = trimesh.creation.icosphere(subdivisions=2, radius=1.0)
        outer = trimesh.creation.icosphere(subdivisions=2, radius=2.0)
        evaluator = MeshEvaluator(sample_points=2000)

        symmetric, forward, backward = evaluator.hausdorff_distance(inner, outer)

        assert symmetric == max(forward, backward)
        assert symmetric >= 0.9
        assert symmetric <= 2.1

    def test_chamfer_of_identical_meshes_is_small(self):
        mesh = trimesh.creation.icosphere(subdivisions=2)
        evaluator = MeshEvaluator(sample_points=2000)
        assert evaluator.chamfer_distance(mesh, mesh) < 0.05

    def test_compute_all_metrics(self):
        original = trimesh.creation.icosphere(subdivisions=2)
        halfedge_mesh = HalfedgeMesh.from_trimesh(original)
        with MeshDecimator(halfedge_mesh, verbose=False) as decimator:
            decimator.decimate(81)
        simplified = halfedge_mesh.to_trimesh()

        metrics = MeshEvaluator(sample_points=1000).compute_all_metrics(original, simplified)

        assert metrics['original_vertices'] == 162
        assert metrics['simplified_vertices'] == 81
        assert metrics['vertex_reduction_ratio'] == pytest.approx(0.5)
        assert metrics['simplified_is_watertight'] == 1
        assert metrics['hausdorff_distance'] >= 0.0
        assert 'topology_euler_characteristic' not in metrics

    def test_compute_all_metrics_with_topology(self, icosahedron):
        mesh = icosahedron.to_trimesh()
        metrics = MeshEvaluator(sample_points=500).compute_all_metrics(
            mesh, mesh, halfedge_mesh=icosahedron)

        assert metrics['topology_euler_characteristic'] == 2
        assert metrics['topology_is_manifold'] == 1

        report = MeshEvaluator().generate_report(metrics)
        assert "Euler Characteristic" in report

    def test_topology_metrics_closed(self, icosahedron):
        metrics = MeshEvaluator().topology_metrics(icosahedron)
        assert metrics['vertices'] == 12
        assert metrics['edges'] == 30
        assert metrics['boundary_edges'] == 0
        assert metrics['euler_characteristic'] == 2
        assert metrics['is_manifold'] == 1

    def test_topology_metrics_open(self, grid):
        metrics = MeshEvaluator().topology_metrics(grid)
        assert metrics['boundary_edges'] == 28
        assert metrics['euler_characteristic'] == 1

    def test_report(self):
        metrics = {
            'original_faces': 320, 'simplified_faces': 196,
            'original_vertices': 162, 'simplified_vertices': 100,
            'vertex_reduction_ratio': 100 / 162,
            'hausdorff_distance': 0.05, 'chamfer_distance': 0.001,
            'quadric_error': 0.002, 'runtime': 0.5,
        }
        report = MeshEvaluator().generate_report(metrics, "QEM")
        assert "Mesh Simplification Report - QEM" in report
        assert "Hausdorff Distance" in report
        assert "Quadric Error" in report
        assert "Runtime" in report
        assert "Area Error" not in report


class TestUtils:
    """Tests for mesh creation and I/O helpers."""

    def test_sample_meshes(self):
        assert len(create_sample_mesh("icosahedron").vertices) == 12
        assert len(create_sample_mesh("sphere").vertices) == 642
        with pytest.raises(ValueError):
            create_sample_mesh("teapot")

    def test_mesh_with_boundary(self):
        mesh = create_mesh_with_boundary(rows=5, cols=4, noise=0.0)
        assert len(mesh.vertices) == 20
        assert len(mesh.faces) == 24

        halfedge_mesh = HalfedgeMesh.from_trimesh(mesh)
        info = get_mesh_info(halfedge_mesh)
        assert info['is_manifold']
        assert info['boundary_vertices'] == 14
        assert info['euler_number'] == 1

    def test_mesh_with_boundary_seed(self):
        a = create_mesh_with_boundary(rows=4, cols=4, seed=3)
        b = create_mesh_with_boundary(rows=4, cols=4, seed=3)
        np.testing.assert_array_equal(a.vertices, b.vertices)

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "icosahedron.ply"
        save_mesh(trimesh.creation.icosahedron(), path)
        loaded = load_mesh(path)
        assert len(loaded.vertices) == 12
        assert len(loaded.faces) == 20


class TestMeshVisualizer:
    """Smoke tests for the figure helpers."""

    @pytest.fixture
    def decimated(self):
        original = trimesh.creation.icosphere(subdivisions=2)
        halfedge_mesh = HalfedgeMesh.from_trimesh(original)
        decimator = MeshDecimator(halfedge_mesh, verbose=False)
        decimator.decimate(100)
        return original, halfedge_mesh, decimator

    def test_comparison(self, decimated, tmp_path):
        original, halfedge_mesh, _ = decimated
        path = tmp_path / "comparison.png"
        fig = MeshVisualizer().plot_mesh_comparison(
            original, halfedge_mesh.to_trimesh(), save_path=str(path))
        assert path.exists()
        plt.close(fig)

    def test_error_heatmap(self, decimated):
        _, halfedge_mesh, decimator = decimated
        fig = MeshVisualizer().plot_error_heatmap(
            halfedge_mesh.to_trimesh(), decimator.vertex_errors())
        assert len(fig.axes) == 2
        plt.close(fig)

    def test_error_history(self, decimated, tmp_path):
        _, _, decimator = decimated
        path = tmp_path / "history.png"
        fig = MeshVisualizer().plot_error_history(decimator.collapse_history, save_path=str(path))
        assert path.exists()
        plt.close(fig)
