"""
Mesh Evaluation Module
======================

Quality metrics for a decimated mesh against its input:
- Hausdorff and Chamfer distances from surface samples
- Vertex/face reduction and surface area change
- Topology of the halfedge mesh (boundary, Euler characteristic, manifoldness)
"""

import numpy as np
from typing import Dict, Optional, Tuple
import trimesh
from scipy.spatial import cKDTree

from .halfedge_mesh import HalfedgeMesh


class MeshEvaluator:
    """
    Compares an input mesh with its simplification.

    Distances are estimated from `sample_points` random surface samples per
    mesh, so repeated calls give slightly different values.
    """

    def __init__(self, sample_points: int = 10000):
        self.sample_points = sample_points

    def compute_all_metrics(self, original: trimesh.Trimesh,
                            simplified: trimesh.Trimesh,
                            halfedge_mesh: Optional[HalfedgeMesh] = None) -> Dict[str, float]:
        """
        Compute count, distance, area and watertightness metrics.

        Args:
            original: Input mesh
            simplified: Decimated mesh
            halfedge_mesh: Decimated halfedge mesh; adds its topology
                metrics with a "topology_" prefix when given

        Returns:
            Dictionary of metric names to values
        """
        n_faces = (len(original.faces), len(simplified.faces))
        n_vertices = (len(original.vertices), len(simplified.vertices))

        metrics = {
            'original_faces': n_faces[0],
            'simplified_faces': n_faces[1],
            'original_vertices': n_vertices[0],
            'simplified_vertices': n_vertices[1],
            'face_reduction_ratio': n_faces[1] / max(n_faces[0], 1),
            'vertex_reduction_ratio': n_vertices[1] / max(n_vertices[0], 1),
        }

        forward, backward = self._nearest_distances(original, simplified)
        metrics['hausdorff_forward'] = float(forward.max())
        metrics['hausdorff_backward'] = float(backward.max())
        metrics['hausdorff_distance'] = max(metrics['hausdorff_forward'],
                                            metrics['hausdorff_backward'])
        metrics['chamfer_distance'] = float(np.mean(forward ** 2) + np.mean(backward ** 2))

        metrics['original_area'] = float(original.area)
        metrics['simplified_area'] = float(simplified.area)
        metrics['area_error'] = abs(metrics['simplified_area'] - metrics['original_area']) / \
                                max(metrics['original_area'], 1e-10)

        metrics['original_is_watertight'] = int(original.is_watertight)
        metrics['simplified_is_watertight'] = int(simplified.is_watertight)

        if halfedge_mesh is not None:
            for key, value in self.topology_metrics(halfedge_mesh).items():
                metrics[f'topology_{key}'] = value

        return metrics

    def _sample(self, mesh: trimesh.Trimesh) -> np.ndarray:
        # Meshes without area have nothing to sample but their vertices
        if len(mesh.faces) == 0 or mesh.area <= 0:
            return np.asarray(mesh.vertices)
        return mesh.sample(self.sample_points)

    def _nearest_distances(self, mesh1: trimesh.Trimesh,
                           mesh2: trimesh.Trimesh) -> Tuple[np.ndarray, np.ndarray]:
        """Distances from samples of each mesh to the nearest sample of the other."""
        points1 = self._sample(mesh1)
        points2 = self._sample(mesh2)

        forward, _ = cKDTree(points2).query(points1)
        backward, _ = cKDTree(points1).query(points2)
        return forward, backward

    def hausdorff_distance(self, mesh1: trimesh.Trimesh,
                           mesh2: trimesh.Trimesh) -> Tuple[float, float, float]:
        """
        Approximate symmetric Hausdorff distance.

        Returns:
            Tuple of (symmetric, mesh1 -> mesh2, mesh2 -> mesh1) distances
        """
        forward, backward = self._nearest_distances(mesh1, mesh2)
        forward_max, backward_max = float(forward.max()), float(backward.max())
        return max(forward_max, backward_max), forward_max, backward_max

    def chamfer_distance(self, mesh1: trimesh.Trimesh,
                         mesh2: trimesh.Trimesh) -> float:
        """Sum of the mean squared nearest-sample distances in both directions."""
        forward, backward = self._nearest_distances(mesh1, mesh2)
        return float(np.mean(forward ** 2) + np.mean(backward ** 2))

    def topology_metrics(self, mesh: HalfedgeMesh) -> Dict[str, int]:
        """
        Counts, boundary size, Euler characteristic and manifold flag.

        A closed genus-0 surface has Euler characteristic 2, a disk 1.
        """
        n_edges = mesh.n_edges

        return {
            'vertices': mesh.n_vertices,
            'faces': mesh.n_faces,
            'edges': n_edges,
            'boundary_edges': sum(1 for h in mesh.halfedges() if mesh.is_boundary_halfedge(h)),
            'euler_characteristic': mesh.n_vertices - n_edges + mesh.n_faces,
            'is_manifold': int(mesh.is_manifold()),
        }

    def generate_report(self, metrics: Dict[str, float],
                        method_name: str = "QEM") -> str:
        """
        Format metrics as a plain-text report.

        Missing entries print as N/A; the quadric error, topology and runtime
        lines only appear when those metrics are present.
        """
        def value(key, fmt):
            return format(metrics[key], fmt) if key in metrics else 'N/A'

        lines = [
            "=" * 60,
            f"Mesh Simplification Report - {method_name}",
            "=" * 60,
            "",
            "MESH STATISTICS",
            "-" * 40,
            f"  Original:    {value('original_faces', '>8')} faces, "
            f"{value('original_vertices', '>8')} vertices",
            f"  Simplified:  {value('simplified_faces', '>8')} faces, "
            f"{value('simplified_vertices', '>8')} vertices",
        ]
        if 'vertex_reduction_ratio' in metrics:
            lines.append(f"  Kept:        {metrics['vertex_reduction_ratio'] * 100:>7.2f}% of vertices")

        lines.extend([
            "",
            "GEOMETRIC ACCURACY",
            "-" * 40,
            f"  Hausdorff Distance:    {value('hausdorff_distance', '>12.6f')}",
            f"    Forward:             {value('hausdorff_forward', '>12.6f')}",
            f"    Backward:            {value('hausdorff_backward', '>12.6f')}",
            f"  Chamfer Distance:      {value('chamfer_distance', '>12.6f')}",
        ])
        if 'area_error' in metrics:
            lines.append(f"  Area Error:            {metrics['area_error'] * 100:>11.4f}%")
        if 'quadric_error' in metrics:
            lines.append(f"  Quadric Error:         {metrics['quadric_error']:>12.6f}")

        lines.extend([
            "",
            "TOPOLOGY",
            "-" * 40,
            f"  Original Watertight:   {'Yes' if metrics.get('original_is_watertight') else 'No'}",
            f"  Simplified Watertight: {'Yes' if metrics.get('simplified_is_watertight') else 'No'}",
        ])
        if 'topology_boundary_edges' in metrics:
            lines.append(f"  Boundary Edges:        {metrics['topology_boundary_edges']:>12}")
            lines.append(f"  Euler Characteristic:  {metrics['topology_euler_characteristic']:>12}")
            lines.append(f"  Manifold:              {'Yes' if metrics['topology_is_manifold'] else 'No'}")

        if 'runtime' in metrics:
            lines.append(f"  Runtime:               {metrics['runtime']:>11.4f} seconds")

        lines.append("=" * 60)
        return "\n".join(lines)

    def print_report(self, metrics: Dict[str, float], method_name: str = "QEM"):
        print(self.generate_report(metrics, method_name))
