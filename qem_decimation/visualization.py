"""
Mesh Visualization Module
=========================

Static matplotlib figures of decimation results. All plots work with a
non-interactive backend and return the figure to the caller.
"""

import numpy as np
import matplotlib.pyplot as plt
from matplotlib import cm
from matplotlib.colors import Normalize
from mpl_toolkits.mplot3d.art3d import Poly3DCollection
from typing import List, Optional, Sequence, Tuple
import trimesh


LIGHT_DIRECTION = np.array([1.0, 1.0, 2.0]) / np.sqrt(6.0)


class MeshVisualizer:
    """
    Figures for inspecting a simplification:
    - Input and output side by side
    - Per-vertex quadric error on the output
    - Collapse cost and accumulated error over the run
    """

    def __init__(self, figsize: Tuple[int, int] = (14, 7)):
        self.figsize = figsize
        self.error_colormap = cm.RdYlGn_r

    def _finish(self, fig: plt.Figure, save_path: Optional[str], what: str) -> plt.Figure:
        if save_path:
            fig.savefig(save_path, dpi=150, bbox_inches='tight')
            print(f"Saved {what} to {save_path}")
        return fig

    @staticmethod
    def _unit_triangles(mesh: trimesh.Trimesh) -> np.ndarray:
        """Triangle corners centered and scaled into [-1, 1], z pointing up."""
        vertices = np.asarray(mesh.vertices, dtype=np.float64)
        center = vertices.mean(axis=0)
        scale = max(np.abs(vertices - center).max(), 1e-12)
        triangles = ((vertices - center) / scale)[np.asarray(mesh.faces)]
        return triangles[..., [2, 0, 1]]

    @staticmethod
    def _shade(mesh: trimesh.Trimesh) -> np.ndarray:
        """Blue-gray RGBA face colors lit from a fixed direction."""
        intensity = np.clip(np.asarray(mesh.face_normals) @ LIGHT_DIRECTION, 0.2, 1.0)
        base = np.array([0.3, 0.4, 0.6])
        gain = np.array([0.4, 0.4, 0.3])
        rgb = base + intensity[:, None] * gain
        return np.column_stack([rgb, np.ones(len(rgb))])

    def _draw(self, ax, mesh: trimesh.Trimesh, title: str,
              face_colors: np.ndarray, wireframe: bool = True):
        collection = Poly3DCollection(self._unit_triangles(mesh),
                                      facecolors=face_colors,
                                      edgecolors='black' if wireframe else 'none',
                                      linewidths=0.1 if wireframe else 0,
                                      alpha=0.9)
        ax.add_collection3d(collection)

        for set_lim in (ax.set_xlim, ax.set_ylim, ax.set_zlim):
            set_lim(-1, 1)
        ax.set_box_aspect([1, 1, 1])
        ax.set_title(title, fontsize=10)
        ax.set_axis_off()

    def plot_mesh_comparison(self, original: trimesh.Trimesh,
                             simplified: trimesh.Trimesh,
                             title: str = "Mesh Comparison",
                             show_wireframe: bool = True,
                             save_path: Optional[str] = None) -> plt.Figure:
        """
        Draw the input and the simplified mesh next to each other.

        Args:
            original: Mesh before decimation
            simplified: Mesh after decimation
            title: Figure title
            show_wireframe: Draw triangle edges
            save_path: Optional path to save the figure

        Returns:
            Matplotlib figure object
        """
        fig, axes = plt.subplots(1, 2, figsize=self.figsize,
                                 subplot_kw={'projection': '3d'})

        for ax, mesh, label in ((axes[0], original, "Original"),
                                (axes[1], simplified, "Simplified")):
            caption = f"{label}\n({len(mesh.vertices)} vertices, {len(mesh.faces)} faces)"
            self._draw(ax, mesh, caption, self._shade(mesh), show_wireframe)

        fig.suptitle(title, fontsize=14, fontweight='bold')
        fig.tight_layout()
        return self._finish(fig, save_path, "comparison")

    def plot_error_heatmap(self, mesh: trimesh.Trimesh,
                           vertex_errors: Sequence[float],
                           title: str = "Vertex Error Heatmap",
                           save_path: Optional[str] = None) -> plt.Figure:
        """
        Color each face by the mean quadric error of its vertices.

        Args:
            mesh: Simplified mesh, vertices in the order of `vertex_errors`
            vertex_errors: One error value per vertex, e.g. from
                `MeshDecimator.vertex_errors()`
            title: Figure title
            save_path: Optional path to save the figure

        Returns:
            Matplotlib figure object
        """
        errors = np.asarray(vertex_errors, dtype=np.float64)
        low, high = float(errors.min()), float(errors.max())
        if high <= low:
            high = low + 1e-12
        norm = Normalize(low, high)

        face_errors = errors[np.asarray(mesh.faces)].mean(axis=1)

        fig = plt.figure(figsize=self.figsize)
        ax = fig.add_subplot(1, 1, 1, projection='3d')
        self._draw(ax, mesh, title, self.error_colormap(norm(face_errors)), wireframe=False)

        mappable = cm.ScalarMappable(norm=norm, cmap=self.error_colormap)
        mappable.set_array(errors)
        colorbar = fig.colorbar(mappable, ax=ax, shrink=0.6, aspect=20, pad=0.1)
        colorbar.set_label('Quadric Error', fontsize=10)

        return self._finish(fig, save_path, "heatmap")

    def plot_error_history(self, collapse_history: List[dict],
                           title: str = "Accumulated Collapse Error",
                           save_path: Optional[str] = None) -> plt.Figure:
        """
        Plot each collapse's cost and the running error total.

        Args:
            collapse_history: `MeshDecimator.collapse_history`
            title: Figure title
            save_path: Optional path to save the figure

        Returns:
            Matplotlib figure object
        """
        steps = np.arange(1, len(collapse_history) + 1)

        fig, (cost_ax, total_ax) = plt.subplots(1, 2, figsize=(10, 4))

        cost_ax.plot(steps, [entry['cost'] for entry in collapse_history],
                     '.', color='steelblue', markersize=3)
        cost_ax.set(xlabel='Collapse', ylabel='Cost', title='Cost per Collapse')

        total_ax.plot(steps, [entry['accumulated_error'] for entry in collapse_history],
                      '-', color='crimson')
        total_ax.set(xlabel='Collapse', ylabel='Accumulated Error', title='Accumulated Error')

        fig.suptitle(title, fontsize=14, fontweight='bold')
        fig.tight_layout()
        return self._finish(fig, save_path, "error history")
