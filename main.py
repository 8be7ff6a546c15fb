"""
Mesh Decimation - Main Demo
===========================

Demonstrates mesh simplification using Quadric Error Metrics (QEM).

This script:
1. Loads a mesh from file or creates a sample mesh
2. Decimates it to a target vertex count by greedy halfedge collapse
3. Computes quantitative metrics
4. Saves the simplified mesh and diagnostic figures
"""

import argparse
import time
from pathlib import Path

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt

from qem_decimation.halfedge_mesh import HalfedgeMesh
from qem_decimation.mesh_decimator import MeshDecimator, target_from_percentage
from qem_decimation.visualization import MeshVisualizer
from qem_decimation.evaluation import MeshEvaluator
from qem_decimation.utils import create_sample_mesh, load_mesh, print_mesh_info, save_mesh


def run_decimation(mesh: HalfedgeMesh, target_vertices: int, args) -> tuple:
    """
    Run a single decimation in place and return the decimator with the runtime.
    """
    decimator = MeshDecimator(
        mesh,
        cost_mode=args.cost_mode,
        boundary_weight=args.boundary_weight,
        optimize_positions=not args.no_optimize,
        max_error=args.max_error,
    )

    start_time = time.time()
    decimator.initialize()
    decimator.decimate(target_vertices)
    runtime = time.time() - start_time

    print(f"Decimation took {runtime:.3f}s")
    return decimator, runtime


def main():
    """Main demo entry point."""
    parser = argparse.ArgumentParser(
        description="Mesh Decimation Demo using QEM"
    )
    parser.add_argument(
        "--mesh", "-m", type=str, default=None,
        help="Path to input mesh file. If not provided, uses a sample mesh."
    )
    parser.add_argument(
        "--sample", "-s", type=str, default="sphere",
        choices=["icosahedron", "sphere", "torus", "grid"],
        help="Sample mesh to create when no mesh file is given"
    )
    parser.add_argument(
        "--output", "-o", type=str, default="output",
        help="Output directory for results"
    )
    target = parser.add_mutually_exclusive_group()
    target.add_argument(
        "--percentage", "-p", type=float, default=10.0,
        help="Percentage of vertices to keep (default: 10)"
    )
    target.add_argument(
        "--target", "-t", type=int, default=None,
        help="Target vertex count"
    )
    parser.add_argument(
        "--cost-mode", type=str, default="surviving",
        choices=["surviving", "minimizer"],
        help="Where the merged quadric is evaluated to rank collapses"
    )
    parser.add_argument(
        "--boundary-weight", "-b", type=float, default=0.0,
        help="Boundary preservation weight (default: 0)"
    )
    parser.add_argument(
        "--max-error", type=float, default=None,
        help="Stop once the cheapest collapse costs more than this"
    )
    parser.add_argument(
        "--no-optimize", action="store_true",
        help="Keep vertex positions instead of moving them to quadric minimizers"
    )
    parser.add_argument(
        "--no-plots", action="store_true",
        help="Skip writing figures"
    )

    args = parser.parse_args()

    output_dir = Path(args.output)
    output_dir.mkdir(parents=True, exist_ok=True)

    print("=" * 60)
    print("MESH DECIMATION")
    print("Using Quadric Error Metrics (QEM)")
    print("=" * 60)

    if args.mesh:
        print(f"\nLoading mesh from: {args.mesh}")
        original = load_mesh(args.mesh)
        mesh_name = Path(args.mesh).stem
    else:
        print(f"\nNo mesh specified, creating sample mesh: {args.sample}")
        original = create_sample_mesh(args.sample)
        mesh_name = args.sample

    mesh = HalfedgeMesh.from_trimesh(original)
    print_mesh_info(mesh, mesh_name)

    if args.target is not None:
        target_vertices = args.target
    else:
        target_vertices = target_from_percentage(mesh.n_vertices, args.percentage)

    decimator, runtime = run_decimation(mesh, target_vertices, args)

    with decimator:
        simplified = mesh.to_trimesh()
        print_mesh_info(mesh, f"{mesh_name} (simplified)")

        evaluator = MeshEvaluator()
        metrics = evaluator.compute_all_metrics(original, simplified, halfedge_mesh=mesh)
        metrics['quadric_error'] = decimator.quadric_error()
        metrics['runtime'] = runtime
        evaluator.print_report(metrics, f"QEM ({target_vertices} vertex target)")

        output_path = output_dir / f"{mesh_name}_simplified_{mesh.n_vertices}v.ply"
        save_mesh(simplified, output_path)

        if not args.no_plots:
            visualizer = MeshVisualizer()

            fig = visualizer.plot_mesh_comparison(
                original, simplified,
                title=f"{mesh_name} - Original vs Simplified",
                save_path=str(output_dir / f"{mesh_name}_comparison.png")
            )
            plt.close(fig)

            fig = visualizer.plot_error_heatmap(
                simplified, decimator.vertex_errors(),
                title=f"{mesh_name} - Quadric Error Heatmap",
                save_path=str(output_dir / f"{mesh_name}_error_heatmap.png")
            )
            plt.close(fig)

            if decimator.collapse_history:
                fig = visualizer.plot_error_history(
                    decimator.collapse_history,
                    title=f"{mesh_name} - Accumulated Collapse Error",
                    save_path=str(output_dir / f"{mesh_name}_error_history.png")
                )
                plt.close(fig)

    print("\n" + "=" * 60)
    print("DEMO COMPLETE")
    print(f"Results saved to: {output_dir.absolute()}")
    print("=" * 60)


if __name__ == "__main__":
    main()
