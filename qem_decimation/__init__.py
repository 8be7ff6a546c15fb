"""
Mesh Decimation using Quadric Error Metrics (QEM)
=================================================

A Python implementation of greedy halfedge-collapse simplification
from "Surface Simplification Using Quadric Error Metrics"
by Michael Garland and Paul S. Heckbert (SIGGRAPH 1997).
"""

from .qem import ErrorQuadric, SingularQuadricError
from .halfedge_mesh import HalfedgeMesh
from .mesh_decimator import MeshDecimator, decimate, simplify, target_from_percentage
from .visualization import MeshVisualizer
from .evaluation import MeshEvaluator

__version__ = "1.0.0"
__author__ = "Mesh Decimation Project"
__all__ = [
    "ErrorQuadric",
    "SingularQuadricError",
    "HalfedgeMesh",
    "MeshDecimator",
    "decimate",
    "simplify",
    "target_from_percentage",
    "MeshVisualizer",
    "MeshEvaluator",
]
