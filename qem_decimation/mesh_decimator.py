"""
Mesh Decimator
==============

Greedy mesh simplification by halfedge collapse, ranked by
Quadric Error Metrics and driven by a priority queue.
"""

import numpy as np
import heapq
from typing import Callable, Dict, List, Optional, Tuple
from dataclasses import dataclass, field
import trimesh

from .qem import ErrorQuadric, SingularQuadricError
from .halfedge_mesh import Halfedge, HalfedgeMesh


INFINITY = float('inf')

COST_MODES = ("surviving", "minimizer")


@dataclass(order=True)
class CollapseCandidate:
    """Priority queue entry for halfedge collapse candidates."""
    cost: float
    rank: Tuple[int, int]  # halfedge enumeration order, breaks ties
    halfedge: Halfedge = field(compare=False)


class MeshDecimator:
    """
    Mesh simplification using Quadric Error Metrics (QEM).

    Collapses halfedges (v0 -> v1) in order of increasing cost until a
    target vertex count is reached or no legal collapse remains:
    - Per-vertex quadrics built from incident face planes
    - Link condition, boundary and triangle-flip legality checks
    - Priority queue with lazy invalidation and local updates
    - Final placement of each vertex at its quadric minimizer

    The decimator edits the mesh in place and attaches two properties to
    it ("v:quadric" and "h:priority") until `release()` is called.
    """

    def __init__(self, mesh: HalfedgeMesh,
                 cost_mode: str = "surviving",
                 boundary_weight: float = 0.0,
                 optimize_positions: bool = True,
                 max_error: Optional[float] = None,
                 verbose: bool = True):
        """
        Initialize the mesh decimator.

        Args:
            mesh: Mesh to simplify in place
            cost_mode: "surviving" evaluates the merged quadric at the
                surviving vertex, "minimizer" at the merged quadric's
                minimizer (one 3x3 solve per candidate)
            boundary_weight: Weight of the boundary constraint planes added
                during initialization (0 = none)
            optimize_positions: Move vertices to their quadric minimizers
                after the collapse loop
            max_error: Maximum allowed cost per collapse (None = no limit)
            verbose: Print progress summaries
        """
        if cost_mode not in COST_MODES:
            raise ValueError(f"Unknown cost mode '{cost_mode}', expected one of {COST_MODES}")
        if boundary_weight < 0:
            raise ValueError("boundary_weight must be non-negative")

        self.mesh = mesh
        self.cost_mode = cost_mode
        self.boundary_weight = boundary_weight
        self.optimize_positions = optimize_positions
        self.max_error = max_error
        self.verbose = verbose

        self.quadrics = mesh.add_vertex_property("v:quadric", ErrorQuadric)
        self.priority = mesh.add_halfedge_property("h:priority", INFINITY)

        self._queue: List[CollapseCandidate] = []
        self._queued: Dict[Halfedge, CollapseCandidate] = {}
        self._initialized = False
        self._priorities_stale = False
        self._accumulated_error = 0.0
        self.collapse_history: List[dict] = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.release()

    def release(self):
        """Detach the quadric and priority properties from the mesh."""
        self.mesh.remove_vertex_property("v:quadric")
        self.mesh.remove_halfedge_property("h:priority")
        self._queue = []
        self._queued = {}

    def _log(self, message: str):
        if self.verbose:
            print(message)

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def initialize(self):
        """
        Compute the per-vertex quadrics and the initial collapse priorities.

        Each vertex accumulates the plane quadric of every incident face.

        Raises:
            RuntimeError: If called a second time, which would accumulate
                every plane twice.
        """
        if self._initialized:
            raise RuntimeError("Decimator is already initialized")

        face_normals = {f: self.mesh.face_normal(f) for f in self.mesh.faces()}

        for v in self.mesh.vertices():
            p = self.mesh.position(v)
            for f in self.mesh.vertex_faces(v):
                self.quadrics[v] += ErrorQuadric.from_normal_point(face_normals[f], p)

        if self.boundary_weight > 0:
            self._add_boundary_quadrics(face_normals)

        self._initialized = True
        self._compute_all_priorities()

    def _add_boundary_quadrics(self, face_normals: Dict[int, np.ndarray]):
        """
        Add weighted quadrics for boundary edges to preserve mesh boundaries.

        For each boundary edge, a plane through the edge perpendicular to its
        face constrains both endpoints.
        """
        for h in self.mesh.halfedges():
            if not self.mesh.is_boundary_halfedge(h):
                continue

            v0_idx, v1_idx = h
            v0, v1 = self.mesh.position(v0_idx), self.mesh.position(v1_idx)
            face_normal = face_normals[self.mesh.face(self.mesh.opposite_halfedge(h))]

            edge_vec = v1 - v0
            edge_len = np.linalg.norm(edge_vec)
            if edge_len < 1e-12:
                continue
            edge_vec = edge_vec / edge_len

            # Plane normal is perpendicular to both edge and face normal
            plane_normal = np.cross(edge_vec, face_normal)
            norm_len = np.linalg.norm(plane_normal)
            if norm_len < 1e-12:
                continue
            plane_normal = plane_normal / norm_len

            Q = ErrorQuadric.from_normal_point(plane_normal, (v0 + v1) / 2) * self.boundary_weight
            self.quadrics[v0_idx] += Q
            self.quadrics[v1_idx] += Q

    def _compute_all_priorities(self):
        self._queue = []
        self._queued = {}
        self.priority.clear()
        for h in self.mesh.halfedges():
            self._update_priority(h)
        self._priorities_stale = False

    # ------------------------------------------------------------------
    # Legality and cost
    # ------------------------------------------------------------------

    def is_collapse_legal(self, h: Halfedge) -> bool:
        """
        Check whether collapsing v0 into v1 along h = (v0 -> v1) is allowed.

        1. Topology: the mesh's link condition must hold.
        2. Boundary: a boundary vertex may not collapse into an interior one.
        3. Orientation: no face of v0 that survives the collapse may flip
           its normal when v0 is moved onto v1.
        """
        v0, v1 = h

        if not self.mesh.is_collapse_ok(h):
            return False

        if self.mesh.is_boundary_vertex(v0) and not self.mesh.is_boundary_vertex(v1):
            return False

        moved = {v0: self.mesh.position(v1)}
        for f in self.mesh.vertex_faces(v0):
            if v1 in self.mesh.face_vertices(f):
                continue

            n_before = self.mesh.face_normal(f)
            n_after = self.mesh.face_normal(f, overrides=moved)
            if np.dot(n_before, n_after) < 0.0:
                return False

        return True

    def collapse_priority(self, h: Halfedge) -> float:
        """
        Cost of collapsing h = (v0 -> v1); infinite if the collapse is illegal.

        The merged quadric Q(v0) + Q(v1) is evaluated at v1's current
        position, or at its minimizer in "minimizer" cost mode.
        """
        if not self.is_collapse_legal(h):
            return INFINITY

        v0, v1 = h
        merged = self.quadrics[v0] + self.quadrics[v1]

        target = self.mesh.position(v1)
        if self.cost_mode == "minimizer":
            try:
                target = merged.minimizer()
            except SingularQuadricError:
                pass

        return merged.evaluate(target)

    def _enumeration_rank(self, h: Halfedge) -> Tuple[int, int]:
        # Same order as HalfedgeMesh.halfedges()
        face_id = self.mesh.face(h)
        if face_id is not None:
            return (face_id, 2 * self.mesh.face_vertices(face_id).index(h[0]))
        o = self.mesh.opposite_halfedge(h)
        face_id = self.mesh.face(o)
        return (face_id, 2 * self.mesh.face_vertices(face_id).index(o[0]) + 1)

    def _update_priority(self, h: Halfedge):
        cost = self.collapse_priority(h)
        self._set_priority(h, cost)

    def _set_priority(self, h: Halfedge, cost: float):
        self.priority[h] = cost

        if cost == INFINITY:
            self._queued.pop(h, None)
            return

        candidate = CollapseCandidate(cost=cost, rank=self._enumeration_rank(h), halfedge=h)
        self._queued[h] = candidate
        heapq.heappush(self._queue, candidate)

    def _pop_best_candidate(self) -> Optional[CollapseCandidate]:
        """Get the cheapest queued candidate whose entry is still current."""
        while self._queue:
            candidate = heapq.heappop(self._queue)
            h = candidate.halfedge

            # Skip entries superseded by a later priority update
            if self._queued.get(h) is not candidate:
                continue
            del self._queued[h]

            if not self.mesh.is_valid_halfedge(h):
                continue

            return candidate

        return None

    def _requeue(self, candidate: CollapseCandidate):
        self._queued[candidate.halfedge] = candidate
        heapq.heappush(self._queue, candidate)

    # ------------------------------------------------------------------
    # Decimation
    # ------------------------------------------------------------------

    def decimate(self, n_vertices: int,
                 progress_callback: Optional[Callable[[float], None]] = None,
                 cancel_callback: Optional[Callable[[], bool]] = None) -> int:
        """
        Decimate the mesh down to `n_vertices` vertices.

        Stops early, without error, when no legal collapse remains, when the
        cheapest collapse exceeds `max_error`, or when `cancel_callback`
        returns True. The final vertex count can therefore exceed the target.

        Args:
            n_vertices: Target vertex count
            progress_callback: Optional callback for progress updates
            cancel_callback: Polled once per iteration; return True to stop

        Returns:
            Number of collapses performed
        """
        if n_vertices < 0:
            raise ValueError("Target vertex count must be non-negative")

        if self.mesh.is_empty() or n_vertices >= self.mesh.n_vertices:
            return 0

        if not self._initialized:
            self.initialize()
        elif self._priorities_stale:
            self._compute_all_priorities()

        initial_vertices = self.mesh.n_vertices
        vertices_to_remove = initial_vertices - n_vertices

        self._log(f"Starting decimation: {initial_vertices} -> {n_vertices} vertices")

        collapses_done = 0
        last_progress = 0.0

        while self.mesh.n_vertices > n_vertices:
            if cancel_callback is not None and cancel_callback():
                self._log("Decimation cancelled")
                break

            candidate = self._pop_best_candidate()

            if candidate is None:
                self._log("No more legal collapses")
                break

            if self.max_error is not None and candidate.cost > self.max_error:
                self._log(f"Reached max error threshold: {candidate.cost:.6f} > {self.max_error}")
                self._requeue(candidate)
                break

            # Topology may have changed since the priority was computed
            if not self.is_collapse_legal(candidate.halfedge):
                self._set_priority(candidate.halfedge, INFINITY)
                continue

            self._collapse(candidate)
            collapses_done += 1

            if progress_callback is not None:
                progress = collapses_done / vertices_to_remove
                if progress - last_progress >= 0.05:  # Update every 5%
                    progress_callback(min(1.0, progress))
                    last_progress = progress

        if self.optimize_positions:
            self._optimize_positions()

        self._log(f"Decimation complete: {self.mesh.n_vertices} vertices, "
                  f"{self.mesh.n_faces} faces, {collapses_done} collapses")

        return collapses_done

    def _collapse(self, candidate: CollapseCandidate):
        """
        Collapse v0 into v1 and update the priorities around v1.

        Only the one-ring of v1 changes its quadric or topology, so no other
        priorities are recomputed.
        """
        h = candidate.halfedge
        v0, v1 = h
        ring = self.mesh.vertex_neighbors(v0)

        self.quadrics[v1] += self.quadrics[v0]
        self.mesh.collapse(h, check=False)

        for w in ring:
            self._queued.pop((v0, w), None)
            self._queued.pop((w, v0), None)

        for h1 in self.mesh.halfedges_around(v1):
            self._update_priority(h1)
            self._update_priority(self.mesh.opposite_halfedge(h1))

        self._accumulated_error += candidate.cost
        self.collapse_history.append({
            'halfedge': h,
            'cost': candidate.cost,
            'accumulated_error': self._accumulated_error,
        })

    def _optimize_positions(self):
        """Move every vertex to the minimizer of its quadric where it exists."""
        singular = 0
        for v in self.mesh.vertices():
            try:
                self.mesh.set_position(v, self.quadrics[v].minimizer())
            except SingularQuadricError:
                singular += 1

        if singular:
            self._log(f"  Kept {singular} vertices in place (singular quadric)")

        # Orientation checks and costs depend on positions
        self._priorities_stale = True

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def quadric_error(self) -> float:
        """Sum of every vertex quadric evaluated at its current position."""
        return float(sum(self.quadrics[v].evaluate(self.mesh.position(v))
                         for v in self.mesh.vertices()))

    def vertex_errors(self) -> np.ndarray:
        """
        Quadric error at each live vertex, in `mesh.vertices()` order.

        Useful for error visualization after decimation.
        """
        return np.array([self.quadrics[v].evaluate(self.mesh.position(v))
                         for v in self.mesh.vertices()])

    def get_collapse_history(self) -> List[dict]:
        """Get the history of halfedge collapses performed."""
        return list(self.collapse_history)


def decimate(mesh: HalfedgeMesh, target_vertices: int, **kwargs) -> int:
    """
    Convenience function for mesh decimation.

    Constructs a MeshDecimator, initializes it, decimates and detaches its
    properties again.

    Returns:
        Number of collapses performed
    """
    with MeshDecimator(mesh, **kwargs) as decimator:
        decimator.initialize()
        return decimator.decimate(target_vertices)


def target_from_percentage(n_vertices: int, percentage: float) -> int:
    """Target vertex count for keeping `percentage` percent of `n_vertices`."""
    if not 0 <= percentage <= 100:
        raise ValueError("percentage must be between 0 and 100")
    return int(n_vertices * 0.01 * percentage)


def simplify(mesh: trimesh.Trimesh,
             target_vertices: Optional[int] = None,
             target_ratio: Optional[float] = None,
             progress_callback: Optional[Callable[[float], None]] = None,
             **kwargs) -> trimesh.Trimesh:
    """
    Simplify a trimesh to a target vertex count or ratio.

    Args:
        mesh: Input trimesh object (left unchanged)
        target_vertices: Target number of vertices (mutually exclusive with target_ratio)
        target_ratio: Target ratio of vertices to keep (0.0 to 1.0)
        progress_callback: Optional callback for progress updates
        **kwargs: Passed on to MeshDecimator

    Returns:
        Simplified trimesh object
    """
    if (target_vertices is None) == (target_ratio is None):
        raise ValueError("Must specify exactly one of target_vertices or target_ratio")

    halfedge_mesh = HalfedgeMesh.from_trimesh(mesh)

    if target_ratio is not None:
        if not 0.0 <= target_ratio <= 1.0:
            raise ValueError("target_ratio must be between 0 and 1")
        target_vertices = int(halfedge_mesh.n_vertices * target_ratio)

    with MeshDecimator(halfedge_mesh, **kwargs) as decimator:
        decimator.decimate(target_vertices, progress_callback=progress_callback)

    return halfedge_mesh.to_trimesh()
