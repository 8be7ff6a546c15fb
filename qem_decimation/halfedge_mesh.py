"""
Halfedge Mesh
=============

Indexed triangle mesh with halfedge navigation, a collapse-feasibility
test (link condition) and the edge collapse mutation used by the decimator.

A halfedge is identified by its ordered vertex pair (from, to). Halfedges
that bound a face are stored explicitly; the opposite of a face halfedge
without a face of its own is a boundary halfedge.
"""

import numpy as np
from typing import Any, Callable, Dict, Iterator, List, Optional, Set, Tuple
import trimesh

from .qem import compute_face_normal


Halfedge = Tuple[int, int]


class HalfedgeProperty(dict):
    """Per-halfedge storage that reads as `default` until assigned."""

    def __init__(self, default: Any = None):
        super().__init__()
        self.default = default

    def __missing__(self, key):
        return self.default


class HalfedgeMesh:
    """
    Triangle surface mesh with halfedge connectivity.

    Supports:
    - Vertex, face, edge and halfedge enumeration
    - Incidence queries and boundary predicates
    - Link-condition test and halfedge collapse
    - Attachable per-vertex and per-halfedge properties

    Faces must be consistently oriented and edge-manifold; vertices must
    have a single fan of faces. Vertex ids are stable: collapsing removes a
    vertex without renumbering the others.
    """

    def __init__(self, vertices: np.ndarray, faces: np.ndarray):
        """
        Build the mesh from vertex positions and triangle indices.

        Args:
            vertices: (N, 3) array of vertex positions
            faces: (M, 3) array of vertex indices

        Raises:
            ValueError: On out-of-range or repeated indices, or on
                non-manifold / inconsistently oriented input.
        """
        self.points = np.array(vertices, dtype=np.float64).reshape(-1, 3)

        self._faces: Dict[int, Tuple[int, int, int]] = {}
        self._halfedge_face: Dict[Halfedge, int] = {}
        self._vertex_faces: Dict[int, Set[int]] = {i: set() for i in range(len(self.points))}
        self._deleted_vertices: Set[int] = set()
        self._next_face_id = 0

        self._vertex_properties: Dict[str, List[Any]] = {}
        self._halfedge_properties: Dict[str, HalfedgeProperty] = {}

        for face in np.asarray(faces, dtype=np.int64).reshape(-1, 3):
            self.add_face(int(face[0]), int(face[1]), int(face[2]))

        for v in range(len(self.points)):
            if not self.is_manifold_vertex(v):
                raise ValueError(f"Non-manifold vertex {v}")

    @classmethod
    def from_trimesh(cls, mesh: trimesh.Trimesh) -> "HalfedgeMesh":
        return cls(mesh.vertices, mesh.faces)

    def add_face(self, a: int, b: int, c: int) -> int:
        """
        Add a triangle and return its face id.

        Raises:
            ValueError: If the triangle is degenerate, references an unknown
                vertex, or reuses an existing halfedge.
        """
        tri = (a, b, c)
        if len(set(tri)) != 3:
            raise ValueError(f"Degenerate face {tri}")
        for v in tri:
            if v < 0 or v >= len(self.points) or v in self._deleted_vertices:
                raise ValueError(f"Face {tri} references invalid vertex {v}")

        face_id = self._next_face_id
        self._register_face(face_id, tri)
        self._next_face_id += 1
        return face_id

    def _check_free(self, halfedges: List[Halfedge]):
        for h in halfedges:
            if h in self._halfedge_face:
                raise ValueError(f"Halfedge {h} already belongs to face "
                                 f"{self._halfedge_face[h]} (non-manifold edge "
                                 f"or inconsistent orientation)")

    def _register_face(self, face_id: int, tri: Tuple[int, int, int]):
        halfedges = self._face_halfedges(tri)
        self._check_free(halfedges)

        self._faces[face_id] = tri
        for h in halfedges:
            self._halfedge_face[h] = face_id
        for v in tri:
            self._vertex_faces[v].add(face_id)

    def _remove_face(self, face_id: int) -> Tuple[int, int, int]:
        tri = self._faces.pop(face_id)
        for h in self._face_halfedges(tri):
            del self._halfedge_face[h]
        for v in tri:
            self._vertex_faces[v].discard(face_id)
        return tri

    def _replace_corner(self, face_id: int, old: int, new: int):
        """Swap vertex `old` of a face for `new`, keeping the face id and its place in `faces()`."""
        tri = self._faces[face_id]
        for h in self._face_halfedges(tri):
            del self._halfedge_face[h]

        tri = tuple(new if v == old else v for v in tri)
        halfedges = self._face_halfedges(tri)
        self._check_free(halfedges)

        self._faces[face_id] = tri
        for h in halfedges:
            self._halfedge_face[h] = face_id
        self._vertex_faces[old].discard(face_id)
        self._vertex_faces[new].add(face_id)

    @staticmethod
    def _face_halfedges(tri: Tuple[int, int, int]) -> List[Halfedge]:
        return [(tri[0], tri[1]), (tri[1], tri[2]), (tri[2], tri[0])]

    # ------------------------------------------------------------------
    # Enumeration and counts
    # ------------------------------------------------------------------

    @property
    def n_vertices(self) -> int:
        return len(self.points) - len(self._deleted_vertices)

    @property
    def n_faces(self) -> int:
        return len(self._faces)

    @property
    def n_halfedges(self) -> int:
        return sum(1 for _ in self.halfedges())

    @property
    def n_edges(self) -> int:
        return sum(1 for _ in self.edges())

    def is_empty(self) -> bool:
        return self.n_vertices == 0

    def vertices(self) -> List[int]:
        """Ids of all live vertices in ascending order."""
        return [v for v in range(len(self.points)) if v not in self._deleted_vertices]

    def faces(self) -> List[int]:
        """
        Ids of all faces in ascending order.

        Collapses rewrite faces in place, so surviving faces keep their
        position in this order.
        """
        return list(self._faces)

    def halfedges(self) -> Iterator[Halfedge]:
        """
        Enumerate all halfedges.

        The order is deterministic: faces in ascending id order, and within a
        face each halfedge followed by its opposite if that opposite is a
        boundary halfedge.
        """
        for tri in self._faces.values():
            for h in self._face_halfedges(tri):
                yield h
                opposite = (h[1], h[0])
                if opposite not in self._halfedge_face:
                    yield opposite

    def edges(self) -> Iterator[Tuple[int, int]]:
        """Enumerate edges as (a, b) vertex pairs with a < b."""
        for h in self.halfedges():
            if h[0] < h[1]:
                yield h

    # ------------------------------------------------------------------
    # Halfedge navigation
    # ------------------------------------------------------------------

    @staticmethod
    def from_vertex(h: Halfedge) -> int:
        return h[0]

    @staticmethod
    def to_vertex(h: Halfedge) -> int:
        return h[1]

    @staticmethod
    def opposite_halfedge(h: Halfedge) -> Halfedge:
        return (h[1], h[0])

    def is_valid_halfedge(self, h: Halfedge) -> bool:
        return h in self._halfedge_face or (h[1], h[0]) in self._halfedge_face

    def face(self, h: Halfedge) -> Optional[int]:
        """Face bounded by `h`, or None for a boundary halfedge."""
        return self._halfedge_face.get(h)

    def find_halfedge(self, start: int, end: int) -> Optional[Halfedge]:
        """Return the halfedge start -> end if the two vertices share an edge."""
        h = (start, end)
        return h if self.is_valid_halfedge(h) else None

    def next_halfedge(self, h: Halfedge) -> Halfedge:
        """
        Next halfedge in the loop of `h`.

        For a face halfedge this is the next edge of the triangle; for a
        boundary halfedge it is the next halfedge along the boundary loop.
        """
        face_id = self._halfedge_face.get(h)
        if face_id is not None:
            tri = self._faces[face_id]
            i = tri.index(h[1])
            return (h[1], tri[(i + 1) % 3])
        return self._boundary_halfedge_out(h[1])

    def prev_halfedge(self, h: Halfedge) -> Halfedge:
        face_id = self._halfedge_face.get(h)
        if face_id is not None:
            tri = self._faces[face_id]
            i = tri.index(h[0])
            return (tri[(i - 1) % 3], h[0])
        return self._boundary_halfedge_in(h[0])

    def _boundary_halfedge_out(self, v: int) -> Optional[Halfedge]:
        for w in self.vertex_neighbors(v):
            if (v, w) not in self._halfedge_face:
                return (v, w)
        return None

    def _boundary_halfedge_in(self, v: int) -> Optional[Halfedge]:
        for w in self.vertex_neighbors(v):
            if (w, v) not in self._halfedge_face:
                return (w, v)
        return None

    # ------------------------------------------------------------------
    # Incidence
    # ------------------------------------------------------------------

    def face_vertices(self, face_id: int) -> Tuple[int, int, int]:
        return self._faces[face_id]

    def vertex_faces(self, v: int) -> Set[int]:
        """Faces incident to vertex `v`."""
        return set(self._vertex_faces.get(v, ()))

    def vertex_neighbors(self, v: int) -> List[int]:
        """Vertices connected to `v` by an edge, in ascending order."""
        ring = set()
        for face_id in self._vertex_faces.get(v, ()):
            ring.update(self._faces[face_id])
        ring.discard(v)
        return sorted(ring)

    def valence(self, v: int) -> int:
        return len(self.vertex_neighbors(v))

    def halfedges_around(self, v: int) -> List[Halfedge]:
        """
        Outgoing halfedges of `v` in rotational order.

        For a boundary vertex the rotation starts at its outgoing boundary
        halfedge, so the list covers the whole open fan.
        """
        ring = self.vertex_neighbors(v)
        if not ring:
            return []

        start = self._boundary_halfedge_out(v) or (v, ring[0])
        result = [start]
        h = start
        while len(result) <= len(ring):
            h = self.opposite_halfedge(self.prev_halfedge(h))
            if h == start:
                break
            result.append(h)
        return result

    # ------------------------------------------------------------------
    # Predicates
    # ------------------------------------------------------------------

    def is_deleted(self, v: int) -> bool:
        return v in self._deleted_vertices

    def is_isolated(self, v: int) -> bool:
        return not self._vertex_faces.get(v)

    def is_boundary_halfedge(self, h: Halfedge) -> bool:
        return h not in self._halfedge_face

    def is_boundary_vertex(self, v: int) -> bool:
        """A vertex is on the boundary if it is isolated or has an outgoing boundary halfedge."""
        if self.is_isolated(v):
            return True
        return self._boundary_halfedge_out(v) is not None

    def is_manifold_vertex(self, v: int) -> bool:
        """
        Check that the faces around `v` form a single fan.

        The rotation around the vertex must visit every neighbor exactly once,
        which holds for a closed cycle or a single open boundary chain.
        """
        ring = self.vertex_neighbors(v)
        if not ring:
            return True

        boundary_out = sum(1 for w in ring if (v, w) not in self._halfedge_face)
        if boundary_out > 1:
            return False

        around = self.halfedges_around(v)
        return len(around) == len(ring) and {h[1] for h in around} == set(ring)

    def is_manifold(self) -> bool:
        """
        Check that every vertex has a single fan of faces.

        Edges are manifold by construction: a directed halfedge bounds at
        most one face, so every edge has exactly two halfedges.
        """
        return all(self.is_manifold_vertex(v) for v in self.vertices())

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------

    def position(self, v: int) -> np.ndarray:
        return self.points[v]

    def set_position(self, v: int, p: np.ndarray):
        self.points[v] = p

    def face_normal(self, face_id: int,
                    overrides: Optional[Dict[int, np.ndarray]] = None) -> np.ndarray:
        """
        Unit normal of a face.

        Args:
            face_id: Face to evaluate
            overrides: Optional hypothetical positions keyed by vertex id,
                used instead of the stored positions. The mesh is not modified.

        Returns:
            Unit normal, or the zero vector for a degenerate face
        """
        pts = []
        for v in self._faces[face_id]:
            if overrides is not None and v in overrides:
                pts.append(np.asarray(overrides[v], dtype=np.float64))
            else:
                pts.append(self.points[v])
        return compute_face_normal(*pts)

    # ------------------------------------------------------------------
    # Edge collapse
    # ------------------------------------------------------------------

    def is_collapse_ok(self, h: Halfedge) -> bool:
        """
        Check whether collapsing `h` = (v0 -> v1) keeps the mesh manifold.

        Implements the link condition: the one-rings of v0 and v1 may only
        share the apex vertices of the (at most two) triangles incident to
        the edge. Additionally rejects collapses that would leave a dangling
        triangle, join two boundary loops through an interior edge, or make
        two faces coincide.
        """
        v0, v1 = h
        if v0 == v1 or v0 in self._deleted_vertices or v1 in self._deleted_vertices:
            return False
        if not self.is_valid_halfedge(h):
            return False

        o = self.opposite_halfedge(h)
        vl = vr = None

        # the edges v1-vl and vl-v0 must not both be boundary edges
        if not self.is_boundary_halfedge(h):
            h1 = self.next_halfedge(h)
            h2 = self.next_halfedge(h1)
            vl = h1[1]
            if self.is_boundary_halfedge(self.opposite_halfedge(h1)) and \
                    self.is_boundary_halfedge(self.opposite_halfedge(h2)):
                return False

        # the edges v0-vr and vr-v1 must not both be boundary edges
        if not self.is_boundary_halfedge(o):
            h1 = self.next_halfedge(o)
            h2 = self.next_halfedge(h1)
            vr = h1[1]
            if self.is_boundary_halfedge(self.opposite_halfedge(h1)) and \
                    self.is_boundary_halfedge(self.opposite_halfedge(h2)):
                return False

        if vl == vr:
            return False

        # an edge between two boundary vertices must be a boundary edge
        if self.is_boundary_vertex(v0) and self.is_boundary_vertex(v1) and \
                not self.is_boundary_halfedge(h) and not self.is_boundary_halfedge(o):
            return False

        # the one-rings may only intersect in vl and vr
        for vv in self.vertex_neighbors(v0):
            if vv != v1 and vv != vl and vv != vr:
                if self.find_halfedge(vv, v1) is not None:
                    return False

        if self._collapse_creates_duplicate_face(v0, v1):
            return False

        return True

    def _collapse_creates_duplicate_face(self, v0: int, v1: int) -> bool:
        v1_faces = set()
        for face_id in self._vertex_faces[v1]:
            tri = self._faces[face_id]
            if v0 not in tri:
                v1_faces.add(frozenset(tri))

        for face_id in self._vertex_faces[v0]:
            tri = self._faces[face_id]
            if v1 in tri:
                continue
            if frozenset(v1 if v == v0 else v for v in tri) in v1_faces:
                return True
        return False

    def collapse(self, h: Halfedge, check: bool = True) -> int:
        """
        Collapse halfedge `h` = (v0 -> v1), merging v0 into v1.

        The faces incident to the edge are removed, the remaining faces of v0
        are rewired to v1 and v0 is deleted together with its property values
        and those of every removed halfedge. Positions are not changed.

        Args:
            h: Halfedge to collapse
            check: Verify `is_collapse_ok` first

        Returns:
            The surviving vertex v1

        Raises:
            ValueError: If `check` is set and the collapse is not ok
        """
        if check and not self.is_collapse_ok(h):
            raise ValueError(f"Collapse of halfedge {h} is not ok")

        v0, v1 = h
        ring0 = self.vertex_neighbors(v0)

        shared = self._vertex_faces[v0] & self._vertex_faces[v1]
        for face_id in sorted(shared):
            self._remove_face(face_id)

        for face_id in sorted(self._vertex_faces[v0]):
            self._replace_corner(face_id, v0, v1)

        self._delete_vertex(v0, ring0)
        return v1

    def _delete_vertex(self, v: int, ring: List[int]):
        self._deleted_vertices.add(v)
        self._vertex_faces.pop(v, None)

        for prop in self._vertex_properties.values():
            prop[v] = None
        for prop in self._halfedge_properties.values():
            for w in ring:
                prop.pop((v, w), None)
                prop.pop((w, v), None)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    def add_vertex_property(self, name: str,
                            factory: Optional[Callable[[], Any]] = None) -> List[Any]:
        """
        Attach per-vertex storage.

        Args:
            name: Property name, e.g. "v:quadric"
            factory: Called once per live vertex for its initial value

        Returns:
            List indexed by vertex id

        Raises:
            KeyError: If a property with this name already exists
        """
        if name in self._vertex_properties:
            raise KeyError(f"Vertex property '{name}' already exists")

        prop = [None] * len(self.points)
        for v in self.vertices():
            prop[v] = factory() if factory is not None else None
        self._vertex_properties[name] = prop
        return prop

    def has_vertex_property(self, name: str) -> bool:
        return name in self._vertex_properties

    def remove_vertex_property(self, name: str):
        self._vertex_properties.pop(name, None)

    def add_halfedge_property(self, name: str, default: Any = None) -> HalfedgeProperty:
        """
        Attach per-halfedge storage keyed by halfedge.

        Raises:
            KeyError: If a property with this name already exists
        """
        if name in self._halfedge_properties:
            raise KeyError(f"Halfedge property '{name}' already exists")

        prop = HalfedgeProperty(default)
        self._halfedge_properties[name] = prop
        return prop

    def has_halfedge_property(self, name: str) -> bool:
        return name in self._halfedge_properties

    def remove_halfedge_property(self, name: str):
        self._halfedge_properties.pop(name, None)

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def to_arrays(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Compact the mesh into vertex and face arrays.

        Returns:
            Tuple of (vertices, faces) with live vertices renumbered densely
        """
        live = self.vertices()
        remap = {v: i for i, v in enumerate(live)}

        vertices = self.points[live] if live else np.zeros((0, 3))
        faces = [[remap[v] for v in tri] for tri in self._faces.values()]
        faces = np.array(faces, dtype=np.int64) if faces else np.zeros((0, 3), dtype=np.int64)
        return vertices, faces

    def to_trimesh(self) -> trimesh.Trimesh:
        vertices, faces = self.to_arrays()
        return trimesh.Trimesh(vertices=vertices, faces=faces, process=False)

    def copy(self) -> "HalfedgeMesh":
        """Copy of the geometry and connectivity, without properties."""
        vertices, faces = self.to_arrays()
        return HalfedgeMesh(vertices, faces)

    def __repr__(self):
        return f"HalfedgeMesh({self.n_vertices} vertices, {self.n_faces} faces)"
