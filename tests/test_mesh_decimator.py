"""Tests for the QEM mesh decimator."""

import numpy as np
import pytest
import trimesh

from qem_decimation.halfedge_mesh import HalfedgeMesh
from qem_decimation.mesh_decimator import (
    INFINITY, MeshDecimator, decimate, simplify, target_from_percentage,
)


class TestInitialization:
    """Tests for quadric and priority setup."""

    def test_quadric_error_starts_at_zero(self, icosahedron):
        decimator = MeshDecimator(icosahedron, verbose=False)
        decimator.initialize()
        assert abs(decimator.quadric_error()) < 1e-9

    def test_every_vertex_gets_a_quadric(self, sphere):
        decimator = MeshDecimator(sphere, verbose=False)
        decimator.initialize()
        for v in sphere.vertices():
            assert np.any(decimator.quadrics[v].coefficients != 0)

    def test_priorities_computed_for_all_halfedges(self, icosahedron):
        decimator = MeshDecimator(icosahedron, verbose=False)
        decimator.initialize()
        for h in icosahedron.halfedges():
            assert h in decimator.priority
            assert decimator.priority[h] == decimator.collapse_priority(h)

    def test_double_initialize_raises(self, icosahedron):
        decimator = MeshDecimator(icosahedron, verbose=False)
        decimator.initialize()
        with pytest.raises(RuntimeError):
            decimator.initialize()

    def test_invalid_arguments(self, icosahedron):
        with pytest.raises(ValueError):
            MeshDecimator(icosahedron, cost_mode="midpoint")
        with pytest.raises(ValueError):
            MeshDecimator(icosahedron, boundary_weight=-1.0)

    def test_one_decimator_per_mesh(self, icosahedron):
        MeshDecimator(icosahedron, verbose=False)
        with pytest.raises(KeyError):
            MeshDecimator(icosahedron, verbose=False)

    def test_release_detaches_properties(self, icosahedron):
        with MeshDecimator(icosahedron, verbose=False) as decimator:
            decimator.decimate(10)
        assert not icosahedron.has_vertex_property("v:quadric")
        assert not icosahedron.has_halfedge_property("h:priority")
        MeshDecimator(icosahedron, verbose=False)

    def test_boundary_weight_constrains_boundary_vertices(self, grid):
        plain = MeshDecimator(grid, verbose=False)
        plain.initialize()
        other = grid.copy()
        weighted = MeshDecimator(other, boundary_weight=10.0, verbose=False)
        weighted.initialize()

        # corner vertex: boundary planes pass through it
        assert not np.allclose(plain.quadrics[0].coefficients, weighted.quadrics[0].coefficients)
        assert abs(weighted.quadrics[0].evaluate(other.position(0))) < 1e-9

        # interior vertex away from the boundary edges
        np.testing.assert_allclose(plain.quadrics[9].coefficients, weighted.quadrics[9].coefficients)


class TestLegality:
    """Tests for collapse legality and priorities."""

    def test_isolated_triangle_has_no_legal_collapse(self, triangle):
        decimator = MeshDecimator(triangle, verbose=False)
        decimator.initialize()
        for h in triangle.halfedges():
            assert not decimator.is_collapse_legal(h)
            assert decimator.priority[h] == INFINITY

    def test_flip_is_rejected(self, tent):
        assert tent.is_collapse_ok((0, 1))

        decimator = MeshDecimator(tent, verbose=False)
        decimator.initialize()

        assert not decimator.is_collapse_legal((0, 1))
        assert decimator.collapse_priority((0, 1)) == INFINITY
        assert decimator.is_collapse_legal((1, 2))

    def test_legality_check_does_not_move_vertices(self, tent):
        before = tent.points.copy()
        decimator = MeshDecimator(tent, verbose=False)
        decimator.initialize()
        for h in list(tent.halfedges()):
            decimator.is_collapse_legal(h)
        np.testing.assert_array_equal(tent.points, before)

    def test_boundary_vertex_cannot_move_inside(self, grid):
        decimator = MeshDecimator(grid, verbose=False)
        decimator.initialize()
        # vertex 1 is on the boundary row, vertex 9 is interior
        assert grid.is_boundary_vertex(1) and not grid.is_boundary_vertex(9)
        assert grid.is_collapse_ok((1, 9))
        assert not decimator.is_collapse_legal((1, 9))
        assert decimator.priority[(1, 9)] == INFINITY

    def test_minimizer_mode_falls_back_to_surviving_vertex(self, flat_hexagon):
        other = flat_hexagon.copy()
        surviving = MeshDecimator(flat_hexagon, verbose=False)
        surviving.initialize()
        minimizer = MeshDecimator(other, cost_mode="minimizer", verbose=False)
        minimizer.initialize()

        # every merged quadric of a planar mesh is rank one
        for h in flat_hexagon.halfedges():
            assert minimizer.collapse_priority(h) == surviving.collapse_priority(h)

        assert minimizer.decimate(5) == 2
        assert other.n_vertices == 5

    def test_minimizer_cost_never_exceeds_surviving_cost(self, sphere):
        other = sphere.copy()
        surviving = MeshDecimator(sphere, verbose=False)
        surviving.initialize()
        minimizer = MeshDecimator(other, cost_mode="minimizer", verbose=False)
        minimizer.initialize()

        for h in list(sphere.halfedges())[:200]:
            assert minimizer.collapse_priority(h) <= surviving.collapse_priority(h) + 1e-9


class TestDecimation:
    """Tests for the greedy collapse loop."""

    def test_icosahedron(self, icosahedron):
        decimator = MeshDecimator(icosahedron, verbose=False)
        decimator.initialize()

        collapses = decimator.decimate(4)

        assert collapses > 0
        assert 4 <= icosahedron.n_vertices <= 12
        assert icosahedron.n_vertices == 12 - collapses
        assert icosahedron.n_faces < 20
        assert icosahedron.is_manifold()
        assert decimator.quadric_error() >= -1e-9

    def test_accumulated_error_non_decreasing(self, icosahedron):
        decimator = MeshDecimator(icosahedron, verbose=False)
        decimator.decimate(4)

        accumulated = [entry['accumulated_error'] for entry in decimator.collapse_history]
        assert accumulated
        for before, after in zip(accumulated, accumulated[1:]):
            assert after >= before - 1e-12

    def test_single_triangle_is_unchanged(self, triangle):
        decimator = MeshDecimator(triangle, verbose=False)
        assert decimator.decimate(0) == 0
        assert triangle.n_vertices == 3
        assert triangle.n_faces == 1

    def test_flipping_collapse_is_never_chosen_first(self, tent):
        decimator = MeshDecimator(tent, optimize_positions=False, verbose=False)
        decimator.initialize()
        cheapest = min(decimator.priority[h] for h in tent.halfedges())
        assert cheapest < INFINITY

        assert decimator.decimate(5) == 1

        first = decimator.collapse_history[0]
        assert first['halfedge'] != (0, 1)
        assert first['cost'] == cheapest

    def test_ties_follow_enumeration_order(self, flat_grid):
        decimator = MeshDecimator(flat_grid, optimize_positions=False, verbose=False)
        decimator.initialize()

        for _ in range(10):
            legal = [h for h in flat_grid.halfedges() if decimator.is_collapse_legal(h)]
            cheapest = min(decimator.priority[h] for h in legal)
            expected = next(h for h in legal if decimator.priority[h] == cheapest)

            assert decimator.decimate(flat_grid.n_vertices - 1) == 1
            assert decimator.collapse_history[-1]['halfedge'] == expected

    def test_reaches_target(self, sphere):
        decimator = MeshDecimator(sphere, verbose=False)
        decimator.decimate(100)

        assert sphere.n_vertices == 100
        assert sphere.n_faces == 2 * 100 - 4
        assert sphere.is_manifold()
        assert len(decimator.collapse_history) == 62

    def test_target_not_below_count_is_noop(self, sphere):
        decimator = MeshDecimator(sphere, verbose=False)
        decimator.decimate(100)
        points = sphere.points.copy()
        faces = sphere.to_arrays()[1]

        assert decimator.decimate(100) == 0
        assert decimator.decimate(150) == 0

        np.testing.assert_array_equal(sphere.points, points)
        np.testing.assert_array_equal(sphere.to_arrays()[1], faces)

    def test_vertex_count_never_increases(self, sphere):
        decimator = MeshDecimator(sphere, verbose=False)
        counts = [sphere.n_vertices]
        for target in (150, 140, 130):
            decimator.decimate(target)
            counts.append(sphere.n_vertices)
        assert counts == sorted(counts, reverse=True)
        assert sphere.n_vertices == 130

    def test_second_run_after_position_pass(self, sphere):
        decimator = MeshDecimator(sphere, verbose=False)
        decimator.decimate(120)
        decimator.decimate(100)
        assert sphere.n_vertices == 100
        assert sphere.is_manifold()

    def test_negative_target_raises(self, icosahedron):
        decimator = MeshDecimator(icosahedron, verbose=False)
        with pytest.raises(ValueError):
            decimator.decimate(-1)

    def test_empty_mesh(self):
        mesh = HalfedgeMesh(np.zeros((0, 3)), np.zeros((0, 3), dtype=int))
        assert MeshDecimator(mesh, verbose=False).decimate(0) == 0

    def test_open_surface_stays_manifold(self, grid):
        decimator = MeshDecimator(grid, verbose=False)
        decimator.decimate(30)

        assert 30 <= grid.n_vertices < 64
        assert grid.is_manifold()
        assert any(grid.is_boundary_halfedge(h) for h in grid.halfedges())

    def test_minimizer_cost_mode(self, sphere):
        decimator = MeshDecimator(sphere, cost_mode="minimizer", verbose=False)
        decimator.decimate(100)
        assert sphere.n_vertices == 100
        assert sphere.is_manifold()

    def test_planar_vertices_keep_position(self, flat_hexagon):
        before = flat_hexagon.points.copy()
        decimator = MeshDecimator(flat_hexagon, verbose=False)

        assert decimator.decimate(6) == 1

        for v in flat_hexagon.vertices():
            np.testing.assert_allclose(flat_hexagon.position(v), before[v])

    def test_max_error_stops_early(self, sphere):
        decimator = MeshDecimator(sphere, max_error=-1.0, verbose=False)
        assert decimator.decimate(50) == 0
        assert sphere.n_vertices == 162

    def test_max_error_bounds_every_cost(self, sphere):
        decimator = MeshDecimator(sphere, max_error=1e-4, verbose=False)
        decimator.decimate(10)
        assert all(entry['cost'] <= 1e-4 for entry in decimator.collapse_history)

    def test_cancel_callback(self, sphere):
        polls = []

        def cancel():
            polls.append(1)
            return len(polls) > 3

        decimator = MeshDecimator(sphere, verbose=False)
        collapses = decimator.decimate(50, cancel_callback=cancel)

        assert collapses <= 3
        assert sphere.n_vertices == 162 - collapses

    def test_progress_callback(self, sphere):
        progress = []
        decimator = MeshDecimator(sphere, verbose=False)
        decimator.decimate(100, progress_callback=progress.append)

        assert progress
        assert all(0.0 < p <= 1.0 for p in progress)
        assert progress == sorted(progress)

    def test_history_and_vertex_errors(self, sphere):
        decimator = MeshDecimator(sphere, verbose=False)
        decimator.decimate(140)

        history = decimator.get_collapse_history()
        assert len(history) == 22
        assert history is not decimator.collapse_history
        assert set(history[0]) == {'halfedge', 'cost', 'accumulated_error'}

        errors = decimator.vertex_errors()
        assert errors.shape == (140,)
        assert np.isclose(errors.sum(), decimator.quadric_error())


class TestConvenience:
    """Tests for the module level helpers."""

    def test_decimate_function(self, sphere):
        collapses = decimate(sphere, 100, verbose=False)
        assert collapses == 62
        assert sphere.n_vertices == 100
        assert not sphere.has_vertex_property("v:quadric")

    def test_simplify_ratio(self):
        mesh = trimesh.creation.icosphere(subdivisions=2)
        result = simplify(mesh, target_ratio=0.5, verbose=False)

        assert len(result.vertices) == 81
        assert len(result.faces) == 158
        assert result.is_watertight
        assert len(mesh.vertices) == 162

    def test_simplify_vertices(self):
        mesh = trimesh.creation.icosphere(subdivisions=2)
        result = simplify(mesh, target_vertices=120, verbose=False)
        assert len(result.vertices) == 120

    def test_simplify_argument_errors(self):
        mesh = trimesh.creation.icosahedron()
        with pytest.raises(ValueError):
            simplify(mesh)
        with pytest.raises(ValueError):
            simplify(mesh, target_vertices=6, target_ratio=0.5)
        with pytest.raises(ValueError):
            simplify(mesh, target_ratio=1.5)

    def test_target_from_percentage(self):
        assert target_from_percentage(162, 50) == 81
        assert target_from_percentage(162, 0) == 0
        assert target_from_percentage(162, 100) == 162
        with pytest.raises(ValueError):
            target_from_percentage(162, 150)
