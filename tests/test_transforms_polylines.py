"""Tests for transforms and polylines modules."""
import math

import numpy as np
import pytest
import trimesh

from conftest import circle_loop
from crochet_geometry.contracts import Solid
from crochet_geometry.polylines import (
    assemble_polylines,
    close_polyline,
    is_closed,
    nearest_point_on_polyline,
    open_polyline,
    point_at_distance,
    polyline_length,
    polyline_midpoint,
    resample_polyline,
    sample_at_distances,
    slice_mesh,
)
from crochet_geometry.transforms import (
    aabbs_intersect,
    column_lengths,
    compose_pose,
    ellipse_perimeter,
    normal_matrix,
    plane_basis,
    point_in_aabb,
    solid_matrix,
    transform_points,
    unit_vector,
)


class TestPose:
    def test_identity(self):
        m = compose_pose((0, 0, 0), (0, 0, 0), (1, 1, 1))
        assert np.allclose(m, np.eye(4))

    def test_scale_then_translate(self):
        m = compose_pose((1, 2, 3), (0, 0, 0), (2, 3, 4))
        assert np.allclose(column_lengths(m), [2, 3, 4])
        pts = transform_points(np.array([[1.0, 1.0, 1.0]]), m)
        assert np.allclose(pts[0], [3, 5, 7])

    def test_rotation_about_y(self):
        m = compose_pose((0, 0, 0), (0, 90, 0), (1, 1, 1))
        assert np.allclose(m[:3, 0], [0, 0, -1], atol=1e-9)
        assert np.allclose(m[:3, 1], [0, 1, 0], atol=1e-9)

    def test_solid_matrix_uses_pose(self):
        solid = Solid(id="s", type="sphere", position=(0, 1, 0), scale=(2, 2, 2))
        m = solid_matrix(solid)
        assert np.allclose(m[:3, 3], [0, 1, 0])
        assert np.allclose(column_lengths(m), [2, 2, 2])

    def test_normal_matrix_singular(self):
        m = compose_pose((0, 0, 0), (0, 0, 0), (0, 1, 1))
        assert normal_matrix(m) is None


class TestVectorHelpers:
    def test_unit_vector_zero(self):
        assert unit_vector([0, 0, 0]) is None

    @pytest.mark.parametrize("normal", [(0, 1, 0), (1, 0, 0), (0.3, 0.4, 0.5)])
    def test_plane_basis_orthonormal(self, normal):
        u, v = plane_basis(normal)
        n = unit_vector(normal)
        assert np.dot(u, v) == pytest.approx(0.0, abs=1e-12)
        assert np.dot(u, n) == pytest.approx(0.0, abs=1e-12)
        assert np.linalg.norm(u) == pytest.approx(1.0)
        assert np.linalg.norm(v) == pytest.approx(1.0)

    def test_plane_basis_rejects_zero(self):
        with pytest.raises(ValueError):
            plane_basis((0, 0, 0))

    def test_ellipse_perimeter_circle(self):
        assert ellipse_perimeter(2.0, 2.0) == pytest.approx(4.0 * math.pi)
        assert ellipse_perimeter(0.0, 0.0) == 0.0

    def test_aabb_helpers(self):
        a = (np.zeros(3), np.ones(3))
        b = (np.full(3, 0.5), np.full(3, 2.0))
        c = (np.full(3, 1.5), np.full(3, 2.0))
        assert aabbs_intersect(a, b)
        assert not aabbs_intersect(a, c)
        assert point_in_aabb(np.array([0.5, 0.5, 0.5]), a)
        assert not point_in_aabb(np.array([1.5, 0.5, 0.5]), a)


class TestPolylines:
    def test_close_and_open(self):
        pts = np.array([[0, 0, 0], [1, 0, 0], [1, 1, 0]], dtype=float)
        closed = close_polyline(pts)
        assert len(closed) == 4
        assert is_closed(closed)
        assert not is_closed(pts)
        assert len(open_polyline(closed)) == 3

    def test_length_and_midpoint(self):
        pts = np.array([[0, 0, 0], [1, 0, 0], [2, 0, 0]], dtype=float)
        assert polyline_length(pts) == pytest.approx(2.0)
        assert np.allclose(polyline_midpoint(pts), [1, 0, 0])

    def test_sample_at_distances_wraps(self):
        square = close_polyline(np.array([[0, 0, 0], [1, 0, 0], [1, 0, 1], [0, 0, 1]], dtype=float))
        points, tangents = sample_at_distances(square, [0.5, 4.5], wrap=True)
        assert np.allclose(points[0], [0.5, 0, 0])
        assert np.allclose(points[1], [0.5, 0, 0])
        assert np.allclose(tangents[0], [1, 0, 0])

    def test_point_at_distance(self):
        pts = np.array([[0, 0, 0], [2, 0, 0], [2, 0, 2]], dtype=float)
        point, tangent = point_at_distance(pts, 3.0)
        assert np.allclose(point, [2, 0, 1])
        assert np.allclose(tangent, [0, 0, 1])
        point, _ = point_at_distance(pts, 10.0)
        assert np.allclose(point, [2, 0, 2])

    def test_resample_closed_keeps_length(self):
        loop = circle_loop(radius=1.0, segments=200)
        resampled = resample_polyline(loop, 50)
        assert is_closed(resampled)
        assert len(resampled) == 51
        assert polyline_length(resampled) == pytest.approx(2 * math.pi, rel=1e-2)

    def test_nearest_point(self):
        pts = np.array([[0, 0, 0], [2, 0, 0]], dtype=float)
        point, s, dist = nearest_point_on_polyline(pts, [1.0, 1.0, 0.0])
        assert np.allclose(point, [1, 0, 0])
        assert s == pytest.approx(1.0)
        assert dist == pytest.approx(1.0)

    def test_assemble_shuffled_square(self):
        corners = np.array([[0, 0, 0], [1, 0, 0], [1, 0, 1], [0, 0, 1]], dtype=float)
        segments = np.array([[corners[i], corners[(i + 1) % 4]] for i in (2, 0, 3, 1)])
        chains = assemble_polylines(segments)
        assert len(chains) == 1
        assert is_closed(chains[0])
        assert polyline_length(chains[0]) == pytest.approx(4.0)

    def test_slice_box_mesh(self):
        box = trimesh.creation.box(extents=[2, 2, 2])
        segments = slice_mesh(box, np.eye(4), [0, 0, 0], [0, 1, 0])
        assert segments.shape[1:] == (2, 3)
        chains = assemble_polylines(segments)
        assert sum(polyline_length(c) for c in chains) == pytest.approx(8.0)

    def test_slice_missing_plane_is_empty(self):
        box = trimesh.creation.box(extents=[2, 2, 2])
        segments = slice_mesh(box, np.eye(4), [0, 5, 0], [0, 1, 0])
        assert len(segments) == 0
