"""Pose composition and small vector helpers shared by every stage."""

from __future__ import annotations

import math
from typing import Optional, Sequence, Tuple

import numpy as np
import trimesh

from crochet_geometry.contracts import Solid


def compose_pose(
    position: Sequence[float],
    rotation_deg: Sequence[float],
    scale: Sequence[float],
) -> np.ndarray:
    """Compose translation, intrinsic XYZ Euler rotation (degrees) and scale.

    Returns T @ R @ S so local points are scaled, then rotated, then moved.
    """
    rx, ry, rz = (math.radians(float(a)) for a in rotation_deg)
    rotation = trimesh.transformations.euler_matrix(rx, ry, rz, axes="rxyz")
    translation = trimesh.transformations.translation_matrix(
        np.asarray(position, dtype=float)
    )
    scaling = np.diag([float(scale[0]), float(scale[1]), float(scale[2]), 1.0])
    return translation @ rotation @ scaling


def solid_matrix(solid: Solid) -> np.ndarray:
    return compose_pose(solid.position, solid.rotation, solid.scale)


def matrix_columns(matrix: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    m = np.asarray(matrix, dtype=float)
    return m[:3, 0].copy(), m[:3, 1].copy(), m[:3, 2].copy()


def column_lengths(matrix: np.ndarray) -> np.ndarray:
    return np.linalg.norm(np.asarray(matrix, dtype=float)[:3, :3], axis=0)


def matrix_origin(matrix: np.ndarray) -> np.ndarray:
    return np.asarray(matrix, dtype=float)[:3, 3].copy()


def normal_matrix(matrix: np.ndarray) -> Optional[np.ndarray]:
    """Inverse-transpose of the linear part, or None when it is singular."""
    linear = np.asarray(matrix, dtype=float)[:3, :3]
    if abs(float(np.linalg.det(linear))) < 1e-12:
        return None
    return np.linalg.inv(linear).T


def transform_points(points: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    pts = np.asarray(points, dtype=float).reshape(-1, 3)
    if len(pts) == 0:
        return pts.copy()
    return trimesh.transform_points(pts, np.asarray(matrix, dtype=float))


def transform_directions(vectors: np.ndarray, linear: np.ndarray) -> np.ndarray:
    vecs = np.asarray(vectors, dtype=float).reshape(-1, 3)
    return vecs @ np.asarray(linear, dtype=float)[:3, :3].T


def unit_vector(vector: Sequence[float]) -> Optional[np.ndarray]:
    vec = np.asarray(vector, dtype=float)
    norm = float(np.linalg.norm(vec))
    if norm < 1e-9:
        return None
    return vec / norm


def plane_basis(normal: Sequence[float]) -> Tuple[np.ndarray, np.ndarray]:
    """Orthonormal (u, v) spanning the plane with the given normal."""
    n = unit_vector(normal)
    if n is None:
        raise ValueError("Normal cannot be zero.")
    reference = np.array([0.0, 1.0, 0.0])
    if abs(float(np.dot(reference, n))) > 0.9:
        reference = np.array([1.0, 0.0, 0.0])
    u = unit_vector(np.cross(reference, n))
    if u is None:
        raise ValueError("Cannot construct basis u.")
    v = np.cross(n, u)
    return u, v / np.linalg.norm(v)


def project_onto_plane(
    point: np.ndarray, origin: np.ndarray, normal: np.ndarray
) -> np.ndarray:
    n = unit_vector(normal)
    if n is None:
        return np.asarray(point, dtype=float).copy()
    offset = np.asarray(point, dtype=float) - np.asarray(origin, dtype=float)
    return np.asarray(point, dtype=float) - float(np.dot(offset, n)) * n


def ellipse_perimeter(a: float, b: float) -> float:
    """Ramanujan's second approximation."""
    a = abs(float(a))
    b = abs(float(b))
    if a + b <= 0.0:
        return 0.0
    return math.pi * (3.0 * (a + b) - math.sqrt((3.0 * a + b) * (a + 3.0 * b)))


def aabb_from_points(points: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    pts = np.asarray(points, dtype=float).reshape(-1, 3)
    return pts.min(axis=0), pts.max(axis=0)


def aabbs_intersect(
    a: Tuple[np.ndarray, np.ndarray], b: Tuple[np.ndarray, np.ndarray]
) -> bool:
    return bool(np.all(a[0] <= b[1]) and np.all(b[0] <= a[1]))


def point_in_aabb(point: np.ndarray, box: Tuple[np.ndarray, np.ndarray]) -> bool:
    p = np.asarray(point, dtype=float)
    return bool(np.all(p >= box[0] - 1e-9) and np.all(p <= box[1] + 1e-9))
