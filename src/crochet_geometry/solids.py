"""Analytic unit primitives: membership, bounds, volume and meshes.

Every solid type is defined in its own local frame and posed by the matrix
from :func:`crochet_geometry.transforms.solid_matrix`.  Local definitions:

- sphere: radius 1
- cone: apex at y=+1, base of radius 1 at y=-1
- cylinder: radius 1, y in [-1, 1]
- capsule: radius 0.5, straight section y in [-0.5, 0.5], round ends
- pyramid: apex at y=+1, diamond base |x| + |z| <= 1 at y=-1
- torus: axis Y, major radius 1, minor radius 0.4
- triangle: prism over the triangle (sin t, cos t), t = 0, 2pi/3, 4pi/3,
  y in [-1, 1]
"""

from __future__ import annotations

import math
from functools import lru_cache
from typing import Dict, Optional, Tuple

import numpy as np
import trimesh
from shapely.geometry import Polygon

from crochet_geometry.contracts import Solid
from crochet_geometry.transforms import aabb_from_points, solid_matrix, transform_points

MEMBERSHIP_EPS = 1e-4

CAPSULE_RADIUS = 0.5
CAPSULE_HALF_LENGTH = 0.5
TORUS_MAJOR_RADIUS = 1.0
TORUS_MINOR_RADIUS = 0.4

_SQRT3_2 = math.sqrt(3.0) / 2.0
TRIANGLE_VERTICES_XZ = np.array(
    [[math.sin(t), math.cos(t)] for t in (0.0, 2.0 * math.pi / 3.0, 4.0 * math.pi / 3.0)]
)

LOCAL_BOUNDS: Dict[str, Tuple[Tuple[float, float, float], Tuple[float, float, float]]] = {
    "sphere": ((-1.0, -1.0, -1.0), (1.0, 1.0, 1.0)),
    "cone": ((-1.0, -1.0, -1.0), (1.0, 1.0, 1.0)),
    "cylinder": ((-1.0, -1.0, -1.0), (1.0, 1.0, 1.0)),
    "capsule": ((-0.5, -1.0, -0.5), (0.5, 1.0, 0.5)),
    "pyramid": ((-1.0, -1.0, -1.0), (1.0, 1.0, 1.0)),
    "torus": ((-1.4, -0.4, -1.4), (1.4, 0.4, 1.4)),
    "triangle": ((-_SQRT3_2, -1.0, -0.5), (_SQRT3_2, 1.0, 1.0)),
}


# ---------------------------------------------------------------------------
# Membership
# ---------------------------------------------------------------------------

def contains_local(solid_type: str, points: np.ndarray, margin: float = 0.0) -> np.ndarray:
    """Vectorised point-in-unit-solid test in local space.

    ``margin`` shrinks the solid inward (as a fraction of its unit size) so a
    cutter can be made slightly smaller than its surface.
    """
    pts = np.asarray(points, dtype=float).reshape(-1, 3)
    x, y, z = pts[:, 0], pts[:, 1], pts[:, 2]
    shrink = max(0.0, 1.0 - float(margin))
    radial = np.sqrt(x * x + z * z)
    y_lim = 1.0 - float(margin)

    if solid_type == "sphere":
        return np.linalg.norm(pts, axis=1) <= shrink + MEMBERSHIP_EPS
    if solid_type == "cone":
        in_height = np.abs(y) <= y_lim + MEMBERSHIP_EPS
        return in_height & (radial <= 0.5 * (1.0 - y) * shrink + MEMBERSHIP_EPS)
    if solid_type == "cylinder":
        return (np.abs(y) <= y_lim + MEMBERSHIP_EPS) & (radial <= shrink + MEMBERSHIP_EPS)
    if solid_type == "capsule":
        axial = np.clip(y, -CAPSULE_HALF_LENGTH, CAPSULE_HALF_LENGTH)
        dist = np.sqrt(radial * radial + (y - axial) ** 2)
        return dist <= CAPSULE_RADIUS * shrink + MEMBERSHIP_EPS
    if solid_type == "pyramid":
        in_height = np.abs(y) <= y_lim + MEMBERSHIP_EPS
        return in_height & (np.abs(x) + np.abs(z) <= 0.5 * (1.0 - y) * shrink + MEMBERSHIP_EPS)
    if solid_type == "torus":
        tube = np.sqrt((radial - TORUS_MAJOR_RADIUS) ** 2 + y * y)
        return tube <= TORUS_MINOR_RADIUS * shrink + MEMBERSHIP_EPS
    if solid_type == "triangle":
        xz = np.stack([x, z], axis=1)
        # Edge opposite vertex k has outward normal -v_k at distance 0.5.
        support = (-xz @ TRIANGLE_VERTICES_XZ.T).max(axis=1)
        in_height = np.abs(y) <= y_lim + MEMBERSHIP_EPS
        return in_height & (support <= 0.5 * shrink + MEMBERSHIP_EPS)
    raise ValueError(f"Unknown solid type: {solid_type}")


def point_in_solid(
    solid: Solid,
    points: np.ndarray,
    margin: float = 0.0,
    matrix: Optional[np.ndarray] = None,
) -> np.ndarray:
    """World-space membership for one or more points."""
    pts = np.asarray(points, dtype=float).reshape(-1, 3)
    m = solid_matrix(solid) if matrix is None else np.asarray(matrix, dtype=float)
    if abs(float(np.linalg.det(m[:3, :3]))) < 1e-12:
        return np.zeros(len(pts), dtype=bool)
    local = transform_points(pts, np.linalg.inv(m))
    return contains_local(solid.type, local, margin)


# ---------------------------------------------------------------------------
# Bounds and volume
# ---------------------------------------------------------------------------

def world_bounds(solid: Solid, matrix: Optional[np.ndarray] = None) -> Tuple[np.ndarray, np.ndarray]:
    """World AABB of the transformed local box corners."""
    lo, hi = LOCAL_BOUNDS.get(solid.type, LOCAL_BOUNDS["sphere"])
    corners = np.array(
        [[cx, cy, cz] for cx in (lo[0], hi[0]) for cy in (lo[1], hi[1]) for cz in (lo[2], hi[2])]
    )
    m = solid_matrix(solid) if matrix is None else matrix
    return aabb_from_points(transform_points(corners, m))


def aabb_volume(box: Tuple[np.ndarray, np.ndarray]) -> float:
    size = np.maximum(np.asarray(box[1]) - np.asarray(box[0]), 0.0)
    return float(np.prod(size))


def approximate_volume(solid: Solid, matrix: Optional[np.ndarray] = None) -> float:
    m = solid_matrix(solid) if matrix is None else matrix
    det = abs(float(np.linalg.det(np.asarray(m)[:3, :3])))
    if solid.type == "sphere":
        return 4.0 / 3.0 * math.pi * det
    if solid.type == "cone":
        return 2.0 / 3.0 * math.pi * det
    if solid.type == "cylinder":
        return 2.0 * math.pi * det
    if solid.type == "capsule":
        return 5.0 / 12.0 * math.pi * det
    return aabb_volume(world_bounds(solid, m))


def solid_center(solid: Solid, matrix: Optional[np.ndarray] = None) -> np.ndarray:
    m = solid_matrix(solid) if matrix is None else matrix
    return np.asarray(m, dtype=float)[:3, 3].copy()


# ---------------------------------------------------------------------------
# Meshes
# ---------------------------------------------------------------------------

@lru_cache(maxsize=1)
def _triangle_prism_mesh() -> trimesh.Trimesh:
    outline = Polygon([tuple(v) for v in TRIANGLE_VERTICES_XZ])
    mesh = trimesh.creation.extrude_polygon(outline, height=2.0)
    # Extrusion runs along +Z from the polygon's XY plane; map (X, Y, Z) to
    # local (x, z, y - 1) so the prism axis is Y and spans [-1, 1].
    remap = np.array(
        [
            [1.0, 0.0, 0.0, 0.0],
            [0.0, 0.0, 1.0, -1.0],
            [0.0, 1.0, 0.0, 0.0],
            [0.0, 0.0, 0.0, 1.0],
        ]
    )
    mesh.apply_transform(remap)
    return mesh


def triangle_prism_mesh() -> trimesh.Trimesh:
    """Unit triangular prism in local space (a fresh copy)."""
    return _triangle_prism_mesh().copy()


def _z_up_to_y_up(mesh: trimesh.Trimesh) -> trimesh.Trimesh:
    mesh.apply_transform(trimesh.transformations.rotation_matrix(-0.5 * math.pi, [1.0, 0.0, 0.0]))
    mesh.apply_translation(-mesh.bounds.mean(axis=0))
    return mesh


def unit_mesh(solid_type: str) -> trimesh.Trimesh:
    """Triangle mesh of a unit primitive in local space."""
    if solid_type == "sphere":
        return trimesh.creation.icosphere(subdivisions=3, radius=1.0)
    if solid_type == "cone":
        return _z_up_to_y_up(trimesh.creation.cone(radius=1.0, height=2.0, sections=64))
    if solid_type == "cylinder":
        return _z_up_to_y_up(trimesh.creation.cylinder(radius=1.0, height=2.0, sections=64))
    if solid_type == "capsule":
        return _z_up_to_y_up(
            trimesh.creation.capsule(height=2.0 * CAPSULE_HALF_LENGTH, radius=CAPSULE_RADIUS)
        )
    if solid_type == "pyramid":
        apex_and_base = np.array(
            [[0.0, 1.0, 0.0], [1.0, -1.0, 0.0], [0.0, -1.0, 1.0], [-1.0, -1.0, 0.0], [0.0, -1.0, -1.0]]
        )
        return trimesh.convex.convex_hull(apex_and_base)
    if solid_type == "torus":
        return _z_up_to_y_up(
            trimesh.creation.torus(major_radius=TORUS_MAJOR_RADIUS, minor_radius=TORUS_MINOR_RADIUS)
        )
    if solid_type == "triangle":
        return triangle_prism_mesh()
    raise ValueError(f"No unit mesh for solid type {solid_type!r}")
