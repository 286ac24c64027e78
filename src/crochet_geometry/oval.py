"""Oval start: a short foundation chain for elongated starting sections.

A circular start is worked from a magic ring; an elongated one starts from
a chain laid along the section's long side.  The cheap :func:`oval_gate`
runs on the transform first so near-circular sections never reach the
ring analysis in :func:`detect_oval_start`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from crochet_geometry.contracts import Ring, Thresholds
from crochet_geometry.polylines import nearest_point_on_polyline, polyline_midpoint
from crochet_geometry.transforms import column_lengths, plane_basis, unit_vector

logger = logging.getLogger(__name__)


@dataclass
class OvalGate:
    is_oval: bool
    axes_ratio: float
    primary: int


@dataclass
class OvalStart:
    polyline: np.ndarray
    ratio: float
    chain_count: int
    approx_stitches: float
    half_length: float
    major_dir: np.ndarray
    plane_center: np.ndarray
    plane_normal: np.ndarray


def oval_gate(matrix: np.ndarray, slice_dir: Sequence[float], threshold: float = 1.1) -> OvalGate:
    """Compare the two transform columns that are not the slicing axis."""
    m = np.asarray(matrix, dtype=float)
    lengths = column_lengths(m)
    direction = np.asarray(slice_dir, dtype=float)
    alignment = [
        abs(float(np.dot(m[:3, i] / max(lengths[i], 1e-12), direction))) for i in range(3)
    ]
    primary = 0
    if alignment[1] > alignment[0] and alignment[1] >= alignment[2]:
        primary = 1
    elif alignment[2] > alignment[0] and alignment[2] >= alignment[1]:
        primary = 2
    a, b = (lengths[i] for i in range(3) if i != primary)
    ratio = float(max(a, b) / max(1e-9, min(a, b)))
    return OvalGate(is_oval=ratio > threshold, axes_ratio=ratio, primary=primary)


def solve_offset_for_target_distance(
    center: np.ndarray,
    direction: np.ndarray,
    next_ring: np.ndarray,
    target: float,
) -> float:
    """Distance along ``direction`` at which a point sits ``target`` from a ring."""

    def gap(t: float) -> float:
        return nearest_point_on_polyline(next_ring, center + direction * t)[2]

    lo, hi = 0.0, max(4.0 * target, 1e-3)
    for _ in range(12):
        if gap(hi) >= 0.95 * target:
            break
        hi *= 1.8
    for _ in range(24):
        mid = 0.5 * (lo + hi)
        d = gap(mid)
        if abs(d - target) < 0.05 * target:
            return mid
        if d > target:
            hi = mid
        else:
            lo = mid
    return 0.5 * (lo + hi)


def _rings_by_distance(rings: Sequence[Ring], point: np.ndarray) -> List[Ring]:
    candidates = [r for r in rings if r.polylines and not r.meta.get("connector")]
    return sorted(
        candidates,
        key=lambda r: float(np.linalg.norm(polyline_midpoint(r.polylines[0]) - point)),
    )


def detect_oval_start(
    rings: Sequence[Ring],
    start_pole: np.ndarray,
    plane_normal: np.ndarray,
    gauge_width: float,
    thresholds: Thresholds,
    pole_axis: Optional[np.ndarray] = None,
) -> Optional[OvalStart]:
    """Build the starting chain, or None when the first ring is round enough."""
    pole = np.asarray(start_pole, dtype=float)
    ordered = _rings_by_distance(rings, pole)
    if not ordered:
        return None
    first = np.asarray(ordered[0].polylines[0], dtype=float)
    nxt = np.asarray(ordered[1].polylines[0], dtype=float) if len(ordered) > 1 else None

    n = unit_vector(plane_normal)
    if n is None:
        n = np.array([0.0, 1.0, 0.0])
    centroid = first.mean(axis=0)
    u, v = plane_basis(n)
    rel = first - centroid
    pu, pv = rel @ u, rel @ v
    extent_u = max(1e-6, float(pu.max() - pu.min()))
    extent_v = max(1e-6, float(pv.max() - pv.min()))
    ratio = max(extent_u, extent_v) / min(extent_u, extent_v)
    if ratio <= thresholds.oval_axes_ratio:
        logger.debug("First ring extent ratio %.4f is not oval", ratio)
        return None

    sxx, syy, sxy = float(np.mean(pu * pu)), float(np.mean(pv * pv)), float(np.mean(pu * pv))
    angle = 0.5 * np.arctan2(2.0 * sxy, sxx - syy)
    major = u * np.cos(angle) + v * np.sin(angle)
    if nxt is not None and len(nxt) >= 3:
        drift = nxt.mean(axis=0) - centroid
        drift = drift - n * float(np.dot(drift, n))
        if float(np.dot(drift, drift)) > 1e-10 and float(np.dot(drift, major)) < 0.0:
            major = -major
    major = unit_vector(major)
    if major is None:
        major = u

    gauge = max(1e-6, float(gauge_width))
    center = pole - n * float(np.dot(n, pole - centroid))
    reach = gauge
    if nxt is not None and len(nxt) >= 3:
        reach = solve_offset_for_target_distance(center, major, nxt, gauge)
    half = max(gauge, reach)

    tangent = None
    if pole_axis is not None:
        axis = np.asarray(pole_axis, dtype=float)
        projected = axis - n * float(np.dot(axis, n))
        if float(np.dot(projected, projected)) > 1e-10:
            tangent = unit_vector(np.cross(n, projected))
    if tangent is None:
        # Pole axis along the ring normal: lay the chain on the long side.
        tangent = major

    end_a = center + tangent * half
    end_b = center - tangent * half
    approx = float(np.linalg.norm(end_a - end_b)) / gauge
    count = 2 if approx >= thresholds.oval_chain_threshold else 1
    return OvalStart(
        polyline=np.vstack([end_b, center, end_a]),
        ratio=float(ratio),
        chain_count=count,
        approx_stitches=approx,
        half_length=float(half),
        major_dir=major,
        plane_center=centroid,
        plane_normal=n,
    )


def prepend_oval_start(
    rings: Sequence[Ring],
    oval: OvalStart,
    slice_dir: np.ndarray,
    object_id: str,
    object_type: str,
) -> List[Ring]:
    """Insert the chain as a synthetic first ring keyed like the others."""
    key = float(np.dot(np.asarray(slice_dir, dtype=float), polyline_midpoint(oval.polyline)))
    chain = Ring(
        sort_key=key,
        polylines=[oval.polyline.copy()],
        object_id=object_id,
        object_type=object_type,
        meta={
            "oval_start": True,
            "synthetic": True,
            "partial": True,
            "chain_count": oval.chain_count,
            "axes_ratio": oval.ratio,
            "walk_index": -1,
        },
    )
    return [chain] + list(rings)
