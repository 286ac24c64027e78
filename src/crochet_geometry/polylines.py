"""Polyline measurement, resampling, assembly and mesh plane slicing."""

from __future__ import annotations

import logging
from typing import List, Sequence, Tuple

import numpy as np
import trimesh

logger = logging.getLogger(__name__)

CLOSED_TOLERANCE = 1e-6
JOIN_TOLERANCE = 1e-2
DEGENERATE_SEGMENT = 1e-9


def as_points(polyline: Sequence[Sequence[float]]) -> np.ndarray:
    return np.asarray(polyline, dtype=float).reshape(-1, 3)


def is_closed(polyline: np.ndarray, tolerance: float = CLOSED_TOLERANCE) -> bool:
    pts = as_points(polyline)
    if len(pts) < 3:
        return False
    return float(np.linalg.norm(pts[0] - pts[-1])) <= tolerance


def close_polyline(polyline: np.ndarray, tolerance: float = CLOSED_TOLERANCE) -> np.ndarray:
    """Return the polyline with its first point repeated at the end."""
    pts = as_points(polyline)
    if len(pts) < 2 or is_closed(pts, tolerance):
        return pts.copy()
    return np.vstack([pts, pts[:1]])


def open_polyline(polyline: np.ndarray, tolerance: float = CLOSED_TOLERANCE) -> np.ndarray:
    pts = as_points(polyline)
    if is_closed(pts, tolerance):
        return pts[:-1].copy()
    return pts.copy()


def cumulative_lengths(polyline: np.ndarray) -> np.ndarray:
    pts = as_points(polyline)
    if len(pts) == 0:
        return np.zeros(0)
    steps = np.linalg.norm(np.diff(pts, axis=0), axis=1)
    return np.concatenate([[0.0], np.cumsum(steps)])


def polyline_length(polyline: np.ndarray) -> float:
    pts = as_points(polyline)
    if len(pts) < 2:
        return 0.0
    return float(np.linalg.norm(np.diff(pts, axis=0), axis=1).sum())


def polyline_midpoint(polyline: np.ndarray) -> np.ndarray:
    pts = as_points(polyline)
    return pts[len(pts) // 2].copy()


def polyline_span(polyline: np.ndarray) -> float:
    pts = as_points(polyline)
    if len(pts) < 2:
        return 0.0
    return float(np.linalg.norm(pts.max(axis=0) - pts.min(axis=0)))


def sample_at_distances(
    polyline: np.ndarray,
    distances: Sequence[float],
    wrap: bool = False,
) -> Tuple[np.ndarray, np.ndarray]:
    """Points and unit tangents at arc-length positions along a polyline.

    With ``wrap`` the positions are taken modulo the total length, which only
    makes sense for a closed polyline.
    """
    pts = as_points(polyline)
    cum = cumulative_lengths(pts)
    total = float(cum[-1]) if len(cum) else 0.0
    s = np.asarray(distances, dtype=float).reshape(-1)
    if len(pts) < 2 or total <= 0.0:
        origin = pts[0] if len(pts) else np.zeros(3)
        return np.tile(origin, (len(s), 1)), np.tile([1.0, 0.0, 0.0], (len(s), 1))

    s = np.mod(s, total) if wrap else np.clip(s, 0.0, total)
    idx = np.searchsorted(cum, s, side="right") - 1
    idx = np.clip(idx, 0, len(pts) - 2)
    seg = pts[idx + 1] - pts[idx]
    seg_len = cum[idx + 1] - cum[idx]
    safe = np.where(seg_len > 0.0, seg_len, 1.0)
    frac = np.where(seg_len > 0.0, (s - cum[idx]) / safe, 0.0)
    points = pts[idx] + seg * frac[:, None]
    tangents = seg / safe[:, None]
    norms = np.linalg.norm(tangents, axis=1)
    tangents[norms < 1e-12] = np.array([1.0, 0.0, 0.0])
    return points, tangents


def point_at_distance(
    polyline: np.ndarray, distance: float, wrap: bool = False
) -> Tuple[np.ndarray, np.ndarray]:
    points, tangents = sample_at_distances(polyline, [distance], wrap=wrap)
    return points[0], tangents[0]


def resample_polyline(polyline: np.ndarray, count: int, closed: bool = True) -> np.ndarray:
    """Resample to ``count`` points evenly spaced by arc length."""
    pts = as_points(polyline)
    count = max(2, int(count))
    total = polyline_length(pts)
    if closed:
        distances = np.arange(count) * (total / count)
        resampled, _ = sample_at_distances(pts, distances, wrap=True)
        return close_polyline(resampled)
    distances = np.linspace(0.0, total, count)
    resampled, _ = sample_at_distances(pts, distances)
    return resampled


def nearest_point_on_polyline(
    polyline: np.ndarray, point: Sequence[float]
) -> Tuple[np.ndarray, float, float]:
    """Closest point on the polyline, its arc-length position and distance."""
    pts = as_points(polyline)
    target = np.asarray(point, dtype=float)
    if len(pts) == 1:
        return pts[0].copy(), 0.0, float(np.linalg.norm(pts[0] - target))
    a = pts[:-1]
    ab = pts[1:] - a
    denom = np.einsum("ij,ij->i", ab, ab)
    t = np.einsum("ij,ij->i", target - a, ab) / np.where(denom > 0.0, denom, 1.0)
    t = np.clip(np.where(denom > 0.0, t, 0.0), 0.0, 1.0)
    candidates = a + ab * t[:, None]
    d2 = np.einsum("ij,ij->i", candidates - target, candidates - target)
    best = int(np.argmin(d2))
    cum = cumulative_lengths(pts)
    s = float(cum[best] + t[best] * np.sqrt(denom[best]))
    return candidates[best].copy(), s, float(np.sqrt(d2[best]))


# ---------------------------------------------------------------------------
# Assembly of unordered slice segments
# ---------------------------------------------------------------------------

def assemble_polylines(
    segments: np.ndarray, tolerance: float = JOIN_TOLERANCE
) -> List[np.ndarray]:
    """Greedily chain 2-point segments sharing endpoints into polylines.

    A chain whose free ends meet within ``tolerance`` is explicitly closed.
    """
    segs = np.asarray(segments, dtype=float).reshape(-1, 2, 3)
    if len(segs) == 0:
        return []
    starts = segs[:, 0, :]
    ends = segs[:, 1, :]
    used = np.zeros(len(segs), dtype=bool)
    chains: List[np.ndarray] = []

    def _take_next(anchor: np.ndarray) -> np.ndarray | None:
        free = ~used
        if not free.any():
            return None
        d_start = np.linalg.norm(starts - anchor, axis=1)
        d_end = np.linalg.norm(ends - anchor, axis=1)
        d_start[~free] = np.inf
        d_end[~free] = np.inf
        i_start = int(np.argmin(d_start))
        i_end = int(np.argmin(d_end))
        if d_start[i_start] <= tolerance and d_start[i_start] <= d_end[i_end]:
            used[i_start] = True
            return ends[i_start]
        if d_end[i_end] <= tolerance:
            used[i_end] = True
            return starts[i_end]
        return None

    for seed in range(len(segs)):
        if used[seed]:
            continue
        used[seed] = True
        chain = [starts[seed].copy(), ends[seed].copy()]
        while True:
            nxt = _take_next(chain[-1])
            if nxt is None:
                break
            chain.append(nxt.copy())
        while True:
            prev = _take_next(chain[0])
            if prev is None:
                break
            chain.insert(0, prev.copy())

        pts = np.asarray(chain)
        keep = np.concatenate([[True], np.linalg.norm(np.diff(pts, axis=0), axis=1) > 1e-12])
        pts = pts[keep]
        if len(pts) > 3 and float(np.linalg.norm(pts[0] - pts[-1])) <= tolerance:
            pts[-1] = pts[0]
        if len(pts) >= 2:
            chains.append(pts)
    return chains


def slice_mesh(
    mesh: trimesh.Trimesh,
    matrix: np.ndarray,
    plane_origin: Sequence[float],
    plane_normal: Sequence[float],
) -> np.ndarray:
    """Unordered world-space segments where a posed mesh crosses a plane."""
    posed = mesh.copy()
    posed.apply_transform(np.asarray(matrix, dtype=float))
    try:
        segments = trimesh.intersections.mesh_plane(
            posed,
            plane_normal=np.asarray(plane_normal, dtype=float),
            plane_origin=np.asarray(plane_origin, dtype=float),
        )
    except ValueError as exc:
        logger.debug("Plane slice failed: %s", exc)
        return np.zeros((0, 2, 3))
    segments = np.asarray(segments, dtype=float).reshape(-1, 2, 3)
    if len(segments) == 0:
        return segments
    lengths = np.linalg.norm(segments[:, 1] - segments[:, 0], axis=1)
    return segments[lengths > DEGENERATE_SEGMENT]
