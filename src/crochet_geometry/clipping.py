"""Clip a weaker solid's rings against the solids that outrank it."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np

from crochet_geometry.contracts import PatternSettings, Ring, Solid, SolidLayers, Thresholds
from crochet_geometry.diagnostics import DiagnosticsLog, record
from crochet_geometry.polylines import (
    close_polyline,
    nearest_point_on_polyline,
    polyline_length,
    polyline_midpoint,
    polyline_span,
)
from crochet_geometry.solids import point_in_solid
from crochet_geometry.stitches import stitch_gauge
from crochet_geometry.transforms import solid_matrix, unit_vector

logger = logging.getLogger(__name__)


@dataclass
class ClipOutcome:
    polylines: List[np.ndarray]
    boundary_points: List[np.ndarray] = field(default_factory=list)
    had_intersection: bool = False


@dataclass
class ClippedLayers:
    rings: List[Ring]
    cut_loops: List[np.ndarray]
    touched: List[int] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Per-polyline clipping
# ---------------------------------------------------------------------------

def clip_polylines(
    polylines: Sequence[np.ndarray],
    cutter: Solid,
    margin: float = 0.0,
    iterations: int = 12,
    matrix: Optional[np.ndarray] = None,
) -> ClipOutcome:
    """Keep the runs of each polyline that lie outside ``cutter``."""
    matrix = solid_matrix(cutter) if matrix is None else matrix

    def outside(point: np.ndarray) -> bool:
        return not bool(point_in_solid(cutter, point, margin, matrix)[0])

    def boundary(p_out: np.ndarray, p_in: np.ndarray) -> np.ndarray:
        t_out, t_in = 0.0, 1.0
        for _ in range(iterations):
            t_mid = 0.5 * (t_out + t_in)
            if outside(p_out + (p_in - p_out) * t_mid):
                t_out = t_mid
            else:
                t_in = t_mid
        return p_out + (p_in - p_out) * (0.5 * (t_out + t_in))

    result: List[np.ndarray] = []
    boundary_points: List[np.ndarray] = []
    hit = False
    for poly in polylines:
        pts = np.asarray(poly, dtype=float)
        if len(pts) < 2:
            continue
        flags = ~point_in_solid(cutter, pts, margin, matrix)
        if flags.all():
            result.append(pts)
            continue
        hit = True
        current: List[np.ndarray] = []
        for i in range(len(pts) - 1):
            p0, p1 = pts[i], pts[i + 1]
            o0, o1 = bool(flags[i]), bool(flags[i + 1])
            if o0 and o1:
                if not current:
                    current.append(p0)
                current.append(p1)
            elif o0 and not o1:
                crossing = boundary(p0, p1)
                boundary_points.append(crossing)
                if not current:
                    current.append(p0)
                current.append(crossing)
                result.append(np.asarray(current))
                current = []
            elif not o0 and o1:
                crossing = boundary(p1, p0)
                boundary_points.append(crossing)
                current = [crossing, p1]
            elif current:
                result.append(np.asarray(current))
                current = []
        if len(current) > 1:
            result.append(np.asarray(current))
    return ClipOutcome(polylines=result, boundary_points=boundary_points, had_intersection=hit)


def _spanning_triplet(points: np.ndarray) -> Optional[Tuple[int, int, int]]:
    if len(points) < 3:
        return None
    d2 = np.einsum("ij,ij->i", points - points[0], points - points[0])
    i1 = int(np.argmax(d2[1:])) + 1
    area = np.linalg.norm(np.cross(points[i1] - points[0], points - points[0]), axis=1)
    area[i1] = -1.0
    return 0, i1, int(np.argmax(area))


def build_intersection_loop(points: Sequence[np.ndarray]) -> np.ndarray:
    """Order scattered cut-boundary points into a closed loop."""
    if len(points) < 2:
        return np.zeros((0, 3))
    unique: List[np.ndarray] = []
    for p in np.asarray(points, dtype=float).reshape(-1, 3):
        if not unique or float(np.sum((p - unique[-1]) ** 2)) > 1e-6:
            unique.append(p)
    if len(unique) < 2:
        return np.zeros((0, 3))
    pts = np.asarray(unique)
    center = pts.mean(axis=0)

    normal = np.array([0.0, 1.0, 0.0])
    triplet = _spanning_triplet(pts)
    if triplet is not None:
        i0, i1, i2 = triplet
        candidate = unit_vector(np.cross(pts[i1] - pts[i0], pts[i2] - pts[i0]))
        if candidate is not None:
            normal = candidate
    u = np.array([1.0, 0.0, 0.0])
    if abs(float(np.dot(u, normal))) > 0.9:
        u = np.array([0.0, 1.0, 0.0])
    u = unit_vector(u - normal * float(np.dot(u, normal)))
    v = np.cross(normal, u)

    rel = pts - center
    angles = np.arctan2(rel @ v, rel @ u)
    ordered = pts[np.argsort(angles, kind="stable")]
    if len(ordered) > 2 and float(np.sum((ordered[0] - ordered[-1]) ** 2)) > 1e-6:
        ordered = np.vstack([ordered, ordered[:1]])
    return ordered


# ---------------------------------------------------------------------------
# Ring-level rules
# ---------------------------------------------------------------------------

def reclassify_clipped(
    ring: Ring,
    polylines: List[np.ndarray],
    yarn_width: float,
    coverage_threshold: float = 0.95,
) -> Tuple[List[np.ndarray], bool]:
    """Turn a nearly complete clipped ring back into one closed loop.

    Returns the polylines to keep and whether they were reclassified.
    """
    full = ring.full_circumference
    if full <= 0.0:
        full = sum(polyline_length(p) for p in ring.polylines)
    visible = sum(polyline_length(p) for p in polylines)
    coverage = visible / full if full > 0.0 else 0.0
    gap = max(0.0, full - visible)

    if coverage < coverage_threshold and not (len(polylines) > 1 and gap <= yarn_width):
        return polylines, False
    if ring.full_loop is not None and len(ring.full_loop) > 2:
        return [np.asarray(ring.full_loop, dtype=float).copy()], True
    merged = np.vstack(polylines)
    if len(merged) <= 2:
        return polylines, False
    return [close_polyline(merged)], True


def filter_fragments(ring: Ring, min_ratio: float = 0.2) -> Optional[Ring]:
    """Drop fragments much shorter than the ring's longest one."""
    if len(ring.polylines) < 2:
        return ring
    lengths = [polyline_length(p) for p in ring.polylines]
    longest = max(lengths)
    if longest <= 0.0:
        return None
    kept = [p for p, length in zip(ring.polylines, lengths) if length / longest >= min_ratio]
    if not kept:
        return None
    if len(kept) == len(ring.polylines):
        return ring
    return ring.with_polylines(kept)


def is_significant(ring: Ring, min_length: float, min_points: int = 8) -> bool:
    if not ring.polylines:
        return False
    if ring.meta.get("connector") or ring.meta.get("edge_arc") or ring.meta.get("oval_start"):
        return True
    longest = max(polyline_length(p) for p in ring.polylines)
    span = max(polyline_span(p) for p in ring.polylines)
    points = max(len(p) for p in ring.polylines)
    return longest >= min_length and span >= 0.5 * min_length and points >= min_points


def filter_significant_rings(
    rings: Sequence[Ring],
    step: float,
    thresholds: Thresholds,
) -> List[Ring]:
    """Drop slivers, always keeping the two rings at each end of the axis."""
    min_length = max(1e-4, thresholds.min_ring_length_ratio * step)
    by_key = sorted(range(len(rings)), key=lambda i: rings[i].sort_key)
    preserve = set(by_key[:2]) | set(by_key[-2:])
    return [
        ring
        for index, ring in enumerate(rings)
        if index in preserve or is_significant(ring, min_length, thresholds.min_ring_points)
    ]


def build_ladder_rings(
    rings: Sequence[Ring],
    cut_loops: Sequence[np.ndarray],
    cutters: Sequence[Solid],
    slice_dir: np.ndarray,
    margin: float = 0.0,
) -> List[Ring]:
    """Short connector segments linking consecutive clipped rings.

    Each ring contributes its point nearest the cut-loop centroid; every
    segment between consecutive points is clipped against the cutters and
    the longest surviving piece is kept.
    """
    if not cut_loops or len(rings) < 2:
        return []
    centroid = np.vstack([np.asarray(loop) for loop in cut_loops]).mean(axis=0)
    anchors = []
    for ring in rings:
        best = None
        for poly in ring.polylines:
            point, _, distance = nearest_point_on_polyline(poly, centroid)
            if best is None or distance < best[1]:
                best = (point, distance)
        anchors.append(best[0] if best is not None else None)

    ladders: List[Ring] = []
    matrices = [solid_matrix(c) for c in cutters]
    for index in range(1, len(rings)):
        prev, point = anchors[index - 1], anchors[index]
        if prev is None or point is None:
            continue
        pieces = [np.vstack([prev, point])]
        for cutter, matrix in zip(cutters, matrices):
            survivors = []
            for piece in pieces:
                survivors.extend(clip_polylines([piece], cutter, margin, matrix=matrix).polylines)
            pieces = survivors
            if not pieces:
                break
        if not pieces:
            continue
        piece = max(pieces, key=polyline_length)
        if polyline_length(piece) <= 1e-9:
            continue
        ladders.append(
            Ring(
                sort_key=float(np.dot(slice_dir, polyline_midpoint(piece))),
                polylines=[piece],
                object_id=rings[index].object_id,
                object_type=rings[index].object_type,
                meta={"connector": True, "partial": True},
            )
        )
    return ladders


# ---------------------------------------------------------------------------
# Solid-level clipping
# ---------------------------------------------------------------------------

def _was_clipped(ring: Ring) -> bool:
    return bool(ring.meta.get("clipped_by"))


def clip_solid_layers(
    layers: SolidLayers,
    cutters: Sequence[Solid],
    settings: PatternSettings,
    diagnostics: Optional[DiagnosticsLog] = None,
) -> ClippedLayers:
    """Clip one solid's rings against its cutters, strongest first.

    With no cutters (or clipping disabled) the rings come back untouched.
    """
    settings = settings.clamped()
    thresholds = settings.thresholds
    if not cutters or not settings.clip_against_objects:
        return ClippedLayers(rings=list(layers.rings), cut_loops=[])

    gauge = stitch_gauge(settings.yarn_size_level)
    current: List[Ring] = list(layers.rings)
    cut_loops: List[np.ndarray] = []

    for cutter in cutters:
        matrix = solid_matrix(cutter)
        trace: List[np.ndarray] = []
        survivors: List[Ring] = []
        hit_any = False
        for ring in current:
            outcome = clip_polylines(
                ring.polylines,
                cutter,
                thresholds.clip_margin,
                thresholds.boundary_search_iterations,
                matrix,
            )
            if not outcome.had_intersection:
                survivors.append(ring)
                continue
            hit_any = True
            trace.extend(outcome.boundary_points)
            if not outcome.polylines:
                record(
                    diagnostics,
                    "clip",
                    "ring_removed",
                    "Ring lies entirely inside a cutter",
                    object_id=layers.object_id,
                    cutter=cutter.id,
                    sort_key=ring.sort_key,
                )
                continue
            kept, restored = reclassify_clipped(
                ring, outcome.polylines, gauge.width, thresholds.coverage_reclassify
            )
            clipped = ring.with_polylines(
                kept,
                partial=not restored,
                clipped_by=list(ring.meta.get("clipped_by", [])) + [cutter.id],
                reclassified=restored,
            )
            if not restored:
                clipped = filter_fragments(clipped, thresholds.min_fragment_ratio)
                if clipped is None:
                    continue
            survivors.append(clipped)
        if hit_any and len(trace) >= 2:
            loop = build_intersection_loop(trace)
            if len(loop) >= 2:
                cut_loops.append(loop)
        current = survivors

    touched_rings = [r for r in current if _was_clipped(r)]
    current = filter_significant_rings(current, gauge.height, thresholds)
    ladders = build_ladder_rings(
        [r for r in current if r.meta.get("partial") and _was_clipped(r)],
        cut_loops,
        cutters,
        layers.slice_dir,
        thresholds.clip_margin,
    )
    logger.debug(
        "Clipped %s against %d cutters: %d rings kept, %d touched, %d ladders",
        layers.object_id,
        len(cutters),
        len(current),
        len(touched_rings),
        len(ladders),
    )
    touched_walk = [int(r.meta.get("walk_index", -1)) for r in touched_rings]
    return ClippedLayers(rings=current + ladders, cut_loops=cut_loops, touched=touched_walk)
