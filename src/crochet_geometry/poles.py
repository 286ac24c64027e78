"""Ring annotation, pole roles and the tail-spacing guard."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import List, Optional, Sequence, Tuple

import numpy as np
from scipy.spatial import KDTree

from crochet_geometry.contracts import Pole, Ring
from crochet_geometry.diagnostics import DiagnosticsLog, record
from crochet_geometry.polylines import polyline_midpoint
from crochet_geometry.transforms import point_in_aabb

logger = logging.getLogger(__name__)


def ring_midpoint(ring: Ring) -> np.ndarray:
    return polyline_midpoint(ring.polylines[0])


def annotate_rings(
    rings: Sequence[Ring],
    slice_dir: np.ndarray,
    origin: Optional[np.ndarray] = None,
) -> List[Ring]:
    """Number rings and key them by their midpoint along ``slice_dir``."""
    direction = np.asarray(slice_dir, dtype=float)
    base = 0.0 if origin is None else float(np.dot(direction, origin))
    annotated = []
    for index, ring in enumerate(rings):
        if not ring.polylines:
            continue
        key = float(np.dot(direction, ring_midpoint(ring))) - base
        annotated.append(replace(ring, sort_key=key, local_id=index, meta=dict(ring.meta)))
    return annotated


def walk_order(rings: Sequence[Ring]) -> List[Ring]:
    """Rings in crochet order: generator walk index, then sort key."""
    return sorted(
        (r for r in rings if not r.meta.get("connector")),
        key=lambda r: (r.meta.get("walk_index", float("inf")), r.sort_key),
    )


def assign_pole_roles(
    poles: Sequence[Pole],
    rings: Sequence[Ring],
    cutter_bounds: Sequence[Tuple[np.ndarray, np.ndarray]] = (),
) -> List[Pole]:
    """Re-derive start/end roles from the first ring that survived.

    The farthest-apart pair of candidates is kept; of those, the one nearer
    the first ring's midpoint is the start.  Poles inside a cutter's bounding
    box are tagged as intersected.  With no rings left, existing roles stand.
    """
    candidates = [replace(p, position=np.asarray(p.position, dtype=float)) for p in poles]
    for pole in candidates:
        pole.intersected = any(point_in_aabb(pole.position, box) for box in cutter_bounds)
    if len(candidates) < 2:
        return candidates

    ordered = walk_order(rings)
    if not ordered:
        return candidates

    best = (0, 1)
    best_d = -1.0
    for i in range(len(candidates)):
        for j in range(i + 1, len(candidates)):
            d = float(np.linalg.norm(candidates[i].position - candidates[j].position))
            if d > best_d:
                best, best_d = (i, j), d
    first_mid = ring_midpoint(ordered[0])
    i, j = best
    d_i = float(np.linalg.norm(candidates[i].position - first_mid))
    d_j = float(np.linalg.norm(candidates[j].position - first_mid))
    start, end = (i, j) if d_i <= d_j else (j, i)
    for index, pole in enumerate(candidates):
        pole.role = "start" if index == start else "end" if index == end else None
    return [candidates[start], candidates[end]] + [
        p for k, p in enumerate(candidates) if k not in (start, end)
    ]


def nearest_ring_gap(a: Ring, b: Ring) -> float:
    points_a = np.vstack(a.polylines)
    points_b = np.vstack(b.polylines)
    distances, _ = KDTree(points_b).query(points_a)
    return float(np.min(distances))


def enforce_tail_spacing(
    rings: Sequence[Ring],
    step: float,
    min_gap_ratio: float = 0.5,
    diagnostics: Optional[DiagnosticsLog] = None,
) -> List[Ring]:
    """Drop an end ring that crowds its neighbour closer than a fraction of a step."""
    ordered = walk_order(rings)
    if len(ordered) < 3:
        return list(rings)
    limit = min_gap_ratio * step
    dropped = set()
    for tail, neighbour in ((ordered[0], ordered[1]), (ordered[-1], ordered[-2])):
        gap = nearest_ring_gap(tail, neighbour)
        if gap < limit:
            dropped.add(id(tail))
            record(
                diagnostics,
                "poles",
                "tail_ring_dropped",
                "End ring too close to its neighbour",
                object_id=tail.object_id,
                gap=gap,
                limit=limit,
            )
            logger.debug("Dropping tail ring of %s (gap %.4f < %.4f)", tail.object_id, gap, limit)
    return [r for r in rings if id(r) not in dropped]
