"""Scaffold step: connect the nodes of one ring to the nodes of the next.

Parents (ring k) and children (ring k+1) are ordered by angle around the
ring axis.  Growing rings give each parent one or two adjacent children;
shrinking rings merge two parents onto one child.  A step that needs more
than a doubling either way cannot be expressed with single increases or
decreases and is reported as ``need_split`` / ``need_split_prev``.
"""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence

import numpy as np
from scipy.spatial import KDTree

from crochet_geometry.contracts import ScaffoldSegment, ScaffoldStep
from crochet_geometry.polylines import nearest_point_on_polyline
from crochet_geometry.transforms import plane_basis

logger = logging.getLogger(__name__)


def _wrap_angle(a: float) -> float:
    return (a + math.pi) % (2.0 * math.pi) - math.pi


def ring_angles(points: np.ndarray, center: np.ndarray, axis: np.ndarray) -> np.ndarray:
    u, v = plane_basis(axis)
    rel = np.asarray(points, dtype=float).reshape(-1, 3) - np.asarray(center, dtype=float)
    return np.arctan2(rel @ v, rel @ u)


def even_picks(total: int, count: int) -> List[int]:
    """``count`` indices in ``range(total)`` spread as evenly as possible."""
    if count <= 0 or total <= 0:
        return []
    return sorted({(k * total) // count for k in range(min(count, total))})


def quotas_for(parents: int, children: int, picks: Optional[Sequence[int]] = None) -> List[int]:
    """Children per parent, each 1 or 2, summing to ``children``."""
    quotas = [1] * parents
    extra = children - parents
    if extra <= 0:
        return quotas
    chosen = list(picks) if picks is not None else even_picks(parents, extra)
    for j in chosen[:extra]:
        quotas[j] = 2
    # Top up or trim so the total is exact even if picks collided.
    total = sum(quotas)
    for i in range(parents):
        if total >= children:
            break
        if quotas[i] < 2:
            quotas[i] += 1
            total += 1
    for i in range(parents - 1, -1, -1):
        if total <= children:
            break
        if quotas[i] > 1:
            quotas[i] -= 1
            total -= 1
    return quotas


def _nearest_first_picks(parent_th: np.ndarray, child_th: np.ndarray, start: int, extra: int) -> List[int]:
    """Give each unmatched child to the parent whose matched child is nearest."""
    m, n = len(parent_th), len(child_th)
    matched = {(start + k) % n for k in range(min(m, n))}
    chosen: List[int] = []
    for pos in range(n):
        if pos in matched:
            continue
        best_j, best = 0, float("inf")
        for j in range(m):
            d = abs(_wrap_angle(float(child_th[pos] - child_th[(start + j) % n])))
            if d < best:
                best_j, best = j, d
        if best_j not in chosen:
            chosen.append(best_j)
        if len(chosen) == extra:
            break
    for j in range(m):
        if len(chosen) >= extra:
            break
        if j not in chosen:
            chosen.append(j)
    return sorted(chosen)


def best_block_start(parent_th: np.ndarray, child_th: np.ndarray, quotas: Sequence[int]) -> int:
    """Rotation of the child ring that best centres each parent over its block."""
    n = len(child_th)

    def cost(s: int) -> float:
        pos, total = 0, 0.0
        for theta, q in zip(parent_th, quotas):
            a = float(child_th[(s + pos) % n])
            b = float(child_th[(s + pos + q - 1) % n])
            if b < a:
                b += 2.0 * math.pi
            total += abs(_wrap_angle(float(theta) - 0.5 * (a + b)))
            pos += q
        return total

    tries = min(n, 8)
    return min(range(tries), key=cost) if tries else 0


def snap_to_next(
    points: np.ndarray,
    next_polylines: Optional[Sequence[np.ndarray]],
    fallback: np.ndarray,
) -> np.ndarray:
    """Project points onto the next ring's polyline, else its nearest node."""
    pts = np.asarray(points, dtype=float).reshape(-1, 3)
    if next_polylines:
        snapped = []
        for p in pts:
            hits = [nearest_point_on_polyline(poly, p) for poly in next_polylines if len(poly) >= 2]
            snapped.append(min(hits, key=lambda h: h[2])[0] if hits else p)
        return np.asarray(snapped)
    nodes = np.asarray(fallback, dtype=float).reshape(-1, 3)
    if not len(nodes):
        return pts
    _, index = KDTree(nodes).query(pts)
    return nodes[np.atleast_1d(index)]


def build_scaffold_step(
    parents: np.ndarray,
    children: np.ndarray,
    next_polylines: Optional[Sequence[np.ndarray]] = None,
    center: Optional[np.ndarray] = None,
    axis: Optional[np.ndarray] = None,
    mode: str = "even",
    layer_index: int = 0,
) -> ScaffoldStep:
    parents = np.asarray(parents, dtype=float).reshape(-1, 3)
    children = np.asarray(children, dtype=float).reshape(-1, 3)
    m, n = len(parents), len(children)
    if m == 0 or n == 0:
        return ScaffoldStep(segments=[], parent_to_children=[], status="empty")
    if n > 2 * m:
        logger.debug("Scaffold step %d: %d -> %d needs a split", layer_index, m, n)
        return ScaffoldStep(segments=[], parent_to_children=[], status="need_split")
    if m > 2 * n:
        logger.debug("Scaffold step %d: %d -> %d needs a split of the previous ring", layer_index, m, n)
        return ScaffoldStep(segments=[], parent_to_children=[], status="need_split_prev")

    if center is None:
        center = np.vstack([parents, children]).mean(axis=0)
    if axis is None:
        axis = children.mean(axis=0) - parents.mean(axis=0)
        if float(np.linalg.norm(axis)) < 1e-9:
            axis = np.array([0.0, 1.0, 0.0])

    p_order = np.argsort(ring_angles(parents, center, axis), kind="stable")
    c_order = np.argsort(ring_angles(children, center, axis), kind="stable")
    p_th = ring_angles(parents, center, axis)[p_order]
    c_th = ring_angles(children, center, axis)[c_order]
    start = int(np.argmin([abs(_wrap_angle(float(p_th[0] - t))) for t in c_th]))

    parent_to_children: List[List[int]] = [[] for _ in range(m)]
    if m > n:
        # Decrease: every parent lands on one child; ``m - n`` children take two.
        degree = [1] * n
        for k in even_picks(n, m - n):
            degree[k] = 2
        pos = 0
        used = 0
        for i in range(m):
            child = int(c_order[(start + pos) % n])
            parent_to_children[int(p_order[i])].append(child)
            used += 1
            if used >= degree[pos % n]:
                pos += 1
                used = 0
    else:
        picks = None
        if mode == "jagged" and n > m:
            picks = _nearest_first_picks(p_th, c_th, start, n - m)
        quotas = quotas_for(m, n, picks)
        start = best_block_start(p_th, c_th, quotas)
        cursor = 0
        for i, q in enumerate(quotas):
            for t in range(q):
                parent_to_children[int(p_order[i])].append(int(c_order[(start + cursor + t) % n]))
            cursor += q

    segments: List[ScaffoldSegment] = []
    for parent, kids in enumerate(parent_to_children):
        for child in kids:
            end = snap_to_next(children[child], next_polylines, children)[0]
            segments.append(
                ScaffoldSegment(
                    start=parents[parent].copy(),
                    end=end,
                    parent_index=parent,
                    child_index=child,
                    layer_index=layer_index,
                )
            )
    return ScaffoldStep(segments=segments, parent_to_children=parent_to_children)
