"""Pairwise overlap priority: which solid cuts which.

For every pair of visible solids whose world AABBs overlap, a winner is
chosen (sampled non-overlapping volume, then total volume, then a spatial
tie-break; overrides can force or invert the result).  Each win scores a
point; the stable descending sort of scores is the rank order.  A solid's
cutters are the solids that beat it in their own pairwise comparison,
strongest rank first, so a solid is never cut by one it beat.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from crochet_geometry.contracts import PatternSettings, PriorityPlan, Solid
from crochet_geometry.diagnostics import DiagnosticsLog, record
from crochet_geometry.solids import aabb_volume, approximate_volume, point_in_solid, world_bounds
from crochet_geometry.transforms import aabbs_intersect, solid_matrix

logger = logging.getLogger(__name__)


def estimate_non_overlapping_volume(
    a: Solid,
    b: Solid,
    samples: int,
    rng: np.random.Generator,
) -> float:
    """Monte Carlo volume of ``a`` that lies outside ``b``."""
    box = world_bounds(a)
    volume = aabb_volume(box)
    samples = max(1, int(samples))
    if volume <= 0.0:
        return 0.0
    points = rng.uniform(box[0], box[1], size=(samples, 3))
    inside_a = point_in_solid(a, points)
    outside_b = ~point_in_solid(b, points)
    return volume * float(np.count_nonzero(inside_a & outside_b)) / samples


def spatial_tie_break(a: Solid, b: Solid, epsilon: float = 1e-6) -> Solid:
    """Lower world Y wins, then lower X, then lower Z; ``a`` on a full tie."""
    for axis in (1, 0, 2):
        pa = float(a.position[axis])
        pb = float(b.position[axis])
        if abs(pa - pb) > epsilon:
            return a if pa < pb else b
    return a


def compare_solids(
    a: Solid,
    b: Solid,
    settings: PatternSettings,
    rng: np.random.Generator,
) -> Tuple[Solid, Dict[str, object]]:
    """Return the stronger of two overlapping solids and the evidence used."""
    thresholds = settings.thresholds
    eps = thresholds.tie_epsilon
    strong_a = a.priority_override == "strong"
    strong_b = b.priority_override == "strong"
    weak_any = "weak" in (a.priority_override, b.priority_override)
    vol_a = approximate_volume(a, solid_matrix(a))
    vol_b = approximate_volume(b, solid_matrix(b))
    evidence: Dict[str, object] = {"volume_a": vol_a, "volume_b": vol_b}

    if strong_a != strong_b:
        evidence["rule"] = "strong_override"
        return (a if strong_a else b), evidence
    if weak_any and not (strong_a and strong_b):
        evidence["rule"] = "weak_inverted"
        return (a if vol_a <= vol_b else b), evidence

    free_a = estimate_non_overlapping_volume(a, b, thresholds.volume_samples, rng)
    free_b = estimate_non_overlapping_volume(b, a, thresholds.volume_samples, rng)
    evidence.update({"free_volume_a": free_a, "free_volume_b": free_b})
    if abs(free_a - free_b) >= eps:
        evidence["rule"] = "non_overlapping_volume"
        return (a if free_a > free_b else b), evidence
    if abs(vol_a - vol_b) >= eps:
        evidence["rule"] = "total_volume"
        return (a if vol_a > vol_b else b), evidence
    evidence["rule"] = "spatial_tie_break"
    return spatial_tie_break(a, b, eps), evidence


def compute_intersection_plan(
    solids: Sequence[Solid],
    settings: Optional[PatternSettings] = None,
    diagnostics: Optional[DiagnosticsLog] = None,
) -> PriorityPlan:
    settings = (settings or PatternSettings()).clamped()
    visible = [s for s in solids if s.visible]
    bounds = {s.id: world_bounds(s) for s in visible}
    scores: Dict[str, int] = {s.id: 0 for s in visible}
    beaten_by: Dict[str, List[str]] = {s.id: [] for s in visible}
    comparisons: List[Dict[str, object]] = []

    for i, a in enumerate(visible):
        for j in range(i + 1, len(visible)):
            b = visible[j]
            if not aabbs_intersect(bounds[a.id], bounds[b.id]):
                continue
            # Seeded per pair so one comparison never shifts another's samples.
            rng = np.random.default_rng([settings.sampling_seed, i, j])
            winner, evidence = compare_solids(a, b, settings, rng)
            loser = b if winner is a else a
            scores[winner.id] += 1
            beaten_by[loser.id].append(winner.id)
            evidence.update({"a": a.id, "b": b.id, "winner": winner.id})
            comparisons.append(evidence)
            record(
                diagnostics,
                "priority",
                "pair_compared",
                f"{winner.id} wins over {loser.id}",
                object_id=winner.id,
                rule=evidence["rule"],
            )

    order = sorted(visible, key=lambda s: -scores[s.id])
    ranks = {s.id: index for index, s in enumerate(order)}
    cutters = {
        solid.id: sorted(beaten_by[solid.id], key=lambda other: ranks[other])
        for solid in order
    }

    logger.info(
        "Priority plan: %d solids, %d overlapping pairs",
        len(visible),
        len(comparisons),
    )
    return PriorityPlan(
        order=[s.id for s in order],
        ranks=ranks,
        scores=scores,
        cutters=cutters,
        comparisons=comparisons,
    )
