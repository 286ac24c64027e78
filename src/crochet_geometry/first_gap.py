"""First-ring offset: how far from the start pole the first ring sits.

The first ring must be wide enough to hold a handful of edge stitches, so
the offset is the smallest one whose ring perimeter reaches that target.
"""

from __future__ import annotations

from typing import Callable

from crochet_geometry.contracts import StitchGauge, Thresholds
from crochet_geometry.stitches import get_stitch_profile


def target_first_circumference(gauge: StitchGauge, thresholds: Thresholds) -> float:
    sc_width = get_stitch_profile("sc").width_multiplier
    desired = (
        thresholds.first_ring_edge_stitches
        * gauge.width
        * sc_width
        * thresholds.first_ring_packing
    )
    return max(1e-6, desired)


def solve_first_gap(
    target: float,
    upper: float,
    perimeter_at: Callable[[float], float],
    iterations: int = 40,
) -> float:
    """Smallest offset in [0, upper] whose perimeter reaches ``target``.

    ``perimeter_at`` must be non-decreasing on the interval.  When even
    ``upper`` falls short the upper bound is returned.
    """
    upper = max(0.0, float(upper))
    if perimeter_at(0.0) >= target:
        return 0.0
    if perimeter_at(upper) < target:
        return upper
    lo, hi = 0.0, upper
    for _ in range(max(1, int(iterations))):
        mid = 0.5 * (lo + hi)
        if perimeter_at(mid) >= target:
            hi = mid
        else:
            lo = mid
    return hi
