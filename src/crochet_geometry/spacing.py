"""Edge-to-edge node spacing along a ring.

A node's visual width (gauge width times the stitch's width multiplier)
is decoupled from the gap between node edges: the centre spacing is
``edge_gap + visual_width``, so a wider stitch moves centres apart by
exactly its extra width and the gap between neighbours stays constant.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

from crochet_geometry.contracts import StitchFit, StitchGauge, StitchProfile, Thresholds
from crochet_geometry.stitches import get_stitch_profile


@dataclass(frozen=True)
class TargetSpacing:
    center_spacing: float
    visual_width: float
    edge_gap: float
    profile: StitchProfile


def visual_width(gauge: StitchGauge, stitch_type: str) -> float:
    return gauge.width * get_stitch_profile(stitch_type).width_multiplier


def edge_gap(gauge: StitchGauge, thresholds: Thresholds) -> float:
    return gauge.width * thresholds.edge_gap_ratio


def compute_target_spacing(
    gauge: StitchGauge,
    stitch_type: str,
    thresholds: Thresholds,
) -> TargetSpacing:
    """Centre-to-centre spacing for a ring of a single stitch type."""
    profile = get_stitch_profile(stitch_type)
    width = gauge.width * profile.width_multiplier
    gap = edge_gap(gauge, thresholds)
    return TargetSpacing(
        center_spacing=(gap + width) * thresholds.tighten_factor,
        visual_width=width,
        edge_gap=gap,
        profile=profile,
    )


def edge_to_edge(center_spacing: float, width_a: float, width_b: float) -> float:
    """Gap between two neighbouring nodes' edges."""
    return center_spacing - 0.5 * (width_a + width_b)


def fit_stitch_types(
    stitch_types: Sequence[str],
    available: float,
    gauge: StitchGauge,
    thresholds: Thresholds,
) -> StitchFit:
    """Fit a sequence of stitches into ``available`` arc length.

    Each stitch claims ``edge_gap + visual_width`` of arc.  The returned
    ``scale_factor`` stretches (or would have to squeeze) every spacing by
    the same amount so the sequence exactly covers the arc; it fits when
    no squeezing is needed.
    """
    spacings: List[float] = [
        compute_target_spacing(gauge, key, thresholds).center_spacing for key in stitch_types
    ]
    required = float(sum(spacings))
    available = max(0.0, float(available))
    if required <= 0.0:
        return StitchFit(fits=True, scale_factor=1.0, required_length=0.0, available_length=available)
    scale = available / required
    return StitchFit(
        fits=scale >= 1.0 - 1e-9,
        scale_factor=scale,
        required_length=required,
        available_length=available,
        spacings=[s * scale for s in spacings],
    )
