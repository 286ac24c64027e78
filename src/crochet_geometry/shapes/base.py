"""Shared machinery for the per-type ring generators."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

import numpy as np

from crochet_geometry.contracts import (
    Markers,
    PatternSettings,
    Pole,
    Ring,
    Solid,
    SolidLayers,
    StitchGauge,
    Thresholds,
)
from crochet_geometry.diagnostics import DiagnosticsLog, record
from crochet_geometry.first_gap import target_first_circumference
from crochet_geometry.polylines import close_polyline, polyline_length
from crochet_geometry.stitches import stitch_gauge
from crochet_geometry.transforms import (
    column_lengths,
    normal_matrix,
    solid_matrix,
    unit_vector,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationContext:
    """Everything a generator needs for one solid, built once per pass."""

    solid: Solid
    matrix: np.ndarray
    normal_matrix: np.ndarray
    center: np.ndarray
    column_lengths: np.ndarray
    gauge: StitchGauge
    step: float
    target_first_circumference: float
    slice_dir: Optional[np.ndarray]
    max_rings: int
    thresholds: Thresholds
    diagnostics: Optional[DiagnosticsLog] = None

    @property
    def linear(self) -> np.ndarray:
        return self.matrix[:3, :3]

    def note(self, code: str, message: str, **payload: Any) -> None:
        record(
            self.diagnostics,
            "generate",
            code,
            message,
            object_id=self.solid.id,
            **payload,
        )


def build_generation_context(
    solid: Solid,
    settings: PatternSettings,
    cutter_centers: Sequence[np.ndarray] = (),
    diagnostics: Optional[DiagnosticsLog] = None,
) -> Optional[GenerationContext]:
    """Build the context for one solid, or None for collapsed geometry."""
    matrix = solid_matrix(solid)
    normals = normal_matrix(matrix)
    lengths = column_lengths(matrix)
    if normals is None or float(lengths.min()) < 1e-9:
        record(
            diagnostics,
            "generate",
            "degenerate_transform",
            "Solid has a collapsed scale; skipped",
            object_id=solid.id,
            scale=list(solid.scale),
        )
        return None

    gauge = stitch_gauge(settings.yarn_size_level)
    center = matrix[:3, 3].copy()
    return GenerationContext(
        solid=solid,
        matrix=matrix,
        normal_matrix=normals,
        center=center,
        column_lengths=lengths,
        gauge=gauge,
        step=gauge.height,
        target_first_circumference=target_first_circumference(gauge, settings.thresholds),
        slice_dir=_resolve_slice_dir(solid, settings, matrix, lengths, cutter_centers),
        max_rings=settings.max_rings,
        thresholds=settings.thresholds,
        diagnostics=diagnostics,
    )


def _resolve_slice_dir(
    solid: Solid,
    settings: PatternSettings,
    matrix: np.ndarray,
    lengths: np.ndarray,
    cutter_centers: Sequence[np.ndarray],
) -> Optional[np.ndarray]:
    if settings.slice_dir is not None:
        override = unit_vector(settings.slice_dir)
        if override is not None:
            return override
    if solid.type == "sphere" and _is_uniform(lengths):
        if cutter_centers:
            center = matrix[:3, 3]
            away = sum((center - np.asarray(c, dtype=float) for c in cutter_centers), np.zeros(3))
            direction = unit_vector(away)
            if direction is not None:
                return direction
        return matrix[:3, 1] / lengths[1]
    return None


def _is_uniform(lengths: np.ndarray, tolerance: float = 1e-6) -> bool:
    return float(lengths.max() - lengths.min()) <= tolerance * max(1.0, float(lengths.max()))


def widest_axis_dir(matrix: np.ndarray) -> np.ndarray:
    """Unit world direction of the longest transform column."""
    lengths = column_lengths(matrix)
    index = int(np.argmax(lengths))
    return matrix[:3, index] / lengths[index]


# ---------------------------------------------------------------------------
# Ring helpers
# ---------------------------------------------------------------------------

def segment_count(perimeter: float, thresholds: Thresholds) -> int:
    count = int(round(perimeter / thresholds.ring_segment_length))
    return max(thresholds.ring_min_segments, min(thresholds.ring_max_segments, count))


def ellipse_points(
    center: np.ndarray,
    axis_u: np.ndarray,
    axis_v: np.ndarray,
    count: int,
) -> np.ndarray:
    """Closed ellipse ``center + cos(t) u + sin(t) v`` with ``count`` segments."""
    t = np.arange(count) * (2.0 * math.pi / count)
    pts = center + np.outer(np.cos(t), axis_u) + np.outer(np.sin(t), axis_v)
    return close_polyline(pts)


def diamond_points(
    center: np.ndarray,
    axis_u: np.ndarray,
    axis_v: np.ndarray,
    count: int,
) -> np.ndarray:
    """Closed diamond through ``center +- u`` and ``center +- v``."""
    per_edge = max(1, int(math.ceil(count / 4)))
    corners = [axis_u, axis_v, -axis_u, -axis_v]
    pts = []
    for k in range(4):
        a = corners[k]
        b = corners[(k + 1) % 4]
        for i in range(per_edge):
            f = i / per_edge
            pts.append(center + a * (1.0 - f) + b * f)
    return close_polyline(np.asarray(pts))


def make_ring(
    context: GenerationContext,
    points: np.ndarray,
    sort_key: float,
    **meta: Any,
) -> Ring:
    loop = close_polyline(points)
    return Ring(
        sort_key=float(sort_key),
        polylines=[loop],
        object_id=context.solid.id,
        object_type=context.solid.type,
        full_circumference=polyline_length(loop),
        full_loop=loop.copy(),
        meta=dict(meta),
    )


def cap_insets(
    semi_u: float,
    semi_v: float,
    step: float,
    limit: int,
) -> list:
    """Inset semi-axes ``(a - n*step, b - n*step)`` until either collapses."""
    insets = []
    n = 1
    while len(insets) < limit:
        a = semi_u - n * step
        b = semi_v - n * step
        if a <= 1e-6 or b <= 1e-6:
            break
        insets.append((a, b))
        n += 1
    return insets


def finish_layers(
    context: GenerationContext,
    rings: list,
    slice_dir: np.ndarray,
    start_pole: np.ndarray,
    end_pole: np.ndarray,
) -> SolidLayers:
    """Apply the ring cap, number the walk and build the markers."""
    if len(rings) > context.max_rings:
        context.note(
            "max_rings_reached",
            "Ring cap reached; extra rings dropped",
            generated=len(rings),
            cap=context.max_rings,
        )
        logger.warning(
            "Solid %s produced %d rings; keeping first %d",
            context.solid.id,
            len(rings),
            context.max_rings,
        )
        rings = rings[: context.max_rings]
    for index, ring in enumerate(rings):
        ring.meta["walk_index"] = index

    poles = [
        Pole(position=np.asarray(start_pole, dtype=float), object_id=context.solid.id),
        Pole(position=np.asarray(end_pole, dtype=float), object_id=context.solid.id),
    ]
    if rings:
        first_mid = rings[0].polylines[0][len(rings[0].polylines[0]) // 2]
        d_start = float(np.linalg.norm(poles[0].position - first_mid))
        d_end = float(np.linalg.norm(poles[1].position - first_mid))
        if d_end < d_start:
            poles.reverse()
    poles[0].role = "start"
    poles[1].role = "end"

    markers = Markers(
        poles=poles,
        ring0=rings[0].polylines[0].copy() if rings else None,
    )
    return SolidLayers(
        object_id=context.solid.id,
        object_type=context.solid.type,
        rings=rings,
        markers=markers,
        slice_dir=np.asarray(slice_dir, dtype=float),
        center=context.center.copy(),
    )


class ShapeGenerator:
    """Base class: one ring-generation strategy per solid type."""

    solid_type: str = ""
    strategy: str = ""

    def generate(self, context: GenerationContext) -> SolidLayers:
        raise NotImplementedError

    def describe(self) -> Dict[str, str]:
        return {"type": self.solid_type, "strategy": self.strategy}
