"""Axial marching for solids of revolution described by a meridian profile.

A profile lists local ``(y, r)`` samples from the end where crocheting
starts to the end where it finishes.  Arc length is measured in world
metric: axial steps scale with the Y column, radial steps with the mean of
the two cross-section columns.  Rings are placed every stitch-step along
that arc, then flat caps are filled with concentric insets.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np

from crochet_geometry.contracts import Ring, SolidLayers
from crochet_geometry.first_gap import solve_first_gap
from crochet_geometry.shapes.base import (
    GenerationContext,
    ShapeGenerator,
    cap_insets,
    diamond_points,
    ellipse_points,
    finish_layers,
    make_ring,
    segment_count,
)
from crochet_geometry.transforms import ellipse_perimeter, matrix_columns

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MeridianProfile:
    y: np.ndarray
    r: np.ndarray
    axis_sign: float = 1.0  # +1 when the walk heads toward local +Y
    start_cap: bool = False
    end_cap: bool = False
    closed: bool = False
    cross_section: str = "ellipse"  # or "diamond"
    start_pole: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    end_pole: Tuple[float, float, float] = (0.0, 0.0, 0.0)


def profile_arc_lengths(profile: MeridianProfile, axial_scale: float, radial_scale: float) -> np.ndarray:
    dy = np.diff(profile.y) * axial_scale
    dr = np.diff(profile.r) * radial_scale
    return np.concatenate([[0.0], np.cumsum(np.hypot(dy, dr))])


class AxialGenerator(ShapeGenerator):
    """Base for cone, cylinder, capsule, pyramid and torus."""

    strategy = "axial_marching"
    samples = 4097

    def profile(self) -> MeridianProfile:
        raise NotImplementedError

    def cross_section_perimeter(self, profile: MeridianProfile, semi_u: float, semi_v: float) -> float:
        if profile.cross_section == "diamond":
            return 4.0 * math.hypot(semi_u, semi_v)
        return ellipse_perimeter(semi_u, semi_v)

    def generate(self, context: GenerationContext) -> SolidLayers:
        profile = self.profile()
        thresholds = context.thresholds
        col_u, col_y, col_v = matrix_columns(context.matrix)
        a, ay, b = (float(x) for x in context.column_lengths)
        radial_scale = math.sqrt((a * a + b * b) / 2.0)
        direction = col_y / ay * profile.axis_sign

        cum = profile_arc_lengths(profile, ay, radial_scale)
        total = float(cum[-1])
        step = context.step

        def shape_at(s: float) -> Tuple[float, float]:
            return float(np.interp(s, cum, profile.y)), float(np.interp(s, cum, profile.r))

        def perimeter_at(s: float) -> float:
            _, r = shape_at(s)
            return self.cross_section_perimeter(profile, a * r, b * r)

        gap = 0.0
        if profile.r[0] <= 1e-9:
            upper = float(cum[int(np.argmax(profile.r))])
            gap = solve_first_gap(
                context.target_first_circumference,
                upper,
                perimeter_at,
                thresholds.first_gap_iterations,
            )

        tolerance = max(0.02 * step, 1e-5)
        wall: List[Ring] = []
        k = 0
        while len(wall) <= context.max_rings:
            s = gap + k * step
            if s >= total - tolerance:
                break
            ring = self._wall_ring(context, profile, s, shape_at, direction, col_u, col_v)
            if ring is not None:
                wall.append(ring)
            k += 1
        if profile.end_cap:
            rim = self._wall_ring(context, profile, total, shape_at, direction, col_u, col_v)
            if rim is not None:
                rim.meta["rim"] = True
                wall.append(rim)

        rings: List[Ring] = []
        if profile.start_cap:
            y0, r0 = shape_at(0.0)
            start_insets = self._cap_rings(context, profile, y0, r0, "start", direction, col_u, col_v)
            rings.extend(reversed(start_insets))
        rings.extend(wall)
        if profile.end_cap:
            y1, r1 = shape_at(total)
            rings.extend(self._cap_rings(context, profile, y1, r1, "end", direction, col_u, col_v))

        logger.debug(
            "%s %s: %d rings (%d wall), arc %.4f, first gap %.4f",
            self.solid_type,
            context.solid.id,
            len(rings),
            len(wall),
            total,
            gap,
        )
        start_pole = context.matrix @ np.append(profile.start_pole, 1.0)
        end_pole = context.matrix @ np.append(profile.end_pole, 1.0)
        return finish_layers(context, rings, direction, start_pole[:3], end_pole[:3])

    # -----------------------------------------------------------------------

    def _section(self, profile, center, axis_u, axis_v, perimeter, thresholds):
        count = segment_count(perimeter, thresholds)
        if profile.cross_section == "diamond":
            return diamond_points(center, axis_u, axis_v, count)
        return ellipse_points(center, axis_u, axis_v, count)

    def _wall_ring(self, context, profile, s, shape_at, direction, col_u, col_v):
        y, r = shape_at(s)
        if r <= 1e-9:
            return None
        center = context.matrix[:3, :3] @ np.array([0.0, y, 0.0]) + context.center
        a, _, b = context.column_lengths
        perimeter = self.cross_section_perimeter(profile, a * r, b * r)
        points = self._section(profile, center, col_u * r, col_v * r, perimeter, context.thresholds)
        return make_ring(
            context,
            points,
            float(np.dot(direction, center)),
            arc_position=float(s),
            local_y=y,
            local_radius=r,
        )

    def _cap_rings(self, context, profile, y, r, which, direction, col_u, col_v) -> List[Ring]:
        a, _, b = (float(x) for x in context.column_lengths)
        center = context.matrix[:3, :3] @ np.array([0.0, y, 0.0]) + context.center
        key = float(np.dot(direction, center))
        unit_u = col_u / a
        unit_v = col_v / b
        rings = []
        insets = cap_insets(a * r, b * r, context.step, context.max_rings)
        for index, (semi_u, semi_v) in enumerate(insets, start=1):
            perimeter = self.cross_section_perimeter(profile, semi_u, semi_v)
            points = self._section(
                profile, center, unit_u * semi_u, unit_v * semi_v, perimeter, context.thresholds
            )
            rings.append(make_ring(context, points, key, cap=which, inset_index=index))
        return rings
