"""Triangular prism rings by slicing its mesh with parallel planes."""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

import numpy as np
from shapely.geometry import Polygon

from crochet_geometry.contracts import Ring, SolidLayers
from crochet_geometry.first_gap import solve_first_gap
from crochet_geometry.polylines import (
    assemble_polylines,
    close_polyline,
    is_closed,
    polyline_length,
    slice_mesh,
)
from crochet_geometry.shapes.base import (
    GenerationContext,
    ShapeGenerator,
    finish_layers,
    make_ring,
    widest_axis_dir,
)
from crochet_geometry.solids import unit_mesh
from crochet_geometry.transforms import plane_basis, transform_points

logger = logging.getLogger(__name__)

FACE_ALIGNMENT = 0.999


class TrianglePrismGenerator(ShapeGenerator):
    solid_type = "triangle"
    strategy = "plane_slicing"

    def generate(self, context: GenerationContext) -> SolidLayers:
        mesh = unit_mesh("triangle")
        thresholds = context.thresholds
        direction = context.slice_dir
        if direction is None:
            direction = widest_axis_dir(context.matrix)

        vertices = transform_points(mesh.vertices, context.matrix)
        heights = vertices @ direction
        d_min, d_max = float(heights.min()), float(heights.max())
        extent = d_max - d_min
        step = context.step
        nudge = max(1e-6, 1e-4 * extent)

        def slice_at(offset: float) -> List[np.ndarray]:
            origin = direction * (d_min + offset)
            segments = slice_mesh(mesh, context.matrix, origin, direction)
            return assemble_polylines(segments, thresholds.polyline_join_tolerance)

        def perimeter_at(offset: float) -> float:
            return sum(polyline_length(p) for p in slice_at(max(offset, nudge)))

        gap = solve_first_gap(
            context.target_first_circumference,
            0.5 * extent,
            perimeter_at,
            thresholds.first_gap_iterations,
        )
        gap = max(gap, nudge)
        tolerance = max(0.02 * step, 1e-5)

        wall: List[Ring] = []
        k = 0
        while len(wall) <= context.max_rings:
            offset = gap + k * step
            if offset >= extent - tolerance:
                break
            ring = self._slice_ring(context, slice_at(offset), d_min + offset, offset)
            if ring is not None:
                wall.append(ring)
            else:
                context.note("empty_slice", "Plane slice produced no loop", offset=offset)
            k += 1

        capped = self._axis_alignment(context, direction) >= FACE_ALIGNMENT
        rings: List[Ring] = []
        if capped and wall:
            end_offset = extent - nudge
            end_ring = self._slice_ring(context, slice_at(end_offset), d_max - nudge, end_offset)
            if end_ring is not None and d_max - nudge - wall[-1].sort_key > tolerance:
                end_ring.meta["rim"] = True
                wall.append(end_ring)
            rings.extend(reversed(self._cap_rings(context, wall[0], direction, "start")))
            rings.extend(wall)
            rings.extend(self._cap_rings(context, wall[-1], direction, "end"))
        else:
            rings = wall

        start_pole, end_pole = self._poles(vertices, heights, d_min, d_max)
        logger.debug(
            "Triangle %s: %d rings over extent %.4f (capped=%s)",
            context.solid.id,
            len(rings),
            extent,
            capped,
        )
        return finish_layers(context, rings, direction, start_pole, end_pole)

    # -----------------------------------------------------------------------

    def _axis_alignment(self, context: GenerationContext, direction: np.ndarray) -> float:
        axis = context.matrix[:3, 1] / context.column_lengths[1]
        return abs(float(np.dot(axis, direction)))

    def _slice_ring(
        self,
        context: GenerationContext,
        polylines: List[np.ndarray],
        key: float,
        offset: float,
    ) -> Optional[Ring]:
        if not polylines:
            return None
        polylines = sorted(polylines, key=polyline_length, reverse=True)
        main = polylines[0]
        if not is_closed(main, context.thresholds.polyline_join_tolerance):
            context.note("open_slice", "Plane slice did not close", offset=offset)
            main = close_polyline(main)
        ring = make_ring(context, main, key, arc_position=float(offset))
        if len(polylines) > 1:
            ring = ring.with_polylines([ring.polylines[0]] + polylines[1:])
        return ring

    def _cap_rings(
        self,
        context: GenerationContext,
        rim: Ring,
        direction: np.ndarray,
        which: str,
    ) -> List[Ring]:
        """Inward offsets of a flat end face, built with shapely buffers."""
        loop = rim.polylines[0][:-1]
        origin = loop.mean(axis=0)
        u, v = plane_basis(direction)
        local = np.column_stack([(loop - origin) @ u, (loop - origin) @ v])
        face = Polygon(local)
        if not face.is_valid:
            face = face.buffer(0)

        rings = []
        n = 1
        while len(rings) < context.max_rings:
            inset = face.buffer(-n * context.step, join_style=2)  # mitre keeps corners sharp
            if inset.is_empty or inset.geom_type != "Polygon" or inset.area <= 1e-12:
                break
            coords = np.asarray(inset.exterior.coords)
            points = origin + np.outer(coords[:, 0], u) + np.outer(coords[:, 1], v)
            rings.append(make_ring(context, points, rim.sort_key, cap=which, inset_index=n))
            n += 1
        return rings

    def _poles(
        self,
        vertices: np.ndarray,
        heights: np.ndarray,
        d_min: float,
        d_max: float,
    ) -> Tuple[np.ndarray, np.ndarray]:
        span = max(d_max - d_min, 1e-9)
        low = np.unique(np.round(vertices[heights <= d_min + 1e-6 * span], 9), axis=0)
        high = np.unique(np.round(vertices[heights >= d_max - 1e-6 * span], 9), axis=0)
        return low.mean(axis=0), high.mean(axis=0)
