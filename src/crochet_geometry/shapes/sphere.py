"""Sphere rings with arc-length-accurate spacing under any scale."""

from __future__ import annotations

import logging
import math

import numpy as np

from crochet_geometry.contracts import SolidLayers
from crochet_geometry.first_gap import solve_first_gap
from crochet_geometry.shapes.base import (
    GenerationContext,
    ShapeGenerator,
    ellipse_points,
    finish_layers,
    make_ring,
    segment_count,
    widest_axis_dir,
)
from crochet_geometry.transforms import ellipse_perimeter, plane_basis, unit_vector

logger = logging.getLogger(__name__)


class SphereMeridian:
    """Cumulative meridian arc length of a scaled unit sphere.

    The metric ``sqrt((a_axis sin t)^2 + (a_equ cos t)^2)`` is integrated
    with composite Simpson over ``cells`` equal cells, with a partial cell
    for positions between grid points.
    """

    def __init__(self, a_axis: float, a_equ: float, cells: int):
        self.a_axis = float(a_axis)
        self.a_equ = float(a_equ)
        self.cells = max(2, int(cells) + int(cells) % 2)
        self.h = math.pi / self.cells
        grid = np.arange(self.cells) * self.h
        cell = self.h / 6.0 * (
            self.metric(grid) + 4.0 * self.metric(grid + 0.5 * self.h) + self.metric(grid + self.h)
        )
        self.table = np.concatenate([[0.0], np.cumsum(cell)])

    @property
    def total(self) -> float:
        return float(self.table[-1])

    def metric(self, theta):
        return np.sqrt((self.a_axis * np.sin(theta)) ** 2 + (self.a_equ * np.cos(theta)) ** 2)

    def arc(self, theta: float) -> float:
        theta = min(max(float(theta), 0.0), math.pi)
        index = min(int(theta / self.h), self.cells - 1)
        t0 = index * self.h
        w = theta - t0
        partial = w / 6.0 * (
            float(self.metric(t0)) + 4.0 * float(self.metric(t0 + 0.5 * w)) + float(self.metric(theta))
        )
        return float(self.table[index]) + partial

    def theta_at(self, s: float, iterations: int = 20) -> float:
        """Invert ``arc`` with Newton steps kept inside a bisection bracket."""
        total = self.total
        if s <= 0.0:
            return 0.0
        if s >= total:
            return math.pi
        lo, hi = 0.0, math.pi
        theta = math.pi * s / total
        for _ in range(iterations):
            err = self.arc(theta) - s
            if abs(err) <= 1e-12 * max(1.0, total):
                break
            if err > 0.0:
                hi = theta
            else:
                lo = theta
            slope = float(self.metric(theta))
            candidate = theta - err / slope if slope > 1e-12 else 0.5 * (lo + hi)
            if not lo < candidate < hi:
                candidate = 0.5 * (lo + hi)
            theta = candidate
        return theta


class SphereGenerator(ShapeGenerator):
    solid_type = "sphere"
    strategy = "arc_length_marching"

    def generate(self, context: GenerationContext) -> SolidLayers:
        linear = context.linear
        thresholds = context.thresholds
        direction = context.slice_dir
        if direction is None:
            direction = widest_axis_dir(context.matrix)

        # Local plane normal whose world image is perpendicular to direction.
        m = unit_vector(linear.T @ direction)
        u, v = plane_basis(m)
        a_axis = float(np.linalg.norm(linear @ m))
        a_u = float(np.linalg.norm(linear @ u))
        a_v = float(np.linalg.norm(linear @ v))
        a_equ = math.sqrt((a_u * a_u + a_v * a_v) / 2.0)

        step = context.step
        estimate = int(math.ceil(math.pi * max(a_axis, a_equ) / step))
        cells = max(
            thresholds.sphere_min_quadrature_steps,
            min(thresholds.sphere_max_quadrature_steps, estimate * 64),
        )
        meridian = SphereMeridian(a_axis, a_equ, cells)
        total = meridian.total
        iterations = thresholds.sphere_solver_iterations

        def perimeter_at(s: float) -> float:
            radius = math.sin(meridian.theta_at(s, iterations))
            return ellipse_perimeter(a_u * radius, a_v * radius)

        gap = solve_first_gap(
            context.target_first_circumference,
            0.5 * total,
            perimeter_at,
            thresholds.first_gap_iterations,
        )
        tolerance = max(0.02 * step, 1e-5)
        offset = max(0.01 * float(np.mean(context.column_lengths)), 0.0015)

        rings = []
        k = 0
        while len(rings) <= context.max_rings:
            s = gap + k * step
            if s >= total - tolerance:
                break
            theta = meridian.theta_at(s, iterations)
            rings.append(
                self._ring_at(context, theta, s, m, u, v, a_u, a_v, direction, offset)
            )
            k += 1

        logger.debug(
            "Sphere %s: %d rings, arc %.4f, first gap %.4f",
            context.solid.id,
            len(rings),
            total,
            gap,
        )
        start_pole = context.center - linear @ m
        end_pole = context.center + linear @ m
        return finish_layers(context, rings, direction, start_pole, end_pole)

    def _ring_at(self, context, theta, s, m, u, v, a_u, a_v, direction, offset):
        linear = context.linear
        radius = math.sin(theta)
        perimeter = ellipse_perimeter(a_u * radius, a_v * radius)
        count = segment_count(perimeter, context.thresholds)
        local_center = -m * math.cos(theta)
        local = ellipse_points(local_center, u * radius, v * radius, count)[:-1]
        world = context.center + local @ linear.T
        normals = local @ context.normal_matrix.T
        lengths = np.linalg.norm(normals, axis=1, keepdims=True)
        normals = normals / np.where(lengths > 1e-12, lengths, 1.0)
        world = world + normals * offset
        ring_center = context.center + linear @ local_center
        return make_ring(
            context,
            world,
            float(np.dot(direction, ring_center)),
            arc_position=s,
            theta=theta,
            surface_offset=offset,
        )
