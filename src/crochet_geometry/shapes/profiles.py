"""Meridian profiles for the axial solids."""

from __future__ import annotations

import math

import numpy as np

from crochet_geometry.shapes.axial import AxialGenerator, MeridianProfile
from crochet_geometry.solids import (
    CAPSULE_HALF_LENGTH,
    CAPSULE_RADIUS,
    TORUS_MAJOR_RADIUS,
    TORUS_MINOR_RADIUS,
)


class ConeGenerator(AxialGenerator):
    """Apex first, down the slant, then the base filled inward."""

    solid_type = "cone"

    def profile(self) -> MeridianProfile:
        y = np.linspace(1.0, -1.0, self.samples)
        return MeridianProfile(
            y=y,
            r=0.5 * (1.0 - y),
            axis_sign=-1.0,
            end_cap=True,
            start_pole=(0.0, 1.0, 0.0),
            end_pole=(0.0, -1.0, 0.0),
        )


class PyramidGenerator(AxialGenerator):
    """Cone walk with a diamond cross-section."""

    solid_type = "pyramid"

    def profile(self) -> MeridianProfile:
        y = np.linspace(1.0, -1.0, self.samples)
        return MeridianProfile(
            y=y,
            r=0.5 * (1.0 - y),
            axis_sign=-1.0,
            end_cap=True,
            cross_section="diamond",
            start_pole=(0.0, 1.0, 0.0),
            end_pole=(0.0, -1.0, 0.0),
        )


class CylinderGenerator(AxialGenerator):
    """Bottom disc from the centre out, the wall, then the top disc inward."""

    solid_type = "cylinder"

    def profile(self) -> MeridianProfile:
        y = np.linspace(-1.0, 1.0, self.samples)
        return MeridianProfile(
            y=y,
            r=np.ones_like(y),
            axis_sign=1.0,
            start_cap=True,
            end_cap=True,
            start_pole=(0.0, -1.0, 0.0),
            end_pole=(0.0, 1.0, 0.0),
        )


class CapsuleGenerator(AxialGenerator):
    solid_type = "capsule"

    def profile(self) -> MeridianProfile:
        n = self.samples
        alpha = np.linspace(0.0, 0.5 * math.pi, n)
        bottom_y = -CAPSULE_HALF_LENGTH - CAPSULE_RADIUS * np.cos(alpha)
        bottom_r = CAPSULE_RADIUS * np.sin(alpha)
        side_y = np.linspace(-CAPSULE_HALF_LENGTH, CAPSULE_HALF_LENGTH, n)[1:]
        side_r = np.full_like(side_y, CAPSULE_RADIUS)
        alpha = np.linspace(0.5 * math.pi, math.pi, n)[1:]
        top_y = CAPSULE_HALF_LENGTH - CAPSULE_RADIUS * np.cos(alpha)
        top_r = CAPSULE_RADIUS * np.sin(alpha)
        tip = CAPSULE_HALF_LENGTH + CAPSULE_RADIUS
        return MeridianProfile(
            y=np.concatenate([bottom_y, side_y, top_y]),
            r=np.clip(np.concatenate([bottom_r, side_r, top_r]), 0.0, None),
            axis_sign=1.0,
            start_pole=(0.0, -tip, 0.0),
            end_pole=(0.0, tip, 0.0),
        )


class TorusGenerator(AxialGenerator):
    """Tube meridian from the bottom, over the outside, back along the hole."""

    solid_type = "torus"

    def profile(self) -> MeridianProfile:
        psi = np.linspace(-0.5 * math.pi, 1.5 * math.pi, self.samples)
        return MeridianProfile(
            y=TORUS_MINOR_RADIUS * np.sin(psi),
            r=TORUS_MAJOR_RADIUS + TORUS_MINOR_RADIUS * np.cos(psi),
            axis_sign=1.0,
            closed=True,
            start_pole=(TORUS_MAJOR_RADIUS, -TORUS_MINOR_RADIUS, 0.0),
            end_pole=(TORUS_MAJOR_RADIUS, TORUS_MINOR_RADIUS, 0.0),
        )
