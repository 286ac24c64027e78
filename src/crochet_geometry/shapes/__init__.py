"""Ring generators keyed by solid type."""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

import numpy as np

from crochet_geometry.contracts import PatternSettings, Solid, SolidLayers, UnknownShapeError
from crochet_geometry.diagnostics import DiagnosticsLog
from crochet_geometry.shapes.base import (
    GenerationContext,
    ShapeGenerator,
    build_generation_context,
)
from crochet_geometry.shapes.prism import TrianglePrismGenerator
from crochet_geometry.shapes.profiles import (
    CapsuleGenerator,
    ConeGenerator,
    CylinderGenerator,
    PyramidGenerator,
    TorusGenerator,
)
from crochet_geometry.shapes.sphere import SphereGenerator

SHAPE_GENERATORS: Dict[str, ShapeGenerator] = {
    generator.solid_type: generator
    for generator in (
        SphereGenerator(),
        ConeGenerator(),
        CylinderGenerator(),
        CapsuleGenerator(),
        PyramidGenerator(),
        TorusGenerator(),
        TrianglePrismGenerator(),
    )
}


def get_shape_generator(solid_type: str) -> ShapeGenerator:
    generator = SHAPE_GENERATORS.get(solid_type)
    if generator is None:
        raise UnknownShapeError(
            f"No ring generator for solid type {solid_type!r}; "
            f"supported: {sorted(SHAPE_GENERATORS)}"
        )
    return generator


def shape_capabilities() -> List[Dict[str, str]]:
    return [SHAPE_GENERATORS[key].describe() for key in sorted(SHAPE_GENERATORS)]


def generate_solid_layers(
    solid: Solid,
    settings: PatternSettings,
    cutter_centers: Sequence[np.ndarray] = (),
    diagnostics: Optional[DiagnosticsLog] = None,
) -> Optional[SolidLayers]:
    """Rings and markers for one solid, or None if its geometry is degenerate.

    Raises UnknownShapeError for a type with no registered generator.
    """
    generator = get_shape_generator(solid.type)
    context = build_generation_context(
        solid, settings.clamped(), cutter_centers=cutter_centers, diagnostics=diagnostics
    )
    if context is None:
        return None
    return generator.generate(context)


__all__ = [
    "GenerationContext",
    "SHAPE_GENERATORS",
    "ShapeGenerator",
    "build_generation_context",
    "generate_solid_layers",
    "get_shape_generator",
    "shape_capabilities",
]
