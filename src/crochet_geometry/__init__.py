"""Geometry engine for crochet patterns: rings, stitch nodes and scaffold."""

from crochet_geometry.contracts import (
    LayerResult,
    Node,
    NodeResult,
    PatternResult,
    PatternSettings,
    Ring,
    Solid,
    Thresholds,
    UnknownShapeError,
)
from crochet_geometry.diagnostics import DiagnosticsLog
from crochet_geometry.pipeline import (
    generate_layers,
    generate_nodes,
    generate_pattern,
    preview_layers,
)
from crochet_geometry.shapes import shape_capabilities

__all__ = [
    "DiagnosticsLog",
    "LayerResult",
    "Node",
    "NodeResult",
    "PatternResult",
    "PatternSettings",
    "Ring",
    "Solid",
    "Thresholds",
    "UnknownShapeError",
    "generate_layers",
    "generate_nodes",
    "generate_pattern",
    "preview_layers",
    "shape_capabilities",
]
