"""
Shared fixtures for the crochet geometry tests.
"""
import json
import sys
import warnings
from pathlib import Path

# Suppress trimesh internal RuntimeWarning for degenerate cross-sections
# (divide-by-zero when a plane grazes a mesh edge).
warnings.filterwarnings(
    "ignore",
    message="invalid value encountered in divide",
    category=RuntimeWarning,
    module=r"trimesh\.triangles",
)

import numpy as np
import pytest

# Add src/ to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from crochet_geometry.contracts import PatternSettings, Ring, Solid
from crochet_geometry.polylines import polyline_length


def circle_loop(radius=1.0, segments=400, y=0.0, center=(0.0, 0.0, 0.0)):
    """Closed circle in the XZ plane, seam at +X."""
    t = np.arange(segments) * (2.0 * np.pi / segments)
    pts = np.column_stack(
        [
            center[0] + radius * np.cos(t),
            np.full(segments, center[1] + y),
            center[2] + radius * np.sin(t),
        ]
    )
    return np.vstack([pts, pts[:1]])


def ring_from_loop(loop, sort_key=0.0, object_id="obj", object_type="sphere", **meta):
    return Ring(
        sort_key=sort_key,
        polylines=[loop],
        object_id=object_id,
        object_type=object_type,
        full_circumference=polyline_length(loop),
        full_loop=loop.copy(),
        meta=dict(meta),
    )


@pytest.fixture
def unit_sphere():
    return Solid(id="ball", type="sphere")


@pytest.fixture
def default_settings():
    return PatternSettings()


@pytest.fixture
def up_settings():
    """Level 4 gauge (1 world unit per stitch) sliced along world Y."""
    return PatternSettings(yarn_size_level=4, slice_dir=(0.0, 1.0, 0.0))


@pytest.fixture
def overlapping_spheres():
    """Strong sphere at the origin and a weak one overlapping it along +X."""
    strong = Solid(id="a", type="sphere", priority_override="strong")
    weak = Solid(id="b", type="sphere", position=(1.6, 0.0, 0.0), priority_override="weak")
    return strong, weak


@pytest.fixture
def scene_file(tmp_path):
    payload = {
        "solids": [
            {"id": "body", "type": "sphere", "scale": [1.5, 1.5, 1.5]},
            {"id": "ear", "type": "cone", "position": {"x": 0.0, "y": 1.6, "z": 0.0}},
        ],
        "settings": {"yarnSizeLevel": 3, "stitchType": "sc"},
    }
    path = tmp_path / "scene.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path

