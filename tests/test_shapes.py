"""Tests for the per-type ring generators."""
import math

import numpy as np
import pytest

from crochet_geometry.contracts import SOLID_TYPES, PatternSettings, Solid, UnknownShapeError
from crochet_geometry.diagnostics import DiagnosticsLog
from crochet_geometry.pipeline import generate_layers
from crochet_geometry.polylines import is_closed
from crochet_geometry.shapes import (
    SHAPE_GENERATORS,
    generate_solid_layers,
    get_shape_generator,
    shape_capabilities,
)


def _wall(rings):
    return [
        r for r in rings
        if "arc_position" in r.meta and not r.meta.get("cap") and not r.meta.get("rim")
    ]


def _center_and_radius(ring):
    pts = ring.polylines[0][:-1]
    center = pts.mean(axis=0)
    return center, float(np.linalg.norm(pts - center, axis=1).mean())


class TestRegistry:
    def test_every_type_has_a_generator(self):
        assert set(SHAPE_GENERATORS) == set(SOLID_TYPES)

    def test_capabilities(self):
        caps = shape_capabilities()
        assert len(caps) == len(SOLID_TYPES)
        by_type = {c["type"]: c["strategy"] for c in caps}
        assert by_type["sphere"] == "arc_length_marching"
        assert by_type["cone"] == "axial_marching"
        assert by_type["triangle"] == "plane_slicing"

    def test_unknown_type_raises(self):
        with pytest.raises(UnknownShapeError):
            get_shape_generator("dodecahedron")

    def test_unknown_type_propagates_from_pipeline(self):
        with pytest.raises(UnknownShapeError):
            generate_layers([Solid(id="x", type="dodecahedron")])


class TestSpacing:
    @pytest.mark.parametrize("solid_type", ["sphere", "cylinder", "capsule", "cone"])
    def test_wall_rings_one_step_apart_on_surface(self, solid_type):
        solid = Solid(id="s", type=solid_type, scale=(1.3, 1.8, 1.3))
        if solid_type == "sphere":
            solid = Solid(id="s", type=solid_type, rotation=(10.0, 20.0, 0.0), scale=(1.3, 1.3, 1.3))
        layers = generate_solid_layers(solid, PatternSettings(yarn_size_level=1))
        wall = _wall(layers.rings)
        assert len(wall) >= 3
        for a, b in zip(wall, wall[1:]):
            ca, ra = _center_and_radius(a)
            cb, rb = _center_and_radius(b)
            # Chord between neighbouring rings on the profile; arcs only bend it slightly.
            chord = math.hypot(float(np.linalg.norm(cb - ca)), rb - ra)
            assert chord == pytest.approx(0.25, rel=2e-2)

    def test_prism_rings_one_step_apart_along_slicing_direction(self):
        solid = Solid(id="t", type="triangle", rotation=(10.0, 20.0, 0.0), scale=(1.3, 1.8, 0.9))
        direction = np.array([0.0, 1.0, 0.0])
        settings = PatternSettings(yarn_size_level=2, slice_dir=tuple(direction))
        wall = _wall(generate_solid_layers(solid, settings).rings)
        assert len(wall) >= 2
        heights = [float(np.mean(r.polylines[0] @ direction)) for r in wall]
        assert np.allclose(np.diff(heights), 0.5, rtol=1e-3)

    @pytest.mark.parametrize("solid_type", SOLID_TYPES)
    def test_full_loops_are_closed(self, solid_type):
        solid = Solid(id="s", type=solid_type, scale=(1.2, 1.0, 0.8))
        layers = generate_solid_layers(solid, PatternSettings(yarn_size_level=3))
        for ring in layers.rings:
            assert ring.full_loop is not None
            assert is_closed(ring.full_loop)
            assert is_closed(ring.polylines[0], 1e-2)

    def test_sphere_leaves_closing_gap_at_end_pole(self):
        settings = PatternSettings(yarn_size_level=4, slice_dir=(0.0, 1.0, 0.0))
        layers = generate_solid_layers(Solid(id="ball", type="sphere"), settings)
        positions = [r.meta["arc_position"] for r in layers.rings]
        assert np.allclose(np.diff(positions), 1.0)
        remainder = math.pi - positions[-1]
        assert 0.02 <= remainder <= 1.0 + 1e-6

    def test_stretched_sphere_meridian_arc(self):
        solid = Solid(id="egg", type="sphere", scale=(1.0, 2.0, 1.0))
        layers = generate_solid_layers(solid, PatternSettings(yarn_size_level=4))
        thetas = [r.meta["theta"] for r in layers.rings]
        assert len(thetas) >= 3
        for t0, t1 in zip(thetas, thetas[1:]):
            t = np.linspace(t0, t1, 4001)
            meridian = np.column_stack([np.sin(t), -2.0 * np.cos(t)])
            arc = float(np.sum(np.linalg.norm(np.diff(meridian, axis=0), axis=1)))
            assert arc == pytest.approx(1.0, rel=1e-3)

    def test_cone_slant_spacing(self):
        solid = Solid(id="c", type="cone", scale=(1.0, 1.5, 1.0))
        layers = generate_solid_layers(solid, PatternSettings(yarn_size_level=2))
        wall = _wall(layers.rings)
        assert len(wall) >= 3
        for a, b in zip(wall, wall[1:]):
            ca, ra = _center_and_radius(a)
            cb, rb = _center_and_radius(b)
            slant = math.hypot(float(np.linalg.norm(cb - ca)), rb - ra)
            assert slant == pytest.approx(0.5, rel=1e-3)

    def test_cone_starts_at_apex(self):
        layers = generate_solid_layers(Solid(id="c", type="cone"), PatternSettings(yarn_size_level=2))
        _, first_radius = _center_and_radius(layers.rings[0])
        _, later_radius = _center_and_radius(_wall(layers.rings)[-1])
        assert first_radius < later_radius
        start = next(p for p in layers.markers.poles if p.role == "start")
        assert np.allclose(start.position, [0.0, 1.0, 0.0])


class TestCaps:
    def test_cylinder_ring_sequence(self):
        solid = Solid(id="cyl", type="cylinder", scale=(1.0, 2.0, 1.0))
        layers = generate_solid_layers(solid, PatternSettings(yarn_size_level=2))
        caps = [r.meta.get("cap") for r in layers.rings]
        assert caps[0] == "start"
        assert caps[-1] == "end"
        wall = _wall(layers.rings)
        assert len(wall) == 8
        assert sum(1 for r in layers.rings if r.meta.get("rim")) == 1
        # Start cap insets are worked from the centre outward.
        _, inset_radius = _center_and_radius(layers.rings[0])
        assert inset_radius == pytest.approx(0.5, rel=1e-6)

    def test_walk_index_follows_list_order(self):
        layers = generate_solid_layers(
            Solid(id="cyl", type="cylinder"), PatternSettings(yarn_size_level=1)
        )
        assert [r.meta["walk_index"] for r in layers.rings] == list(range(len(layers.rings)))

    def test_triangle_caps_only_when_aligned(self):
        solid = Solid(id="tri", type="triangle")
        aligned = generate_solid_layers(solid, PatternSettings(yarn_size_level=1, slice_dir=(0, 1, 0)))
        across = generate_solid_layers(solid, PatternSettings(yarn_size_level=1, slice_dir=(1, 0, 0)))
        assert {r.meta.get("cap") for r in aligned.rings} >= {"start", "end"}
        assert not any(r.meta.get("cap") for r in across.rings)

    def test_triangle_cap_lies_on_end_face(self):
        solid = Solid(id="tri", type="triangle")
        layers = generate_solid_layers(solid, PatternSettings(yarn_size_level=1, slice_dir=(0, 1, 0)))
        start_caps = [r for r in layers.rings if r.meta.get("cap") == "start"]
        assert start_caps
        assert np.allclose(start_caps[0].polylines[0][:, 1], -1.0, atol=1e-3)


class TestScenarioUnitSphere:
    def test_three_rings_between_poles(self, unit_sphere, up_settings):
        diagnostics = DiagnosticsLog()
        result = generate_layers([unit_sphere], up_settings, diagnostics)
        rings = result.layers
        assert abs(len(rings) - math.floor(math.pi / 1.0)) <= 1
        assert len(rings) == 3

        radii = [_center_and_radius(r)[1] for r in rings]
        assert radii[1] > radii[0]
        assert radii[1] > radii[2]
        keys = [r.sort_key for r in rings]
        assert keys == sorted(keys)

        poles = {p.role: p for p in result.markers["ball"].poles}
        assert np.allclose(poles["start"].position, [0.0, -1.0, 0.0])
        assert np.allclose(poles["end"].position, [0.0, 1.0, 0.0])

    def test_first_ring_holds_the_edge_stitches(self, unit_sphere, up_settings):
        rings = generate_layers([unit_sphere], up_settings).layers
        _, radius = _center_and_radius(rings[0])
        assert 2 * math.pi * radius == pytest.approx(3.6, rel=0.02)

    def test_uniform_sphere_without_override_slices_up(self, unit_sphere):
        result = generate_layers([unit_sphere], PatternSettings())
        assert np.allclose(result.slice_dirs["ball"], [0.0, 1.0, 0.0])


class TestRobustness:
    def test_idempotent(self):
        solids = [
            Solid(id="a", type="sphere", rotation=(15, 30, 45), scale=(1.3, 1.0, 0.8)),
            Solid(id="b", type="torus", position=(4, 0, 0)),
        ]
        settings = PatternSettings(yarn_size_level=3)
        first = generate_layers(solids, settings)
        second = generate_layers(solids, settings)
        assert len(first.layers) == len(second.layers)
        assert [r.sort_key for r in first.layers] == [r.sort_key for r in second.layers]
        assert [r.point_count for r in first.layers] == [r.point_count for r in second.layers]

    def test_collapsed_scale_is_skipped(self):
        diagnostics = DiagnosticsLog()
        result = generate_layers(
            [Solid(id="flat", type="sphere", scale=(0.0, 1.0, 1.0))], diagnostics=diagnostics
        )
        assert result.layers == []
        assert "degenerate_transform" in diagnostics.codes()

    def test_ring_cap(self):
        diagnostics = DiagnosticsLog()
        layers = generate_solid_layers(
            Solid(id="cyl", type="cylinder", scale=(1, 3, 1)),
            PatternSettings(yarn_size_level=1, max_rings=2),
            diagnostics=diagnostics,
        )
        assert len(layers.rings) == 2
        assert "max_rings_reached" in diagnostics.codes()

    def test_hidden_solid_produces_nothing(self):
        result = generate_layers([Solid(id="h", type="cone", visible=False)])
        assert result.layers == []
        assert result.plan.order == []
