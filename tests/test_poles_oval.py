"""Tests for ring annotation, pole roles, tail spacing and the oval start."""
import numpy as np
import pytest

from conftest import circle_loop, ring_from_loop
from crochet_geometry.contracts import PatternSettings, Pole, Solid, Thresholds
from crochet_geometry.diagnostics import DiagnosticsLog
from crochet_geometry.oval import detect_oval_start, oval_gate, prepend_oval_start
from crochet_geometry.pipeline import generate_layers, generate_nodes
from crochet_geometry.poles import (
    annotate_rings,
    assign_pole_roles,
    enforce_tail_spacing,
    walk_order,
)
from crochet_geometry.transforms import compose_pose


def _stack(heights, radius=1.0):
    return [
        ring_from_loop(circle_loop(radius=radius, y=h), sort_key=h, walk_index=i)
        for i, h in enumerate(heights)
    ]


def _ellipse_ring(semi_x, semi_z, y, walk_index=0):
    t = np.linspace(0.0, 2.0 * np.pi, 201)
    loop = np.column_stack([semi_x * np.cos(t), np.full_like(t, y), semi_z * np.sin(t)])
    return ring_from_loop(loop, sort_key=y, walk_index=walk_index)


class TestAnnotate:
    def test_keys_follow_slice_dir(self):
        rings = _stack([0.0, 1.0, 2.5])
        annotated = annotate_rings(rings, np.array([0.0, 1.0, 0.0]))
        assert [r.sort_key for r in annotated] == pytest.approx([0.0, 1.0, 2.5])
        assert [r.local_id for r in annotated] == [0, 1, 2]

    def test_origin_shifts_keys(self):
        annotated = annotate_rings(_stack([3.0]), np.array([0.0, 1.0, 0.0]), origin=np.array([0.0, 1.0, 0.0]))
        assert annotated[0].sort_key == pytest.approx(2.0)

    def test_walk_order_skips_connectors(self):
        rings = _stack([2.0, 1.0, 0.0])
        rings.append(ring_from_loop(circle_loop(y=0.5), sort_key=0.5, connector=True))
        assert [r.meta["walk_index"] for r in walk_order(rings)] == [0, 1, 2]


class TestPoleRoles:
    def test_start_is_nearest_first_ring(self):
        poles = [
            Pole(position=np.array([0.0, 1.0, 0.0]), object_id="s", role="start"),
            Pole(position=np.array([0.0, -1.0, 0.0]), object_id="s", role="end"),
        ]
        rings = [ring_from_loop(circle_loop(radius=0.6, y=-0.8), walk_index=0)]
        start, end = assign_pole_roles(poles, rings)
        assert start.role == "start"
        assert np.allclose(start.position, [0.0, -1.0, 0.0])
        assert end.role == "end"

    def test_pole_inside_cutter_bounds_is_intersected(self):
        poles = [
            Pole(position=np.array([0.0, -1.0, 0.0]), object_id="s"),
            Pole(position=np.array([0.0, 1.0, 0.0]), object_id="s"),
        ]
        rings = [ring_from_loop(circle_loop(radius=0.6, y=-0.8), walk_index=0)]
        box = (np.array([-0.5, 0.5, -0.5]), np.array([0.5, 1.5, 0.5]))
        start, end = assign_pole_roles(poles, rings, [box])
        assert not start.intersected
        assert end.intersected

    def test_roles_kept_without_rings(self):
        poles = [
            Pole(position=np.array([0.0, 1.0, 0.0]), object_id="s", role="start"),
            Pole(position=np.array([0.0, -1.0, 0.0]), object_id="s", role="end"),
        ]
        kept = assign_pole_roles(poles, [])
        assert [p.role for p in kept] == ["start", "end"]
        assert kept[0] is not poles[0]


class TestTailSpacing:
    def test_crowded_tail_is_dropped(self):
        diagnostics = DiagnosticsLog()
        rings = _stack([0.0, 1.0, 2.0, 2.1])
        kept = enforce_tail_spacing(rings, 1.0, 0.5, diagnostics)
        assert [r.sort_key for r in kept] == [0.0, 1.0, 2.0]
        assert diagnostics.codes() == ["tail_ring_dropped"]

    def test_spaced_rings_survive(self):
        rings = _stack([0.0, 1.0, 2.0])
        assert len(enforce_tail_spacing(rings, 1.0)) == 3

    def test_two_rings_are_never_dropped(self):
        rings = _stack([0.0, 0.01])
        assert len(enforce_tail_spacing(rings, 1.0)) == 2


class TestOvalGate:
    def test_round_section(self):
        gate = oval_gate(np.eye(4), [0.0, 1.0, 0.0])
        assert not gate.is_oval
        assert gate.axes_ratio == pytest.approx(1.0)
        assert gate.primary == 1

    def test_ratio_at_threshold_is_not_oval(self):
        matrix = compose_pose((0, 0, 0), (0, 0, 0), (1.1, 1.0, 1.0))
        assert not oval_gate(matrix, [0.0, 1.0, 0.0], 1.1).is_oval

    def test_elongated_section(self):
        matrix = compose_pose((0, 0, 0), (0, 0, 0), (2.0, 1.0, 1.0))
        gate = oval_gate(matrix, [0.0, 1.0, 0.0], 1.1)
        assert gate.is_oval
        assert gate.axes_ratio == pytest.approx(2.0)

    def test_slicing_along_long_axis_is_round(self):
        matrix = compose_pose((0, 0, 0), (0, 0, 0), (2.0, 1.0, 1.0))
        gate = oval_gate(matrix, [1.0, 0.0, 0.0], 1.1)
        assert gate.primary == 0
        assert not gate.is_oval


class TestDetectOvalStart:
    def test_round_first_ring_has_no_chain(self):
        rings = [_ellipse_ring(0.5, 0.5, 0.0), _ellipse_ring(1.0, 1.0, 1.0, 1)]
        oval = detect_oval_start(rings, np.array([0.0, -0.5, 0.0]), [0, 1, 0], 0.5, Thresholds())
        assert oval is None

    def test_chain_lies_along_long_side(self):
        rings = [_ellipse_ring(1.0, 0.5, 0.0), _ellipse_ring(2.0, 1.0, 1.0, 1)]
        oval = detect_oval_start(rings, np.array([0.0, -0.5, 0.0]), [0, 1, 0], 0.5, Thresholds())
        assert oval is not None
        assert oval.ratio == pytest.approx(2.0, rel=1e-3)
        assert oval.polyline.shape == (3, 3)
        direction = oval.polyline[2] - oval.polyline[0]
        direction = direction / np.linalg.norm(direction)
        assert abs(direction[0]) == pytest.approx(1.0, abs=1e-6)
        assert np.allclose(oval.polyline[1], [0.0, 0.0, 0.0])
        assert oval.half_length >= 0.5
        assert oval.chain_count == 2

    def test_prepended_chain_walks_first(self):
        rings = [_ellipse_ring(1.0, 0.5, 0.0), _ellipse_ring(2.0, 1.0, 1.0, 1)]
        oval = detect_oval_start(rings, np.array([0.0, -0.5, 0.0]), [0, 1, 0], 0.5, Thresholds())
        merged = prepend_oval_start(rings, oval, np.array([0.0, 1.0, 0.0]), "egg", "sphere")
        assert len(merged) == 3
        first = walk_order(merged)[0]
        assert first.meta["oval_start"]
        assert first.meta["walk_index"] == -1
        assert first.sort_key == pytest.approx(0.0)


class TestOvalInPipeline:
    @pytest.fixture
    def egg(self):
        return Solid(id="egg", type="sphere", scale=(2.0, 1.0, 1.0))

    def test_elongated_sphere_starts_with_chain(self, egg):
        diagnostics = DiagnosticsLog()
        settings = PatternSettings(yarn_size_level=4, slice_dir=(0.0, 1.0, 0.0))
        result = generate_layers([egg], settings, diagnostics)
        chains = [r for r in result.layers if r.meta.get("oval_start")]
        assert len(chains) == 1
        chain = chains[0].polylines[0]
        direction = (chain[-1] - chain[0]) / np.linalg.norm(chain[-1] - chain[0])
        assert abs(direction[0]) == pytest.approx(1.0, abs=1e-6)
        assert np.array_equal(result.markers["egg"].ring0, chain)
        assert "oval_start_added" in diagnostics.codes()

        nodes = generate_nodes(result, settings)
        index = result.layers.index(chains[0])
        assert nodes.stitch_counts_per_layer[index] == chains[0].meta["chain_count"]
        assert {n.stitch_type for n in nodes.nodes[index]} == {"ch"}

    def test_round_sphere_has_no_chain(self, unit_sphere, up_settings):
        result = generate_layers([unit_sphere], up_settings)
        assert not any(r.meta.get("oval_start") for r in result.layers)
