"""End-to-end generate pass and the JSON documents built from it."""
import json
import logging

import numpy as np
import pytest

from crochet_geometry import generate_layers, generate_nodes, generate_pattern, preview_layers
from crochet_geometry import pipeline as pipeline_module
from crochet_geometry.contracts import PatternSettings, Solid, UnknownShapeError
from crochet_geometry.diagnostics import DiagnosticsLog
from crochet_geometry.export import (
    LAYERS_SCHEMA,
    NODES_SCHEMA,
    layers_to_document,
    load_scene,
    nodes_to_document,
    settings_from_dict,
    write_json,
)


class TestUnitSpherePattern:
    def test_node_counts(self, unit_sphere, up_settings):
        result = generate_pattern([unit_sphere], up_settings)
        assert result.nodes.stitch_counts_per_layer == [4, 6, 3]
        assert result.nodes.statuses == ["ok", "ok", "ok"]
        assert result.nodes.spacing_per_layer[0] == pytest.approx(0.9, rel=0.05)
        assert result.nodes.spacing_per_layer[1:] == pytest.approx([0.95] * 2)

    def test_scaffold_links_consecutive_rings(self, unit_sphere, up_settings):
        result = generate_pattern([unit_sphere], up_settings)
        segments = result.nodes.scaffold_segments
        assert len(segments[0]) == 6
        assert len(segments[1]) == 6
        assert segments[2] == []
        assert {s.layer_index for s in segments[0]} == {0}

    def test_plans_follow_previous_ring(self, unit_sphere, up_settings):
        result = generate_pattern([unit_sphere], up_settings)
        plans = result.nodes.plans
        assert plans[0] is None
        assert plans[1].current_count == 4
        assert plans[1].increases > 0
        assert plans[2].current_count == 6
        assert plans[2].decreases > 0

    def test_first_nodes_of_consecutive_rings_line_up(self, unit_sphere, up_settings):
        result = generate_pattern([unit_sphere], up_settings)
        first = [layer[0].position[[0, 2]] for layer in result.nodes.nodes]
        directions = [p / np.linalg.norm(p) for p in first]
        for d in directions[1:]:
            assert float(np.dot(d, directions[0])) > 0.99

    def test_layers_without_settings_use_stored_settings(self, unit_sphere, up_settings):
        layers = generate_layers([unit_sphere], up_settings)
        assert generate_nodes(layers).stitch_counts_per_layer == [4, 6, 3]

    def test_first_round_is_a_magic_ring(self, unit_sphere, up_settings):
        result = generate_pattern([unit_sphere], up_settings)
        first = result.nodes.nodes[0]
        assert {n.stitch_type for n in first} == {"mr"}
        magic = result.nodes.magic_rings["ball"]
        assert magic.stitch_count == 4
        assert np.allclose(magic.center[[0, 2]], 0.0, atol=1e-6)
        assert magic.center[1] == pytest.approx(first[0].position[1], abs=1e-6)
        spokes = result.nodes.start_segments["ball"]
        assert [s.child_index for s in spokes] == [0, 1, 2, 3]
        assert np.allclose([s.end for s in spokes], [n.position for n in first])


class TestOvalStartPattern:
    def test_rounds_after_the_chain_need_no_split(self):
        egg = Solid(id="egg", type="sphere", scale=(2.0, 1.0, 1.0))
        settings = PatternSettings(yarn_size_level=2, slice_dir=(0.0, 1.0, 0.0))
        diagnostics = DiagnosticsLog()
        result = generate_pattern([egg], settings, diagnostics)
        layers = result.layers.layers
        nodes = result.nodes
        chain = next(i for i, r in enumerate(layers) if r.meta.get("oval_start"))
        assert "need_split" not in nodes.statuses
        assert "need_split" not in diagnostics.codes()
        assert {n.stitch_type for n in nodes.nodes[chain]} == {"ch"}
        assert nodes.scaffold_segments[chain]
        assert "egg" not in nodes.magic_rings
        spokes = nodes.start_segments["egg"]
        assert len(spokes) == nodes.stitch_counts_per_layer[chain]
        assert np.allclose(spokes[0].start, layers[chain].polylines[0][1])


class TestNodeFailures:
    def test_ring_too_short_has_no_nodes(self):
        diagnostics = DiagnosticsLog()
        tiny = Solid(id="pea", type="sphere", scale=(0.2, 0.2, 0.2))
        settings = PatternSettings(yarn_size_level=8, slice_dir=(0.0, 1.0, 0.0))
        result = generate_pattern([tiny], settings, diagnostics)
        assert result.layers.layers
        assert all(count == 0 for count in result.nodes.stitch_counts_per_layer)
        assert set(result.nodes.statuses) == {"no_fit"}
        assert "ring_without_nodes" in diagnostics.codes()


class TestSolidIsolation:
    def test_failing_solid_is_skipped_and_recorded(self, unit_sphere, monkeypatch):
        real_clip = pipeline_module.clip_solid_layers

        def clip_or_fail(generated, cutters, settings, diagnostics=None):
            if generated.object_id == "tube":
                raise RuntimeError("clipping blew up")
            return real_clip(generated, cutters, settings, diagnostics)

        monkeypatch.setattr(pipeline_module, "clip_solid_layers", clip_or_fail)
        diagnostics = DiagnosticsLog()
        tube = Solid(id="tube", type="cylinder", position=(5, 0, 0))
        result = generate_layers([unit_sphere, tube], PatternSettings(yarn_size_level=4), diagnostics)
        assert {r.object_id for r in result.layers} == {"ball"}
        assert "tube" not in result.markers
        failed = [r for r in diagnostics.records if r.code == "solid_failed"]
        assert [r.object_id for r in failed] == ["tube"]
        assert failed[0].payload["error"] == "RuntimeError"

    def test_unknown_shape_still_raises(self, unit_sphere):
        with pytest.raises(UnknownShapeError):
            generate_layers([unit_sphere, Solid(id="blob", type="blob", position=(5, 0, 0))])


class TestPreview:
    def test_cap_samples_each_object(self, unit_sphere):
        solids = [unit_sphere, Solid(id="tube", type="cylinder", position=(5, 0, 0), scale=(1, 3, 1))]
        result = generate_layers(solids, PatternSettings(yarn_size_level=2))
        preview = preview_layers(result.layers, 6)
        assert len(preview) <= 6
        assert {r.object_id for r in preview} == {"ball", "tube"}
        keys = [r.sort_key for r in preview]
        assert keys == sorted(keys)

    def test_small_input_is_returned_whole(self, unit_sphere, up_settings):
        layers = generate_layers([unit_sphere], up_settings).layers
        assert preview_layers(layers, 10) == layers


class TestDocuments:
    def test_layers_document(self, unit_sphere, up_settings):
        result = generate_layers([unit_sphere], up_settings)
        doc = layers_to_document(result)
        assert doc["schema_version"] == LAYERS_SCHEMA
        assert len(doc["layers"]) == 3
        assert doc["order"] == ["ball"]
        roles = [p["role"] for p in doc["markers"]["ball"]["poles"]]
        assert roles == ["start", "end"]
        json.dumps(doc)

    def test_nodes_document(self, unit_sphere, up_settings):
        result = generate_pattern([unit_sphere], up_settings)
        doc = nodes_to_document(result.nodes)
        assert doc["schema_version"] == NODES_SCHEMA
        assert doc["total_nodes"] == 13
        first = doc["layers"][0]
        assert first["stitch_count"] == 4
        assert first["nodes"][0]["stitch_type"] == "mr"
        assert doc["magic_rings"]["ball"]["stitch_count"] == 4
        assert len(doc["start_scaffold"]["ball"]) == 4
        assert first["plan"] is None
        assert len(first["nodes"][0]["quaternion"]) == 4
        assert len(first["scaffold"]) == 6
        json.dumps(doc)

    def test_write_json_creates_parents(self, tmp_path):
        path = write_json(tmp_path / "a" / "b" / "doc.json", {"x": [1, 2]})
        assert json.loads(path.read_text(encoding="utf-8")) == {"x": [1, 2]}

    def test_diagnostics_jsonl(self, tmp_path):
        diagnostics = DiagnosticsLog()
        diagnostics.record("clip", "ring_removed", "gone", object_id="b", sort_key=np.float64(0.5))
        diagnostics.record("nodes", "ring_without_nodes", "empty")
        path = diagnostics.write_jsonl(tmp_path / "diag.jsonl")
        lines = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
        assert [line["seq"] for line in lines] == [1, 2]
        assert lines[0]["payload"] == {"sort_key": 0.5}
        assert [r.code for r in diagnostics.by_stage("nodes")] == ["ring_without_nodes"]


class TestSceneInput:
    def test_settings_aliases_and_clamping(self):
        settings = settings_from_dict(
            {"yarnSizeLevel": 12, "sliceDir": [0, 2, 0], "spacingMode": "jagged", "unused": 1}
        )
        assert settings.yarn_size_level == 8
        assert settings.slice_dir == pytest.approx((0.0, 1.0, 0.0))
        assert settings.distribution_mode == "jagged"

    def test_threshold_overrides(self, caplog):
        with caplog.at_level(logging.WARNING, logger="crochet_geometry.export"):
            settings = settings_from_dict({"thresholds": {"edge_gap_ratio": 0.2, "bogus": 1}})
        assert settings.thresholds.edge_gap_ratio == pytest.approx(0.2)
        assert "bogus" in caplog.text

    def test_load_scene(self, scene_file):
        solids, settings = load_scene(scene_file)
        assert [s.id for s in solids] == ["body", "ear"]
        assert solids[1].position == (0.0, 1.6, 0.0)
        assert solids[0].scale == (1.5, 1.5, 1.5)
        assert settings.yarn_size_level == 3

    def test_scene_without_solids(self, tmp_path):
        path = tmp_path / "empty.json"
        path.write_text(json.dumps({"settings": {}}), encoding="utf-8")
        with pytest.raises(ValueError):
            load_scene(path)

    def test_scene_runs_end_to_end(self, scene_file):
        solids, settings = load_scene(scene_file)
        result = generate_pattern(solids, settings)
        assert result.layers.plan.order[0] == "body"
        assert sum(result.nodes.stitch_counts_per_layer) > 0
        assert len(result.nodes.nodes) == result.layers.stats.layer_count
