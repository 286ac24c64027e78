"""Scene loading and JSON documents for layer and node results."""

from __future__ import annotations

import json
import logging
from dataclasses import fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from crochet_geometry.contracts import (
    LayerResult,
    Markers,
    NodeResult,
    PatternSettings,
    Ring,
    Solid,
    Thresholds,
)

logger = logging.getLogger(__name__)

LAYERS_SCHEMA = "crochet_geometry.layers.v1"
NODES_SCHEMA = "crochet_geometry.nodes.v1"

_SETTINGS_ALIASES = {
    "yarnSizeLevel": "yarn_size_level",
    "stitchType": "stitch_type",
    "sliceDir": "slice_dir",
    "increaseFactor": "increase_factor",
    "decreaseFactor": "decrease_factor",
    "distributionMode": "distribution_mode",
    "spacingMode": "distribution_mode",
    "jaggedSeed": "jagged_seed",
    "maxRings": "max_rings",
    "maxLayers": "max_rings",
    "previewRingCap": "preview_ring_cap",
    "clipAgainstObjects": "clip_against_objects",
    "samplingSeed": "sampling_seed",
}


def _float_list(array: Any) -> List[float]:
    return [float(v) for v in np.asarray(array, dtype=float).reshape(-1)]


def _points(array: Any) -> List[List[float]]:
    return [[float(v) for v in row] for row in np.asarray(array, dtype=float).reshape(-1, 3)]


def _jsonable(value: Any) -> Any:
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, (np.floating, np.integer, np.bool_)):
        return value.item()
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

def settings_from_dict(payload: Optional[Mapping[str, Any]]) -> PatternSettings:
    """Build clamped settings from camelCase or snake_case keys."""
    payload = dict(payload or {})
    known = {f.name for f in fields(PatternSettings)}
    values: Dict[str, Any] = {}
    for key, value in payload.items():
        name = _SETTINGS_ALIASES.get(key, key)
        if name == "thresholds" or name not in known:
            continue
        values[name] = value
    if values.get("slice_dir") is not None:
        values["slice_dir"] = tuple(float(v) for v in values["slice_dir"])

    thresholds = Thresholds()
    overrides = payload.get("thresholds") or {}
    threshold_names = {f.name for f in fields(Thresholds)}
    unknown = sorted(set(overrides) - threshold_names)
    if unknown:
        logger.warning("Ignoring unknown thresholds: %s", ", ".join(unknown))
    thresholds = replace(thresholds, **{k: v for k, v in overrides.items() if k in threshold_names})
    return PatternSettings(thresholds=thresholds, **values).clamped()


def solids_from_payload(items: Sequence[Mapping[str, Any]]) -> List[Solid]:
    return [Solid.from_dict(item) for item in items]


def load_scene(path: Path) -> Tuple[List[Solid], PatternSettings]:
    """Read ``{"solids": [...], "settings": {...}}`` from a JSON file."""
    path = Path(path)
    with path.open("r", encoding="utf-8") as handle:
        payload = json.load(handle)
    if not isinstance(payload, dict) or "solids" not in payload:
        raise ValueError(f"Scene file {path} has no 'solids' list")
    return solids_from_payload(payload["solids"]), settings_from_dict(payload.get("settings"))


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

def ring_to_dict(ring: Ring) -> Dict[str, Any]:
    return {
        "object_id": ring.object_id,
        "object_type": ring.object_type,
        "local_id": ring.local_id,
        "sort_key": float(ring.sort_key),
        "polylines": [_points(p) for p in ring.polylines],
        "full_circumference": float(ring.full_circumference),
        "meta": _jsonable(ring.meta),
    }


def markers_to_dict(markers: Markers) -> Dict[str, Any]:
    return {
        "poles": [
            {
                "position": _float_list(p.position),
                "role": p.role,
                "intersected": bool(p.intersected),
            }
            for p in markers.poles
        ],
        "ring0": None if markers.ring0 is None else _points(markers.ring0),
        "cut_loops": [_points(loop) for loop in markers.cut_loops],
    }


def layers_to_document(result: LayerResult) -> Dict[str, Any]:
    return {
        "schema_version": LAYERS_SCHEMA,
        "layers": [ring_to_dict(r) for r in result.layers],
        "markers": {oid: markers_to_dict(m) for oid, m in result.markers.items()},
        "stats": {
            "layer_count": result.stats.layer_count,
            "total_line_count": result.stats.total_line_count,
            "per_object": dict(result.stats.per_object),
        },
        "ranks": dict(result.plan.ranks),
        "order": list(result.plan.order),
        "slice_dirs": {oid: _float_list(v) for oid, v in result.slice_dirs.items()},
    }


def nodes_to_document(result: NodeResult) -> Dict[str, Any]:
    return {
        "schema_version": NODES_SCHEMA,
        "layers": [
            {
                "layer_index": index,
                "status": result.statuses[index] if index < len(result.statuses) else "ok",
                "stitch_count": result.stitch_counts_per_layer[index],
                "spacing": float(result.spacing_per_layer[index]),
                "fit": {
                    "fits": bool(result.fits[index].fits),
                    "scale_factor": float(result.fits[index].scale_factor),
                }
                if index < len(result.fits)
                else None,
                "plan": None
                if index >= len(result.plans) or result.plans[index] is None
                else {
                    "next_count": result.plans[index].next_count,
                    "actions": list(result.plans[index].actions),
                },
                "nodes": [
                    {
                        "id": node.id,
                        "position": _float_list(node.position),
                        "tangent": _float_list(node.tangent),
                        "normal": _float_list(node.normal),
                        "quaternion": _float_list(node.quaternion),
                        "stitch_type": node.stitch_type,
                    }
                    for node in layer_nodes
                ],
                "scaffold": [
                    {
                        "start": _float_list(seg.start),
                        "end": _float_list(seg.end),
                        "parent": seg.parent_index,
                        "child": seg.child_index,
                    }
                    for seg in result.scaffold_segments[index]
                ],
            }
            for index, layer_nodes in enumerate(result.nodes)
        ],
        "start_scaffold": {
            object_id: [
                {
                    "start": _float_list(seg.start),
                    "end": _float_list(seg.end),
                    "child": seg.child_index,
                    "layer_index": seg.layer_index,
                }
                for seg in spokes
            ]
            for object_id, spokes in result.start_segments.items()
        },
        "magic_rings": {
            object_id: {
                "stitch_count": int(ring.stitch_count),
                "center": _float_list(ring.center),
                "normal": _float_list(ring.normal),
                "radius": float(ring.radius),
            }
            for object_id, ring in result.magic_rings.items()
        },
        "total_nodes": int(sum(result.stitch_counts_per_layer)),
    }


def write_json(path: Path, payload: Dict[str, Any]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)
    return path
