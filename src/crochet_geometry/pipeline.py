"""Generate pass: solids -> rings -> stitch nodes and scaffold.

``generate_layers`` runs priority, ring generation, clipping, the ring
filters, pole roles and the oval start for every visible solid.
``generate_nodes`` walks each solid's rings in crochet order and places
nodes and scaffold connectors.  Both take an optional ``DiagnosticsLog``
that collects every skipped solid, dropped ring and fallback.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from crochet_geometry.clipping import clip_solid_layers
from crochet_geometry.contracts import (
    LayerResult,
    LayerStats,
    MagicRingPlan,
    Markers,
    Node,
    NodeResult,
    PatternResult,
    PatternSettings,
    Ring,
    ScaffoldSegment,
    Solid,
    SolidLayers,
    StitchFit,
    StitchPlan,
    UnknownShapeError,
)
from crochet_geometry.diagnostics import DiagnosticsLog, record
from crochet_geometry.nodes import (
    build_nodes,
    count_next_stitches,
    merge_placements,
    place_chain_nodes,
    place_magic_ring_nodes,
    place_ring_nodes,
    plan_magic_ring,
    reverse_placement,
    ring_paths,
    start_spokes,
)
from crochet_geometry.oval import detect_oval_start, oval_gate, prepend_oval_start
from crochet_geometry.polylines import is_closed, polyline_length
from crochet_geometry.poles import annotate_rings, assign_pole_roles, enforce_tail_spacing, walk_order
from crochet_geometry.priority import compute_intersection_plan
from crochet_geometry.scaffold import build_scaffold_step
from crochet_geometry.shapes import generate_solid_layers
from crochet_geometry.solids import solid_center, world_bounds
from crochet_geometry.spacing import compute_target_spacing
from crochet_geometry.stitches import stitch_gauge
from crochet_geometry.transforms import solid_matrix

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Layers
# ---------------------------------------------------------------------------

def _apply_oval_start(
    solid: Solid,
    rings: List[Ring],
    markers: Markers,
    slice_dir: np.ndarray,
    settings: PatternSettings,
    diagnostics: Optional[DiagnosticsLog],
) -> List[Ring]:
    thresholds = settings.thresholds
    gate = oval_gate(solid_matrix(solid), slice_dir, thresholds.oval_axes_ratio)
    if not gate.is_oval or not rings:
        return rings
    start = next((p for p in markers.poles if p.role == "start"), None)
    if start is None or start.intersected:
        record(
            diagnostics,
            "oval",
            "oval_start_skipped",
            "Start pole missing or inside a cutter",
            object_id=solid.id,
        )
        return rings
    end = next((p for p in markers.poles if p.role == "end"), None)
    pole_axis = None if end is None else end.position - start.position
    oval = detect_oval_start(
        walk_order(rings),
        start.position,
        slice_dir,
        stitch_gauge(settings.yarn_size_level).width,
        thresholds,
        pole_axis=pole_axis,
    )
    if oval is None:
        return rings
    record(
        diagnostics,
        "oval",
        "oval_start_added",
        "Elongated start section; starting from a chain",
        object_id=solid.id,
        axes_ratio=oval.ratio,
        chain_count=oval.chain_count,
    )
    return prepend_oval_start(rings, oval, slice_dir, solid.id, solid.type)


def _layers_for_solid(
    solid: Solid,
    cutters: Sequence[Solid],
    settings: PatternSettings,
    diagnostics: Optional[DiagnosticsLog],
) -> Optional[Tuple[SolidLayers, List[Ring], Markers]]:
    """Generate, clip and finish one solid's rings; None when degenerate."""
    generated = generate_solid_layers(
        solid,
        settings,
        cutter_centers=[solid_center(c) for c in cutters],
        diagnostics=diagnostics,
    )
    if generated is None:
        logger.warning("Solid %s has degenerate geometry; skipped", solid.id)
        return None

    gauge = stitch_gauge(settings.yarn_size_level)
    rings = annotate_rings(generated.rings, generated.slice_dir)
    clipped = clip_solid_layers(replace(generated, rings=rings), cutters, settings, diagnostics)
    rings = enforce_tail_spacing(
        clipped.rings, gauge.height, settings.thresholds.tail_min_gap_ratio, diagnostics
    )
    poles = assign_pole_roles(generated.markers.poles, rings, [world_bounds(c) for c in cutters])
    markers = Markers(poles=poles, cut_loops=list(clipped.cut_loops))
    rings = _apply_oval_start(solid, rings, markers, generated.slice_dir, settings, diagnostics)
    ordered = walk_order(rings)
    markers.ring0 = ordered[0].polylines[0].copy() if ordered else None
    return generated, rings, markers


def generate_layers(
    solids: Sequence[Solid],
    settings: Optional[PatternSettings] = None,
    diagnostics: Optional[DiagnosticsLog] = None,
) -> LayerResult:
    """Rings for every visible solid, sorted ascending by sort key.

    Raises UnknownShapeError for a solid type without a generator; any
    other problem with a single solid skips it and is recorded.
    """
    settings = (settings or PatternSettings()).clamped()
    snapshot = list(solids)
    by_id: Dict[str, Solid] = {s.id: s for s in snapshot}
    for solid in snapshot:
        if not solid.visible:
            logger.debug("Skipping hidden solid %s", solid.id)

    plan = compute_intersection_plan(snapshot, settings, diagnostics)

    all_rings: List[Ring] = []
    markers: Dict[str, Markers] = {}
    slice_dirs: Dict[str, np.ndarray] = {}
    centers: Dict[str, np.ndarray] = {}

    for solid_id in plan.order:
        solid = by_id[solid_id]
        cutters = [by_id[c] for c in plan.cutters.get(solid_id, [])]
        if not settings.clip_against_objects:
            cutters = []
        try:
            built = _layers_for_solid(solid, cutters, settings, diagnostics)
        except UnknownShapeError:
            raise
        except Exception as exc:
            logger.warning("Solid %s failed during layer generation: %s", solid_id, exc)
            record(
                diagnostics,
                "pipeline",
                "solid_failed",
                str(exc),
                object_id=solid_id,
                error=type(exc).__name__,
            )
            continue
        if built is None:
            continue
        generated, rings, solid_markers = built

        if not rings:
            record(
                diagnostics,
                "pipeline",
                "solid_empty",
                "No rings survived for this solid",
                object_id=solid_id,
            )
            logger.warning("Solid %s has no rings after clipping", solid_id)

        markers[solid_id] = solid_markers
        slice_dirs[solid_id] = np.asarray(generated.slice_dir, dtype=float)
        centers[solid_id] = np.asarray(generated.center, dtype=float)
        all_rings.extend(rings)

    all_rings.sort(key=lambda r: r.sort_key)
    per_object: Dict[str, int] = {}
    for ring in all_rings:
        per_object[ring.object_id] = per_object.get(ring.object_id, 0) + 1
    stats = LayerStats(
        layer_count=len(all_rings),
        total_line_count=sum(len(r.polylines) for r in all_rings),
        per_object=per_object,
    )
    logger.info(
        "Generated %d layers (%d polylines) for %d solids",
        stats.layer_count,
        stats.total_line_count,
        len(markers),
    )
    return LayerResult(
        layers=all_rings,
        markers=markers,
        stats=stats,
        plan=plan,
        slice_dirs=slice_dirs,
        centers=centers,
        settings=settings,
    )


def preview_layers(layers: Sequence[Ring], cap: int) -> List[Ring]:
    """At most ``cap`` layers, sampled evenly within each object."""
    cap = max(1, int(cap))
    if len(layers) <= cap:
        return list(layers)
    groups: Dict[str, List[Ring]] = {}
    for ring in layers:
        groups.setdefault(ring.object_id, []).append(ring)
    picked: List[Ring] = []
    for group in groups.values():
        quota = max(1, int(round(cap * len(group) / len(layers))))
        quota = min(quota, len(group))
        indices = np.unique(np.linspace(0, len(group) - 1, quota).round().astype(int))
        picked.extend(group[i] for i in indices)
    picked.sort(key=lambda r: r.sort_key)
    return picked[:cap]


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------

def _no_fit() -> StitchFit:
    return StitchFit(fits=True, scale_factor=1.0, required_length=0.0, available_length=0.0)


def _start_pole(markers: Optional[Markers], polyline: np.ndarray) -> np.ndarray:
    """Start pole of a solid, or the first ring's centroid without one."""
    if markers is not None:
        for pole in markers.poles:
            if pole.role == "start":
                return np.asarray(pole.position, dtype=float)
    return np.asarray(polyline, dtype=float).mean(axis=0)


def generate_nodes(
    layer_result: LayerResult,
    settings: Optional[PatternSettings] = None,
    diagnostics: Optional[DiagnosticsLog] = None,
) -> NodeResult:
    """Place nodes on the literal layers and connect consecutive rings."""
    settings = (settings or layer_result.settings or PatternSettings()).clamped()
    thresholds = settings.thresholds
    gauge = stitch_gauge(settings.yarn_size_level)
    target = compute_target_spacing(gauge, settings.stitch_type, thresholds).center_spacing

    layers = layer_result.layers
    count = len(layers)
    nodes: List[List[Node]] = [[] for _ in range(count)]
    segments: List[List[ScaffoldSegment]] = [[] for _ in range(count)]
    stitch_counts = [0] * count
    spacings = [0.0] * count
    fits: List[StitchFit] = [_no_fit() for _ in range(count)]
    plans: List[Optional[StitchPlan]] = [None] * count
    statuses = ["connector" if r.meta.get("connector") else "ok" for r in layers]
    index_of = {id(ring): index for index, ring in enumerate(layers)}
    start_segments: Dict[str, List[ScaffoldSegment]] = {}
    magic_rings: Dict[str, MagicRingPlan] = {}

    for object_id in layer_result.plan.order:
        rings = walk_order([r for r in layers if r.object_id == object_id])
        if not rings:
            continue
        center = layer_result.centers.get(object_id, np.zeros(3))
        axis = layer_result.slice_dirs.get(object_id)

        prev_nodes: List[Node] = []
        prev_index: Optional[int] = None
        prev_circumference = 0.0
        flip = False
        for ring in rings:
            index = index_of[id(ring)]
            plan: Optional[StitchPlan] = None
            start_point: Optional[np.ndarray] = None
            if ring.meta.get("oval_start"):
                placement = place_chain_nodes(ring.polylines[0], int(ring.meta.get("chain_count", 1)))
                circumference = polyline_length(ring.polylines[0])
                start_point = np.asarray(ring.polylines[0], dtype=float)[len(ring.polylines[0]) // 2]
            else:
                paths = ring_paths(ring)
                circumference = float(sum(polyline_length(p) for p in paths))
                desired = None
                if prev_nodes:
                    plan = count_next_stitches(
                        len(prev_nodes),
                        prev_circumference,
                        circumference,
                        target,
                        settings.increase_factor,
                        settings.decrease_factor,
                        settings.distribution_mode,
                        settings.jagged_seed + index,
                        thresholds.jagged_jitter,
                        single_round=True,
                    )
                    desired = plan.next_count
                closed = not ring.is_partial and len(paths) == 1 and is_closed(paths[0])
                if closed and prev_index is None and object_id not in start_segments:
                    magic = plan_magic_ring(
                        paths[0],
                        _start_pole(layer_result.markers.get(object_id), paths[0]),
                        gauge,
                        thresholds,
                        axis,
                    )
                    magic_rings[object_id] = magic
                    start_point = magic.center
                    placement = place_magic_ring_nodes(paths[0], magic, gauge, thresholds)
                    flip = False
                elif closed:
                    placement = place_ring_nodes(
                        paths[0],
                        True,
                        gauge,
                        thresholds,
                        settings.stitch_type,
                        desired=desired,
                        anchor=prev_nodes[0].position if prev_nodes else None,
                    )
                    flip = False
                else:
                    parts = [
                        place_ring_nodes(p, False, gauge, thresholds, settings.stitch_type)
                        for p in paths
                    ]
                    placement = merge_placements(parts, closed=False)
                    if flip:
                        placement = reverse_placement(placement)
                    flip = not flip

            plans[index] = plan
            fits[index] = placement.fit
            spacings[index] = placement.spacing
            if placement.count == 0:
                statuses[index] = "no_fit"
                record(
                    diagnostics,
                    "nodes",
                    "ring_without_nodes",
                    "Stitches do not fit on this ring",
                    object_id=object_id,
                    layer_index=index,
                    scale_factor=placement.fit.scale_factor,
                )
                continue

            layer_nodes = build_nodes(placement, center, index, object_id)
            nodes[index] = layer_nodes
            stitch_counts[index] = len(layer_nodes)
            if start_point is not None and prev_index is None:
                start_segments[object_id] = start_spokes(start_point, placement.points, index)

            if prev_nodes and prev_index is not None:
                step = build_scaffold_step(
                    np.array([n.position for n in prev_nodes]),
                    np.array([n.position for n in layer_nodes]),
                    ring.polylines,
                    center,
                    axis,
                    settings.distribution_mode,
                    layer_index=prev_index,
                )
                segments[prev_index] = step.segments
                if step.status != "ok":
                    statuses[index] = step.status
                    record(
                        diagnostics,
                        "scaffold",
                        step.status,
                        "Stitch count change too large for one round",
                        object_id=object_id,
                        layer_index=index,
                        parents=len(prev_nodes),
                        children=len(layer_nodes),
                    )

            prev_nodes = layer_nodes
            prev_index = index
            prev_circumference = circumference

    logger.info(
        "Placed %d nodes on %d layers",
        sum(stitch_counts),
        sum(1 for c in stitch_counts if c),
    )
    return NodeResult(
        nodes=nodes,
        scaffold_segments=segments,
        stitch_counts_per_layer=stitch_counts,
        spacing_per_layer=spacings,
        fits=fits,
        plans=plans,
        statuses=statuses,
        start_segments=start_segments,
        magic_rings=magic_rings,
    )


def generate_pattern(
    solids: Sequence[Solid],
    settings: Optional[PatternSettings] = None,
    diagnostics: Optional[DiagnosticsLog] = None,
) -> PatternResult:
    layers = generate_layers(solids, settings, diagnostics)
    return PatternResult(layers=layers, nodes=generate_nodes(layers, settings, diagnostics))
