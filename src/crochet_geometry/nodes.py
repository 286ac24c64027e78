"""Stitch nodes on rings and the stitch-count plan between rings."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np
from scipy.spatial.transform import Rotation

from crochet_geometry.contracts import (
    MagicRingPlan,
    Node,
    Ring,
    ScaffoldSegment,
    StitchFit,
    StitchGauge,
    StitchPlan,
    Thresholds,
)
from crochet_geometry.polylines import (
    close_polyline,
    nearest_point_on_polyline,
    open_polyline,
    polyline_length,
    sample_at_distances,
)
from crochet_geometry.spacing import compute_target_spacing, fit_stitch_types
from crochet_geometry.stitches import CHAIN_STITCH_TYPE, MAGIC_RING_STITCH_TYPE, get_stitch_profile
from crochet_geometry.transforms import unit_vector

logger = logging.getLogger(__name__)

OPEN_ROW_CHAINS = 2


@dataclass
class RingPlacement:
    """Where the nodes of one ring sit, before they become ``Node`` records."""

    points: np.ndarray
    tangents: np.ndarray
    stitch_types: List[str]
    fit: StitchFit
    spacing: float
    closed: bool
    runs: List[int] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.points)


def _empty_placement(fit: StitchFit, spacing: float, closed: bool) -> RingPlacement:
    return RingPlacement(
        points=np.zeros((0, 3)),
        tangents=np.zeros((0, 3)),
        stitch_types=[],
        fit=fit,
        spacing=spacing,
        closed=closed,
    )


# ---------------------------------------------------------------------------
# Ring paths
# ---------------------------------------------------------------------------

def join_seam_fragments(polylines: Sequence[np.ndarray], tolerance: float = 1e-6) -> List[np.ndarray]:
    """Join fragments where one ends exactly where another starts.

    A closed ring cut away from its seam comes back as two pieces that
    meet at the seam point; they are one continuous row.
    """
    pieces = [np.asarray(p, dtype=float) for p in polylines if len(p) >= 2]
    merged = True
    while merged and len(pieces) > 1:
        merged = False
        for i in range(len(pieces)):
            for j in range(len(pieces)):
                if i == j:
                    continue
                if float(np.linalg.norm(pieces[i][-1] - pieces[j][0])) <= tolerance:
                    joined = np.vstack([pieces[i], pieces[j][1:]])
                    pieces = [p for k, p in enumerate(pieces) if k not in (i, j)] + [joined]
                    merged = True
                    break
            if merged:
                break
    return pieces


def ring_paths(ring: Ring) -> List[np.ndarray]:
    if ring.is_partial:
        return join_seam_fragments(ring.polylines)
    return [np.asarray(ring.polylines[0], dtype=float)]


# ---------------------------------------------------------------------------
# Placement
# ---------------------------------------------------------------------------

def _offsets(spacings: Sequence[float], start: float) -> np.ndarray:
    """Centre positions so neighbour ``i, i+1`` sit ``(s_i + s_{i+1}) / 2`` apart."""
    s = np.asarray(spacings, dtype=float)
    if len(s) == 0:
        return np.zeros(0)
    steps = 0.5 * (s[:-1] + s[1:])
    return start + np.concatenate([[0.0], np.cumsum(steps)])


def place_ring_nodes(
    polyline: np.ndarray,
    closed: bool,
    gauge: StitchGauge,
    thresholds: Thresholds,
    stitch_type: str = "sc",
    desired: Optional[int] = None,
    stitch_types: Optional[Sequence[str]] = None,
    anchor: Optional[np.ndarray] = None,
) -> RingPlacement:
    """Sample node positions along one ring path.

    Closed rings start at the arc position nearest ``anchor`` and wrap;
    open rows are centred on the path.  With ``stitch_types`` the count is
    fixed and the sequence must fit, otherwise the count is the smaller of
    ``desired`` and what the length can hold.
    """
    pts = np.asarray(polyline, dtype=float)
    length = polyline_length(pts)
    target = compute_target_spacing(gauge, stitch_type, thresholds).center_spacing

    if stitch_types is None:
        capacity = int(math.floor(length / target + 1e-9)) if target > 0.0 else 0
        count = capacity if desired is None else min(max(0, int(desired)), capacity)
        types = [stitch_type] * count
        if not closed and count >= OPEN_ROW_CHAINS + 1:
            types[:OPEN_ROW_CHAINS] = [CHAIN_STITCH_TYPE] * OPEN_ROW_CHAINS
    else:
        types = [get_stitch_profile(t).key for t in stitch_types]
        count = len(types)

    fit = fit_stitch_types(types, length, gauge, thresholds)
    if count == 0 or not fit.fits:
        logger.debug("No nodes on ring of length %.4f (fits=%s)", length, fit.fits)
        return _empty_placement(fit, target, closed)

    uniform = len(set(types)) == 1
    if closed and uniform:
        # One stitch type on a loop keeps the target spacing; the slack sits at the seam.
        spacings = [target] * count
    else:
        spacings = fit.spacings

    if closed:
        start = 0.0
        if anchor is not None:
            start = nearest_point_on_polyline(pts, anchor)[1]
        positions = _offsets(spacings, start)
        points, tangents = sample_at_distances(pts, positions, wrap=True)
    else:
        positions = _offsets(spacings, 0.5 * spacings[0])
        span = float(positions[-1] + 0.5 * spacings[-1])
        positions = positions + 0.5 * max(0.0, length - span)
        points, tangents = sample_at_distances(pts, positions)

    return RingPlacement(
        points=points,
        tangents=tangents,
        stitch_types=types,
        fit=fit,
        spacing=float(np.mean(spacings)),
        closed=closed,
        runs=[count],
    )


def place_chain_nodes(polyline: np.ndarray, chain_count: int) -> RingPlacement:
    """Evenly spaced chain stitches along an oval-start chain."""
    pts = np.asarray(polyline, dtype=float)
    length = polyline_length(pts)
    count = max(1, int(chain_count))
    positions = (np.arange(count) + 0.5) * (length / count)
    points, tangents = sample_at_distances(pts, positions)
    spacing = length / count
    fit = StitchFit(
        fits=True,
        scale_factor=1.0,
        required_length=length,
        available_length=length,
        spacings=[spacing] * count,
    )
    return RingPlacement(
        points=points,
        tangents=tangents,
        stitch_types=[CHAIN_STITCH_TYPE] * count,
        fit=fit,
        spacing=spacing,
        closed=False,
        runs=[count],
    )


# ---------------------------------------------------------------------------
# Magic ring start
# ---------------------------------------------------------------------------

def plan_magic_ring(
    polyline: np.ndarray,
    start_pole: np.ndarray,
    gauge: StitchGauge,
    thresholds: Thresholds,
    axis: Optional[np.ndarray] = None,
) -> MagicRingPlan:
    """Stitch count ``S0`` and anchor plane for the first round.

    ``S0`` is the first ring's circumference over the tightened gauge
    width, never fewer than ``magic_ring_min_stitches``.  The plane normal
    comes from three well spaced ring points, turned to agree with ``axis``,
    and the centre is the start pole projected onto that plane.
    """
    pts = open_polyline(polyline)
    circumference = polyline_length(close_polyline(pts))
    width = max(1e-6, gauge.width * thresholds.magic_ring_tighten)
    count = max(int(thresholds.magic_ring_min_stitches), int(round(circumference / width)))

    preferred = unit_vector(axis) if axis is not None else None
    if preferred is None:
        preferred = np.array([0.0, 1.0, 0.0])
    if len(pts) < 3:
        pole = np.asarray(start_pole, dtype=float)
        return MagicRingPlan(count, pole.copy(), preferred, width / (2.0 * math.pi), circumference)

    centroid = pts.mean(axis=0)
    p0, p1, p2 = pts[0], pts[len(pts) // 3], pts[(2 * len(pts)) // 3]
    normal = unit_vector(np.cross(p1 - p0, p2 - p0))
    if normal is None:
        normal = preferred
    if float(np.dot(normal, preferred)) < 0.0:
        normal = -normal
    pole = np.asarray(start_pole, dtype=float)
    center = pole - normal * float(np.dot(normal, pole - centroid))
    radius = float(np.linalg.norm(pts - centroid, axis=1).mean())
    return MagicRingPlan(
        stitch_count=count,
        center=center,
        normal=normal,
        radius=radius,
        circumference=circumference,
    )


def place_magic_ring_nodes(
    polyline: np.ndarray,
    plan: MagicRingPlan,
    gauge: StitchGauge,
    thresholds: Thresholds,
    anchor: Optional[np.ndarray] = None,
) -> RingPlacement:
    """``plan.stitch_count`` magic-ring stitches evenly around the first ring.

    The ring is drawn tight, so the stitches may sit closer than the usual
    edge gap; it only fails when they would be squeezed below
    ``magic_ring_min_scale`` of the tightened width.
    """
    pts = close_polyline(polyline)
    count = int(plan.stitch_count)
    required = count * gauge.width * thresholds.magic_ring_tighten
    available = polyline_length(pts)
    scale = available / required if required > 0.0 else 0.0
    spacing = available / count if count else 0.0
    fit = StitchFit(
        fits=scale >= thresholds.magic_ring_min_scale,
        scale_factor=scale,
        required_length=required,
        available_length=available,
        spacings=[spacing] * count,
    )
    if not fit.fits:
        logger.debug("Magic ring of %d stitches does not fit %.4f of ring", count, available)
        return _empty_placement(fit, spacing, True)

    start = 0.0
    if anchor is not None:
        start = nearest_point_on_polyline(pts, anchor)[1]
    points, tangents = sample_at_distances(pts, start + np.arange(count) * spacing, wrap=True)
    return RingPlacement(
        points=points,
        tangents=tangents,
        stitch_types=[MAGIC_RING_STITCH_TYPE] * count,
        fit=fit,
        spacing=spacing,
        closed=True,
        runs=[count],
    )


def start_spokes(center: np.ndarray, ends: np.ndarray, layer_index: int) -> List[ScaffoldSegment]:
    """Connectors from the start point out to each first-round node."""
    origin = np.asarray(center, dtype=float)
    return [
        ScaffoldSegment(
            start=origin.copy(),
            end=np.asarray(end, dtype=float).copy(),
            parent_index=-1,
            child_index=i,
            layer_index=layer_index,
        )
        for i, end in enumerate(np.asarray(ends, dtype=float).reshape(-1, 3))
    ]


def merge_placements(parts: Sequence[RingPlacement], closed: bool) -> RingPlacement:
    """Concatenate the placements of several fragments of one ring."""
    kept = [p for p in parts if p.count]
    if not kept:
        base = parts[0] if parts else None
        fit = base.fit if base is not None else StitchFit(False, 0.0, 0.0, 0.0)
        return _empty_placement(fit, base.spacing if base is not None else 0.0, closed)
    required = sum(p.fit.required_length for p in kept)
    available = sum(p.fit.available_length for p in kept)
    return RingPlacement(
        points=np.vstack([p.points for p in kept]),
        tangents=np.vstack([p.tangents for p in kept]),
        stitch_types=[t for p in kept for t in p.stitch_types],
        fit=StitchFit(
            fits=all(p.fit.fits for p in kept),
            scale_factor=available / required if required > 0.0 else 1.0,
            required_length=required,
            available_length=available,
            spacings=[s for p in kept for s in p.fit.spacings],
        ),
        spacing=float(np.mean([p.spacing for p in kept])),
        closed=closed,
        runs=[p.count for p in kept],
    )


def reverse_placement(placement: RingPlacement) -> RingPlacement:
    """Work the row the other way: order and tangents flipped."""
    return RingPlacement(
        points=placement.points[::-1].copy(),
        tangents=-placement.tangents[::-1],
        stitch_types=list(reversed(placement.stitch_types)),
        fit=placement.fit,
        spacing=placement.spacing,
        closed=placement.closed,
        runs=list(reversed(placement.runs)),
    )


# ---------------------------------------------------------------------------
# Orientation
# ---------------------------------------------------------------------------

def outward_normal(point: np.ndarray, tangent: np.ndarray, center: np.ndarray) -> np.ndarray:
    """Direction from ``center`` to ``point`` with the tangent removed."""
    t = unit_vector(tangent)
    if t is None:
        t = np.array([1.0, 0.0, 0.0])
    radial = np.asarray(point, dtype=float) - np.asarray(center, dtype=float)
    radial = radial - t * float(np.dot(radial, t))
    n = unit_vector(radial)
    if n is None:
        helper = np.array([0.0, 1.0, 0.0]) if abs(t[1]) < 0.9 else np.array([1.0, 0.0, 0.0])
        n = unit_vector(np.cross(t, helper))
    return n


def node_frame(tangent: np.ndarray, normal: np.ndarray) -> np.ndarray:
    """Quaternion (x, y, z, w) of the frame X=tangent, Z=normal, Y=Z x X."""
    x = unit_vector(tangent)
    if x is None:
        x = np.array([1.0, 0.0, 0.0])
    z = np.asarray(normal, dtype=float)
    z = unit_vector(z - x * float(np.dot(z, x)))
    if z is None:
        helper = np.array([0.0, 0.0, 1.0]) if abs(x[2]) < 0.9 else np.array([0.0, 1.0, 0.0])
        z = unit_vector(helper - x * float(np.dot(helper, x)))
    y = np.cross(z, x)
    return Rotation.from_matrix(np.column_stack([x, y, z])).as_quat()


def build_nodes(
    placement: RingPlacement,
    center: np.ndarray,
    layer_index: int,
    object_id: str,
) -> List[Node]:
    nodes: List[Node] = []
    for i, (point, tangent, key) in enumerate(
        zip(placement.points, placement.tangents, placement.stitch_types)
    ):
        t = unit_vector(tangent)
        if t is None:
            t = np.array([1.0, 0.0, 0.0])
        n = outward_normal(point, t, center)
        nodes.append(
            Node(
                id=f"{object_id}:{layer_index}:{i}",
                position=np.asarray(point, dtype=float).copy(),
                tangent=t,
                normal=n,
                quaternion=node_frame(t, n),
                stitch_type=key,
                stitch_profile=get_stitch_profile(key),
                layer_index=layer_index,
                object_id=object_id,
            )
        )
    return nodes


# ---------------------------------------------------------------------------
# Stitch-count plan
# ---------------------------------------------------------------------------

class _Lcg:
    """Deterministic generator matching the classic Numerical Recipes LCG."""

    def __init__(self, seed: int) -> None:
        self.state = (int(math.floor(seed)) & 0xFFFFFFFF) or 1

    def random(self) -> float:
        self.state = (1664525 * self.state + 1013904223) & 0xFFFFFFFF
        return self.state / 0xFFFFFFFF


def _cyclic_gap(a: int, b: int, n: int) -> int:
    d = abs(a - b)
    return min(d, n - d)


def distribute_actions(
    total: int,
    count: int,
    mode: str = "even",
    seed: int = 1,
    jitter_ratio: float = 0.4,
) -> List[int]:
    """Indices in ``range(total)`` that receive one of ``count`` actions."""
    if count <= 0 or total <= 0:
        return []
    if mode != "jagged" or count == 1:
        return sorted({(k * total) // count for k in range(count)})

    rng = _Lcg(seed)
    base_gap = total / count
    jitter = max(0, int(math.floor(base_gap * jitter_ratio)))
    min_gap = max(1, int(math.floor(base_gap * 0.5)))
    chosen: List[int] = []

    def far_enough(idx: int) -> bool:
        return all(_cyclic_gap(idx, t, total) >= min_gap for t in chosen)

    for k in range(count):
        base = int(math.floor(k * base_gap))
        offset = int(math.floor(rng.random() * (2 * jitter + 1) - jitter)) if jitter > 0 else 0
        j = (base + offset) % total
        if not far_enough(j):
            for s in range(1, max(1, int(math.floor(base_gap))) + 1):
                if far_enough((j + s) % total):
                    j = (j + s) % total
                    break
                if far_enough((j - s) % total):
                    j = (j - s) % total
                    break
        if far_enough(j):
            chosen.append(j)
        else:
            even = (k * total) // count
            if far_enough(even):
                chosen.append(even)

    while len(chosen) < count:
        free = [j for j in range(total) if j not in chosen]
        if not free:
            break
        chosen.append(
            max(free, key=lambda j: min((_cyclic_gap(j, t, total) for t in chosen), default=total))
        )
    return sorted(chosen)


def count_next_stitches(
    current_count: int,
    current_circumference: float,
    next_circumference: float,
    yarn_width: float,
    increase_factor: float = 1.0,
    decrease_factor: float = 1.0,
    mode: str = "even",
    seed: int = 1,
    jitter_ratio: float = 0.4,
    single_round: bool = False,
) -> StitchPlan:
    """Next ring's stitch count and what each current stitch does to reach it.

    With ``single_round`` the count is held to what one round can reach:
    at most one increase or one decrease per current stitch.
    """
    cc = max(1, int(round(current_count)))
    c0 = max(1e-6, float(current_circumference or 0.0))
    c1 = max(1e-6, float(next_circumference or 0.0))
    w = max(1e-6, float(yarn_width or 0.0))

    factor = increase_factor if c1 >= c0 else decrease_factor
    next_count = max(1, int(round(c1 / w * factor)))
    if single_round:
        next_count = min(2 * cc, max(int(math.ceil(cc / 2.0)), next_count))
    delta = next_count - cc

    actions = ["sc"] * cc
    tag = "inc" if delta > 0 else "dec"
    for j in distribute_actions(cc, abs(delta), mode, seed, jitter_ratio):
        actions[j] = tag
    return StitchPlan(
        current_count=cc,
        next_count=next_count,
        actions=actions,
        increases=actions.count("inc"),
        decreases=actions.count("dec"),
    )
