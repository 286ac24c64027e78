"""Contracts for the crochet layerline / stitch-node pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

Vec3 = Tuple[float, float, float]

SOLID_TYPES: Tuple[str, ...] = (
    "sphere",
    "cone",
    "cylinder",
    "capsule",
    "pyramid",
    "torus",
    "triangle",
)
PRIORITY_OVERRIDES: Tuple[str, ...] = ("auto", "strong", "weak")
DISTRIBUTION_MODES: Tuple[str, ...] = ("even", "jagged")

MIN_YARN_LEVEL = 1
MAX_YARN_LEVEL = 8


class UnknownShapeError(ValueError):
    """No ring generator is registered for a solid type."""
    pass


def _vec3(value: Any, default: Vec3) -> Vec3:
    if value is None:
        return default
    if isinstance(value, Mapping):
        return (
            float(value.get("x", default[0])),
            float(value.get("y", default[1])),
            float(value.get("z", default[2])),
        )
    seq = list(value)
    if len(seq) != 3:
        raise ValueError(f"Expected a 3-vector, got {value!r}")
    return (float(seq[0]), float(seq[1]), float(seq[2]))


@dataclass(frozen=True)
class Solid:
    """A posed primitive solid. Read-only to the engine."""

    id: str
    type: str
    position: Vec3 = (0.0, 0.0, 0.0)
    rotation: Vec3 = (0.0, 0.0, 0.0)  # degrees, Euler XYZ
    scale: Vec3 = (1.0, 1.0, 1.0)
    visible: bool = True
    priority_override: str = "auto"

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Solid":
        override = payload.get("priority_override", payload.get("priorityOverride", "auto"))
        if override not in PRIORITY_OVERRIDES:
            override = "auto"
        return cls(
            id=str(payload["id"]),
            type=str(payload["type"]),
            position=_vec3(payload.get("position"), (0.0, 0.0, 0.0)),
            rotation=_vec3(payload.get("rotation"), (0.0, 0.0, 0.0)),
            scale=_vec3(payload.get("scale"), (1.0, 1.0, 1.0)),
            visible=bool(payload.get("visible", True)),
            priority_override=str(override),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "position": list(self.position),
            "rotation": list(self.rotation),
            "scale": list(self.scale),
            "visible": self.visible,
            "priority_override": self.priority_override,
        }


@dataclass(frozen=True)
class Thresholds:
    """Tunable numeric constants used across the pipeline."""

    # First ring
    first_ring_edge_stitches: int = 5
    first_ring_packing: float = 0.9
    first_gap_iterations: int = 40

    # Magic ring start
    magic_ring_tighten: float = 0.9
    magic_ring_min_stitches: int = 3
    magic_ring_min_scale: float = 0.5

    # Sphere marching
    sphere_min_quadrature_steps: int = 512
    sphere_max_quadrature_steps: int = 8192
    sphere_solver_iterations: int = 20
    ring_segment_length: float = 0.08
    ring_min_segments: int = 16
    ring_max_segments: int = 512

    # Priority
    volume_samples: int = 8000
    tie_epsilon: float = 1e-6

    # Clipping
    clip_margin: float = 0.0
    boundary_search_iterations: int = 12
    coverage_reclassify: float = 0.95
    min_fragment_ratio: float = 0.2
    min_ring_length_ratio: float = 1.2
    min_ring_points: int = 8
    polyline_join_tolerance: float = 1e-2

    # Poles / oval start
    tail_min_gap_ratio: float = 0.5
    oval_axes_ratio: float = 1.1
    oval_chain_threshold: float = 1.6

    # Node spacing
    edge_gap_ratio: float = 0.15
    tighten_factor: float = 1.0
    jagged_jitter: float = 0.4


@dataclass(frozen=True)
class PatternSettings:
    """Settings snapshot for one generate pass."""

    yarn_size_level: int = 4
    stitch_type: str = "sc"
    slice_dir: Optional[Vec3] = None

    # Transitions between rings
    increase_factor: float = 1.0
    decrease_factor: float = 1.0
    distribution_mode: str = "even"
    jagged_seed: int = 1

    # Safety caps
    max_rings: int = 200
    preview_ring_cap: int = 400

    # Multi-object
    clip_against_objects: bool = True
    sampling_seed: int = 0

    thresholds: Thresholds = field(default_factory=Thresholds)

    def clamped(self) -> "PatternSettings":
        """Return a copy with out-of-range values pulled into bounds."""
        level = int(round(float(self.yarn_size_level)))
        level = max(MIN_YARN_LEVEL, min(MAX_YARN_LEVEL, level))
        mode = self.distribution_mode if self.distribution_mode in DISTRIBUTION_MODES else "even"
        slice_dir = self.slice_dir
        if slice_dir is not None:
            vec = np.asarray(slice_dir, dtype=float)
            norm = float(np.linalg.norm(vec))
            slice_dir = None if norm < 1e-9 else tuple(float(v) for v in vec / norm)
        return replace(
            self,
            yarn_size_level=level,
            slice_dir=slice_dir,
            increase_factor=max(0.0, float(self.increase_factor)),
            decrease_factor=max(0.0, float(self.decrease_factor)),
            distribution_mode=mode,
            max_rings=max(1, int(self.max_rings)),
            preview_ring_cap=max(1, int(self.preview_ring_cap)),
        )


@dataclass(frozen=True)
class StitchProfile:
    key: str
    name: str
    width_multiplier: float
    height_multiplier: float
    depth_multiplier: float = 0.5


@dataclass(frozen=True)
class StitchGauge:
    """World-space stitch dimensions for one yarn level."""

    level: int
    width: float
    height: float


@dataclass
class Ring:
    """One crochet round: a closed loop or, after clipping, fragments."""

    sort_key: float
    polylines: List[np.ndarray]
    object_id: str
    object_type: str
    full_circumference: float = 0.0
    full_loop: Optional[np.ndarray] = None
    meta: Dict[str, Any] = field(default_factory=dict)
    local_id: Optional[int] = None

    @property
    def is_partial(self) -> bool:
        return bool(self.meta.get("partial", False))

    @property
    def point_count(self) -> int:
        return int(sum(len(poly) for poly in self.polylines))

    def with_polylines(self, polylines: Sequence[np.ndarray], **meta: Any) -> "Ring":
        merged = dict(self.meta)
        merged.update(meta)
        return replace(self, polylines=[np.asarray(p, dtype=float) for p in polylines], meta=merged)


@dataclass
class Pole:
    position: np.ndarray
    object_id: str
    role: Optional[str] = None
    intersected: bool = False


@dataclass
class Markers:
    poles: List[Pole] = field(default_factory=list)
    ring0: Optional[np.ndarray] = None
    cut_loops: List[np.ndarray] = field(default_factory=list)


@dataclass
class SolidLayers:
    """Generator output for one solid."""

    object_id: str
    object_type: str
    rings: List[Ring]
    markers: Markers
    slice_dir: np.ndarray
    center: np.ndarray


@dataclass
class PriorityPlan:
    order: List[str]
    ranks: Dict[str, int]
    scores: Dict[str, int]
    cutters: Dict[str, List[str]]
    comparisons: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class LayerStats:
    layer_count: int = 0
    total_line_count: int = 0
    per_object: Dict[str, int] = field(default_factory=dict)


@dataclass
class LayerResult:
    layers: List[Ring]
    markers: Dict[str, Markers]
    stats: LayerStats
    plan: PriorityPlan
    slice_dirs: Dict[str, np.ndarray] = field(default_factory=dict)
    centers: Dict[str, np.ndarray] = field(default_factory=dict)
    settings: Optional[PatternSettings] = None


@dataclass(frozen=True)
class Node:
    id: str
    position: np.ndarray
    tangent: np.ndarray
    normal: np.ndarray
    quaternion: np.ndarray  # x, y, z, w
    stitch_type: str
    stitch_profile: StitchProfile
    layer_index: int
    object_id: str


@dataclass
class ScaffoldSegment:
    start: np.ndarray
    end: np.ndarray
    parent_index: int
    child_index: int
    layer_index: int


@dataclass
class StitchFit:
    """Outcome of fitting a stitch sequence into an arc length."""

    fits: bool
    scale_factor: float
    required_length: float
    available_length: float
    spacings: List[float] = field(default_factory=list)


@dataclass
class MagicRingPlan:
    """Stitch count and plane of the magic ring a round solid starts from."""

    stitch_count: int
    center: np.ndarray
    normal: np.ndarray
    radius: float
    circumference: float


@dataclass
class StitchPlan:
    """How many stitches the next ring gets and what each parent does."""

    current_count: int
    next_count: int
    actions: List[str]
    increases: int = 0
    decreases: int = 0


@dataclass
class ScaffoldStep:
    segments: List[ScaffoldSegment]
    parent_to_children: List[List[int]]
    status: str = "ok"


@dataclass
class NodeResult:
    nodes: List[List[Node]]
    scaffold_segments: List[List[ScaffoldSegment]]
    stitch_counts_per_layer: List[int]
    spacing_per_layer: List[float]
    fits: List[StitchFit] = field(default_factory=list)
    plans: List[Optional[StitchPlan]] = field(default_factory=list)
    statuses: List[str] = field(default_factory=list)
    start_segments: Dict[str, List[ScaffoldSegment]] = field(default_factory=dict)
    magic_rings: Dict[str, MagicRingPlan] = field(default_factory=dict)


@dataclass
class PatternResult:
    layers: LayerResult
    nodes: NodeResult
