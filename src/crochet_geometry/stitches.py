"""Stitch-type profiles and yarn gauge."""

from __future__ import annotations

import logging
from typing import Dict

from crochet_geometry.contracts import (
    MAX_YARN_LEVEL,
    MIN_YARN_LEVEL,
    StitchGauge,
    StitchProfile,
)

logger = logging.getLogger(__name__)

DEFAULT_STITCH_TYPE = "sc"
CHAIN_STITCH_TYPE = "ch"
MAGIC_RING_STITCH_TYPE = "mr"

STITCH_TYPES: Dict[str, StitchProfile] = {
    "sc": StitchProfile("sc", "single crochet", 0.8, 0.6, 0.5),
    "hdc": StitchProfile("hdc", "half double crochet", 1.0, 1.3, 0.5),
    "dc": StitchProfile("dc", "double crochet", 1.0, 1.6, 0.5),
    "tc": StitchProfile("tc", "treble crochet", 1.0, 2.0, 0.5),
    "inc": StitchProfile("inc", "increase", 1.4, 1.0, 0.5),
    "dec": StitchProfile("dec", "decrease", 0.7, 1.0, 0.5),
    "slst": StitchProfile("slst", "slip stitch", 0.7, 0.3, 0.5),
    "mr": StitchProfile("mr", "magic ring", 1.0, 0.7, 0.5),
    "ch": StitchProfile("ch", "chain", 0.5, 0.5, 0.5),
}


def get_stitch_profile(key: str) -> StitchProfile:
    profile = STITCH_TYPES.get(str(key).lower()) if key is not None else None
    if profile is None:
        logger.debug("Unknown stitch type %r, using %s", key, DEFAULT_STITCH_TYPE)
        return STITCH_TYPES[DEFAULT_STITCH_TYPE]
    return profile


def clamp_yarn_level(level: float) -> int:
    try:
        value = int(round(float(level)))
    except (TypeError, ValueError):
        value = 4
    return max(MIN_YARN_LEVEL, min(MAX_YARN_LEVEL, value))


def level_to_scale(level: float) -> float:
    """Yarn level 4 is the unit gauge; each level adds a quarter."""
    return clamp_yarn_level(level) / 4.0


def stitch_gauge(level: float) -> StitchGauge:
    scale = level_to_scale(level)
    return StitchGauge(level=clamp_yarn_level(level), width=scale, height=scale)
