#!/usr/bin/env python3
"""Generate crochet rings, stitch nodes and scaffold for a scene of solids."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from dataclasses import replace
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from crochet_geometry import DiagnosticsLog, UnknownShapeError, generate_layers, generate_nodes
from crochet_geometry.export import layers_to_document, load_scene, nodes_to_document, write_json


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Slice posed solids into crochet rounds and plan stitch nodes"
    )
    parser.add_argument(
        "--scene", required=True, help="Scene JSON with 'solids' and optional 'settings'"
    )
    parser.add_argument("--out-dir", default="pattern_out", help="Output directory")
    parser.add_argument(
        "--yarn-level", type=int, default=None, help="Yarn size level 1-8 (overrides scene)"
    )
    parser.add_argument(
        "--stitch-type", default=None, help="Stitch key, e.g. sc, hdc, dc (overrides scene)"
    )
    parser.add_argument(
        "--slice-dir",
        type=float,
        nargs=3,
        metavar=("X", "Y", "Z"),
        default=None,
        help="World slicing direction for every solid",
    )
    parser.add_argument(
        "--no-clip", action="store_true", help="Do not clip solids against each other"
    )
    parser.add_argument(
        "--seed", type=int, default=None, help="Seed for overlap volume sampling"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logs"
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    started = time.perf_counter()
    solids, settings = load_scene(Path(args.scene))
    overrides = {}
    if args.yarn_level is not None:
        overrides["yarn_size_level"] = args.yarn_level
    if args.stitch_type is not None:
        overrides["stitch_type"] = args.stitch_type
    if args.slice_dir is not None:
        overrides["slice_dir"] = tuple(args.slice_dir)
    if args.no_clip:
        overrides["clip_against_objects"] = False
    if args.seed is not None:
        overrides["sampling_seed"] = args.seed
    settings = replace(settings, **overrides).clamped()

    diagnostics = DiagnosticsLog()
    try:
        layers = generate_layers(solids, settings, diagnostics)
    except UnknownShapeError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    nodes = generate_nodes(layers, settings, diagnostics)
    elapsed = time.perf_counter() - started

    out_dir = Path(args.out_dir)
    write_json(out_dir / "layers.json", layers_to_document(layers))
    write_json(out_dir / "nodes.json", nodes_to_document(nodes))
    diagnostics.write_jsonl(out_dir / "diagnostics.jsonl")

    print(f"Solids: {len(layers.plan.order)}")
    print(f"Layers: {layers.stats.layer_count}")
    print(f"Nodes: {sum(nodes.stitch_counts_per_layer)}")
    print(f"Diagnostics: {len(diagnostics)}")
    print(f"Elapsed: {elapsed:.2f}s")
    print(f"Output: {out_dir}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
