#!/usr/bin/env python3
"""
PPTX Optimizer Diagnostic Tool

Inspects a .pptx file without modifying it: media bytes per slide, which
layouts and masters are in use, media nobody references, and image
relationships that point at missing media.
"""

import argparse
import sys
from pathlib import Path
from typing import Dict, List

from errors import PackageError
from package_model import IMAGE_REL_TYPE, RelationshipGraph, media_key
from package_reader import PackageReader


def slide_media_sizes(graph: RelationshipGraph) -> Dict[int, int]:
    """Total bytes of image media referenced by each slide."""
    sizes = {}
    for number, rels in graph.slide_rels.items():
        total = 0
        for rel in rels.of_type(IMAGE_REL_TYPE):
            entry = graph.media.get(media_key(rel.target))
            if entry is not None and not rel.is_external:
                total += entry.size
        sizes[number] = total
    return sizes


def dangling_images(graph: RelationshipGraph) -> List[str]:
    """Image relationships whose target is not in the media index."""
    dangling = []
    for kind, slots in graph.rels_collections():
        for number, rels in slots.items():
            for rel in rels.of_type(IMAGE_REL_TYPE):
                if not rel.is_external and media_key(rel.target) not in graph.media:
                    dangling.append(f"{kind.value}{number} {rel.id} -> {rel.target}")
    return dangling


def print_diagnosis(graph: RelationshipGraph, path: Path, verbose: bool = False):
    print(f"\n{'=' * 80}")
    print(f"FILE: {path}")
    print(f"{'=' * 80}")

    print("\nMedia per slide:")
    for number, size in slide_media_sizes(graph).items():
        print(f"  slide{number}: {size:,} bytes")

    used_layouts = graph.used_layouts()
    print(f"\nSlide layouts ({sum(used_layouts.values())}/{len(used_layouts)} used):")
    for number, used in sorted(used_layouts.items()):
        if verbose or not used:
            print(f"  slideLayout{number}: {'used' if used else 'UNUSED'}")

    used_masters = graph.used_masters()
    print(f"\nSlide masters ({sum(used_masters.values())}/{len(used_masters)} used):")
    for number, used in sorted(used_masters.items()):
        if verbose or not used:
            print(f"  slideMaster{number}: {'used' if used else 'UNUSED'}")

    unused = graph.unused_media()
    print(f"\nMedia ({len(graph.media) - len(unused)}/{len(graph.media)} referenced):")
    for key in unused:
        print(f"  {key}: {graph.media[key].size:,} bytes, UNREFERENCED")

    dangling = dangling_images(graph)
    if dangling:
        print("\nImage relationships with missing media:")
        for line in dangling:
            print(f"  {line}")

    if graph.warnings:
        print("\nWarnings:")
        for warning in graph.warnings:
            print(f"  {warning}")


def main():
    parser = argparse.ArgumentParser(description="Inspect PPTX part usage")
    parser.add_argument("input", type=Path, help="Input PPTX file")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="List used parts as well as unused ones")

    args = parser.parse_args()

    if not args.input.exists():
        print(f"Error: File not found: {args.input}", file=sys.stderr)
        sys.exit(1)

    try:
        with PackageReader(args.input) as reader:
            graph = reader.read()
    except PackageError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    print_diagnosis(graph, args.input, verbose=args.verbose)


if __name__ == "__main__":
    main()
