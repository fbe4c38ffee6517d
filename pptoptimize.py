#!/usr/bin/env python3
"""
PPTX Optimizer - PowerPoint Package Shrinker

CLI tool that makes .pptx files smaller without touching slide content.

Features:
- Transcode uncompressed media (TIFF, BMP) to PNG
- Remove slide layouts no slide uses
- Remove slide masters no remaining layout uses
- Remove media no remaining slide, layout or master references
"""

import argparse
import copy
import sys
from pathlib import Path
from typing import List, Optional

import yaml

from optimizer import OptimizationResult, OptimizeOptions, PackageOptimizer, derive_output_path

DEFAULT_CONFIG_PATH = Path(__file__).parent / "pptoptimize.yaml"

DEFAULT_CONFIG = {
    'output_suffix': ".new",
    'defaults': {
        'transcode_media': True,
        'remove_layouts': False,
        'remove_masters': False,
        'remove_media': False,
    },
    'transcode': {
        'extensions': [".tiff", ".tif", ".bmp"],
        'target_extension': ".png",
        'target_format': "PNG",
        'content_type': "image/png",
        'optimize': False,
    },
}


def load_config(config_path: Path, required: bool = True) -> dict:
    """
    Load configuration from YAML file, filling in built-in defaults.

    A missing file is an error only when required (an explicit -c path).
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    if not config_path.exists():
        if required:
            print(f"Error: Config file not found: {config_path}", file=sys.stderr)
            sys.exit(1)
        return config

    with open(config_path, 'r') as f:
        loaded = yaml.safe_load(f) or {}

    for key, value in loaded.items():
        if isinstance(value, dict) and isinstance(config.get(key), dict):
            config[key].update(value)
        else:
            config[key] = value
    return config


def options_from_args(args, config: dict) -> OptimizeOptions:
    """Switches given on the command line win; otherwise use config defaults."""
    if args.all:
        return OptimizeOptions.all()

    selected = OptimizeOptions(
        transcode_media=args.transcode,
        remove_layouts=args.remove_layouts,
        remove_masters=args.remove_masters,
        remove_media=args.remove_media,
    )
    if selected.any:
        return selected

    defaults = config.get('defaults', {})
    return OptimizeOptions(
        transcode_media=bool(defaults.get('transcode_media', False)),
        remove_layouts=bool(defaults.get('remove_layouts', False)),
        remove_masters=bool(defaults.get('remove_masters', False)),
        remove_media=bool(defaults.get('remove_media', False)),
    )


def print_result(result: OptimizationResult, verbose: bool = False):
    """Print processing result summary."""
    print()
    print("=" * 60)
    print("PPTX Optimizer Report")
    print("=" * 60)
    print()
    print(f"Input:  {result.input_path}")
    print(f"Output: {'(dry-run)' if result.dry_run else result.output_path}")
    print()

    if result.errors:
        print("ERRORS:", file=sys.stderr)
        for error in result.errors:
            print(f"  ✗ {error}", file=sys.stderr)
        print()
        print("✗ Processing failed, no output written.")
        return

    if result.transcoded:
        print("Transcoded Media:")
        for record in result.transcoded:
            print(f"  • {record.old_key} -> {record.new_key}: "
                  f"{record.old_size:,} -> {record.new_size:,} bytes "
                  f"({record.relationships_updated} relationships updated)")
        print()

    if result.pending_transcode:
        print("Media To Transcode:")
        for key in result.pending_transcode:
            print(f"  • {key}")
        print()

    print(f"Slide layouts removed: {len(result.layouts_removed)}")
    print(f"Slide masters removed: {len(result.masters_removed)}")
    print(f"Media files removed:   {len(result.media_removed)}")

    if verbose:
        for number in result.layouts_removed:
            print(f"  - slideLayout{number}")
        for number in result.masters_removed:
            print(f"  - slideMaster{number}")
        for key in result.media_removed:
            print(f"  - {key}")

    if result.warnings:
        print()
        print("Warnings:")
        for warning in result.warnings:
            print(f"  - {warning}")

    print()
    if not result.dry_run:
        saved = result.input_size - result.output_size
        print(f"Size: {result.input_size:,} -> {result.output_size:,} bytes "
              f"({saved / 1024:.1f} KB saved)")
        print()
    print("✓ Processing completed successfully!")


def save_report(result: OptimizationResult, report_path: Path):
    """Save the result as a YAML report."""
    report_path.parent.mkdir(parents=True, exist_ok=True)
    with open(report_path, 'w') as f:
        yaml.safe_dump(result.to_dict(), f, sort_keys=False)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pptoptimize",
        description="Shrink PowerPoint packages by transcoding media and removing unused parts.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the optimizations enabled in pptoptimize.yaml (deck.pptx -> deck.new.pptx)
  pptoptimize deck.pptx

  # Run everything
  pptoptimize deck.pptx --all

  # Preview what would be removed
  pptoptimize deck.pptx --all --dry-run

  # Only drop unused layouts and masters
  pptoptimize deck.pptx --remove-layouts --remove-masters -o slim.pptx
        """
    )

    parser.add_argument(
        "input",
        type=Path,
        help="Input PPTX file to process"
    )

    parser.add_argument(
        "-o", "--output",
        type=Path,
        default=None,
        help="Output PPTX file path (default: INPUT with .new before the extension)"
    )

    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: pptoptimize.yaml)"
    )

    parser.add_argument(
        "-d", "--dry-run",
        action="store_true",
        help="Report what would change without writing a new file"
    )

    parser.add_argument(
        "--report",
        type=Path,
        default=None,
        help="Save a YAML report of the run to this path"
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Show detailed progress information"
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress all output except errors"
    )

    group = parser.add_argument_group("Optimizations (default: from config)")

    group.add_argument(
        "--transcode",
        action="store_true",
        help="Convert uncompressed media (TIFF, BMP) to PNG"
    )

    group.add_argument(
        "--remove-layouts",
        action="store_true",
        help="Remove slide layouts no slide uses"
    )

    group.add_argument(
        "--remove-masters",
        action="store_true",
        help="Remove slide masters no remaining layout uses"
    )

    group.add_argument(
        "--remove-media",
        action="store_true",
        help="Remove media no remaining slide, layout or master references"
    )

    group.add_argument(
        "-a", "--all",
        action="store_true",
        help="Enable all optimizations"
    )

    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 1.0.0"
    )

    return parser


def main(argv: Optional[List[str]] = None):
    args = build_parser().parse_args(argv)

    # Validate input
    if not args.input.exists():
        print(f"Error: Input file not found: {args.input}", file=sys.stderr)
        sys.exit(1)

    if args.input.suffix.lower() != ".pptx":
        print(f"Warning: Input file does not have .pptx extension: {args.input}",
              file=sys.stderr)

    if args.config is None:
        config = load_config(DEFAULT_CONFIG_PATH, required=False)
    else:
        config = load_config(args.config)

    output = args.output or derive_output_path(args.input, config.get('output_suffix', ".new"))
    options = options_from_args(args, config)
    verbose = args.verbose and not args.quiet

    if not args.quiet:
        steps = []
        if options.transcode_media:
            steps.append("TRANSCODE")
        if options.remove_layouts:
            steps.append("LAYOUTS")
        if options.remove_masters:
            steps.append("MASTERS")
        if options.remove_media:
            steps.append("MEDIA")
        mode = " + ".join(steps) if steps else "COPY"
        if args.dry_run:
            mode = f"DRY RUN: {mode}"
        print(f"\n{mode}: {args.input}")

    optimizer = PackageOptimizer(options, transcode_config=config.get('transcode'), verbose=verbose)
    result = optimizer.process(args.input, output, dry_run=args.dry_run)

    if args.report:
        try:
            save_report(result, args.report)
        except OSError as e:
            print(f"Error: Cannot write report {args.report}: {e}", file=sys.stderr)
            sys.exit(1)

    if not args.quiet:
        print_result(result, verbose=args.verbose)
    elif result.errors:
        for error in result.errors:
            print(f"Error: {error}", file=sys.stderr)

    # Exit code
    sys.exit(0 if result.success else 1)


if __name__ == "__main__":
    main()
