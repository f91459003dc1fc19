#!/usr/bin/env python3
"""EasyEDA to KiCad command line.

Usage:
    ee2kicad convert input.json --output out/ [--format-version 8] [--overwrite]
                     [--library NAME] [--workers N] [--unit-scale F]
                     [--precision P] [--preview] [-v]

Exit codes: 0 everything converted, 1 invalid or unreadable input,
2 partial success (some entities failed or the run was cancelled),
3 an output file could not be written.
"""

import argparse
import logging
import sys
import threading
from pathlib import Path

from .config import (
    DEFAULT_CONFIG, DEFAULT_FORMAT_VERSION, FORMAT_VERSIONS, TEN_MIL_TO_MM, TENTH_MIL_TO_MM,
)
from .converter import convert_batch
from .errors import InputError
from .importer import load_records
from .preview import render_preview
from .utils import safe_name

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_INPUT = 1
EXIT_PARTIAL = 2
EXIT_WRITE = 3


def build_parser():
    parser = argparse.ArgumentParser(
        prog="ee2kicad",
        description="Convert EasyEDA symbols, footprints and boards to KiCad files",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    convert = commands.add_parser("convert", help="Convert EasyEDA JSON records")
    convert.add_argument("input", help="EasyEDA JSON file, or a directory of .json files")
    convert.add_argument("-o", "--output", default=".",
                         help="Output directory (default: current directory)")
    convert.add_argument("--format-version", choices=sorted(FORMAT_VERSIONS),
                         default=DEFAULT_FORMAT_VERSION,
                         help="KiCad file format generation (default: %(default)s)")
    convert.add_argument("--overwrite", action="store_true",
                         help="Replace existing library entries and files")
    convert.add_argument("--library", default=DEFAULT_CONFIG.library_name,
                         help="Library name for .kicad_sym and .pretty (default: %(default)s)")
    convert.add_argument("--workers", type=int, default=DEFAULT_CONFIG.workers,
                         help="Parallel conversion workers (default: %(default)s)")
    convert.add_argument("--unit-scale", type=float, default=None,
                         help=f"Millimetres per source unit (default: {TENTH_MIL_TO_MM}, a tenth "
                              f"of a mil; EasyEDA's editor canvas unit is {TEN_MIL_TO_MM})")
    convert.add_argument("--precision", type=int, default=None,
                         help="Decimal places for millimetre values (default: 4)")
    convert.add_argument("--preview", action="store_true",
                         help="Also render a PNG preview of each converted entity")
    convert.add_argument("-v", "--verbose", action="store_true",
                         help="Enable verbose logging")
    return parser


def _write_previews(batch, output_dir: Path):
    for result in batch.converted:
        path = output_dir / "preview" / f"{result.kind.value}_{safe_name(result.name)}.png"
        try:
            render_preview(result.entity, path)
        except (OSError, ValueError) as e:
            log.warning("Preview of %s failed: %s", result.name, e)


def run_convert(args) -> int:
    if args.workers < 1:
        print("Error: --workers must be at least 1", file=sys.stderr)
        return EXIT_INPUT
    if args.unit_scale is not None and args.unit_scale <= 0:
        print("Error: --unit-scale must be positive", file=sys.stderr)
        return EXIT_INPUT

    config = DEFAULT_CONFIG.with_overrides(
        format_version=args.format_version,
        overwrite=args.overwrite,
        library_name=args.library,
        workers=args.workers,
        unit_to_mm=args.unit_scale,
        precision=args.precision,
    )

    input_path = Path(args.input)
    if not input_path.exists():
        print(f"Error: {input_path} not found", file=sys.stderr)
        return EXIT_INPUT
    try:
        records = load_records(input_path)
    except InputError as e:
        print(f"Error reading input: {e}", file=sys.stderr)
        return EXIT_INPUT
    if not records:
        print(f"Error: no symbols, footprints or boards found in {input_path}", file=sys.stderr)
        return EXIT_INPUT
    log.info("Loaded %d entities from %s", len(records), input_path)

    output_dir = Path(args.output)
    cancel = threading.Event()
    try:
        batch = convert_batch(records, config, output_dir, cancel)
    except KeyboardInterrupt:
        cancel.set()
        print("Cancelled; no output was written", file=sys.stderr)
        return EXIT_PARTIAL

    for result in batch.failed:
        if result.error is not None:
            print(f"Failed: {result.error}", file=sys.stderr)
    for error in batch.write_errors:
        print(f"Write failed: {error}", file=sys.stderr)

    if args.preview:
        _write_previews(batch, output_dir)

    warnings = batch.all_warnings()
    print(f"Converted {len(batch.converted)} of {len(batch.results)} entities "
          f"({len(warnings)} warnings); wrote {len(batch.written)} files to {output_dir}")

    if batch.write_errors:
        return EXIT_WRITE
    if batch.cancelled:
        return EXIT_PARTIAL
    if not batch.converted:
        return EXIT_INPUT
    if batch.failed:
        return EXIT_PARTIAL
    return EXIT_OK


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    if args.command == "convert":
        return run_convert(args)
    parser.error(f"unknown command {args.command!r}")


if __name__ == "__main__":
    sys.exit(main())
