"""
compiledfiles command-line entry point.

Prints every source file recorded in a binary's debug information.
"""

import argparse
import logging
import os
import sys
from pathlib import Path

from compiledfiles.cli.models import ExtractionReport
from compiledfiles.exceptions import ExtractionError, MissingDebugInfoError
from compiledfiles.extract import extract_path

logger = logging.getLogger(__name__)


def _default_workers() -> int:
    try:
        return int(os.environ.get('COMPILEDFILES_WORKERS', '1'))
    except ValueError:
        return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="compiledfiles",
        description="List the source files used to compile an ELF binary or PDB"
    )
    parser.add_argument(
        "binary",
        help="Path to an ELF file (executable, object, or debug file) or a PDB"
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print a JSON report with file metadata and warnings"
    )
    parser.add_argument(
        "--show-warnings",
        action="store_true",
        help="Print per-unit warnings to stderr"
    )
    parser.add_argument(
        "--include-pseudo",
        action="store_true",
        help="Keep compiler pseudo files such as <built-in>"
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=_default_workers(),
        help="Threads used to decode units in parallel (default: $COMPILEDFILES_WORKERS or 1)"
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)"
    )
    return parser


def main(argv=None) -> int:
    """Main entry point for the compiledfiles command."""
    args = build_parser().parse_args(argv)

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    binary_path = Path(args.binary)
    if not binary_path.exists():
        print(f"\"{binary_path}\" does not exist", file=sys.stderr)
        return 1

    try:
        result = extract_path(
            binary_path,
            workers=args.workers,
            include_pseudo_files=args.include_pseudo,
        )
    except MissingDebugInfoError:
        print(f"ERROR: \"{binary_path}\" missing debug symbols", file=sys.stderr)
        return 1
    except ExtractionError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    if args.json:
        report = ExtractionReport.from_result(str(binary_path), result)
        print(report.model_dump_json(indent=2))
    else:
        for path in result.paths:
            print(path)

    if args.show_warnings:
        for warning in result.warnings:
            print(f"warning: {warning}", file=sys.stderr)

    return 0


if __name__ == "__main__":
    sys.exit(main())
