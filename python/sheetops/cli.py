"""Command-line interface for sheetops."""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any

from sheetops import load_workbook
from sheetops._errors import SheetOpsError
from sheetops._session import WorkbookSession
from sheetops._staleness import find_stale_cells
from sheetops.calc._circular import detect_circular_references
from sheetops.calc._evaluator import ENGINE_VERSION

EXIT_OK = 0
EXIT_FINDINGS = 1
EXIT_BAD_INPUT = 2


def _print_json(data: Any) -> None:
    json.dump(data, sys.stdout, indent=2)
    sys.stdout.write("\n")


def run_scan_stale(paths: list[str], engine_version: str) -> int:
    """Report cached values computed by a different engine build."""
    found = 0
    for path in paths:
        wb = load_workbook(path)
        for stale in find_stale_cells(wb, engine_version):
            found += 1
            print(f"{path}\t{stale.sheet}!{stale.cell}\t{stale.engine_version}")
    print(f"{found} stale cell(s) (engine {engine_version})", file=sys.stderr)
    return EXIT_FINDINGS if found else EXIT_OK


def run_check_circular(path: str) -> int:
    report = detect_circular_references(load_workbook(path))
    _print_json(report.to_payload())
    return EXIT_FINDINGS if report.has_circular_references else EXIT_OK


def run_apply(path: str, ops_path: str, output: str | None, deferred: bool) -> int:
    """Apply a JSON operation list and write the resulting workbook."""
    wb = load_workbook(path)
    with open(ops_path, encoding="utf-8") as fh:
        operations = json.load(fh)

    session = WorkbookSession(wb)
    result = session.apply(operations, recompute="deferred" if deferred else "sync")
    wb.save(output or path)
    _print_json(result.to_payload())
    return EXIT_OK if result.success else EXIT_FINDINGS


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="sheetops",
        description="sheetops - batch edits, cycle checks and recompute for workbook documents",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    stale_parser = subparsers.add_parser(
        "scan-stale", help="List cells whose cached value came from another engine version"
    )
    stale_parser.add_argument("paths", nargs="+", metavar="PATH", help="Workbook JSON files")
    stale_parser.add_argument(
        "--engine-version",
        default=ENGINE_VERSION,
        help=f"Version to compare against (default: {ENGINE_VERSION})",
    )

    circular_parser = subparsers.add_parser(
        "check-circular", help="Print the circular-reference report as JSON"
    )
    circular_parser.add_argument("file", help="Workbook JSON file")

    apply_parser = subparsers.add_parser("apply", help="Apply a JSON operation list")
    apply_parser.add_argument("file", help="Workbook JSON file")
    apply_parser.add_argument("ops", help="JSON file holding a list of operations")
    apply_parser.add_argument(
        "--output", "-o", help="Write the result here instead of overwriting FILE"
    )
    apply_parser.add_argument(
        "--deferred", action="store_true", help="Clear computed values instead of recomputing"
    )

    args = parser.parse_args(argv)

    try:
        if args.command == "scan-stale":
            return run_scan_stale(args.paths, args.engine_version)
        if args.command == "check-circular":
            return run_check_circular(args.file)
        if args.command == "apply":
            return run_apply(args.file, args.ops, args.output, args.deferred)
    except (OSError, ValueError, SheetOpsError, KeyError, TypeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_BAD_INPUT

    parser.print_help()
    return EXIT_BAD_INPUT


if __name__ == "__main__":
    sys.exit(main())
