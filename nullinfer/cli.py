#!/usr/bin/env python3
"""
nullinfer CLI - Pointer Nullability Inference.

Commands:
- infer: Print the inferred nullability of every pointer slot
- evidence: Print the raw evidence the inference is built from

Usage:
    nullinfer infer widget.cc                    # Inferred verdicts
    nullinfer infer a.c b.c --samples            # With sample evidence
    nullinfer evidence widget.cc --format json   # Raw evidence as JSON
"""

import argparse
import json
import sys
from pathlib import Path
from typing import List

# Import version from main package (single source of truth)
from nullinfer import __version__
from nullinfer.inference import InferenceReport, NullabilityInferencer


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "files",
        nargs="+",
        help="C or C++ source files (inferred together)"
    )
    parser.add_argument(
        "-l", "--language",
        choices=["c", "cpp"],
        help="Source language (default: from file extension)"
    )
    parser.add_argument(
        "-f", "--format",
        default="text",
        choices=["text", "json"],
        help="Output format (default: text)"
    )
    parser.add_argument(
        "--timeout",
        type=int,
        default=5000,
        help="Solver timeout per query in ms (default: 5000)"
    )
    parser.add_argument(
        "--budget-ms",
        type=int,
        default=None,
        help="Time budget per function in ms (default: unlimited)"
    )
    parser.add_argument(
        "-j", "--jobs",
        type=int,
        default=1,
        help="Worker threads for per-function analysis (default: 1)"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output"
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the main argument parser"""
    parser = argparse.ArgumentParser(
        prog="nullinfer",
        description="nullinfer - Pointer Nullability Inference for C and C++",
        epilog="Use 'nullinfer <command> --help' for more information on a specific command.",
    )

    parser.add_argument(
        "-V", "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # === INFER command ===
    infer_parser = subparsers.add_parser(
        "infer",
        help="Infer the nullability of pointer parameters and return values",
        description="Infer one nullability verdict per pointer slot of every function."
    )
    _add_common_arguments(infer_parser)
    infer_parser.add_argument(
        "--samples",
        action="store_true",
        help="Show the sample evidence behind each verdict"
    )
    infer_parser.add_argument(
        "--max-samples",
        type=int,
        default=16,
        help="Sample evidence kept per slot (default: 16)"
    )

    # === EVIDENCE command ===
    evidence_parser = subparsers.add_parser(
        "evidence",
        help="Print the evidence collected from the sources",
        description="Print every evidence record, sorted by symbol, slot and location."
    )
    _add_common_arguments(evidence_parser)

    return parser


def _run(args) -> InferenceReport:
    inferencer = NullabilityInferencer(
        timeout=args.timeout,
        function_budget_ms=args.budget_ms,
        jobs=args.jobs,
        max_samples=getattr(args, "max_samples", 16),
        verbose=args.verbose,
        diagnostics=sys.stderr,
    )
    return inferencer.infer_files(args.files, args.language)


def _check_files(files: List[str]) -> bool:
    for filepath in files:
        if not Path(filepath).is_file():
            print(f"Error: file not found: {filepath}", file=sys.stderr)
            return False
    return True


# ============================================================================
# INFER Command
# ============================================================================

def cmd_infer(args) -> int:
    """Execute infer command"""
    if not _check_files(args.files):
        return 2

    try:
        report = _run(args)
    except (ImportError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.format == "json":
        print(json.dumps({
            "inferences": [i.to_dict() for i in report.inferences],
            "diagnostics": report.diagnostics,
            "skipped": report.skipped,
            "time_ms": round(report.time_ms, 2),
        }, indent=2))
        return 0

    for inference in report.inferences:
        print(inference.symbol)
        for slot in inference.slots:
            where = "return" if slot.slot == 0 else f"param {slot.slot}"
            conflict = " (conflict)" if slot.conflict else ""
            print(f"  slot {slot.slot} [{where}]: {slot.nullability}{conflict}")
            if args.samples:
                for sample in slot.samples:
                    print(f"      {sample.kind} at {sample.location}")

    if args.verbose:
        print(f"{len(report.inferences)} symbol(s), {report.functions_analyzed} function(s) "
              f"analysed, {len(report.skipped)} skipped in {report.time_ms:.2f}ms")
    return 0


# ============================================================================
# EVIDENCE Command
# ============================================================================

def cmd_evidence(args) -> int:
    """Execute evidence command"""
    if not _check_files(args.files):
        return 2

    try:
        report = _run(args)
    except (ImportError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    evidence = sorted(report.evidence,
                      key=lambda e: (e.symbol, e.slot, e.location, e.kind.name))

    if args.format == "json":
        print(json.dumps([e.to_dict() for e in evidence], indent=2))
    else:
        for item in evidence:
            print(item)
    return 0


# ============================================================================
# Main Entry Point
# ============================================================================

def main(argv: List[str] = None) -> int:
    """Main CLI entry point"""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    # Dispatch to command handler
    commands = {
        "infer": cmd_infer,
        "evidence": cmd_evidence,
    }

    handler = commands.get(args.command)
    if handler:
        return handler(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
