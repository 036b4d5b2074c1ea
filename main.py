#!/usr/bin/env python3
"""
Procurement Compliance Review

Checks a sponsored-research or procurement contract against FAR clauses and
institutional policy: flags required clauses that are missing and prohibited
language that is present, scores the contract, and optionally suggests
approved alternative language.

Usage:
    python main.py <contract.txt|contract.docx> [--rulebook PATH]
                   [--alternatives] [--min-confidence X] [--narrate]

The rulebook defaults to compliance_review/data/rulebook.json (a FAR matrix
or Ts&Cs matrix .xlsx is accepted too). The report is written to
output/report.json.
"""

import logging
import sys

from rich.logging import RichHandler

from compliance_review.config import DEFAULT_MIN_CONFIDENCE, LOG_LEVEL
from compliance_review.errors import ComplianceReviewError
from compliance_review.pipeline import run_pipeline

USAGE = """Usage: python main.py <contract.txt|contract.docx> [--rulebook PATH] [--alternatives] [--min-confidence X] [--narrate]

Examples:
  python main.py contract.txt                        # Rule checks only
  python main.py contract.docx --alternatives        # Also suggest approved alternative language
  python main.py contract.txt --rulebook far_matrix.xlsx --min-confidence 0.9
  python main.py contract.txt --narrate              # Add LLM reviewer notes (needs ANTHROPIC_API_KEY)"""


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def parse_args(args: list[str]) -> dict:
    opts = {
        "input_source": None,
        "rulebook_path": None,
        "include_alternatives": False,
        "min_confidence": DEFAULT_MIN_CONFIDENCE,
        "narrate": False,
    }
    i = 0
    while i < len(args):
        if args[i] == "--rulebook" and i + 1 < len(args):
            opts["rulebook_path"] = args[i + 1]
            i += 2
        elif args[i] == "--min-confidence" and i + 1 < len(args):
            try:
                value = float(args[i + 1])
            except ValueError:
                raise SystemExit(f"Error: --min-confidence must be a number (got '{args[i + 1]}')")
            if not 0.0 <= value <= 1.0:
                raise SystemExit(f"Error: --min-confidence must be between 0 and 1 (got {value})")
            opts["min_confidence"] = value
            i += 2
        elif args[i] == "--alternatives":
            opts["include_alternatives"] = True
            i += 1
        elif args[i] == "--narrate":
            opts["narrate"] = True
            i += 1
        elif args[i].startswith("--"):
            raise SystemExit(f"Error: unknown option {args[i]}\n\n{USAGE}")
        else:
            opts["input_source"] = args[i]
            i += 1
    return opts


def main() -> None:
    args = sys.argv[1:]
    if not args or args[0] in ("-h", "--help"):
        print(USAGE)
        sys.exit(0)

    opts = parse_args(args)
    if not opts["input_source"]:
        print(f"Error: no contract file given\n\n{USAGE}")
        sys.exit(1)

    configure_logging()
    log = logging.getLogger("compliance_review")
    try:
        result = run_pipeline(**opts)
    except ComplianceReviewError as e:
        log.error("%s", e)
        sys.exit(1)

    log.info("Report: %s", result["report_path"])


if __name__ == "__main__":
    main()
