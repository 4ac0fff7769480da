#!/usr/bin/env python3
"""Parse a FUC text file into numbered sections.

Usage:
    python3 scripts/fuc_sections.py fuc.txt
    python3 scripts/fuc_sections.py fuc.txt --grouped
    python3 scripts/fuc_sections.py fuc.txt --template      # candidate template fields
    python3 scripts/fuc_sections.py fuc.txt --normalize     # re-serialized text

Structured JSON output goes to stdout; human messages go to stderr.
"""
from __future__ import annotations

import argparse
import sys
from collections import Counter
from pathlib import Path
from typing import Any

from fuc_eval.fuc_document import serialize_sections
from fuc_eval.io_utils import dump_json, read_text, save_json
from fuc_eval.section_parser import Section, group_sections, parse_sections
from fuc_eval.templates import candidate_fields


def kind_counts(sections: list[Section]) -> dict[str, int]:
    counts: Counter[str] = Counter()

    def _walk(items: list[Section]) -> None:
        for s in items:
            counts[s.kind] += 1
            _walk(list(s.children))

    _walk(sections)
    return dict(sorted(counts.items()))


def build_report(text: str, *, grouped: bool = False, template: bool = False) -> dict[str, Any]:
    """Build the JSON payload for one FUC text."""
    sections = parse_sections(text)
    report: dict[str, Any] = {
        "section_count": len(sections),
        "kind_counts": kind_counts(sections),
    }
    if template:
        report["campos"] = [f.to_dict() for f in candidate_fields(text)]
    elif grouped:
        report["sections"] = [s.to_dict() for s in group_sections(sections)]
    else:
        report["sections"] = [s.to_dict() for s in sections]
    return report


def run(args: argparse.Namespace) -> int:
    path = Path(args.path)
    if not path.exists():
        print(f"File not found: {path}", file=sys.stderr)
        return 1
    text = read_text(path)

    if args.normalize:
        sys.stdout.write(serialize_sections(parse_sections(text)))
        return 0

    report = build_report(text, grouped=args.grouped, template=args.template)
    report["path"] = str(path)
    if report["section_count"] == 0 and text.strip():
        print(f"Warning: no numbered sections found in {path}", file=sys.stderr)

    if args.output:
        save_json(report, Path(args.output))
        print(f"Wrote {report['section_count']} sections to {args.output}", file=sys.stderr)
    else:
        dump_json(report)
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Parse a FUC text file into numbered sections."
    )
    parser.add_argument("path", help="Path to the FUC .txt file")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--grouped",
        action="store_true",
        help="Nest fields under their parent section.",
    )
    mode.add_argument(
        "--template",
        action="store_true",
        help="Emit candidate template fields instead of sections.",
    )
    mode.add_argument(
        "--normalize",
        action="store_true",
        help="Print the re-serialized document text.",
    )
    parser.add_argument("--output", default=None, help="Write JSON to this file instead of stdout")
    sys.exit(run(parser.parse_args()))


if __name__ == "__main__":
    main()
