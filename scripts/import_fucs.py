#!/usr/bin/env python3
"""Import FUC .txt files into the DuckDB store.

Usage:
    python3 scripts/import_fucs.py --db data/fuc.duckdb fucs/*.txt
    python3 scripts/import_fucs.py --db data/fuc.duckdb --enable --tipo Licenciatura fucs/

Each file becomes one FUC titled after the file name. Files without any
numbered section are skipped. A JSON summary goes to stdout; progress
messages go to stderr.
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any

from fuc_eval.io_utils import dump_json, read_text
from fuc_eval.section_parser import parse_sections
from fuc_eval.store import FucStore

log = logging.getLogger("import_fucs")


def collect_paths(inputs: list[str]) -> list[Path]:
    """Expand directories to their .txt files; keep explicit files as given."""
    paths: list[Path] = []
    for raw in inputs:
        p = Path(raw)
        if p.is_dir():
            paths.extend(sorted(p.glob("*.txt")))
        else:
            paths.append(p)
    return paths


def title_from_path(path: Path) -> str:
    return path.stem.replace("_", " ").strip()


def import_files(
    store: FucStore,
    paths: list[Path],
    *,
    tipo: str = "",
    enable: bool = False,
) -> dict[str, Any]:
    imported: list[dict[str, Any]] = []
    skipped: list[dict[str, str]] = []
    for path in paths:
        if not path.is_file():
            skipped.append({"path": str(path), "reason": "not_found"})
            continue
        text = read_text(path)
        sections = parse_sections(text)
        if not sections:
            skipped.append({"path": str(path), "reason": "no_sections"})
            log.warning("No numbered sections in %s", path)
            continue
        row = store.create_fuc(title_from_path(path), text, tipo=tipo, enabled=enable)
        imported.append({
            "id": row["id"],
            "titulo": row["titulo"],
            "path": str(path),
            "section_count": len(sections),
        })
        print(f"  Imported {path.name} ({len(sections)} sections)", file=sys.stderr)
    return {"imported": imported, "skipped": skipped}


def main() -> None:
    parser = argparse.ArgumentParser(description="Import FUC .txt files into the database.")
    parser.add_argument("--db", required=True, help="Path to fuc.duckdb (created if missing)")
    parser.add_argument("inputs", nargs="+", help=".txt files or directories")
    parser.add_argument("--tipo", default="", help="FUC type recorded on every import")
    parser.add_argument(
        "--enable",
        action="store_true",
        help="Mark imported FUCs as open for evaluation.",
    )
    args = parser.parse_args()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    paths = collect_paths(args.inputs)
    print(f"Importing {len(paths)} file(s) into {args.db}", file=sys.stderr)
    with FucStore(args.db, create_if_missing=True) as store:
        summary = import_files(store, paths, tipo=args.tipo, enable=args.enable)
    dump_json(summary)
    print(
        f"Done: {len(summary['imported'])} imported, {len(summary['skipped'])} skipped",
        file=sys.stderr,
    )


if __name__ == "__main__":
    main()
