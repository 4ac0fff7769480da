"""I/O utilities for JSON and text file operations.

orjson-backed JSON I/O shared by the command-line scripts.
"""
from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

import orjson


def save_json(obj: Any, path: Path, *, pretty: bool = True) -> None:
    """Save an object as JSON, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    opts = orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS if pretty else orjson.OPT_SORT_KEYS
    path.write_bytes(orjson.dumps(obj, option=opts))


def dump_json(obj: Any) -> None:
    """Write indented JSON to stdout (structured output channel)."""
    sys.stdout.buffer.write(orjson.dumps(obj, option=orjson.OPT_INDENT_2))
    sys.stdout.buffer.write(b"\n")


def read_text(path: Path) -> str:
    """Read a text file as UTF-8, tolerating a BOM and Latin-1 exports."""
    raw = path.read_bytes()
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        return raw.decode("latin-1")
