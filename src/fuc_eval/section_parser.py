"""Section parser for FUC course description text.

Splits the raw ``conteudo`` of a FUC (or a template's source text) into
numbered sections with:
- Heading detection (``1.``, ``1.1.``, ``1.1.1.`` prefixes)
- Title / description separation
- Kind classification (section, field, subfield)

2-pass approach:
    1. Walk the trimmed, non-empty lines once, accumulating a description
       under the currently open heading.
    2. Reclassify tentative one-level fields as sections when a later
       subfield shares their numeric prefix.

The grouper then nests fields under their parent section (max depth 2).

Pure functions -- no I/O, no shared state.
"""
from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field, replace


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------

KIND_SECTION = "section"
KIND_FIELD = "field"
KIND_SUBFIELD = "subfield"


@dataclass(frozen=True, slots=True)
class Section:
    """A numbered block of FUC text (e.g., ``2.1. Objetivos``)."""

    index: str          # "2.1"
    title: str          # "Objetivos"
    description: str    # body lines joined with "\n"
    kind: str           # section | field | subfield
    position: int       # 1-based order of appearance among emitted sections
    children: tuple[Section, ...] = field(default=())

    @property
    def depth(self) -> int:
        return self.index.count(".") + 1

    @property
    def field_id(self) -> str:
        """Stable form identifier, assigned by order of appearance."""
        return f"campo_{self.position}"

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.field_id,
            "index": self.index,
            "title": self.title,
            "description": self.description,
            "kind": self.kind,
            "depth": self.depth,
            "children": [c.to_dict() for c in self.children],
        }


# ---------------------------------------------------------------------------
# Regex patterns
# ---------------------------------------------------------------------------

# Tested in this order. The (?!\d) guard stops "1.5 kg" from reading as
# heading "1." and keeps four-level numbering ("1.1.1.1.") as body text.
_THREE_LEVEL_RE = re.compile(r"^(\d+\.\d+\.\d+)\.(?!\d)\s*(.+)", re.ASCII)
_TWO_LEVEL_RE = re.compile(r"^(\d+\.\d+)\.(?!\d)\s*(.+)", re.ASCII)
_ONE_LEVEL_RE = re.compile(r"^(\d+)\.(?!\d)\s*(.+)", re.ASCII)

_HEADING_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (_THREE_LEVEL_RE, KIND_SUBFIELD),
    (_TWO_LEVEL_RE, KIND_SUBFIELD),
    (_ONE_LEVEL_RE, KIND_FIELD),
)

_LINE_BREAK_RE = re.compile(r"\r\n|\r|\n")


def _match_heading(line: str) -> tuple[str, str, str] | None:
    """Return (index, title, kind) when *line* is a numbered heading."""
    for pattern, kind in _HEADING_PATTERNS:
        m = pattern.match(line)
        if m:
            return m.group(1), m.group(2).strip(), kind
    return None


def split_lines(text: str) -> list[str]:
    """Split on CR, LF and CRLF only; form feeds stay inside the line."""
    return _LINE_BREAK_RE.split(text)


def is_heading(line: str) -> bool:
    """True when the trimmed *line* would open a new section."""
    return _match_heading(line.strip()) is not None


def _is_filler_char(c: str) -> bool:
    # Unicode punctuation (P*) or symbol (S*), e.g. "%", "§", "€", "+"
    return c.isdigit() or c.isspace() or unicodedata.category(c)[0] in "PS"


def is_number_only(title: str) -> bool:
    """True when *title* has only digits, whitespace, punctuation or symbols."""
    return bool(title) and all(_is_filler_char(c) for c in title)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse_sections(text: str | None) -> list[Section]:
    """Parse FUC text into an ordered, flat list of sections.

    Lines are trimmed and blank lines discarded. Text before the first
    heading is dropped. A heading whose body is empty, or whose title is
    only digits/punctuation, is not emitted.

    Args:
        text: Raw document text; any newline convention. None is allowed.

    Returns:
        List of Section in heading order, with ``children`` empty.
    """
    if not text:
        return []

    # Phase 1: single pass over non-empty lines
    raw: list[tuple[str, str, str, list[str]]] = []
    current: tuple[str, str, str, list[str]] | None = None
    for line in split_lines(text):
        line = line.strip()
        if not line:
            continue
        heading = _match_heading(line)
        if heading is not None:
            if current is not None:
                raw.append(current)
            index, title, kind = heading
            current = (index, title, kind, [])
        elif current is not None:
            current[3].append(line)
    if current is not None:
        raw.append(current)

    sections: list[Section] = []
    for index, title, kind, body in raw:
        description = "\n".join(body).strip()
        if not description or is_number_only(title):
            continue
        sections.append(Section(
            index=index,
            title=title,
            description=description,
            kind=kind,
            position=len(sections) + 1,
        ))

    # Phase 2: deferred reclassification of one-level headings
    return _reclassify(sections)


def group_sections(sections: list[Section]) -> list[Section]:
    """Nest fields/subfields under the preceding ``section`` item.

    Items before the first section stay top-level. A section keeps any
    children it already carries, so grouping an already grouped list
    returns it unchanged.
    """
    grouped: list[Section] = []
    parent: Section | None = None
    for item in sections:
        if item.kind == KIND_SECTION:
            if parent is not None:
                grouped.append(parent)
            parent = item
        elif parent is not None:
            parent = replace(parent, children=parent.children + (item,))
        else:
            grouped.append(item)
    if parent is not None:
        grouped.append(parent)
    return grouped


def flatten_sections(sections: list[Section]) -> list[Section]:
    """Undo grouping: parents followed by their children, children cleared."""
    flat: list[Section] = []
    for s in sections:
        flat.append(replace(s, children=()) if s.children else s)
        flat.extend(flatten_sections(list(s.children)))
    return flat


# ---------------------------------------------------------------------------
# Internal: Phase 2 -- reclassification
# ---------------------------------------------------------------------------

def _reclassify(sections: list[Section]) -> list[Section]:
    """Promote one-level fields that have at least one nested subfield."""
    subfield_indexes = [s.index for s in sections if s.kind == KIND_SUBFIELD]
    result: list[Section] = []
    for s in sections:
        if s.kind == KIND_FIELD and s.depth == 1:
            prefix = s.index + "."
            if any(idx.startswith(prefix) for idx in subfield_indexes):
                s = replace(s, kind=KIND_SECTION)
        result.append(s)
    return result
