"""Compose and serialize FUC documents in the numbered-heading line format.

The inverse of :mod:`fuc_eval.section_parser`: authoring input (title +
description pairs) is written out as ``N. Title`` / body blocks, and parsed
sections can be written back out. Whitespace is normalized, so the round
trip is semantic (same ordered index/title/description triples), not
byte-exact.
"""
from __future__ import annotations

from dataclasses import dataclass

from fuc_eval.section_parser import (
    Section,
    flatten_sections,
    is_heading,
    is_number_only,
    parse_sections,
    split_lines,
)

FIELD_TYPES: tuple[str, ...] = ("texto", "numerico", "tabela")
DEFAULT_MAX_CHARS = 1000


class FucDocumentError(ValueError):
    """Authoring input cannot be turned into a FUC document."""


@dataclass(frozen=True, slots=True)
class FucField:
    """One authored field of a FUC."""

    titulo: str
    descricao: str
    tipo: str = "texto"
    max_caracteres: int = DEFAULT_MAX_CHARS

    def to_dict(self) -> dict[str, object]:
        return {
            "titulo": self.titulo,
            "descricao": self.descricao,
            "tipo": self.tipo,
            "max_caracteres": self.max_caracteres,
        }


def validate_fields(campos: list[FucField]) -> None:
    """Raise FucDocumentError on the first field that cannot be written.

    A field must parse back as itself: a title on one line that is not just
    digits/punctuation, and no description line that reads as a heading.
    """
    for i, campo in enumerate(campos, start=1):
        titulo = campo.titulo.strip()
        if not titulo:
            raise FucDocumentError(f"Campo {i}: titulo is empty")
        if "\n" in titulo or "\r" in titulo:
            raise FucDocumentError(f"Campo {i}: titulo must be a single line")
        if is_number_only(titulo):
            raise FucDocumentError(f"Campo {i}: titulo {titulo!r} has no text")
        if not campo.descricao.strip():
            raise FucDocumentError(f"Campo {i}: descricao is empty")
        for line in split_lines(campo.descricao):
            if is_heading(line):
                raise FucDocumentError(
                    f"Campo {i}: descricao line {line.strip()!r} would start a new section"
                )
        if campo.tipo not in FIELD_TYPES:
            raise FucDocumentError(
                f"Campo {i}: unknown tipo {campo.tipo!r} (expected one of {', '.join(FIELD_TYPES)})"
            )
        if len(campo.descricao) > campo.max_caracteres:
            raise FucDocumentError(
                f"Campo {i}: descricao has {len(campo.descricao)} characters "
                f"(max {campo.max_caracteres})"
            )


def compose_document(titulo: str, campos: list[FucField]) -> str:
    """Write a titled FUC with one top-level numbered heading per field.

    The title line precedes the first heading, so the parser ignores it.
    """
    validate_fields(campos)
    parts = [f"{titulo.strip()}\n\n"]
    for i, campo in enumerate(campos, start=1):
        parts.append(f"{i}. {campo.titulo.strip()}\n")
        parts.append(f"{campo.descricao.strip()}\n\n")
    return "".join(parts)


def serialize_sections(sections: list[Section]) -> str:
    """Write sections back out using their own numeric indexes.

    Accepts flat or grouped input; grouped children are written after
    their parent.
    """
    blocks = [
        f"{s.index}. {s.title}\n{s.description}\n"
        for s in flatten_sections(sections)
    ]
    return "\n".join(blocks)


def import_fields(text: str | None) -> list[FucField]:
    """Turn an existing FUC text file into editable authoring fields."""
    return [
        FucField(
            titulo=s.title,
            descricao=s.description,
            max_caracteres=max(DEFAULT_MAX_CHARS, len(s.description)),
        )
        for s in parse_sections(text)
    ]
