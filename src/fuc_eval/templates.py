"""Template field configuration for FUC evaluations.

A template is a manager-defined subset of a FUC's fields, each with the
response types an evaluator may use (free text and/or multiple choice with
an option list) and a display index the manager may override. The list is
stored as JSON in the template's ``conteudo`` column.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

import orjson

from fuc_eval.section_parser import parse_sections

RESPONSE_TEXT = "texto"
RESPONSE_CHOICE = "escolha_multipla"
RESPONSE_TYPES: tuple[str, ...] = (RESPONSE_TEXT, RESPONSE_CHOICE)


class TemplateFormatError(ValueError):
    """Template content is not a valid field configuration list."""


@dataclass(frozen=True, slots=True)
class TemplateField:
    campo_id: str                       # "campo_3"
    titulo: str
    index: str                          # parsed numeric index, "2.1"
    display_index: str                  # defaults to index
    response_types: tuple[str, ...] = (RESPONSE_TEXT,)
    opcoes: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "campo_id": self.campo_id,
            "titulo": self.titulo,
            "index": self.index,
            "display_index": self.display_index,
            "response_types": list(self.response_types),
            "opcoes": list(self.opcoes),
        }


def candidate_fields(conteudo: str | None) -> list[TemplateField]:
    """List every parsed section of a FUC as an attachable template field."""
    return [
        TemplateField(
            campo_id=s.field_id,
            titulo=s.title,
            index=s.index,
            display_index=s.index,
        )
        for s in parse_sections(conteudo)
    ]


def _check_field(f: TemplateField) -> None:
    if not f.campo_id:
        raise TemplateFormatError("Template field is missing campo_id")
    if not f.response_types:
        raise TemplateFormatError(f"{f.campo_id}: at least one response type is required")
    unknown = [t for t in f.response_types if t not in RESPONSE_TYPES]
    if unknown:
        raise TemplateFormatError(f"{f.campo_id}: unknown response type(s) {unknown}")
    if RESPONSE_CHOICE in f.response_types and not f.opcoes:
        raise TemplateFormatError(f"{f.campo_id}: {RESPONSE_CHOICE} requires at least one option")
    if len(set(f.opcoes)) != len(f.opcoes):
        raise TemplateFormatError(f"{f.campo_id}: duplicate options")


def configure_field(
    f: TemplateField,
    *,
    display_index: str | None = None,
    response_types: tuple[str, ...] | None = None,
    opcoes: tuple[str, ...] | None = None,
) -> TemplateField:
    """Return a copy of *f* with the given settings applied and checked."""
    updated = replace(
        f,
        display_index=f.display_index if display_index is None else display_index.strip(),
        response_types=f.response_types if response_types is None else tuple(response_types),
        opcoes=f.opcoes if opcoes is None else tuple(o.strip() for o in opcoes if o.strip()),
    )
    _check_field(updated)
    return updated


def encode_template(fields: list[TemplateField]) -> str:
    """Serialize template fields to the JSON stored in ``templates.conteudo``."""
    seen: set[str] = set()
    for f in fields:
        _check_field(f)
        if f.campo_id in seen:
            raise TemplateFormatError(f"Duplicate campo_id: {f.campo_id}")
        seen.add(f.campo_id)
    return orjson.dumps([f.to_dict() for f in fields]).decode("utf-8")


def decode_template(conteudo: str | bytes | None) -> list[TemplateField]:
    """Parse stored template content. Empty content means no fields."""
    if not conteudo:
        return []
    try:
        raw = orjson.loads(conteudo)
    except orjson.JSONDecodeError as e:
        raise TemplateFormatError(f"Template content is not valid JSON: {e}") from e
    if not isinstance(raw, list):
        raise TemplateFormatError("Template content must be a JSON list")

    fields: list[TemplateField] = []
    seen: set[str] = set()
    for i, rec in enumerate(raw):
        if not isinstance(rec, dict):
            raise TemplateFormatError(f"Template entry {i} is not an object")
        campo_id = str(rec.get("campo_id") or "").strip()
        index = str(rec.get("index") or "").strip()
        response_types = rec.get("response_types", [RESPONSE_TEXT])
        opcoes = rec.get("opcoes", [])
        if not isinstance(response_types, list) or not isinstance(opcoes, list):
            raise TemplateFormatError(f"Template entry {i}: response_types/opcoes must be lists")
        f = TemplateField(
            campo_id=campo_id,
            titulo=str(rec.get("titulo") or ""),
            index=index,
            display_index=str(rec.get("display_index") or index),
            response_types=tuple(str(t) for t in response_types),
            opcoes=tuple(str(o) for o in opcoes),
        )
        _check_field(f)
        if f.campo_id in seen:
            raise TemplateFormatError(f"Duplicate campo_id: {f.campo_id}")
        seen.add(f.campo_id)
        fields.append(f)
    return fields
