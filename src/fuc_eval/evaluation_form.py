"""Evaluation form built from a FUC's parsed and grouped sections.

Each form block mirrors a grouped Section. Field identity is the parser's
``campo_<position>`` id, so responses saved against one parse still line up
after the same text is parsed again.
"""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from fuc_eval.section_parser import KIND_SECTION, Section, group_sections, parse_sections
from fuc_eval.templates import RESPONSE_CHOICE, RESPONSE_TEXT, TemplateField

STATUS_ADEQUATE = "adequado"
STATUS_INADEQUATE = "nao_adequado"
STATUS_UNCERTAIN = "incerteza"
FIELD_STATUSES: tuple[str, ...] = (STATUS_ADEQUATE, STATUS_INADEQUATE, STATUS_UNCERTAIN)

EVALUATION_DRAFT = "gravado"
EVALUATION_SUBMITTED = "submetido"
EVALUATION_STATES: tuple[str, ...] = (EVALUATION_DRAFT, EVALUATION_SUBMITTED)

_RESPONSE_KEYS = frozenset({"status", "comentario", RESPONSE_TEXT, RESPONSE_CHOICE})


class ResponseValidationError(ValueError):
    """Evaluator responses do not fit the form."""


@dataclass(frozen=True, slots=True)
class FormBlock:
    """A renderable unit of the evaluation form."""

    field_id: str
    index: str
    display_index: str
    title: str
    description: str
    kind: str
    evaluable: bool
    response_types: tuple[str, ...] = ()
    opcoes: tuple[str, ...] = ()
    children: tuple[FormBlock, ...] = field(default=())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.field_id,
            "index": self.index,
            "display_index": self.display_index,
            "title": self.title,
            "description": self.description,
            "kind": self.kind,
            "evaluable": self.evaluable,
            "response_types": list(self.response_types),
            "opcoes": list(self.opcoes),
            "children": [c.to_dict() for c in self.children],
        }


def _block(section: Section, config: dict[str, TemplateField] | None) -> FormBlock:
    children = tuple(_block(c, config) for c in section.children)
    if config is None:
        # No template: every leaf gets the default status/comment controls.
        return FormBlock(
            field_id=section.field_id,
            index=section.index,
            display_index=section.index,
            title=section.title,
            description=section.description,
            kind=section.kind,
            evaluable=section.kind != KIND_SECTION,
            children=children,
        )
    tf = config.get(section.field_id)
    return FormBlock(
        field_id=section.field_id,
        index=section.index,
        display_index=tf.display_index if tf else section.index,
        title=section.title,
        description=section.description,
        kind=section.kind,
        evaluable=tf is not None,
        response_types=tf.response_types if tf else (),
        opcoes=tf.opcoes if tf else (),
        children=children,
    )


def build_form(
    conteudo: str | None,
    template_fields: list[TemplateField] | None = None,
) -> list[FormBlock]:
    """Parse, group and annotate a FUC for evaluation.

    Args:
        conteudo: The FUC's stored text.
        template_fields: When given, only these fields are evaluable and
            they carry the template's response types and options.

    Returns:
        Top-level blocks in document order (max nesting depth 2).
    """
    grouped = group_sections(parse_sections(conteudo))
    config = None
    if template_fields is not None:
        config = {tf.campo_id: tf for tf in template_fields}
    return [_block(s, config) for s in grouped]


def iter_blocks(form: list[FormBlock]) -> list[FormBlock]:
    """Flatten the form in document order."""
    flat: list[FormBlock] = []
    for b in form:
        flat.append(b)
        flat.extend(iter_blocks(list(b.children)))
    return flat


def validate_responses(
    form: list[FormBlock],
    respostas: dict[str, Any],
) -> dict[str, dict[str, Any]]:
    """Check evaluator responses against the form and normalize them.

    Each response is a dict with any of ``status``, ``comentario``,
    ``texto`` and ``escolha_multipla``. Empty values are dropped, as are
    responses left entirely empty.

    Raises:
        ResponseValidationError: on the first response that does not fit.
    """
    blocks = {b.field_id: b for b in iter_blocks(form)}
    normalized: dict[str, dict[str, Any]] = {}
    for field_id, resposta in respostas.items():
        block = blocks.get(field_id)
        if block is None:
            raise ResponseValidationError(f"Unknown field: {field_id}")
        if not block.evaluable:
            raise ResponseValidationError(f"Field is not evaluable: {field_id}")
        if not isinstance(resposta, dict):
            raise ResponseValidationError(f"{field_id}: response must be an object")
        extra = set(resposta) - _RESPONSE_KEYS
        if extra:
            raise ResponseValidationError(f"{field_id}: unexpected keys {sorted(extra)}")

        clean: dict[str, Any] = {}
        status = resposta.get("status")
        if status:
            if status not in FIELD_STATUSES:
                raise ResponseValidationError(f"{field_id}: invalid status {status!r}")
            clean["status"] = status
        for key in ("comentario", RESPONSE_TEXT):
            value = resposta.get(key)
            if value is None or value == "":
                continue
            if not isinstance(value, str):
                raise ResponseValidationError(f"{field_id}: {key} must be text")
            if key == RESPONSE_TEXT and block.response_types and RESPONSE_TEXT not in block.response_types:
                raise ResponseValidationError(f"{field_id}: free text is not enabled")
            clean[key] = value.strip()
        choice = resposta.get(RESPONSE_CHOICE)
        if choice:
            if RESPONSE_CHOICE not in block.response_types:
                raise ResponseValidationError(f"{field_id}: multiple choice is not enabled")
            chosen = [choice] if isinstance(choice, str) else choice
            if not isinstance(chosen, list) or any(c not in block.opcoes for c in chosen):
                raise ResponseValidationError(f"{field_id}: choice outside the option list")
            clean[RESPONSE_CHOICE] = list(chosen)
        if clean:
            normalized[field_id] = clean
    return normalized


def summarize_responses(respostas: dict[str, dict[str, Any]]) -> dict[str, Any]:
    """Per-field summary rows plus a count of each status."""
    rows = [{"campo": campo, **dados} for campo, dados in respostas.items()]
    counts: Counter[str] = Counter(
        d["status"] for d in respostas.values() if d.get("status")
    )
    return {
        "total": len(rows),
        "rows": rows,
        "status_counts": {s: counts.get(s, 0) for s in FIELD_STATUSES},
    }
