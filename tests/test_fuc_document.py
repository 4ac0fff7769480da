"""Tests for fuc_eval.fuc_document module."""
import pytest

from fuc_eval.fuc_document import (
    DEFAULT_MAX_CHARS,
    FucDocumentError,
    FucField,
    compose_document,
    import_fields,
    serialize_sections,
    validate_fields,
)
from fuc_eval.section_parser import group_sections, parse_sections


SAMPLE_FUC_TEXT = """
Programação I

1. Designação
Programação I
2. Objetivos
Descrição geral.
2.1. Conhecimentos
Estruturas de dados.
2.1.1. Detalhe
Listas e árvores.
3. Avaliação
Exame final (60%)
Projeto (40%)
"""


def _triples(text: str) -> list[tuple[str, str, str]]:
    return [(s.index, s.title, s.description) for s in parse_sections(text)]


class TestComposeDocument:
    def test_layout(self) -> None:
        doc = compose_document(
            "Programação",
            [FucField("Objetivos", "Aprender"), FucField("Avaliação", "Exame")],
        )
        assert doc == "Programação\n\n1. Objetivos\nAprender\n\n2. Avaliação\nExame\n\n"

    def test_parse_recovers_fields(self) -> None:
        campos = [
            FucField("Objetivos", "Aprender a programar.\nEm Python."),
            FucField("Bibliografia", "Livro A"),
        ]
        sections = parse_sections(compose_document("Programação", campos))
        assert [(s.title, s.description) for s in sections] == [
            ("Objetivos", "Aprender a programar.\nEm Python."),
            ("Bibliografia", "Livro A"),
        ]

    def test_title_line_is_not_a_section(self) -> None:
        sections = parse_sections(compose_document("FUC X", [FucField("A", "a")]))
        assert [s.index for s in sections] == ["1"]

    def test_invalid_field_rejected(self) -> None:
        with pytest.raises(FucDocumentError):
            compose_document("X", [FucField("", "corpo")])


class TestValidateFields:
    def test_blank_description(self) -> None:
        with pytest.raises(FucDocumentError, match="descricao"):
            validate_fields([FucField("Título", "   ")])

    def test_unknown_type(self) -> None:
        with pytest.raises(FucDocumentError, match="tipo"):
            validate_fields([FucField("Título", "corpo", tipo="imagem")])

    def test_too_long(self) -> None:
        with pytest.raises(FucDocumentError, match="max 5"):
            validate_fields([FucField("Título", "123456", max_caracteres=5)])

    def test_valid(self) -> None:
        validate_fields([FucField("Título", "corpo", tipo="tabela")])

    def test_heading_like_description_line(self) -> None:
        campos = [
            FucField("Objetivos", "Os alunos devem:\n1. Ler\n2. Escrever"),
            FucField("Avaliação", "Exame"),
        ]
        with pytest.raises(FucDocumentError, match="would start a new section"):
            compose_document("P", campos)

    def test_sub_numbered_description_line(self) -> None:
        with pytest.raises(FucDocumentError, match="2.1."):
            validate_fields([FucField("Objetivos", "Geral\n  2.1. Específico")])

    def test_decimal_description_line_allowed(self) -> None:
        validate_fields([FucField("Carga", "1.5 horas semanais\n3 ECTS")])

    def test_number_only_title(self) -> None:
        with pytest.raises(FucDocumentError, match="no text"):
            compose_document("P", [FucField("2024", "Ano"), FucField("B", "b")])

    def test_multi_line_title(self) -> None:
        with pytest.raises(FucDocumentError, match="single line"):
            validate_fields([FucField("Objetivos\nGerais", "corpo")])

    def test_accepted_fields_parse_back_whole(self) -> None:
        campos = [
            FucField("Objetivos", "Os alunos devem:\n- Ler\n- Escrever"),
            FucField("Avaliação", "Exame (60%)"),
        ]
        sections = parse_sections(compose_document("P", campos))
        assert [(s.title, s.description) for s in sections] == [
            (c.titulo, c.descricao) for c in campos
        ]


class TestSerializeSections:
    def test_round_trip_is_semantic(self) -> None:
        text = serialize_sections(parse_sections(SAMPLE_FUC_TEXT))
        assert _triples(text) == _triples(SAMPLE_FUC_TEXT)

    def test_grouped_input_matches_flat(self) -> None:
        flat = parse_sections(SAMPLE_FUC_TEXT)
        assert serialize_sections(group_sections(flat)) == serialize_sections(flat)

    def test_keeps_original_indexes(self) -> None:
        text = serialize_sections(parse_sections(SAMPLE_FUC_TEXT))
        assert text.startswith("1. Designação\nProgramação I\n\n2. Objetivos\n")
        assert "2.1.1. Detalhe\nListas e árvores.\n" in text

    def test_empty(self) -> None:
        assert serialize_sections([]) == ""


class TestImportFields:
    def test_fields_in_order(self) -> None:
        campos = import_fields(SAMPLE_FUC_TEXT)
        assert [c.titulo for c in campos] == [
            "Designação", "Objetivos", "Conhecimentos", "Detalhe", "Avaliação",
        ]
        assert campos[-1].descricao == "Exame final (60%)\nProjeto (40%)"
        assert all(c.tipo == "texto" for c in campos)

    def test_no_sections(self) -> None:
        assert import_fields("só texto") == []

    def test_long_description_recomposes(self) -> None:
        body = "Texto longo. " * 120
        campos = import_fields(f"1. Programa\n{body}\n2. Avaliação\nExame\n")
        assert campos[0].max_caracteres == len(body.strip())
        assert campos[1].max_caracteres == DEFAULT_MAX_CHARS
        recomposed = parse_sections(compose_document("P", campos))
        assert [s.description for s in recomposed] == [body.strip(), "Exame"]
