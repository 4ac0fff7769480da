"""Tests for import_fucs.py."""
from __future__ import annotations

from pathlib import Path

import pytest

from scripts.import_fucs import collect_paths, import_files, title_from_path
from fuc_eval.store import FucStore


FUC_TEXT = "1. Objetivos\nAprender.\n2. Avaliação\nExame.\n"


@pytest.fixture()
def store(tmp_path: Path) -> FucStore:
    s = FucStore(tmp_path / "db" / "fuc.duckdb", create_if_missing=True)
    yield s  # type: ignore[misc]
    s.close()


def test_collect_paths_expands_directories(tmp_path: Path) -> None:
    (tmp_path / "b.txt").write_text("x", encoding="utf-8")
    (tmp_path / "a.txt").write_text("x", encoding="utf-8")
    (tmp_path / "notes.md").write_text("x", encoding="utf-8")
    explicit = tmp_path / "other.dat"
    paths = collect_paths([str(tmp_path), str(explicit)])
    assert [p.name for p in paths] == ["a.txt", "b.txt", "other.dat"]


def test_title_from_path() -> None:
    assert title_from_path(Path("/x/Programacao_I.txt")) == "Programacao I"


def test_import_files(tmp_path: Path, store: FucStore) -> None:
    good = tmp_path / "Programacao_I.txt"
    good.write_text(FUC_TEXT, encoding="utf-8")
    empty = tmp_path / "sem_secoes.txt"
    empty.write_text("Só texto.\n", encoding="utf-8")
    missing = tmp_path / "absent.txt"

    summary = import_files(store, [good, empty, missing], tipo="Licenciatura", enable=True)

    assert [i["titulo"] for i in summary["imported"]] == ["Programacao I"]
    assert summary["imported"][0]["section_count"] == 2
    assert {s["reason"] for s in summary["skipped"]} == {"no_sections", "not_found"}
    fuc = store.get_fuc(summary["imported"][0]["id"])
    assert fuc["enabled"] is True
    assert fuc["tipo"] == "Licenciatura"
    assert fuc["conteudo"] == FUC_TEXT
