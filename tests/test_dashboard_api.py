"""Unit tests for the dashboard API endpoints and auth helpers."""
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest
from fastapi import HTTPException
from starlette.requests import Request

from dashboard.api import server
from fuc_eval.roles import Role
from fuc_eval.store import FucStore


FUC_TEXT = """Programação I

1. Designação
Programação I
2. Objetivos
Descrição geral.
2.1. Conhecimentos
Estruturas de dados.
3. Avaliação
Exame final
"""


def _make_request(
    *,
    user: str | None = None,
    role: str | None = None,
    method: str = "GET",
    path: str = "/api/dashboard",
) -> Request:
    headers: list[tuple[bytes, bytes]] = []
    if user is not None:
        headers.append((b"x-fuc-user", user.encode("utf-8")))
    if role is not None:
        headers.append((b"x-fuc-role", role.encode("utf-8")))
    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode("utf-8"),
        "query_string": b"",
        "headers": headers,
        "client": ("127.0.0.1", 12345),
        "server": ("127.0.0.1", 8000),
    }

    async def _receive() -> dict[str, Any]:
        return {"type": "http.request", "body": b"", "more_body": False}

    return Request(scope, _receive)


def _status(exc_info: pytest.ExceptionInfo[HTTPException]) -> int:
    return exc_info.value.status_code


@pytest.fixture()
def store(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> FucStore:
    s = FucStore(tmp_path / "fuc.duckdb", create_if_missing=True)
    s.create_user("admin", Role.ADMIN)
    s.create_user("gestor", Role.MANAGER)
    s.create_user("eva", Role.EVALUATOR)
    monkeypatch.setattr(server, "_store", s)
    yield s  # type: ignore[misc]
    s.close()


@pytest.fixture()
def fucs(store: FucStore) -> dict[str, dict[str, Any]]:
    return {
        "enabled": store.create_fuc("Programação I", FUC_TEXT, enabled=True),
        "disabled": store.create_fuc("Matemática", FUC_TEXT),
    }


# ───────────────────── Health and auth ───────────────────────────────


class TestHealthAndAuth:
    def test_health_without_store(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(server, "_store", None)
        assert asyncio.run(server.health()) == {"status": "ok", "db_loaded": False}

    def test_store_unavailable(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(server, "_store", None)
        with pytest.raises(HTTPException) as exc:
            server._get_store()
        assert _status(exc) == 503

    def test_missing_user_header(self, store: FucStore) -> None:
        with pytest.raises(HTTPException) as exc:
            server._auth_context(_make_request())
        assert _status(exc) == 401

    def test_unknown_user(self, store: FucStore) -> None:
        with pytest.raises(HTTPException) as exc:
            server._auth_context(_make_request(user="ninguem"))
        assert _status(exc) == 401

    def test_role_not_granted(self, store: FucStore) -> None:
        with pytest.raises(HTTPException) as exc:
            server._auth_context(_make_request(user="eva", role="admin"))
        assert _status(exc) == 403

    def test_unknown_role_header(self, store: FucStore) -> None:
        with pytest.raises(HTTPException) as exc:
            server._auth_context(_make_request(user="eva", role="aluno"))
        assert _status(exc) == 403

    def test_role_switch_for_multi_role_user(self, store: FucStore) -> None:
        store.create_user("gestor", Role.EVALUATOR)
        ctx = server._auth_context(_make_request(user="gestor", role="avaliador"))
        assert ctx.active_role is Role.EVALUATOR
        assert server._auth_context(_make_request(user="gestor")).active_role is Role.MANAGER

    def test_require_role_denies(self, store: FucStore) -> None:
        with pytest.raises(HTTPException) as exc:
            server._require_role(_make_request(user="eva"), Role.ADMIN)
        assert _status(exc) == 403


# ───────────────────── Users and views ───────────────────────────────


class TestUsers:
    def test_verify(self, store: FucStore) -> None:
        user = asyncio.run(server.verify_user(server.VerifyRequest(username="eva")))
        assert user["roles"] == ["avaliador"]

    def test_verify_unknown(self, store: FucStore) -> None:
        with pytest.raises(HTTPException) as exc:
            asyncio.run(server.verify_user(server.VerifyRequest(username="x")))
        assert _status(exc) == 404

    def test_create_user_grants_extra_role(self, store: FucStore) -> None:
        req = _make_request(user="admin", method="POST", path="/api/users")
        user = asyncio.run(server.create_user(req, server.UserCreate(username="eva", role="gestor")))
        assert user["roles"] == ["gestor", "avaliador"]

    def test_duplicate_role(self, store: FucStore) -> None:
        req = _make_request(user="admin", method="POST", path="/api/users")
        with pytest.raises(HTTPException) as exc:
            asyncio.run(server.create_user(req, server.UserCreate(username="eva", role="avaliador")))
        assert _status(exc) == 409

    def test_cannot_delete_self(self, store: FucStore) -> None:
        admin_id = store.get_user_by_username("admin")["id"]
        req = _make_request(user="admin", method="DELETE")
        with pytest.raises(HTTPException) as exc:
            asyncio.run(server.delete_user(req, admin_id))
        assert _status(exc) == 400

    def test_delete_unknown(self, store: FucStore) -> None:
        req = _make_request(user="admin", method="DELETE")
        with pytest.raises(HTTPException) as exc:
            asyncio.run(server.delete_user(req, 999))
        assert _status(exc) == 404

    def test_current_view(self, store: FucStore) -> None:
        out = asyncio.run(server.current_view(_make_request(user="gestor")))
        assert out["user"]["active_role"] == "gestor"
        assert out["view"]["can_manage_templates"] is True


# ───────────────────── Dashboard and FUCs ────────────────────────────


class TestDashboard:
    def test_evaluator_sees_enabled_with_templates(self, store: FucStore, fucs: dict) -> None:
        fuc_id = fucs["enabled"]["id"]
        store.create_template("Base", "[]", fuc_id, None)
        out = asyncio.run(server.dashboard(_make_request(user="eva")))
        assert out["titulo"] == "Sistema de Avaliação de FUCs"
        assert [c["id"] for c in out["fucs"]] == [fuc_id]
        card = out["fucs"][0]
        assert card["link"] == f"/avaliacao-fuc/{fuc_id}"
        assert card["submetidos"] == 0
        assert [t["nome"] for t in card["templates"]] == ["Base"]

    def test_admin_sees_all(self, store: FucStore, fucs: dict) -> None:
        out = asyncio.run(server.dashboard(_make_request(user="admin")))
        assert len(out["fucs"]) == 2
        assert "templates" not in out["fucs"][0]


class TestFucs:
    def test_create_from_campos(self, store: FucStore) -> None:
        body = server.FucCreate(
            titulo="Física",
            campos=[
                server.FucFieldIn(titulo="Objetivos", descricao="Aprender"),
                server.FucFieldIn(titulo="Avaliação", descricao="Exame"),
            ],
        )
        fuc = asyncio.run(server.create_fuc(_make_request(user="admin", method="POST"), body))
        assert fuc["conteudo"].startswith("Física\n\n1. Objetivos\nAprender\n")

    def test_create_rejects_both_inputs(self, store: FucStore) -> None:
        body = server.FucCreate(
            titulo="Física",
            conteudo="1. A\nb",
            campos=[server.FucFieldIn(titulo="A", descricao="b")],
        )
        with pytest.raises(HTTPException) as exc:
            asyncio.run(server.create_fuc(_make_request(user="admin", method="POST"), body))
        assert _status(exc) == 400

    def test_create_requires_admin(self, store: FucStore) -> None:
        body = server.FucCreate(titulo="Física", conteudo="")
        with pytest.raises(HTTPException) as exc:
            asyncio.run(server.create_fuc(_make_request(user="gestor", method="POST"), body))
        assert _status(exc) == 403

    def test_disabled_hidden_from_evaluator(self, store: FucStore, fucs: dict) -> None:
        with pytest.raises(HTTPException) as exc:
            asyncio.run(server.get_fuc(_make_request(user="eva"), fucs["disabled"]["id"]))
        assert _status(exc) == 404

    def test_enable_toggle(self, store: FucStore, fucs: dict) -> None:
        req = _make_request(user="admin", method="PATCH")
        out = asyncio.run(server.set_fuc_enabled(
            req, fucs["disabled"]["id"], server.FucEnabledUpdate(enabled=True),
        ))
        assert out == {"success": True, "enabled": True}

    def test_sections_grouped(self, store: FucStore, fucs: dict) -> None:
        out = asyncio.run(server.fuc_sections(
            _make_request(user="eva"), fucs["enabled"]["id"], grouped=True,
        ))
        assert [s["index"] for s in out["sections"]] == ["1", "2"]
        assert [c["id"] for c in out["sections"][1]["children"]] == ["campo_3", "campo_4"]

    def test_sections_flat(self, store: FucStore, fucs: dict) -> None:
        out = asyncio.run(server.fuc_sections(
            _make_request(user="eva"), fucs["enabled"]["id"], grouped=False,
        ))
        assert [s["index"] for s in out["sections"]] == ["1", "2", "2.1", "3"]

    def test_authoring_fields(self, store: FucStore, fucs: dict) -> None:
        out = asyncio.run(server.fuc_authoring_fields(
            _make_request(user="admin"), fucs["enabled"]["id"],
        ))
        assert [c["titulo"] for c in out["campos"]] == [
            "Designação", "Objetivos", "Conhecimentos", "Avaliação",
        ]
        assert out["campos"][0] == {
            "titulo": "Designação",
            "descricao": "Programação I",
            "tipo": "texto",
            "max_caracteres": 1000,
        }

    def test_content_without_sections(self, store: FucStore) -> None:
        fuc = store.create_fuc("Texto", "Apenas texto livre.", enabled=True)
        with pytest.raises(HTTPException) as exc:
            asyncio.run(server.fuc_sections(_make_request(user="eva"), fuc["id"], grouped=True))
        assert _status(exc) == 422

    def test_form_rejects_template_from_other_fuc(self, store: FucStore, fucs: dict) -> None:
        template = store.create_template("Outra", "[]", fucs["disabled"]["id"], None)
        with pytest.raises(HTTPException) as exc:
            asyncio.run(server.fuc_form(
                _make_request(user="eva"), fucs["enabled"]["id"], template_id=template["id"],
            ))
        assert _status(exc) == 400


# ───────────────────── Templates ─────────────────────────────────────


class TestTemplates:
    def _body(self, fuc_id: int, **campo: Any) -> server.TemplateCreate:
        return server.TemplateCreate(
            nome="Base",
            fuc_id=fuc_id,
            campos=[server.TemplateCampoIn(campo_id="campo_3", **campo)],
        )

    def test_manager_needs_permission(self, store: FucStore, fucs: dict) -> None:
        req = _make_request(user="gestor", method="POST")
        with pytest.raises(HTTPException) as exc:
            asyncio.run(server.create_template(req, self._body(fucs["enabled"]["id"])))
        assert _status(exc) == 403

    def test_manager_with_permission(self, store: FucStore, fucs: dict) -> None:
        fuc_id = fucs["enabled"]["id"]
        store.add_permission(store.get_user_by_username("gestor")["id"], fuc_id)
        req = _make_request(user="gestor", method="POST")
        body = self._body(
            fuc_id, display_index="A", response_types=["escolha_multipla"], opcoes=["Sim", "Não"],
        )
        out = asyncio.run(server.create_template(req, body))
        assert out["criador_nome"] == "gestor"
        assert out["campos"][0]["titulo"] == "Conhecimentos"
        assert out["campos"][0]["display_index"] == "A"
        assert out["campos"][0]["opcoes"] == ["Sim", "Não"]

    def test_disabled_fuc_hidden_from_manager(self, store: FucStore, fucs: dict) -> None:
        fuc_id = fucs["disabled"]["id"]
        store.add_permission(store.get_user_by_username("gestor")["id"], fuc_id)
        template = store.create_template("Antigo", "[]", fuc_id, None)
        req = _make_request(user="gestor", method="POST")
        calls = [
            server.fuc_template_fields(req, fuc_id),
            server.create_template(req, self._body(fuc_id)),
            server.update_template(
                req, template["id"], server.TemplateUpdate(nome="Novo", campos=[]),
            ),
            server.delete_template(req, template["id"]),
        ]
        for call in calls:
            with pytest.raises(HTTPException) as exc:
                asyncio.run(call)
            assert _status(exc) == 404
        assert store.get_template(template["id"])["nome"] == "Antigo"
        assert len(store.list_templates(fuc_id=fuc_id)) == 1

    def test_admin_configures_disabled_fuc(self, store: FucStore, fucs: dict) -> None:
        fuc_id = fucs["disabled"]["id"]
        out = asyncio.run(server.fuc_template_fields(_make_request(user="admin"), fuc_id))
        assert [c["campo_id"] for c in out["campos"]] == ["campo_1", "campo_2", "campo_3", "campo_4"]

    def test_unknown_field(self, store: FucStore, fucs: dict) -> None:
        req = _make_request(user="admin", method="POST")
        body = server.TemplateCreate(
            nome="Base",
            fuc_id=fucs["enabled"]["id"],
            campos=[server.TemplateCampoIn(campo_id="campo_99")],
        )
        with pytest.raises(HTTPException) as exc:
            asyncio.run(server.create_template(req, body))
        assert _status(exc) == 400

    def test_choice_without_options(self, store: FucStore, fucs: dict) -> None:
        req = _make_request(user="admin", method="POST")
        body = self._body(fucs["enabled"]["id"], response_types=["escolha_multipla"])
        with pytest.raises(HTTPException) as exc:
            asyncio.run(server.create_template(req, body))
        assert _status(exc) == 400

    def test_delete(self, store: FucStore, fucs: dict) -> None:
        template = store.create_template("Base", "[]", fucs["enabled"]["id"], None)
        resp = asyncio.run(server.delete_template(
            _make_request(user="admin", method="DELETE"), template["id"],
        ))
        assert resp.status_code == 204
        assert store.get_template(template["id"]) is None


# ───────────────────── Avaliacoes ────────────────────────────────────


class TestAvaliacoes:
    def test_submit(self, store: FucStore, fucs: dict) -> None:
        fuc_id = fucs["enabled"]["id"]
        body = server.AvaliacaoCreate(
            fuc_id=fuc_id,
            respostas={"campo_1": {"status": "adequado", "comentario": "ok"}},
            status="submetido",
        )
        row = asyncio.run(server.create_avaliacao(_make_request(user="eva", method="POST"), body))
        assert row["status"] == "submetido"
        assert row["resumo"]["status_counts"]["adequado"] == 1
        rows = store.dashboard_rows()
        assert {r["id"]: r["submetidos"] for r in rows}[fuc_id] == 1

    def test_invalid_response(self, store: FucStore, fucs: dict) -> None:
        body = server.AvaliacaoCreate(
            fuc_id=fucs["enabled"]["id"], respostas={"campo_2": {"status": "adequado"}},
        )
        with pytest.raises(HTTPException) as exc:
            asyncio.run(server.create_avaliacao(_make_request(user="eva", method="POST"), body))
        assert _status(exc) == 400

    def test_empty_submission(self, store: FucStore, fucs: dict) -> None:
        body = server.AvaliacaoCreate(fuc_id=fucs["enabled"]["id"], status="submetido")
        with pytest.raises(HTTPException) as exc:
            asyncio.run(server.create_avaliacao(_make_request(user="eva", method="POST"), body))
        assert _status(exc) == 400

    def test_only_evaluators_submit(self, store: FucStore, fucs: dict) -> None:
        body = server.AvaliacaoCreate(fuc_id=fucs["enabled"]["id"])
        with pytest.raises(HTTPException) as exc:
            asyncio.run(server.create_avaliacao(_make_request(user="admin", method="POST"), body))
        assert _status(exc) == 403

    def test_evaluator_lists_own_rows(self, store: FucStore, fucs: dict) -> None:
        fuc_id = fucs["enabled"]["id"]
        outro = store.create_user("rui", Role.EVALUATOR)
        eva = store.get_user_by_username("eva")
        for uid in (eva["id"], outro["id"]):
            store.create_avaliacao(
                fuc_id=fuc_id, template_id=None, avaliador_id=uid, respostas={}, status="gravado",
            )
        mine = asyncio.run(server.list_avaliacoes(_make_request(user="eva"), fuc_id))
        assert [r["avaliador_id"] for r in mine] == [eva["id"]]
        everyone = asyncio.run(server.list_avaliacoes(_make_request(user="admin"), fuc_id))
        assert len(everyone) == 2

    def test_relatorios(self, store: FucStore, fucs: dict) -> None:
        eva = store.get_user_by_username("eva")
        store.create_avaliacao(
            fuc_id=fucs["enabled"]["id"], template_id=None, avaliador_id=eva["id"],
            respostas={"campo_1": {"status": "incerteza"}}, status="submetido",
        )
        rows = asyncio.run(server.relatorios(
            _make_request(user="admin"), avaliador="ev", status="submetido", fuc="",
        ))
        assert len(rows) == 1
        assert rows[0]["resumo"]["status_counts"]["incerteza"] == 1

    def test_relatorios_invalid_status(self, store: FucStore) -> None:
        with pytest.raises(HTTPException) as exc:
            asyncio.run(server.relatorios(
                _make_request(user="admin"), avaliador="", status="apagado", fuc="",
            ))
        assert _status(exc) == 400


# ───────────────────── Permissions ───────────────────────────────────


class TestPermissions:
    def test_grant_to_non_manager(self, store: FucStore, fucs: dict) -> None:
        eva = store.get_user_by_username("eva")
        body = server.PermissionRequest(gestor_id=eva["id"], fuc_id=fucs["enabled"]["id"])
        with pytest.raises(HTTPException) as exc:
            asyncio.run(server.add_permission(_make_request(user="admin", method="POST"), body))
        assert _status(exc) == 400

    def test_grant_and_list(self, store: FucStore, fucs: dict) -> None:
        gestor = store.get_user_by_username("gestor")
        body = server.PermissionRequest(gestor_id=gestor["id"], fuc_id=fucs["disabled"]["id"])
        asyncio.run(server.add_permission(_make_request(user="admin", method="POST"), body))
        listed = asyncio.run(server.list_permissions(_make_request(user="gestor"), gestor["id"]))
        assert [f["titulo"] for f in listed] == ["Matemática"]

    def test_list_other_manager_denied(self, store: FucStore) -> None:
        with pytest.raises(HTTPException) as exc:
            asyncio.run(server.list_permissions(_make_request(user="eva"), 1))
        assert _status(exc) == 403
