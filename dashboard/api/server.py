"""FastAPI server for the FUC evaluation dashboard.

Reads and writes data/fuc.duckdb via the FucStore class and exposes JSON
endpoints for the single-page frontend (admin, gestor and avaliador views).

Usage:
    cd dashboard
    PYTHONPATH=../src uvicorn api.server:app --reload --port 10000

Environment:
    FUC_DB_PATH          DuckDB file (default: <repo>/data/fuc.duckdb)
    FUC_ALLOWED_ORIGINS  Comma-separated CORS origins
"""
from __future__ import annotations

import asyncio
import logging
import os
import sys
from contextlib import asynccontextmanager
from dataclasses import replace
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel, Field
from starlette.responses import Response

# Add src to path so we can import fuc_eval modules
_src = Path(__file__).resolve().parents[2] / "src"
if str(_src) not in sys.path:
    sys.path.insert(0, str(_src))

from fuc_eval.evaluation_form import (  # noqa: E402
    EVALUATION_STATES,
    ResponseValidationError,
    build_form,
    summarize_responses,
    validate_responses,
)
from fuc_eval.fuc_document import (  # noqa: E402
    FucDocumentError,
    FucField,
    compose_document,
    import_fields,
)
from fuc_eval.roles import (  # noqa: E402
    AuthContext,
    Role,
    parse_role,
    select_view,
    with_active_role,
)
from fuc_eval.section_parser import group_sections, parse_sections  # noqa: E402
from fuc_eval.store import FucStore  # noqa: E402
from fuc_eval.templates import (  # noqa: E402
    TemplateField,
    TemplateFormatError,
    candidate_fields,
    configure_field,
    decode_template,
    encode_template,
)

log = logging.getLogger("dashboard")

# ---------------------------------------------------------------------------
# Globals
#
# DuckDB connections are NOT thread-safe. This server MUST run with a single
# uvicorn worker and all endpoints MUST remain async def so they execute on
# the single event loop thread. Writes additionally go through _write_lock.
# ---------------------------------------------------------------------------
_store: FucStore | None = None
_db_path = Path(
    os.environ.get("FUC_DB_PATH")
    or Path(__file__).resolve().parents[2] / "data" / "fuc.duckdb"
)
_write_lock = asyncio.Lock()

_DEFAULT_ORIGINS = (
    "http://localhost:10000",
    "http://localhost:5173",
    "https://projeto-estagio-sys-fuc-aval.vercel.app",
)
_allowed_origins = [
    o.strip()
    for o in os.environ.get("FUC_ALLOWED_ORIGINS", ",".join(_DEFAULT_ORIGINS)).split(",")
    if o.strip()
]

_USER_HEADER = "x-fuc-user"
_ROLE_HEADER = "x-fuc-role"


def _get_store() -> FucStore:
    """Get the store, raising 503 if not available."""
    if _store is None:
        raise HTTPException(status_code=503, detail="Database not available")
    return _store


# ---------------------------------------------------------------------------
# Auth context
# ---------------------------------------------------------------------------
def _auth_context(request: Request) -> AuthContext:
    """Build the caller's AuthContext from the session headers (401 if absent)."""
    username = (request.headers.get(_USER_HEADER) or "").strip()
    if not username:
        raise HTTPException(status_code=401, detail="Missing user")
    user = _get_store().get_user_by_username(username)
    if user is None:
        raise HTTPException(status_code=401, detail=f"Unknown user: {username}")
    raw_role = request.headers.get(_ROLE_HEADER)
    try:
        ctx = AuthContext.create(
            int(user["id"]),
            str(user["username"]),
            [Role(r) for r in user["roles"]],
        )
        if raw_role:
            ctx = with_active_role(ctx, parse_role(raw_role))
    except ValueError as e:
        raise HTTPException(status_code=403, detail=str(e)) from e
    return ctx


def _require_role(request: Request, *roles: Role) -> AuthContext:
    ctx = _auth_context(request)
    if roles and not ctx.has_role(*roles):
        allowed = ", ".join(r.value for r in roles)
        raise HTTPException(
            status_code=403,
            detail=f"Role {ctx.active_role.value!r} not allowed (requires {allowed})",
        )
    return ctx


def _get_fuc_or_404(fuc_id: int) -> dict[str, Any]:
    fuc = _get_store().get_fuc(fuc_id)
    if fuc is None:
        raise HTTPException(status_code=404, detail="FUC não encontrada")
    return fuc


def _get_template_or_404(template_id: int) -> dict[str, Any]:
    template = _get_store().get_template(template_id)
    if template is None:
        raise HTTPException(status_code=404, detail="Template não encontrado")
    return template


def _check_fuc_access(ctx: AuthContext, fuc: dict[str, Any]) -> None:
    """Disabled FUCs are only visible to roles whose view lists them."""
    if not select_view(ctx).visible_fucs([fuc]):
        raise HTTPException(status_code=404, detail="FUC não encontrada")


def _check_manager_permission(ctx: AuthContext, fuc_id: int) -> None:
    if ctx.active_role is Role.MANAGER and not _get_store().has_permission(ctx.user_id, fuc_id):
        raise HTTPException(status_code=403, detail=f"No permission for FUC {fuc_id}")


def _template_payload(template: dict[str, Any]) -> dict[str, Any]:
    out = dict(template)
    out["campos"] = [f.to_dict() for f in decode_template(template.get("conteudo"))]
    return out


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: ARG001
    global _store  # noqa: PLW0603
    try:
        _store = FucStore(_db_path, create_if_missing=True)
        log.info("Database opened: %s (schema %s)", _db_path, _store.schema_version)
    except Exception:
        log.exception("Could not open database at %s", _db_path)
        _store = None
    yield
    if _store is not None:
        _store.close()
        _store = None


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(
    title="FUC Evaluation API",
    version="0.1.0",
    default_response_class=ORJSONResponse,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Routes: Health
# ---------------------------------------------------------------------------
@app.get("/api/health")
async def health():
    return {
        "status": "ok",
        "db_loaded": _store is not None,
    }


# ---------------------------------------------------------------------------
# Routes: Users and session
# ---------------------------------------------------------------------------
class VerifyRequest(BaseModel):
    username: str = Field(min_length=1, max_length=200)


class UserCreate(BaseModel):
    username: str = Field(min_length=1, max_length=200)
    role: str = Field(pattern=r"^(admin|gestor|avaliador)$")


@app.post("/api/users/verify")
async def verify_user(body: VerifyRequest):
    """Login lookup: the user and every role they may act as."""
    user = _get_store().get_user_by_username(body.username)
    if user is None:
        raise HTTPException(status_code=404, detail="Utilizador não encontrado")
    return user


@app.get("/api/users/roles/{username}")
async def user_roles(username: str):
    user = _get_store().get_user_by_username(username)
    if user is None:
        raise HTTPException(status_code=404, detail="Utilizador não encontrado")
    return {"username": user["username"], "roles": user["roles"]}


@app.get("/api/users")
async def list_users(request: Request):
    _require_role(request, Role.ADMIN)
    return _get_store().list_users()


@app.post("/api/users", status_code=201)
async def create_user(request: Request, body: UserCreate):
    """Create a user, or grant another role to an existing username."""
    _require_role(request, Role.ADMIN)
    store = _get_store()
    existing = store.get_user_by_username(body.username)
    if existing is not None and body.role in existing["roles"]:
        raise HTTPException(
            status_code=409,
            detail=f"User {existing['username']} already has role {body.role}",
        )
    async with _write_lock:
        return store.create_user(body.username, Role(body.role))


@app.delete("/api/users/{user_id}")
async def delete_user(request: Request, user_id: int):
    ctx = _require_role(request, Role.ADMIN)
    if ctx.user_id == user_id:
        raise HTTPException(status_code=400, detail="Cannot delete the current user")
    async with _write_lock:
        if not _get_store().delete_user(user_id):
            raise HTTPException(status_code=404, detail="Utilizador não encontrado")
    return {"deleted": True}


@app.get("/api/views")
async def current_view(request: Request):
    """The active role's view: navigation and capabilities."""
    ctx = _auth_context(request)
    return {"user": ctx.to_dict(), "view": select_view(ctx).to_dict()}


# ---------------------------------------------------------------------------
# Routes: Dashboard
# ---------------------------------------------------------------------------
@app.get("/api/dashboard")
async def dashboard(request: Request):
    ctx = _auth_context(request)
    view = select_view(ctx)
    store = _get_store()
    rows = view.visible_fucs(store.dashboard_rows())
    cards: list[dict[str, Any]] = []
    for row in rows:
        card: dict[str, Any] = {
            "id": row["id"],
            "nome": row["titulo"],
            "link": f"/avaliacao-fuc/{row['id']}",
            "submetidos": int(row["submetidos"] or 0),
            "gravados": int(row["gravados"] or 0),
            "enabled": bool(row["enabled"]),
        }
        if view.can_evaluate:
            card["templates"] = [
                {"id": t["id"], "nome": t["nome"], "fuc_id": t["fuc_id"]}
                for t in store.list_templates(fuc_id=int(row["id"]))
            ]
        cards.append(card)
    return {"titulo": "Sistema de Avaliação de FUCs", "fucs": cards}


# ---------------------------------------------------------------------------
# Routes: FUCs
# ---------------------------------------------------------------------------
class FucFieldIn(BaseModel):
    titulo: str
    descricao: str
    tipo: str = "texto"
    max_caracteres: int = Field(default=1000, ge=1, le=100000)


class FucCreate(BaseModel):
    titulo: str = Field(min_length=1, max_length=500)
    tipo: str = ""
    conteudo: str | None = None
    campos: list[FucFieldIn] = Field(default_factory=list)
    enabled: bool = False


class FucContentUpdate(BaseModel):
    conteudo: str


class FucEnabledUpdate(BaseModel):
    enabled: bool


@app.get("/api/fucs")
async def list_fucs(request: Request):
    ctx = _auth_context(request)
    return select_view(ctx).visible_fucs(_get_store().list_fucs())


@app.get("/api/fucs/{fuc_id}")
async def get_fuc(request: Request, fuc_id: int):
    ctx = _auth_context(request)
    fuc = _get_fuc_or_404(fuc_id)
    _check_fuc_access(ctx, fuc)
    return fuc


@app.post("/api/fucs", status_code=201)
async def create_fuc(request: Request, body: FucCreate):
    """Create a FUC from raw content, or compose it from authored fields."""
    _require_role(request, Role.ADMIN)
    if body.conteudo is not None and body.campos:
        raise HTTPException(status_code=400, detail="Send either conteudo or campos, not both")
    if body.campos:
        campos = [
            FucField(c.titulo, c.descricao, tipo=c.tipo, max_caracteres=c.max_caracteres)
            for c in body.campos
        ]
        try:
            conteudo = compose_document(body.titulo, campos)
        except FucDocumentError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
    else:
        conteudo = body.conteudo or ""
    async with _write_lock:
        return _get_store().create_fuc(body.titulo, conteudo, tipo=body.tipo, enabled=body.enabled)


@app.put("/api/fucs/{fuc_id}")
async def update_fuc_content(request: Request, fuc_id: int, body: FucContentUpdate):
    _require_role(request, Role.ADMIN)
    async with _write_lock:
        fuc = _get_store().update_fuc_content(fuc_id, body.conteudo)
    if fuc is None:
        raise HTTPException(status_code=404, detail="FUC não encontrada")
    return fuc


@app.patch("/api/fucs/{fuc_id}")
async def set_fuc_enabled(request: Request, fuc_id: int, body: FucEnabledUpdate):
    _require_role(request, Role.ADMIN)
    async with _write_lock:
        fuc = _get_store().set_fuc_enabled(fuc_id, body.enabled)
    if fuc is None:
        raise HTTPException(status_code=404, detail="FUC não encontrada")
    return {"success": True, "enabled": fuc["enabled"]}


def _require_sections(fuc: dict[str, Any]) -> None:
    """422 when a FUC has content but no numbered sections."""
    if (fuc.get("conteudo") or "").strip() and not parse_sections(fuc["conteudo"]):
        raise HTTPException(status_code=422, detail="Nenhum campo encontrado nesta FUC")


@app.get("/api/fucs/{fuc_id}/sections")
async def fuc_sections(request: Request, fuc_id: int, grouped: bool = Query(True)):
    ctx = _auth_context(request)
    fuc = _get_fuc_or_404(fuc_id)
    _check_fuc_access(ctx, fuc)
    _require_sections(fuc)
    sections = parse_sections(fuc["conteudo"])
    if grouped:
        sections = group_sections(sections)
    return {"fuc_id": fuc_id, "grouped": grouped, "sections": [s.to_dict() for s in sections]}


@app.get("/api/fucs/{fuc_id}/campos")
async def fuc_authoring_fields(request: Request, fuc_id: int):
    """The FUC's sections as editable title/description fields."""
    _require_role(request, Role.ADMIN)
    fuc = _get_fuc_or_404(fuc_id)
    _require_sections(fuc)
    return {"fuc_id": fuc_id, "campos": [c.to_dict() for c in import_fields(fuc["conteudo"])]}


@app.get("/api/fucs/{fuc_id}/template-fields")
async def fuc_template_fields(request: Request, fuc_id: int):
    """Candidate fields a manager can attach evaluation settings to."""
    ctx = _require_role(request, Role.MANAGER, Role.ADMIN)
    fuc = _get_fuc_or_404(fuc_id)
    _check_fuc_access(ctx, fuc)
    _require_sections(fuc)
    return {"fuc_id": fuc_id, "campos": [f.to_dict() for f in candidate_fields(fuc["conteudo"])]}


@app.get("/api/fucs/{fuc_id}/form")
async def fuc_form(request: Request, fuc_id: int, template_id: int | None = Query(None)):
    ctx = _auth_context(request)
    fuc = _get_fuc_or_404(fuc_id)
    _check_fuc_access(ctx, fuc)
    _require_sections(fuc)
    template_fields = None
    if template_id is not None:
        template = _get_template_or_404(template_id)
        if int(template["fuc_id"]) != fuc_id:
            raise HTTPException(status_code=400, detail="Template belongs to another FUC")
        template_fields = decode_template(template["conteudo"])
    form = build_form(fuc["conteudo"], template_fields)
    return {
        "fuc": {"id": fuc["id"], "titulo": fuc["titulo"], "tipo": fuc["tipo"]},
        "template_id": template_id,
        "blocos": [b.to_dict() for b in form],
    }


# ---------------------------------------------------------------------------
# Routes: Templates
# ---------------------------------------------------------------------------
class TemplateCampoIn(BaseModel):
    campo_id: str
    titulo: str = ""
    index: str = ""
    display_index: str | None = None
    response_types: list[str] = Field(default_factory=lambda: ["texto"])
    opcoes: list[str] = Field(default_factory=list)


class TemplateCreate(BaseModel):
    nome: str = Field(min_length=1, max_length=300)
    fuc_id: int
    campos: list[TemplateCampoIn] = Field(default_factory=list)


class TemplateUpdate(BaseModel):
    nome: str = Field(min_length=1, max_length=300)
    campos: list[TemplateCampoIn] = Field(default_factory=list)


def _encode_campos(campos: list[TemplateCampoIn], conteudo: str) -> str:
    """Validate campos against the FUC's parsed fields and encode them."""
    known = {f.campo_id: f for f in candidate_fields(conteudo)}
    fields: list[TemplateField] = []
    try:
        for c in campos:
            base = known.get(c.campo_id)
            if base is None:
                raise HTTPException(status_code=400, detail=f"Unknown field for this FUC: {c.campo_id}")
            fields.append(configure_field(
                replace(base, titulo=c.titulo or base.titulo),
                display_index=c.display_index,
                response_types=tuple(c.response_types),
                opcoes=tuple(c.opcoes),
            ))
        return encode_template(fields)
    except TemplateFormatError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@app.get("/api/templates")
async def list_templates(request: Request, fuc_id: int | None = Query(None)):
    _auth_context(request)
    return [_template_payload(t) for t in _get_store().list_templates(fuc_id=fuc_id)]


@app.get("/api/templates/{template_id}")
async def get_template(request: Request, template_id: int):
    _auth_context(request)
    return _template_payload(_get_template_or_404(template_id))


@app.post("/api/templates", status_code=201)
async def create_template(request: Request, body: TemplateCreate):
    ctx = _require_role(request, Role.MANAGER, Role.ADMIN)
    fuc = _get_fuc_or_404(body.fuc_id)
    _check_fuc_access(ctx, fuc)
    _check_manager_permission(ctx, body.fuc_id)
    conteudo = _encode_campos(body.campos, fuc["conteudo"])
    async with _write_lock:
        template = _get_store().create_template(body.nome, conteudo, body.fuc_id, ctx.user_id)
    return _template_payload(template)


@app.put("/api/templates/{template_id}")
async def update_template(request: Request, template_id: int, body: TemplateUpdate):
    ctx = _require_role(request, Role.MANAGER, Role.ADMIN)
    current = _get_template_or_404(template_id)
    fuc_id = int(current["fuc_id"])
    fuc = _get_fuc_or_404(fuc_id)
    _check_fuc_access(ctx, fuc)
    _check_manager_permission(ctx, fuc_id)
    conteudo = _encode_campos(body.campos, fuc["conteudo"])
    async with _write_lock:
        template = _get_store().update_template(template_id, body.nome, conteudo)
    if template is None:
        raise HTTPException(status_code=404, detail="Template não encontrado")
    return _template_payload(template)


@app.delete("/api/templates/{template_id}")
async def delete_template(request: Request, template_id: int):
    ctx = _require_role(request, Role.MANAGER, Role.ADMIN)
    current = _get_template_or_404(template_id)
    _check_fuc_access(ctx, _get_fuc_or_404(int(current["fuc_id"])))
    _check_manager_permission(ctx, int(current["fuc_id"]))
    async with _write_lock:
        _get_store().delete_template(template_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Routes: Avaliacoes and reports
# ---------------------------------------------------------------------------
class AvaliacaoCreate(BaseModel):
    fuc_id: int
    template_id: int | None = None
    respostas: dict[str, Any] = Field(default_factory=dict)
    status: str = Field(default="gravado", pattern=r"^(gravado|submetido)$")


@app.get("/api/avaliacoes/{fuc_id}")
async def list_avaliacoes(request: Request, fuc_id: int):
    ctx = _auth_context(request)
    _check_fuc_access(ctx, _get_fuc_or_404(fuc_id))
    rows = _get_store().list_avaliacoes(fuc_id)
    if ctx.active_role is Role.EVALUATOR:
        rows = [r for r in rows if r["avaliador_id"] == ctx.user_id]
    return rows


@app.post("/api/avaliacoes", status_code=201)
async def create_avaliacao(request: Request, body: AvaliacaoCreate):
    """Save a draft or submit an evaluation; responses must fit the form."""
    ctx = _require_role(request, Role.EVALUATOR)
    fuc = _get_fuc_or_404(body.fuc_id)
    _check_fuc_access(ctx, fuc)
    template_fields = None
    if body.template_id is not None:
        template = _get_template_or_404(body.template_id)
        if int(template["fuc_id"]) != body.fuc_id:
            raise HTTPException(status_code=400, detail="Template belongs to another FUC")
        template_fields = decode_template(template["conteudo"])
    form = build_form(fuc["conteudo"], template_fields)
    try:
        respostas = validate_responses(form, body.respostas)
    except ResponseValidationError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    if body.status == "submetido" and not respostas:
        raise HTTPException(status_code=400, detail="Cannot submit an empty evaluation")
    async with _write_lock:
        row = _get_store().create_avaliacao(
            fuc_id=body.fuc_id,
            template_id=body.template_id,
            avaliador_id=ctx.user_id,
            respostas=respostas,
            status=body.status,
        )
    row["resumo"] = summarize_responses(respostas)
    return row


@app.get("/api/relatorios")
async def relatorios(
    request: Request,
    avaliador: str = Query(""),
    status: str | None = Query(None),
    fuc: str = Query(""),
):
    _require_role(request, Role.ADMIN)
    if status and status not in EVALUATION_STATES:
        raise HTTPException(status_code=400, detail=f"Invalid status: {status}")
    rows = _get_store().relatorios(avaliador=avaliador.strip(), status=status, fuc=fuc.strip())
    for row in rows:
        row["resumo"] = summarize_responses(row["respostas"])
    return rows


# ---------------------------------------------------------------------------
# Routes: Manager permissions
# ---------------------------------------------------------------------------
class PermissionRequest(BaseModel):
    gestor_id: int
    fuc_id: int


@app.get("/api/fuc-permissions/{gestor_id}")
async def list_permissions(request: Request, gestor_id: int):
    ctx = _auth_context(request)
    if ctx.active_role is not Role.ADMIN and ctx.user_id != gestor_id:
        raise HTTPException(status_code=403, detail="Not allowed")
    return _get_store().permitted_fucs(gestor_id)


@app.post("/api/fuc-permissions", status_code=201)
async def add_permission(request: Request, body: PermissionRequest):
    _require_role(request, Role.ADMIN)
    store = _get_store()
    gestor = store.get_user(body.gestor_id)
    if gestor is None or Role.MANAGER.value not in gestor["roles"]:
        raise HTTPException(status_code=400, detail=f"User {body.gestor_id} is not a gestor")
    _get_fuc_or_404(body.fuc_id)
    async with _write_lock:
        store.add_permission(body.gestor_id, body.fuc_id)
    return {"message": "Permissão adicionada com sucesso"}


@app.delete("/api/fuc-permissions")
async def remove_permission(request: Request, body: PermissionRequest):
    _require_role(request, Role.ADMIN)
    async with _write_lock:
        _get_store().remove_permission(body.gestor_id, body.fuc_id)
    return Response(status_code=204)
