"""DuckDB read/write store for the FUC evaluation service.

Manages a single writable DuckDB file with:

* Users and their granted roles
* FUCs (title, type, raw numbered-heading content, enabled flag)
* Templates (evaluation field configuration per FUC, JSON)
* Evaluations ("avaliacoes": JSON responses, draft or submitted)
* Manager permissions per FUC

Write discipline: one connection, owned by whoever constructed the store.
DuckDB connections are not thread-safe; callers serialize access.
"""
from __future__ import annotations

import importlib
import logging
from pathlib import Path
from typing import Any

import orjson

from fuc_eval.roles import Role

# Dynamic DuckDB import for pyright compatibility
_duckdb_mod = importlib.import_module("duckdb")

log = logging.getLogger("fuc_eval.store")


def _json_dumps(obj: Any) -> str:
    return orjson.dumps(obj).decode("utf-8")


def _json_loads(s: str | None) -> Any:
    if not s:
        return {}
    return orjson.loads(s)


def _to_dict(cols: list[str], row: tuple[Any, ...]) -> dict[str, Any]:
    """Zip column names with a row tuple into a dict (strict length check)."""
    return dict(zip(cols, row, strict=True))


SCHEMA_VERSION = "1.0.0"


# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_SCHEMA_DDL = """
CREATE TABLE IF NOT EXISTS _schema_version (
    table_name VARCHAR PRIMARY KEY,
    version VARCHAR NOT NULL
);

CREATE SEQUENCE IF NOT EXISTS seq_users START 1;
CREATE SEQUENCE IF NOT EXISTS seq_fucs START 1;
CREATE SEQUENCE IF NOT EXISTS seq_templates START 1;
CREATE SEQUENCE IF NOT EXISTS seq_avaliacoes START 1;

-- ─── USERS ────────────────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY DEFAULT nextval('seq_users'),
    username VARCHAR NOT NULL UNIQUE,
    created_at TIMESTAMP DEFAULT current_timestamp
);

CREATE TABLE IF NOT EXISTS user_roles (
    user_id INTEGER NOT NULL,
    role VARCHAR NOT NULL,
    PRIMARY KEY (user_id, role)
);

-- ─── FUCS ─────────────────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS fucs (
    id INTEGER PRIMARY KEY DEFAULT nextval('seq_fucs'),
    titulo VARCHAR NOT NULL,
    tipo VARCHAR NOT NULL DEFAULT '',
    conteudo VARCHAR NOT NULL DEFAULT '',
    enabled BOOLEAN NOT NULL DEFAULT false,
    created_at TIMESTAMP DEFAULT current_timestamp
);

-- ─── TEMPLATES ────────────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS templates (
    id INTEGER PRIMARY KEY DEFAULT nextval('seq_templates'),
    nome VARCHAR NOT NULL,
    conteudo VARCHAR NOT NULL DEFAULT '[]',
    fuc_id INTEGER NOT NULL,
    criado_por INTEGER,
    created_at TIMESTAMP DEFAULT current_timestamp
);
CREATE INDEX IF NOT EXISTS idx_templates_fuc ON templates(fuc_id);

-- ─── AVALIACOES ───────────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS avaliacoes (
    id INTEGER PRIMARY KEY DEFAULT nextval('seq_avaliacoes'),
    template_id INTEGER,
    fuc_id INTEGER NOT NULL,
    avaliador_id INTEGER,
    respostas VARCHAR,
    status VARCHAR NOT NULL DEFAULT 'gravado',
    created_at TIMESTAMP DEFAULT current_timestamp
);
CREATE INDEX IF NOT EXISTS idx_avaliacoes_fuc ON avaliacoes(fuc_id);

-- ─── PERMISSIONS ──────────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS fuc_permissions (
    gestor_id INTEGER NOT NULL,
    fuc_id INTEGER NOT NULL,
    PRIMARY KEY (gestor_id, fuc_id)
)
"""

_TEMPLATE_SELECT = """
    SELECT t.*, u.username AS criador_nome
    FROM templates t
    LEFT JOIN users u ON t.criado_por = u.id
"""


class FucStore:
    """Read/write interface to the FUC evaluation DuckDB file."""

    def __init__(
        self,
        db_path: Path | str,
        *,
        create_if_missing: bool = False,
    ) -> None:
        self._db_path = Path(db_path)
        if not self._db_path.exists() and not create_if_missing:
            raise FileNotFoundError(f"FUC database not found: {self._db_path}")
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: Any = _duckdb_mod.connect(str(self._db_path))
        self._create_schema()

    def _create_schema(self) -> None:
        """Create all tables if they don't exist."""
        for stmt in _SCHEMA_DDL.split(";"):
            stmt = stmt.strip()
            if stmt:
                self._conn.execute(stmt)
        self._conn.execute(
            "INSERT INTO _schema_version VALUES ('fuc_store', ?) "
            "ON CONFLICT (table_name) DO UPDATE SET version = excluded.version",
            [SCHEMA_VERSION],
        )

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> FucStore:
        return self

    def __exit__(self, *_args: object) -> None:
        self.close()

    @property
    def schema_version(self) -> str:
        row = self._conn.execute(
            "SELECT version FROM _schema_version WHERE table_name = 'fuc_store'"
        ).fetchone()
        return str(row[0]) if row else ""

    def _fetch_all(self, sql: str, params: list[Any] | None = None) -> list[dict[str, Any]]:
        cur = self._conn.execute(sql, params or [])
        cols = [d[0] for d in cur.description]
        return [_to_dict(cols, row) for row in cur.fetchall()]

    def _fetch_one(self, sql: str, params: list[Any] | None = None) -> dict[str, Any] | None:
        rows = self._fetch_all(sql, params)
        return rows[0] if rows else None

    # ── Users ─────────────────────────────────────────────────────────

    def get_user(self, user_id: int) -> dict[str, Any] | None:
        user = self._fetch_one("SELECT * FROM users WHERE id = ?", [user_id])
        if user is not None:
            user["roles"] = self.get_roles(user_id)
        return user

    def get_user_by_username(self, username: str) -> dict[str, Any] | None:
        user = self._fetch_one("SELECT * FROM users WHERE username = ?", [username.strip()])
        if user is not None:
            user["roles"] = self.get_roles(int(user["id"]))
        return user

    def get_roles(self, user_id: int) -> list[str]:
        rows = self._conn.execute(
            "SELECT role FROM user_roles WHERE user_id = ?", [user_id]
        ).fetchall()
        granted = {str(r[0]) for r in rows}
        # Fixed admin -> gestor -> avaliador order
        return [r.value for r in Role if r.value in granted]

    def list_users(self) -> list[dict[str, Any]]:
        users = self._fetch_all("SELECT * FROM users ORDER BY created_at DESC, id DESC")
        for u in users:
            u["roles"] = self.get_roles(int(u["id"]))
        return users

    def create_user(self, username: str, role: Role) -> dict[str, Any]:
        """Create a user with *role*, or grant *role* to an existing user."""
        username = username.strip()
        if not username:
            raise ValueError("username is empty")
        existing = self.get_user_by_username(username)
        if existing is None:
            row = self._fetch_one(
                "INSERT INTO users (username) VALUES (?) RETURNING id", [username]
            )
            assert row is not None
            user_id = int(row["id"])
            log.info("created user %s (id=%d)", username, user_id)
        else:
            user_id = int(existing["id"])
        self.grant_role(user_id, role)
        user = self.get_user(user_id)
        assert user is not None
        return user

    def grant_role(self, user_id: int, role: Role) -> None:
        self._conn.execute(
            "INSERT INTO user_roles (user_id, role) VALUES (?, ?) ON CONFLICT DO NOTHING",
            [user_id, role.value],
        )

    def delete_user(self, user_id: int) -> bool:
        if self._fetch_one("SELECT id FROM users WHERE id = ?", [user_id]) is None:
            return False
        self._conn.execute("DELETE FROM user_roles WHERE user_id = ?", [user_id])
        self._conn.execute("DELETE FROM fuc_permissions WHERE gestor_id = ?", [user_id])
        self._conn.execute("DELETE FROM users WHERE id = ?", [user_id])
        log.info("deleted user id=%d", user_id)
        return True

    # ── FUCs ──────────────────────────────────────────────────────────

    def list_fucs(self) -> list[dict[str, Any]]:
        return self._fetch_all("SELECT * FROM fucs ORDER BY created_at DESC, id DESC")

    def get_fuc(self, fuc_id: int) -> dict[str, Any] | None:
        return self._fetch_one("SELECT * FROM fucs WHERE id = ?", [fuc_id])

    def create_fuc(
        self,
        titulo: str,
        conteudo: str,
        *,
        tipo: str = "",
        enabled: bool = False,
    ) -> dict[str, Any]:
        row = self._fetch_one(
            "INSERT INTO fucs (titulo, tipo, conteudo, enabled) VALUES (?, ?, ?, ?) RETURNING *",
            [titulo, tipo, conteudo, enabled],
        )
        assert row is not None
        log.info("created FUC %r (id=%d)", titulo, row["id"])
        return row

    def update_fuc_content(self, fuc_id: int, conteudo: str) -> dict[str, Any] | None:
        return self._fetch_one(
            "UPDATE fucs SET conteudo = ? WHERE id = ? RETURNING *", [conteudo, fuc_id]
        )

    def set_fuc_enabled(self, fuc_id: int, enabled: bool) -> dict[str, Any] | None:
        return self._fetch_one(
            "UPDATE fucs SET enabled = ? WHERE id = ? RETURNING *", [enabled, fuc_id]
        )

    def dashboard_rows(self) -> list[dict[str, Any]]:
        """FUCs with submitted/draft evaluation counts, newest first."""
        return self._fetch_all("""
            SELECT f.id, f.titulo, f.enabled,
                COUNT(DISTINCT CASE WHEN a.status = 'submetido' THEN a.id END) AS submetidos,
                COUNT(DISTINCT CASE WHEN a.status = 'gravado' THEN a.id END) AS gravados
            FROM fucs f
            LEFT JOIN avaliacoes a ON f.id = a.fuc_id
            GROUP BY f.id, f.titulo, f.enabled, f.created_at
            ORDER BY f.created_at DESC, f.id DESC
        """)

    # ── Templates ─────────────────────────────────────────────────────

    def list_templates(self, *, fuc_id: int | None = None) -> list[dict[str, Any]]:
        if fuc_id is None:
            return self._fetch_all(_TEMPLATE_SELECT + " ORDER BY t.created_at DESC, t.id DESC")
        return self._fetch_all(
            _TEMPLATE_SELECT + " WHERE t.fuc_id = ? ORDER BY t.created_at DESC, t.id DESC",
            [fuc_id],
        )

    def get_template(self, template_id: int) -> dict[str, Any] | None:
        return self._fetch_one(_TEMPLATE_SELECT + " WHERE t.id = ?", [template_id])

    def create_template(
        self,
        nome: str,
        conteudo: str,
        fuc_id: int,
        criado_por: int | None,
    ) -> dict[str, Any]:
        row = self._fetch_one(
            "INSERT INTO templates (nome, conteudo, fuc_id, criado_por) "
            "VALUES (?, ?, ?, ?) RETURNING id",
            [nome, conteudo, fuc_id, criado_por],
        )
        assert row is not None
        template = self.get_template(int(row["id"]))
        assert template is not None
        return template

    def update_template(self, template_id: int, nome: str, conteudo: str) -> dict[str, Any] | None:
        row = self._fetch_one(
            "UPDATE templates SET nome = ?, conteudo = ? WHERE id = ? RETURNING id",
            [nome, conteudo, template_id],
        )
        if row is None:
            return None
        return self.get_template(template_id)

    def delete_template(self, template_id: int) -> bool:
        row = self._fetch_one(
            "DELETE FROM templates WHERE id = ? RETURNING id", [template_id]
        )
        return row is not None

    # ── Avaliacoes ────────────────────────────────────────────────────

    def _decode_avaliacao(self, row: dict[str, Any]) -> dict[str, Any]:
        row["respostas"] = _json_loads(row.get("respostas"))
        return row

    def list_avaliacoes(self, fuc_id: int) -> list[dict[str, Any]]:
        rows = self._fetch_all("""
            SELECT a.*, u.username AS avaliador_nome, t.nome AS template_nome
            FROM avaliacoes a
            LEFT JOIN users u ON a.avaliador_id = u.id
            LEFT JOIN templates t ON a.template_id = t.id
            WHERE a.fuc_id = ?
            ORDER BY a.created_at DESC, a.id DESC
        """, [fuc_id])
        return [self._decode_avaliacao(r) for r in rows]

    def create_avaliacao(
        self,
        *,
        fuc_id: int,
        template_id: int | None,
        avaliador_id: int | None,
        respostas: dict[str, Any],
        status: str,
    ) -> dict[str, Any]:
        row = self._fetch_one(
            "INSERT INTO avaliacoes (template_id, fuc_id, avaliador_id, respostas, status) "
            "VALUES (?, ?, ?, ?, ?) RETURNING *",
            [template_id, fuc_id, avaliador_id, _json_dumps(respostas), status],
        )
        assert row is not None
        log.info("saved avaliacao id=%d for FUC %d (%s)", row["id"], fuc_id, status)
        return self._decode_avaliacao(row)

    def relatorios(
        self,
        *,
        avaliador: str = "",
        status: str | None = None,
        fuc: str = "",
    ) -> list[dict[str, Any]]:
        """Evaluation reports, filtered by evaluator/FUC substring and status."""
        clauses: list[str] = []
        params: list[Any] = []
        if avaliador:
            clauses.append("u.username ILIKE ?")
            params.append(f"%{avaliador}%")
        if fuc:
            clauses.append("f.titulo ILIKE ?")
            params.append(f"%{fuc}%")
        if status:
            clauses.append("a.status = ?")
            params.append(status)
        where = (" WHERE " + " AND ".join(clauses)) if clauses else ""
        rows = self._fetch_all(
            """
            SELECT a.id, a.fuc_id, f.titulo AS fuc, u.username AS avaliador,
                a.status, a.created_at AS data, a.respostas, t.nome AS template_nome
            FROM avaliacoes a
            JOIN fucs f ON a.fuc_id = f.id
            LEFT JOIN users u ON a.avaliador_id = u.id
            LEFT JOIN templates t ON a.template_id = t.id
            """ + where + " ORDER BY a.created_at DESC, a.id DESC",
            params,
        )
        return [self._decode_avaliacao(r) for r in rows]

    # ── Permissions ───────────────────────────────────────────────────

    def permitted_fucs(self, gestor_id: int) -> list[dict[str, Any]]:
        return self._fetch_all(
            "SELECT f.* FROM fucs f INNER JOIN fuc_permissions p ON f.id = p.fuc_id "
            "WHERE p.gestor_id = ? ORDER BY f.id",
            [gestor_id],
        )

    def has_permission(self, gestor_id: int, fuc_id: int) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM fuc_permissions WHERE gestor_id = ? AND fuc_id = ?",
            [gestor_id, fuc_id],
        ).fetchone()
        return row is not None

    def add_permission(self, gestor_id: int, fuc_id: int) -> None:
        self._conn.execute(
            "INSERT INTO fuc_permissions (gestor_id, fuc_id) VALUES (?, ?) ON CONFLICT DO NOTHING",
            [gestor_id, fuc_id],
        )

    def remove_permission(self, gestor_id: int, fuc_id: int) -> None:
        self._conn.execute(
            "DELETE FROM fuc_permissions WHERE gestor_id = ? AND fuc_id = ?",
            [gestor_id, fuc_id],
        )
