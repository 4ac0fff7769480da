"""Roles, the authentication context and role-specific views.

The active role is an explicit field of an immutable :class:`AuthContext`
passed down to whatever needs it. Switching role is a pure transition
(:func:`with_active_role`) and view selection dispatches on the closed
:class:`Role` enum instead of comparing strings at every call site.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any


class Role(str, Enum):
    ADMIN = "admin"
    MANAGER = "gestor"
    EVALUATOR = "avaliador"


class RoleNotGrantedError(ValueError):
    """The user does not hold the requested role."""


def parse_role(value: str) -> Role:
    try:
        return Role(value.strip().lower())
    except ValueError:
        raise ValueError(f"Unknown role: {value!r}") from None


@dataclass(frozen=True, slots=True)
class AuthContext:
    user_id: int
    username: str
    roles: frozenset[Role]
    active_role: Role

    @classmethod
    def create(
        cls,
        user_id: int,
        username: str,
        roles: list[Role] | frozenset[Role],
        active_role: Role | None = None,
    ) -> AuthContext:
        """Build a context; the active role defaults to the highest granted."""
        granted = frozenset(roles)
        if not granted:
            raise RoleNotGrantedError(f"User {username!r} has no roles")
        if active_role is None:
            active_role = next(r for r in Role if r in granted)
        if active_role not in granted:
            raise RoleNotGrantedError(f"User {username!r} does not hold role {active_role.value!r}")
        return cls(user_id=user_id, username=username, roles=granted, active_role=active_role)

    def has_role(self, *roles: Role) -> bool:
        """True when the *active* role is one of *roles*."""
        return self.active_role in roles

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.user_id,
            "username": self.username,
            "roles": [r.value for r in Role if r in self.roles],
            "active_role": self.active_role.value,
        }


def with_active_role(ctx: AuthContext, role: Role) -> AuthContext:
    """Return a copy of *ctx* acting as *role*."""
    if role not in ctx.roles:
        raise RoleNotGrantedError(f"User {ctx.username!r} does not hold role {role.value!r}")
    return replace(ctx, active_role=role)


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class NavLink:
    path: str
    label: str


@dataclass(frozen=True, slots=True)
class RoleView:
    """What the frontend renders for one role."""

    role: Role
    label: str
    fuc_list_title: str
    navigation: tuple[NavLink, ...]
    can_create_fuc: bool = False
    can_edit_content: bool = False
    can_manage_templates: bool = False
    can_evaluate: bool = False
    only_enabled_fucs: bool = True

    def visible_fucs(self, fucs: list[dict[str, Any]]) -> list[dict[str, Any]]:
        if not self.only_enabled_fucs:
            return list(fucs)
        return [f for f in fucs if f.get("enabled")]

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role.value,
            "label": self.label,
            "fuc_list_title": self.fuc_list_title,
            "navigation": [{"path": n.path, "label": n.label} for n in self.navigation],
            "can_create_fuc": self.can_create_fuc,
            "can_edit_content": self.can_edit_content,
            "can_manage_templates": self.can_manage_templates,
            "can_evaluate": self.can_evaluate,
            "only_enabled_fucs": self.only_enabled_fucs,
        }


_DASHBOARD = NavLink("/dashboard", "Dashboard")
_GESTAO = NavLink("/gestao-fuc", "Gestão FUC")
_TEMPLATES = NavLink("/gerir-template", "Template FUC")

_VIEWS: dict[Role, RoleView] = {
    Role.ADMIN: RoleView(
        role=Role.ADMIN,
        label="Administrador",
        fuc_list_title="Gestão de FUCs",
        navigation=(
            _DASHBOARD,
            _GESTAO,
            _TEMPLATES,
            NavLink("/relatorios", "Relatórios"),
            NavLink("/admin/add-user", "Adicionar User"),
        ),
        can_create_fuc=True,
        can_edit_content=True,
        can_manage_templates=True,
        only_enabled_fucs=False,
    ),
    Role.MANAGER: RoleView(
        role=Role.MANAGER,
        label="Gestor",
        fuc_list_title="FUCs Disponíveis",
        navigation=(_DASHBOARD, _GESTAO, _TEMPLATES),
        can_manage_templates=True,
    ),
    Role.EVALUATOR: RoleView(
        role=Role.EVALUATOR,
        label="Avaliador",
        fuc_list_title="FUCs para Avaliação",
        navigation=(_DASHBOARD,),
        can_evaluate=True,
    ),
}

# Route prefix -> roles allowed; routes not listed only need a session.
_ROUTE_ROLES: dict[str, frozenset[Role]] = {
    "/gestao-fuc": frozenset({Role.MANAGER, Role.ADMIN}),
    "/gerir-template": frozenset({Role.MANAGER, Role.ADMIN}),
    "/criar-fuc": frozenset({Role.ADMIN}),
    "/relatorios": frozenset({Role.ADMIN}),
    "/admin/add-user": frozenset({Role.ADMIN}),
}

PUBLIC_ROUTES: frozenset[str] = frozenset({"/", "/login"})


def select_view(ctx: AuthContext) -> RoleView:
    return _VIEWS[ctx.active_role]


def route_allowed(ctx: AuthContext | None, path: str) -> bool:
    """Whether *ctx* may open the frontend route *path*."""
    if path in PUBLIC_ROUTES:
        return True
    if ctx is None:
        return False
    for prefix, allowed in _ROUTE_ROLES.items():
        if path == prefix or path.startswith(prefix + "/"):
            return ctx.active_role in allowed
    return True
