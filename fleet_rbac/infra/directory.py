"""Read-only view of users, roles and permissions for the authorization engine.

The store hands out frozen snapshots rather than ORM rows so that nothing the
engine touches can lazy-load behind its back.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from fleet_rbac.domain.models import Permission, Role, RolePermission, RoleScope, User, UserRole
from fleet_rbac.infra.db import get_engine


@dataclass(frozen=True)
class DirectoryPermission:
    id: str
    code: str
    is_active: bool
    requires_scope: bool


@dataclass(frozen=True)
class DirectoryRole:
    id: str
    name: str
    tenant_id: str | None
    scope: RoleScope
    is_active: bool
    permissions: tuple[DirectoryPermission, ...] = ()

    def carries(self, code: str) -> bool:
        return any(permission.code == code for permission in self.permissions)


@dataclass(frozen=True)
class DirectoryUser:
    id: str
    tenant_id: str | None
    is_active: bool
    roles: tuple[DirectoryRole, ...] = field(default_factory=tuple)


class DirectoryStore(Protocol):
    def find_user_with_roles_and_permissions(self, user_id: str) -> DirectoryUser | None: ...

    def find_permission_by_code(self, code: str) -> DirectoryPermission | None: ...


def snapshot_permission(permission: Permission) -> DirectoryPermission:
    return DirectoryPermission(
        id=permission.id,
        code=permission.code,
        is_active=permission.is_active,
        requires_scope=permission.requires_scope,
    )


def snapshot_role(role: Role, permissions: list[Permission]) -> DirectoryRole:
    return DirectoryRole(
        id=role.id,
        name=role.name,
        tenant_id=role.tenant_id,
        scope=role.scope,
        is_active=role.is_active,
        permissions=tuple(snapshot_permission(item) for item in permissions),
    )


class SqlDirectoryStore:
    def __init__(self, engine_factory: Callable[[], Engine] = get_engine) -> None:
        self._engine_factory = engine_factory

    def _session(self) -> Session:
        return Session(self._engine_factory(), expire_on_commit=False)

    def find_user_with_roles_and_permissions(self, user_id: str) -> DirectoryUser | None:
        statement = (
            select(User, Role, Permission)
            .select_from(User)
            .join(UserRole, col(UserRole.user_id) == col(User.id), isouter=True)
            .join(Role, col(Role.id) == col(UserRole.role_id), isouter=True)
            .join(RolePermission, col(RolePermission.role_id) == col(Role.id), isouter=True)
            .join(Permission, col(Permission.id) == col(RolePermission.permission_id), isouter=True)
            .where(User.id == user_id)
        )
        with self._session() as session:
            rows = list(session.exec(statement).all())

        if not rows:
            return None

        user = rows[0][0]
        roles: dict[str, Role] = {}
        role_permissions: dict[str, dict[str, Permission]] = {}
        for _, role, permission in rows:
            if role is None:
                continue
            roles.setdefault(role.id, role)
            bucket = role_permissions.setdefault(role.id, {})
            if permission is not None:
                bucket.setdefault(permission.id, permission)

        return DirectoryUser(
            id=user.id,
            tenant_id=user.tenant_id,
            is_active=user.is_active,
            roles=tuple(
                snapshot_role(role, list(role_permissions[role_id].values()))
                for role_id, role in roles.items()
            ),
        )

    def find_permission_by_code(self, code: str) -> DirectoryPermission | None:
        with self._session() as session:
            permission = session.exec(select(Permission).where(Permission.code == code)).first()
            if permission is None:
                return None
            return snapshot_permission(permission)
