from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from fleet_rbac.domain.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from fleet_rbac.domain.models import (
    Permission,
    Role,
    RoleCreate,
    RolePermission,
    RoleScope,
    RoleUpdate,
    now_utc,
)
from fleet_rbac.domain.permissions import PermissionCode
from fleet_rbac.services.base import AdminService
from fleet_rbac.services.escalation_guard import ensure_can_grant, role_carries_super_admin

logger = logging.getLogger(__name__)


def normalize_role_name(name: str) -> str:
    return name.strip().lower()


def validate_role_scope(scope: RoleScope, tenant_id: str | None) -> None:
    if scope == RoleScope.TENANT and tenant_id is None:
        raise ValidationError("Tenant ID is required for TENANT scope roles")
    if scope == RoleScope.GLOBAL and tenant_id is not None:
        raise ValidationError("Tenant ID must be null for GLOBAL scope roles")


class RoleService(AdminService):
    def _get_role(self, session: Session, role_id: str) -> Role:
        role = session.get(Role, role_id)
        if role is None:
            raise NotFoundError(f"Role not found with id: {role_id}")
        return role

    def _name_taken(
        self,
        session: Session,
        name: str,
        tenant_id: str | None,
        exclude_role_id: str | None = None,
    ) -> bool:
        statement = select(Role.id).where(Role.name == name)
        if tenant_id is None:
            statement = statement.where(col(Role.tenant_id).is_(None))
        else:
            statement = statement.where(Role.tenant_id == tenant_id)
        if exclude_role_id is not None:
            statement = statement.where(Role.id != exclude_role_id)
        return session.exec(statement).first() is not None

    def _ensure_role_mutable(self, session: Session, actor_id: str, role: Role) -> None:
        if role_carries_super_admin(self._role_snapshot(session, role)) and not self.authz.is_super_admin(actor_id):
            logger.warning("user %s tried to modify elevated role %s", actor_id, role.id)
            raise ForbiddenError(f"Cannot modify elevated privilege role: {role.name}")

    def _attach_permissions(
        self,
        session: Session,
        actor_id: str,
        role: Role,
        permission_ids: list[str],
    ) -> None:
        permissions = self._load_permissions(session, permission_ids)
        current = {item.id: item for item in self._role_permissions(session, role.id)}
        wanted = {item.id: item for item in permissions}

        newly_attached = [item.code for item_id, item in wanted.items() if item_id not in current]
        ensure_can_grant(self.authz, actor_id, newly_attached, role.tenant_id)

        for item_id in current.keys() - wanted.keys():
            link = session.get(RolePermission, (role.id, item_id))
            if link is not None:
                session.delete(link)
        for item_id in sorted(wanted.keys() - current.keys()):
            session.add(RolePermission(role_id=role.id, permission_id=item_id))

    def create_role(self, actor_id: str, payload: RoleCreate) -> Role:
        validate_role_scope(payload.scope, payload.tenant_id)
        self._require_tenant_target(actor_id, PermissionCode.ROLE_CREATE, payload.tenant_id)
        name = normalize_role_name(payload.name)
        with self._session() as session:
            if self._name_taken(session, name, payload.tenant_id):
                raise ConflictError(f"Role with name {name} already exists for this tenant")
            role = Role(
                name=name,
                description=payload.description,
                tenant_id=payload.tenant_id,
                scope=payload.scope,
                created_by=actor_id,
            )
            session.add(role)
            self._attach_permissions(session, actor_id, role, payload.permission_ids)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("role name already exists in tenant") from exc
            session.refresh(role)
            logger.info("role %s (%s) created by %s", role.id, role.name, actor_id)
            return role

    def update_role(self, actor_id: str, role_id: str, payload: RoleUpdate) -> Role:
        with self._session() as session:
            role = self._get_role(session, role_id)
            scope = payload.scope if payload.scope is not None else role.scope
            tenant_id = payload.tenant_id if "tenant_id" in payload.model_fields_set else role.tenant_id
            validate_role_scope(scope, tenant_id)
            self._require_tenant_target(actor_id, PermissionCode.ROLE_UPDATE, role.tenant_id)
            if tenant_id != role.tenant_id:
                self._require_tenant_target(actor_id, PermissionCode.ROLE_UPDATE, tenant_id)
            self._ensure_role_mutable(session, actor_id, role)

            name = normalize_role_name(payload.name) if payload.name is not None else role.name
            if self._name_taken(session, name, tenant_id, exclude_role_id=role.id):
                raise ConflictError(f"Role with name {name} already exists for this tenant")

            role.name = name
            role.scope = scope
            role.tenant_id = tenant_id
            if payload.description is not None:
                role.description = payload.description
            role.updated_at = now_utc()
            session.add(role)
            if payload.permission_ids is not None:
                self._attach_permissions(session, actor_id, role, payload.permission_ids)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("role name already exists in tenant") from exc
            session.refresh(role)
            logger.info("role %s updated by %s", role_id, actor_id)
            return role

    def update_role_permissions(self, actor_id: str, role_id: str, permission_ids: list[str]) -> list[Permission]:
        with self._session() as session:
            role = self._get_role(session, role_id)
            self._require_tenant_target(actor_id, PermissionCode.ROLE_UPDATE, role.tenant_id)
            self._ensure_role_mutable(session, actor_id, role)
            self._attach_permissions(session, actor_id, role, permission_ids)
            role.updated_at = now_utc()
            session.add(role)
            session.commit()
            logger.info("role %s permissions replaced by %s", role_id, actor_id)
            return sorted(self._role_permissions(session, role_id), key=lambda item: item.code)

    def deactivate_role(self, actor_id: str, role_id: str) -> None:
        with self._session() as session:
            role = self._get_role(session, role_id)
            self._require_tenant_target(actor_id, PermissionCode.ROLE_DELETE, role.tenant_id)
            self._ensure_role_mutable(session, actor_id, role)
            role.is_active = False
            role.updated_at = now_utc()
            session.add(role)
            session.commit()
            logger.info("role %s deactivated by %s", role_id, actor_id)

    def get_role(self, actor_id: str, role_id: str) -> Role:
        with self._session() as session:
            role = self._get_role(session, role_id)
        self._require(actor_id, PermissionCode.ROLE_READ, role.tenant_id)
        return role

    def get_role_permissions(self, actor_id: str, role_id: str) -> list[Permission]:
        with self._session() as session:
            role = self._get_role(session, role_id)
            self._require(actor_id, PermissionCode.ROLE_READ, role.tenant_id)
            return sorted(self._role_permissions(session, role_id), key=lambda item: item.code)

    def list_roles(
        self,
        actor_id: str,
        tenant_id: str | None = None,
        scope: RoleScope | None = None,
    ) -> list[Role]:
        self._require(actor_id, PermissionCode.ROLE_READ, tenant_id)
        with self._session() as session:
            statement = select(Role).where(col(Role.is_active).is_(True))
            if tenant_id is not None:
                statement = statement.where(Role.tenant_id == tenant_id)
            if scope is not None:
                statement = statement.where(Role.scope == scope)
            return list(session.exec(statement.order_by(col(Role.name))).all())
