from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from fleet_rbac.domain.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from fleet_rbac.domain.models import Permission, PermissionCreate, PermissionUpdate
from fleet_rbac.domain.permissions import PermissionCategory, PermissionCode, normalize_code
from fleet_rbac.services.base import AdminService

logger = logging.getLogger(__name__)


class PermissionAdminService(AdminService):
    def _get_permission(self, session: Session, permission_id: str) -> Permission:
        permission = session.get(Permission, permission_id)
        if permission is None:
            raise NotFoundError(f"Permission not found with id: {permission_id}")
        return permission

    def _ensure_grantable(self, actor_id: str, code: str) -> None:
        if not self.authz.can_grant_permission(actor_id, code, None):
            logger.info("user %s may not manage permission %s", actor_id, code)
            raise ForbiddenError(f"Insufficient permissions to manage permission: {code}")

    def _code_taken(self, session: Session, code: str, exclude_id: str | None = None) -> bool:
        statement = select(Permission.id).where(Permission.code == code)
        if exclude_id is not None:
            statement = statement.where(Permission.id != exclude_id)
        return session.exec(statement).first() is not None

    def create_permission(self, actor_id: str, payload: PermissionCreate) -> Permission:
        code = normalize_code(payload.code)
        if code is None:
            raise ValidationError("Permission code must not be blank")
        self._ensure_grantable(actor_id, code)
        with self._session() as session:
            if self._code_taken(session, code):
                raise ConflictError(f"Permission with code already exists: {code}")
            permission = Permission(
                code=code,
                name=payload.name.strip(),
                description=payload.description,
                category=payload.category,
                requires_scope=payload.requires_scope,
                created_by=actor_id,
            )
            session.add(permission)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("permission code already exists") from exc
            session.refresh(permission)
            logger.info("permission %s created by %s", code, actor_id)
            return permission

    def update_permission(self, actor_id: str, permission_id: str, payload: PermissionUpdate) -> Permission:
        code = normalize_code(payload.code)
        if code is None:
            raise ValidationError("Permission code must not be blank")
        with self._session() as session:
            permission = self._get_permission(session, permission_id)
            self._ensure_grantable(actor_id, code)
            if code != permission.code and self._code_taken(session, code, exclude_id=permission_id):
                raise ConflictError(f"Permission with code already exists: {code}")

            permission.code = code
            if payload.name is not None:
                permission.name = payload.name.strip()
            if payload.description is not None:
                permission.description = payload.description
            if payload.category is not None:
                permission.category = payload.category
            if payload.requires_scope is not None:
                permission.requires_scope = payload.requires_scope
            session.add(permission)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("permission code already exists") from exc
            session.refresh(permission)
            logger.info("permission %s updated by %s", permission_id, actor_id)
            return permission

    def delete_permission(self, actor_id: str, permission_id: str) -> None:
        with self._session() as session:
            permission = self._get_permission(session, permission_id)
            self._ensure_grantable(actor_id, permission.code)
            permission.is_active = False
            session.add(permission)
            session.commit()
            logger.info("permission %s deactivated by %s", permission.code, actor_id)

    def get_permission(self, actor_id: str, permission_id: str) -> Permission:
        self._require(actor_id, PermissionCode.PERMISSION_READ)
        with self._session() as session:
            return self._get_permission(session, permission_id)

    def list_permissions(
        self,
        actor_id: str,
        category: PermissionCategory | None = None,
        requires_scope: bool | None = None,
    ) -> list[Permission]:
        self._require(actor_id, PermissionCode.PERMISSION_READ)
        with self._session() as session:
            statement = select(Permission).where(col(Permission.is_active).is_(True))
            if category is not None:
                statement = statement.where(Permission.category == category)
            if requires_scope is not None:
                statement = statement.where(Permission.requires_scope == requires_scope)
            return list(session.exec(statement.order_by(col(Permission.code))).all())
