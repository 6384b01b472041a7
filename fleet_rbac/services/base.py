from __future__ import annotations

import logging

from sqlmodel import Session, col, select

from fleet_rbac.domain.errors import ForbiddenError, NotFoundError
from fleet_rbac.domain.models import Permission, Role, RolePermission, User
from fleet_rbac.domain.permissions import PermissionCode
from fleet_rbac.infra.db import new_session
from fleet_rbac.infra.directory import DirectoryRole, snapshot_role
from fleet_rbac.services.authorization_service import AuthorizationService

logger = logging.getLogger(__name__)


class AdminService:
    """Shared plumbing for services that gate mutations on authorization checks."""

    def __init__(self, authz: AuthorizationService | None = None) -> None:
        self.authz = authz or AuthorizationService()

    def _session(self) -> Session:
        return new_session()

    def _require(
        self,
        actor_id: str,
        code: PermissionCode,
        scope_id: str | None = None,
        message: str | None = None,
    ) -> None:
        if not self.authz.has_permission(actor_id, code, scope_id):
            logger.info("denied %s to user %s (scope %s)", code, actor_id, scope_id)
            raise ForbiddenError(message or f"Missing permission: {code}")

    def _require_tenant_target(
        self,
        actor_id: str,
        code: PermissionCode,
        tenant_id: str | None,
        message: str | None = None,
    ) -> None:
        """Like `_require`, but a record with no tenant is reserved for platform administrators.

        A global record passes every tenant scope check, so holding `code` in one tenant
        is not enough to touch it: the actor must be a super admin or tenant-less itself.
        """
        self._require(actor_id, code, tenant_id, message)
        if tenant_id is not None or self.authz.is_super_admin(actor_id):
            return
        with self._session() as session:
            actor = session.get(User, actor_id)
        if actor is None or actor.tenant_id is not None:
            logger.warning("user %s tried %s on a global record", actor_id, code)
            raise ForbiddenError("Only platform administrators may manage global records")

    def _get_actor(self, session: Session, actor_id: str) -> User:
        actor = session.get(User, actor_id)
        if actor is None:
            raise NotFoundError("current user not found")
        return actor

    def _load_permissions(self, session: Session, permission_ids: list[str]) -> list[Permission]:
        wanted = sorted(set(permission_ids))
        if not wanted:
            return []
        permissions = list(session.exec(select(Permission).where(col(Permission.id).in_(wanted))).all())
        found = {item.id for item in permissions}
        missing = [item for item in wanted if item not in found]
        if missing:
            raise NotFoundError(f"Permission not found with id: {missing[0]}")
        return permissions

    def _role_permissions(self, session: Session, role_id: str) -> list[Permission]:
        statement = (
            select(Permission)
            .join(RolePermission, col(RolePermission.permission_id) == col(Permission.id))
            .where(RolePermission.role_id == role_id)
        )
        return list(session.exec(statement).all())

    def _role_snapshot(self, session: Session, role: Role) -> DirectoryRole:
        return snapshot_role(role, self._role_permissions(session, role.id))
