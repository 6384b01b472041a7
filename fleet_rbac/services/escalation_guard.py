from __future__ import annotations

import logging
from collections.abc import Iterable

from fleet_rbac.domain.errors import ForbiddenError
from fleet_rbac.domain.permissions import SUPER_ADMIN
from fleet_rbac.infra.directory import DirectoryRole
from fleet_rbac.services.authorization_service import AuthorizationService

logger = logging.getLogger(__name__)


def role_carries_super_admin(role: DirectoryRole) -> bool:
    return role.carries(SUPER_ADMIN)


def ensure_can_assign_roles(
    authz: AuthorizationService,
    actor_id: str,
    roles: Iterable[DirectoryRole],
) -> None:
    elevated = [role.name for role in roles if role_carries_super_admin(role)]
    if elevated and not authz.is_super_admin(actor_id):
        logger.warning("user %s tried to assign elevated roles %s", actor_id, elevated)
        raise ForbiddenError("Cannot assign elevated privilege roles")


def ensure_can_assign_role(
    authz: AuthorizationService,
    actor_id: str,
    actor_tenant_id: str | None,
    role: DirectoryRole,
    target_tenant_id: str | None,
) -> None:
    if authz.is_super_admin(actor_id):
        return
    if role_carries_super_admin(role):
        raise ForbiddenError(f"Cannot assign role: {role.name}")
    if role.tenant_id != target_tenant_id:
        logger.warning(
            "user %s tried to assign role %s of tenant %s to a user of tenant %s",
            actor_id,
            role.id,
            role.tenant_id,
            target_tenant_id,
        )
        raise ForbiddenError(f"Role {role.name} does not belong to the user's tenant")
    if actor_tenant_id is None or actor_tenant_id != role.tenant_id:
        logger.warning(
            "user %s (tenant %s) tried to assign role %s of tenant %s",
            actor_id,
            actor_tenant_id,
            role.id,
            role.tenant_id,
        )
        raise ForbiddenError(f"Cannot assign role: {role.name}")


def ensure_can_grant(
    authz: AuthorizationService,
    actor_id: str,
    codes: Iterable[str],
    target_tenant_id: str | None,
) -> None:
    for code in sorted(set(codes)):
        if not authz.can_grant_permission(actor_id, code, target_tenant_id):
            logger.warning("user %s may not grant %s", actor_id, code)
            raise ForbiddenError(f"User lacks permission to grant: {code}")
