from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from sqlmodel import Session, col, select

from fleet_rbac.domain.models import Permission, Role, RolePermission, RoleScope, User, UserRole
from fleet_rbac.domain.permissions import PERMISSION_CATALOG, PermissionCode
from fleet_rbac.infra.db import new_session
from fleet_rbac.services.role_service import normalize_role_name

logger = logging.getLogger(__name__)

DEFAULT_TENANT_ID = os.getenv("DEFAULT_TENANT_ID") or str(uuid4())
SUPERADMIN_USERNAME = os.getenv("SUPERADMIN_USERNAME", "superadmin")
SUPERADMIN_EMAIL = os.getenv("SUPERADMIN_EMAIL", "superadmin@fleetmanagement.com")
SYSTEM_USER = "SYSTEM"

P = PermissionCode
ALL_PERMISSIONS = "*"


@dataclass(frozen=True)
class SeedResult:
    permissions_created: int
    roles_created: int
    superadmin_created: bool
    superadmin_id: str


class BootstrapService:
    """Seeds the permission catalog, the stock roles and the first super admin.

    Safe to run on every start: anything already present is left untouched.
    """

    ROLE_TEMPLATES: tuple[dict[str, Any], ...] = (
        {
            "name": "VIEWER",
            "description": "Read-only access to tracking data and basic reports",
            "permissions": [P.VEHICLE_READ, P.VIEW_LOCATION_LIVE, P.VIEW_LOCATION_HISTORY, P.ALERT_READ, P.REPORT_VIEW],
        },
        {
            "name": "INSTALLER",
            "description": "Device Installer with registration and activation permissions",
            "permissions": [
                P.DEVICE_REGISTER,
                P.DEVICE_ASSIGN,
                P.DEVICE_ACTIVATE,
                P.DEVICE_UPDATE,
                P.VEHICLE_READ,
                P.VEHICLE_ASSIGN_DEVICE,
            ],
        },
        {
            "name": "DISPATCHER",
            "description": "Dispatcher with live tracking and communication access",
            "permissions": [
                P.VEHICLE_READ,
                P.VIEW_LOCATION_LIVE,
                P.ALERT_READ,
                P.ALERT_ACKNOWLEDGE,
                P.NOTIFICATION_SEND,
                P.EMERGENCY_ALERT,
                P.ROUTE_PLANNING,
                P.REPORT_VIEW,
            ],
        },
        {
            "name": "FLEET_MANAGER",
            "description": "Fleet Manager with vehicle and tracking management capabilities",
            "permissions": [
                P.VEHICLE_READ,
                P.VEHICLE_UPDATE,
                P.VEHICLE_ASSIGN_DEVICE,
                P.FLEET_MANAGE,
                P.VEHICLE_MAINTENANCE,
                P.DEVICE_READ,
                P.DEVICE_ASSIGN,
                P.DEVICE_ACTIVATE,
                P.VIEW_LOCATION_LIVE,
                P.VIEW_LOCATION_HISTORY,
                P.EXPORT_LOCATION,
                P.GEOFENCE_MANAGE,
                P.ROUTE_PLANNING,
                P.PLAYBACK_HISTORY,
                P.ALERT_READ,
                P.ALERT_MANAGE,
                P.ALERT_ACKNOWLEDGE,
                P.REPORT_VIEW,
                P.REPORT_GENERATE,
                P.ANALYTICS_ACCESS,
                P.DATA_EXPORT,
            ],
        },
        {
            "name": "TENANT_ADMIN",
            "description": "Tenant Administrator with full access within tenant scope",
            "permissions": [
                P.USER_CREATE,
                P.USER_READ,
                P.USER_UPDATE,
                P.USER_DELETE,
                P.USER_RESET_PASSWORD,
                P.USER_ACTIVATE,
                P.ROLE_CREATE,
                P.ROLE_READ,
                P.ROLE_UPDATE,
                P.ROLE_DELETE,
                P.ROLE_ASSIGN,
                P.DEVICE_READ,
                P.DEVICE_REGISTER,
                P.DEVICE_UPDATE,
                P.DEVICE_ASSIGN,
                P.DEVICE_ACTIVATE,
                P.DEVICE_REMOTE_CONFIG,
                P.DEVICE_BULK_OPERATIONS,
                P.VEHICLE_READ,
                P.VEHICLE_CREATE,
                P.VEHICLE_UPDATE,
                P.VEHICLE_DELETE,
                P.VEHICLE_ASSIGN_DEVICE,
                P.FLEET_MANAGE,
                P.VEHICLE_MAINTENANCE,
                P.VIEW_LOCATION_LIVE,
                P.VIEW_LOCATION_HISTORY,
                P.EXPORT_LOCATION,
                P.GEOFENCE_MANAGE,
                P.ROUTE_PLANNING,
                P.PLAYBACK_HISTORY,
                P.ALERT_READ,
                P.ALERT_MANAGE,
                P.ALERT_ACKNOWLEDGE,
                P.NOTIFICATION_SEND,
                P.REPORT_VIEW,
                P.REPORT_GENERATE,
                P.REPORT_SCHEDULE,
                P.ANALYTICS_ACCESS,
                P.DATA_EXPORT,
                P.AUDIT_READ,
                P.API_ACCESS,
            ],
        },
        {
            "name": "SUPER_ADMIN",
            "description": "Super Administrator with complete system access across all tenants",
            "scope": RoleScope.GLOBAL,
            "permissions": ALL_PERMISSIONS,
        },
    )

    def _session(self) -> Session:
        return new_session()

    def _ensure_catalog(self, session: Session) -> tuple[dict[str, Permission], int]:
        by_code = {item.code: item for item in session.exec(select(Permission)).all()}
        created = 0
        for definition in PERMISSION_CATALOG:
            if definition.code in by_code:
                continue
            permission = Permission(
                code=definition.code,
                name=definition.name,
                description=definition.description,
                category=definition.category,
                requires_scope=definition.requires_scope,
                created_by=SYSTEM_USER,
            )
            session.add(permission)
            by_code[permission.code] = permission
            created += 1
        if created:
            session.commit()
        return by_code, created

    def _find_role(self, session: Session, name: str, tenant_id: str | None) -> Role | None:
        statement = select(Role).where(Role.name == name)
        if tenant_id is None:
            statement = statement.where(col(Role.tenant_id).is_(None))
        else:
            statement = statement.where(Role.tenant_id == tenant_id)
        return session.exec(statement).first()

    def _ensure_roles(self, session: Session, tenant_id: str, by_code: dict[str, Permission]) -> tuple[dict[str, Role], int]:
        roles: dict[str, Role] = {}
        created = 0
        for template in self.ROLE_TEMPLATES:
            scope = template.get("scope", RoleScope.TENANT)
            role_tenant_id = None if scope == RoleScope.GLOBAL else tenant_id
            name = normalize_role_name(template["name"])
            role = self._find_role(session, name, role_tenant_id)
            if role is None:
                role = Role(
                    name=name,
                    description=template["description"],
                    tenant_id=role_tenant_id,
                    scope=scope,
                    created_by=SYSTEM_USER,
                )
                session.add(role)
                codes = by_code.keys() if template["permissions"] == ALL_PERMISSIONS else template["permissions"]
                for code in sorted(codes):
                    session.add(RolePermission(role_id=role.id, permission_id=by_code[code].id))
                created += 1
                logger.debug("seeded role %s with %d permissions", name, len(codes))
            roles[template["name"]] = role
        if created:
            session.commit()
        return roles, created

    def seed(
        self,
        default_tenant_id: str = DEFAULT_TENANT_ID,
        superadmin_username: str = SUPERADMIN_USERNAME,
        superadmin_email: str = SUPERADMIN_EMAIL,
    ) -> SeedResult:
        with self._session() as session:
            by_code, permissions_created = self._ensure_catalog(session)
            roles, roles_created = self._ensure_roles(session, default_tenant_id, by_code)

            admin = session.exec(select(User).where(User.username == superadmin_username)).first()
            superadmin_created = admin is None
            if admin is None:
                admin = User(
                    username=superadmin_username,
                    email=superadmin_email,
                    tenant_id=default_tenant_id,
                    created_by=SYSTEM_USER,
                )
                session.add(admin)
                session.add(UserRole(user_id=admin.id, role_id=roles["SUPER_ADMIN"].id))
                session.commit()

        logger.info(
            "bootstrap finished: %d permissions, %d roles created, superadmin %s",
            permissions_created,
            roles_created,
            "created" if superadmin_created else "present",
        )
        return SeedResult(
            permissions_created=permissions_created,
            roles_created=roles_created,
            superadmin_created=superadmin_created,
            superadmin_id=admin.id,
        )
