from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import event, func
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, col, create_engine, select

from fleet_rbac.domain.models import Permission, Role, RolePermission, RoleScope, User, UserRole
from fleet_rbac.domain.permissions import PERMISSION_CATALOG, PermissionCode
from fleet_rbac.infra import db
from fleet_rbac.services.authorization_service import AuthorizationService
from fleet_rbac.services.bootstrap_service import BootstrapService


@pytest.fixture()
def bootstrap_engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Engine:
    db_path = tmp_path / "bootstrap_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    return test_engine


def _count(engine: Engine, model: type[SQLModel]) -> int:
    with Session(engine) as session:
        return int(session.exec(select(func.count()).select_from(model)).one())


def _role_codes(engine: Engine, name: str) -> set[str]:
    with Session(engine) as session:
        statement = (
            select(Permission.code)
            .join(RolePermission, col(RolePermission.permission_id) == col(Permission.id))
            .join(Role, col(Role.id) == col(RolePermission.role_id))
            .where(Role.name == name)
        )
        return set(session.exec(statement).all())


def test_seed_creates_catalog_roles_and_super_admin(bootstrap_engine: Engine) -> None:
    result = BootstrapService().seed("t1", "superadmin", "superadmin@fleetmanagement.com")

    assert result.permissions_created == len(PERMISSION_CATALOG)
    assert result.roles_created == len(BootstrapService.ROLE_TEMPLATES)
    assert result.superadmin_created is True

    with Session(bootstrap_engine) as session:
        roles = {role.name: role for role in session.exec(select(Role)).all()}
        admin = session.get(User, result.superadmin_id)
    assert set(roles) == {"viewer", "installer", "dispatcher", "fleet_manager", "tenant_admin", "super_admin"}
    assert roles["super_admin"].scope == RoleScope.GLOBAL
    assert roles["super_admin"].tenant_id is None
    assert {role.tenant_id for name, role in roles.items() if name != "super_admin"} == {"t1"}
    assert admin is not None
    assert admin.tenant_id == "t1"
    assert admin.email == "superadmin@fleetmanagement.com"

    assert _role_codes(bootstrap_engine, "super_admin") == {item.code for item in PERMISSION_CATALOG}
    assert _role_codes(bootstrap_engine, "dispatcher") == {
        "VEHICLE_READ",
        "VIEW_LOCATION_LIVE",
        "ALERT_READ",
        "ALERT_ACKNOWLEDGE",
        "NOTIFICATION_SEND",
        "EMERGENCY_ALERT",
        "ROUTE_PLANNING",
        "REPORT_VIEW",
    }
    tenant_admin = _role_codes(bootstrap_engine, "tenant_admin")
    assert PermissionCode.SUPER_ADMIN not in tenant_admin
    assert PermissionCode.DEVICE_DELETE not in tenant_admin
    assert PermissionCode.ROLE_ASSIGN in tenant_admin

    assert AuthorizationService().is_super_admin(result.superadmin_id) is True


def test_seed_is_idempotent(bootstrap_engine: Engine) -> None:
    service = BootstrapService()
    first = service.seed("t1", "superadmin", "superadmin@fleetmanagement.com")
    counts = {model: _count(bootstrap_engine, model) for model in (Permission, Role, RolePermission, User, UserRole)}

    second = service.seed("t1", "superadmin", "superadmin@fleetmanagement.com")

    assert second.permissions_created == 0
    assert second.roles_created == 0
    assert second.superadmin_created is False
    assert second.superadmin_id == first.superadmin_id
    assert counts == {model: _count(bootstrap_engine, model) for model in counts}


def test_seed_for_second_tenant_reuses_global_role(bootstrap_engine: Engine) -> None:
    service = BootstrapService()
    service.seed("t1", "superadmin", "superadmin@fleetmanagement.com")
    other = service.seed("t2", "root-two", "root2@fleetmanagement.com")

    assert other.permissions_created == 0
    assert other.roles_created == len(BootstrapService.ROLE_TEMPLATES) - 1
    with Session(bootstrap_engine) as session:
        globals_ = session.exec(select(Role).where(col(Role.tenant_id).is_(None))).all()
    assert [role.name for role in globals_] == ["super_admin"]
