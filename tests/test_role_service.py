from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, col, create_engine, select

from fleet_rbac.domain.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from fleet_rbac.domain.models import (
    Permission,
    Role,
    RoleCreate,
    RolePermission,
    RoleScope,
    RoleUpdate,
    User,
    UserRole,
)
from fleet_rbac.infra import db
from fleet_rbac.services.authorization_service import AuthorizationService
from fleet_rbac.services.bootstrap_service import BootstrapService, SeedResult
from fleet_rbac.services.role_service import RoleService


@pytest.fixture()
def role_engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Engine:
    db_path = tmp_path / "role_service_test.db"
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


@pytest.fixture()
def seeded(role_engine: Engine) -> SeedResult:
    return BootstrapService().seed("t1", "superadmin", "superadmin@example.com")


@pytest.fixture()
def service(seeded: SeedResult) -> RoleService:
    return RoleService()


def _permission_ids(engine: Engine, *codes: str) -> list[str]:
    with Session(engine) as session:
        rows = session.exec(select(Permission).where(col(Permission.code).in_(codes))).all()
        found = {row.code: row.id for row in rows}
    assert set(found) == set(codes)
    return [found[code] for code in codes]


def _user_with_role(engine: Engine, username: str, role_name: str, tenant_id: str = "t1") -> str:
    with Session(engine, expire_on_commit=False) as session:
        role_id = session.exec(
            select(Role.id).where(Role.name == role_name).where(Role.tenant_id == tenant_id)
        ).one()
        user = User(username=username, tenant_id=tenant_id)
        session.add(user)
        session.commit()
        session.add(UserRole(user_id=user.id, role_id=role_id))
        session.commit()
        return user.id


def test_create_role_normalizes_and_attaches_permissions(role_engine: Engine, service: RoleService) -> None:
    admin = _user_with_role(role_engine, "admin", "tenant_admin")
    permission_ids = _permission_ids(role_engine, "VEHICLE_READ", "ALERT_READ")

    role = service.create_role(
        admin,
        RoleCreate(name="  Night Shift ", tenant_id="t1", permission_ids=permission_ids),
    )

    assert role.name == "night shift"
    assert role.scope == RoleScope.TENANT
    assert role.created_by == admin
    codes = {item.code for item in service.get_role_permissions(admin, role.id)}
    assert codes == {"VEHICLE_READ", "ALERT_READ"}

    with pytest.raises(ConflictError):
        service.create_role(admin, RoleCreate(name="NIGHT SHIFT", tenant_id="t1"))


def test_create_role_enforces_scope_invariant(seeded: SeedResult, service: RoleService) -> None:
    with pytest.raises(ValidationError, match="required for TENANT"):
        service.create_role(seeded.superadmin_id, RoleCreate(name="orphan", tenant_id=None))
    with pytest.raises(ValidationError, match="must be null for GLOBAL"):
        service.create_role(
            seeded.superadmin_id,
            RoleCreate(name="platform", tenant_id="t1", scope=RoleScope.GLOBAL),
        )

    role = service.create_role(seeded.superadmin_id, RoleCreate(name="platform", scope=RoleScope.GLOBAL))
    assert role.tenant_id is None
    with pytest.raises(ConflictError):
        service.create_role(seeded.superadmin_id, RoleCreate(name="Platform", scope=RoleScope.GLOBAL))


def test_create_role_blocks_privilege_escalation(role_engine: Engine, service: RoleService) -> None:
    admin = _user_with_role(role_engine, "admin", "tenant_admin")
    viewer = _user_with_role(role_engine, "viewer", "viewer")

    with pytest.raises(ForbiddenError, match="SUPER_ADMIN"):
        service.create_role(
            admin,
            RoleCreate(name="sneaky", tenant_id="t1", permission_ids=_permission_ids(role_engine, "SUPER_ADMIN")),
        )
    with pytest.raises(ForbiddenError, match="DEVICE_DELETE"):
        service.create_role(
            admin,
            RoleCreate(name="wrecker", tenant_id="t1", permission_ids=_permission_ids(role_engine, "DEVICE_DELETE")),
        )
    with pytest.raises(ForbiddenError):
        service.create_role(admin, RoleCreate(name="elsewhere", tenant_id="t2"))
    with pytest.raises(ForbiddenError):
        service.create_role(viewer, RoleCreate(name="mine", tenant_id="t1"))
    with pytest.raises(NotFoundError):
        service.create_role(admin, RoleCreate(name="ghost", tenant_id="t1", permission_ids=["missing"]))

    with Session(role_engine) as session:
        names = set(session.exec(select(Role.name)).all())
    assert {"sneaky", "wrecker", "elsewhere", "mine", "ghost"}.isdisjoint(names)


def test_update_role(role_engine: Engine, service: RoleService) -> None:
    admin = _user_with_role(role_engine, "admin", "tenant_admin")
    role = service.create_role(admin, RoleCreate(name="drivers", tenant_id="t1"))
    service.create_role(admin, RoleCreate(name="mechanics", tenant_id="t1"))

    updated = service.update_role(
        admin,
        role.id,
        RoleUpdate(description="road crew", permission_ids=_permission_ids(role_engine, "VEHICLE_READ")),
    )
    assert updated.description == "road crew"
    assert updated.tenant_id == "t1"

    with pytest.raises(ConflictError):
        service.update_role(admin, role.id, RoleUpdate(name="Mechanics"))
    with pytest.raises(ValidationError):
        service.update_role(admin, role.id, RoleUpdate(scope=RoleScope.GLOBAL))
    with pytest.raises(ValidationError):
        service.update_role(admin, role.id, RoleUpdate(tenant_id=None))
    with pytest.raises(ForbiddenError):
        service.update_role(admin, role.id, RoleUpdate(tenant_id="t2"))
    with pytest.raises(NotFoundError):
        service.update_role(admin, "missing", RoleUpdate(description="x"))


def test_update_role_permissions_checks_only_new_codes(
    role_engine: Engine,
    seeded: SeedResult,
    service: RoleService,
) -> None:
    admin = _user_with_role(role_engine, "admin", "tenant_admin")
    role = service.create_role(
        seeded.superadmin_id,
        RoleCreate(name="audit", tenant_id="t1", permission_ids=_permission_ids(role_engine, "DEVICE_DELETE")),
    )

    kept = service.update_role_permissions(
        admin,
        role.id,
        _permission_ids(role_engine, "DEVICE_DELETE", "VEHICLE_READ"),
    )
    assert [item.code for item in kept] == ["DEVICE_DELETE", "VEHICLE_READ"]

    with pytest.raises(ForbiddenError):
        service.update_role_permissions(admin, role.id, _permission_ids(role_engine, "SYSTEM_CONFIG"))

    trimmed = service.update_role_permissions(admin, role.id, _permission_ids(role_engine, "VEHICLE_READ"))
    assert [item.code for item in trimmed] == ["VEHICLE_READ"]


def test_deactivate_role_revokes_its_permissions(role_engine: Engine, service: RoleService) -> None:
    admin = _user_with_role(role_engine, "admin", "tenant_admin")
    dispatcher = _user_with_role(role_engine, "dispatch", "dispatcher")
    with Session(role_engine) as session:
        role_id = session.exec(select(Role.id).where(Role.name == "dispatcher")).one()

    authz = AuthorizationService()
    assert authz.has_permission(dispatcher, "VIEW_LOCATION_LIVE", "t1") is True

    service.deactivate_role(admin, role_id)

    assert authz.has_permission(dispatcher, "VIEW_LOCATION_LIVE", "t1") is False
    assert role_id not in {role.id for role in service.list_roles(admin, "t1")}


def test_get_and_list_roles(role_engine: Engine, seeded: SeedResult, service: RoleService) -> None:
    admin = _user_with_role(role_engine, "admin", "tenant_admin")
    installer = _user_with_role(role_engine, "installer", "installer")

    names = [role.name for role in service.list_roles(admin, "t1")]
    assert names == ["dispatcher", "fleet_manager", "installer", "tenant_admin", "viewer"]
    global_roles = service.list_roles(seeded.superadmin_id, scope=RoleScope.GLOBAL)
    assert [role.name for role in global_roles] == ["super_admin"]

    assert service.get_role(admin, global_roles[0].id).name == "super_admin"
    with pytest.raises(ForbiddenError):
        service.list_roles(admin, "t2")
    with pytest.raises(ForbiddenError):
        service.list_roles(installer, "t1")
    with pytest.raises(NotFoundError):
        service.get_role(admin, "missing")


def _platform_admin(engine: Engine, *codes: str) -> str:
    with Session(engine, expire_on_commit=False) as session:
        role = Role(name="platform-ops", scope=RoleScope.GLOBAL, tenant_id=None)
        user = User(username="platform-ops", tenant_id=None)
        session.add(role)
        session.add(user)
        session.commit()
        for permission_id in _permission_ids(engine, *codes):
            session.add(RolePermission(role_id=role.id, permission_id=permission_id))
        session.add(UserRole(user_id=user.id, role_id=role.id))
        session.commit()
        return user.id


def _super_admin_role_id(engine: Engine) -> str:
    with Session(engine) as session:
        return session.exec(select(Role.id).where(Role.name == "super_admin")).one()


def test_tenant_admin_cannot_touch_global_roles(
    role_engine: Engine,
    seeded: SeedResult,
    service: RoleService,
) -> None:
    admin = _user_with_role(role_engine, "admin", "tenant_admin")
    super_role = _super_admin_role_id(role_engine)
    local = service.create_role(admin, RoleCreate(name="drivers", tenant_id="t1"))

    with pytest.raises(ForbiddenError, match="global records"):
        service.create_role(admin, RoleCreate(name="platform-wide", scope=RoleScope.GLOBAL))
    with pytest.raises(ForbiddenError, match="global records"):
        service.update_role(admin, local.id, RoleUpdate(scope=RoleScope.GLOBAL, tenant_id=None))
    with pytest.raises(ForbiddenError):
        service.update_role(admin, super_role, RoleUpdate(description="mine now"))
    with pytest.raises(ForbiddenError):
        service.update_role_permissions(admin, super_role, _permission_ids(role_engine, "VEHICLE_READ"))
    with pytest.raises(ForbiddenError):
        service.deactivate_role(admin, super_role)

    with Session(role_engine) as session:
        assert session.exec(select(Role.id).where(Role.name == "platform-wide")).first() is None
        assert session.exec(select(Role.tenant_id).where(Role.id == local.id)).one() == "t1"
    assert AuthorizationService().is_super_admin(seeded.superadmin_id) is True
    codes = {item.code for item in service.get_role_permissions(seeded.superadmin_id, super_role)}
    assert "SUPER_ADMIN" in codes


def test_only_super_admin_modifies_elevated_roles(
    role_engine: Engine,
    seeded: SeedResult,
    service: RoleService,
) -> None:
    platform = _platform_admin(role_engine, "ROLE_CREATE", "ROLE_UPDATE", "ROLE_DELETE", "ROLE_READ")
    super_role = _super_admin_role_id(role_engine)

    shared = service.create_role(platform, RoleCreate(name="auditors", scope=RoleScope.GLOBAL))
    assert shared.tenant_id is None
    service.deactivate_role(platform, shared.id)

    with pytest.raises(ForbiddenError, match="elevated privilege role"):
        service.deactivate_role(platform, super_role)
    with pytest.raises(ForbiddenError, match="elevated privilege role"):
        service.update_role_permissions(platform, super_role, [])
    assert AuthorizationService().is_super_admin(seeded.superadmin_id) is True

    renamed = service.update_role(seeded.superadmin_id, super_role, RoleUpdate(description="root access"))
    assert renamed.description == "root access"
