from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from fleet_rbac.domain.models import Permission, Role, RolePermission, RoleScope, User, UserRole
from fleet_rbac.domain.permissions import PermissionCategory
from fleet_rbac.infra import db
from fleet_rbac.infra.directory import (
    DirectoryPermission,
    DirectoryRole,
    DirectoryUser,
    SqlDirectoryStore,
)
from fleet_rbac.services.permission_resolver import PermissionResolver, effective_codes


@pytest.fixture()
def resolver_engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Engine:
    db_path = tmp_path / "resolver_test.db"
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


class CountingStore:
    def __init__(self, *users: DirectoryUser) -> None:
        self.users = {user.id: user for user in users}
        self.calls = 0

    def find_user_with_roles_and_permissions(self, user_id: str) -> DirectoryUser | None:
        self.calls += 1
        return self.users.get(user_id)

    def find_permission_by_code(self, code: str) -> DirectoryPermission | None:
        return None


def _perm(code: str, *, is_active: bool = True) -> DirectoryPermission:
    return DirectoryPermission(id=f"p-{code}", code=code, is_active=is_active, requires_scope=True)


def _role(name: str, *permissions: DirectoryPermission, is_active: bool = True) -> DirectoryRole:
    return DirectoryRole(
        id=f"r-{name}",
        name=name,
        tenant_id="t1",
        scope=RoleScope.TENANT,
        is_active=is_active,
        permissions=permissions,
    )


def test_effective_codes_skip_inactive_roles_and_permissions() -> None:
    user = DirectoryUser(
        id="u1",
        tenant_id="t1",
        is_active=True,
        roles=(
            _role("dispatcher", _perm("ALERT_READ"), _perm("REPORT_VIEW", is_active=False)),
            _role("retired", _perm("DEVICE_DELETE"), is_active=False),
            _role("viewer", _perm("ALERT_READ"), _perm("VEHICLE_READ")),
        ),
    )

    assert effective_codes(user) == frozenset({"ALERT_READ", "VEHICLE_READ"})


def test_resolve_reads_the_store_once() -> None:
    user = DirectoryUser(id="u1", tenant_id="t1", is_active=True, roles=(_role("viewer", _perm("VEHICLE_READ")),))
    store = CountingStore(user)
    resolver = PermissionResolver(store)

    assert resolver.resolve("u1") == frozenset({"VEHICLE_READ"})
    assert store.calls == 1


def test_resolve_missing_inactive_and_none_users_are_empty() -> None:
    inactive = DirectoryUser(
        id="u2",
        tenant_id="t1",
        is_active=False,
        roles=(_role("viewer", _perm("VEHICLE_READ")),),
    )
    store = CountingStore(inactive)
    resolver = PermissionResolver(store)

    assert resolver.resolve("missing") == frozenset()
    assert resolver.resolve("u2") == frozenset()
    assert resolver.load_active_user("u2") is None
    calls_before = store.calls
    assert resolver.resolve(None) == frozenset()
    assert store.calls == calls_before


def test_sql_store_builds_snapshot_in_one_query(resolver_engine: Engine) -> None:
    with Session(resolver_engine, expire_on_commit=False) as session:
        user = User(username="alice", tenant_id="t1")
        lonely = User(username="bob", tenant_id="t1")
        shared = Permission(code="ALERT_READ", name="Alerts", category=PermissionCategory.ALERTS_NOTIFICATIONS)
        live = Permission(code="VIEW_LOCATION_LIVE", name="Live", category=PermissionCategory.LOCATION_TRACKING)
        dispatcher = Role(name="dispatcher", tenant_id="t1")
        viewer = Role(name="viewer", tenant_id="t1")
        empty = Role(name="empty", tenant_id="t1")
        session.add_all([user, lonely, shared, live, dispatcher, viewer, empty])
        session.commit()
        session.add_all(
            [
                RolePermission(role_id=dispatcher.id, permission_id=shared.id),
                RolePermission(role_id=dispatcher.id, permission_id=live.id),
                RolePermission(role_id=viewer.id, permission_id=shared.id),
                UserRole(user_id=user.id, role_id=dispatcher.id),
                UserRole(user_id=user.id, role_id=viewer.id),
                UserRole(user_id=user.id, role_id=empty.id),
            ]
        )
        session.commit()

    queries: list[str] = []

    @event.listens_for(resolver_engine, "before_cursor_execute")
    def _count(_conn, _cursor, statement, _params, _context, _executemany) -> None:  # type: ignore[no-untyped-def]
        queries.append(statement)

    store = SqlDirectoryStore()
    snapshot = store.find_user_with_roles_and_permissions(user.id)

    assert len(queries) == 1
    assert snapshot is not None
    assert snapshot.tenant_id == "t1"
    by_name = {role.name: role for role in snapshot.roles}
    assert set(by_name) == {"dispatcher", "viewer", "empty"}
    assert {item.code for item in by_name["dispatcher"].permissions} == {"ALERT_READ", "VIEW_LOCATION_LIVE"}
    assert by_name["empty"].permissions == ()
    assert effective_codes(snapshot) == frozenset({"ALERT_READ", "VIEW_LOCATION_LIVE"})

    bare = store.find_user_with_roles_and_permissions(lonely.id)
    assert bare is not None
    assert bare.roles == ()
    assert store.find_user_with_roles_and_permissions("missing") is None


def test_sql_store_returns_inactive_users_for_the_resolver_to_drop(resolver_engine: Engine) -> None:
    with Session(resolver_engine, expire_on_commit=False) as session:
        user = User(username="carol", tenant_id="t1", is_active=False)
        session.add(user)
        session.commit()

    store = SqlDirectoryStore()
    snapshot = store.find_user_with_roles_and_permissions(user.id)
    assert snapshot is not None
    assert snapshot.is_active is False
    assert PermissionResolver(store).resolve(user.id) == frozenset()


def test_sql_store_finds_permission_by_code(resolver_engine: Engine) -> None:
    with Session(resolver_engine, expire_on_commit=False) as session:
        session.add(
            Permission(
                code="REPORT_VIEW",
                name="Reports",
                category=PermissionCategory.REPORTS_ANALYTICS,
                requires_scope=True,
            )
        )
        session.commit()

    store = SqlDirectoryStore()
    found = store.find_permission_by_code("REPORT_VIEW")
    assert found is not None
    assert found.requires_scope is True
    assert store.find_permission_by_code("NOPE") is None
