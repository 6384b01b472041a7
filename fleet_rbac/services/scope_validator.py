from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from fleet_rbac.domain.models import Vehicle
from fleet_rbac.infra.db import get_engine
from fleet_rbac.infra.directory import DirectoryStore, DirectoryUser

logger = logging.getLogger(__name__)


class ScopeHierarchy(Protocol):
    def is_within(self, scope_id: str, tenant_id: str) -> bool:
        """Return True when ``scope_id`` (a fleet, region, ...) belongs to ``tenant_id``."""
        ...


class ScopeValidator:
    """Checks scope-requiring permissions against the caller's tenant.

    Users without a tenant are platform accounts and pass unconditionally.
    A permission that is unknown to the store, or that does not require scope,
    is exempt. Otherwise the scope id must equal the user's tenant, or lie
    inside it according to the optional hierarchy.
    """

    def __init__(self, store: DirectoryStore, hierarchy: ScopeHierarchy | None = None) -> None:
        self._store = store
        self._hierarchy = hierarchy

    def validate_scope(self, user: DirectoryUser, code: str, scope_id: str) -> bool:
        if user.tenant_id is None:
            logger.debug("global user %s passes scope %s", user.id, scope_id)
            return True

        permission = self._store.find_permission_by_code(code)
        if permission is None or not permission.requires_scope:
            logger.debug("permission %s is scope-exempt", code)
            return True

        if user.tenant_id == scope_id:
            return True

        if self._hierarchy is not None and self._hierarchy.is_within(scope_id, user.tenant_id):
            logger.debug("scope %s lies within tenant %s", scope_id, user.tenant_id)
            return True

        logger.debug(
            "scope validation failed for user %s: tenant=%s scope=%s",
            user.id,
            user.tenant_id,
            scope_id,
        )
        return False


class FleetScopeHierarchy:
    """Treats a fleet id as inside a tenant when all of its vehicles belong to that tenant."""

    def __init__(self, engine_factory: Callable[[], Engine] = get_engine) -> None:
        self._engine_factory = engine_factory

    def is_within(self, scope_id: str, tenant_id: str) -> bool:
        with Session(self._engine_factory()) as session:
            tenants = set(
                session.exec(select(Vehicle.tenant_id).where(Vehicle.fleet_id == scope_id)).all()
            )
        return tenants == {tenant_id}
