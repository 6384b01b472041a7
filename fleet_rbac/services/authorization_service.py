"""Authorization decisions for users, tenants and grants.

Every public check answers with a bool and fails closed: missing users,
inactive memberships, blank codes and scope mismatches all come back as
``False``. Nothing is cached, so each call sees the directory as currently
committed. Store errors are logged and re-raised, never turned into a deny.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import TypeVar

from sqlalchemy.exc import SQLAlchemyError

from fleet_rbac.domain.permissions import SUPER_ADMIN, PermissionCode
from fleet_rbac.infra.directory import DirectoryStore, DirectoryUser, SqlDirectoryStore
from fleet_rbac.services.permission_resolver import PermissionResolver, effective_codes
from fleet_rbac.services.scope_validator import ScopeValidator

logger = logging.getLogger(__name__)

T = TypeVar("T")

Code = str | PermissionCode


def _clean_code(code: Code | None) -> str | None:
    if code is None:
        return None
    cleaned = str(code).strip()
    return cleaned or None


class AuthorizationService:
    def __init__(
        self,
        store: DirectoryStore | None = None,
        scope_validator: ScopeValidator | None = None,
    ) -> None:
        self._store = store if store is not None else SqlDirectoryStore()
        self._resolver = PermissionResolver(self._store)
        self._scope_validator = scope_validator or ScopeValidator(self._store)

    def _guarded(self, operation: str, func: Callable[[], T]) -> T:
        try:
            return func()
        except SQLAlchemyError:
            logger.error("directory store failed during %s", operation, exc_info=True)
            raise

    def _load(self, user_id: str | None) -> tuple[DirectoryUser | None, frozenset[str]]:
        user = self._resolver.load_active_user(user_id)
        if user is None:
            return None, frozenset()
        return user, effective_codes(user)

    def is_super_admin(self, user_id: str | None) -> bool:
        return self.has_permission(user_id, SUPER_ADMIN)

    def has_permission(self, user_id: str | None, code: Code | None, scope_id: str | None = None) -> bool:
        cleaned = _clean_code(code)
        if user_id is None or cleaned is None:
            logger.warning("invalid permission check: user_id=%s code=%r", user_id, code)
            return False
        return self._guarded("has_permission", lambda: self._has_permission(user_id, cleaned, scope_id))

    def _has_permission(self, user_id: str, code: str, scope_id: str | None) -> bool:
        user, codes = self._load(user_id)
        if user is None or not codes:
            return False
        if SUPER_ADMIN in codes:
            logger.debug("user %s holds SUPER_ADMIN, %s granted", user_id, code)
            return True
        if code not in codes:
            logger.debug("user %s lacks %s", user_id, code)
            return False
        if scope_id is not None:
            return self._scope_validator.validate_scope(user, code, scope_id)
        return True

    def has_any_permission(
        self,
        user_id: str | None,
        codes: Iterable[Code],
        scope_id: str | None = None,
    ) -> bool:
        requested = [cleaned for cleaned in (_clean_code(item) for item in codes) if cleaned]
        if not requested:
            return False
        return self._guarded("has_any_permission", lambda: self._has_any(user_id, requested, scope_id))

    def _has_any(self, user_id: str | None, requested: list[str], scope_id: str | None) -> bool:
        user, held = self._load(user_id)
        if user is None or not held:
            return False
        if SUPER_ADMIN in held:
            return True
        for code in requested:
            if code not in held:
                continue
            if scope_id is None or self._scope_validator.validate_scope(user, code, scope_id):
                return True
        return False

    def has_all_permissions(
        self,
        user_id: str | None,
        codes: Iterable[Code],
        scope_id: str | None = None,
    ) -> bool:
        requested = list(codes)
        if not requested:
            return True
        return all(self.has_permission(user_id, code, scope_id) for code in requested)

    def get_all_user_permissions(self, user_id: str | None) -> frozenset[str]:
        return self._guarded("get_all_user_permissions", lambda: self._resolver.resolve(user_id))

    def can_access_tenant(self, user_id: str | None, tenant_id: str | None) -> bool:
        if user_id is None or tenant_id is None:
            return False
        return self._guarded("can_access_tenant", lambda: self._can_access_tenant(user_id, tenant_id))

    def _can_access_tenant(self, user_id: str, tenant_id: str) -> bool:
        user, codes = self._load(user_id)
        if user is None:
            return False
        if SUPER_ADMIN in codes:
            return True
        # Global users do not get a pass here, unlike in scope validation.
        return user.tenant_id == tenant_id

    def can_grant_permission(
        self,
        grantor_id: str | None,
        code: Code | None,
        target_tenant_id: str | None = None,
    ) -> bool:
        if self.is_super_admin(grantor_id):
            return True
        if not self.has_permission(grantor_id, code, target_tenant_id):
            logger.debug("user %s cannot grant %s they do not hold", grantor_id, code)
            return False
        if _clean_code(code) == SUPER_ADMIN:
            return self.is_super_admin(grantor_id)
        return True

    def can_manage_user(self, manager_id: str | None, target_user_id: str | None) -> bool:
        if manager_id is None or target_user_id is None:
            return False
        if self.is_super_admin(manager_id):
            return True
        if manager_id == target_user_id:
            return False
        if not self.has_permission(manager_id, PermissionCode.USER_UPDATE):
            return False
        return self._guarded("can_manage_user", lambda: self._same_tenant(manager_id, target_user_id))

    def _same_tenant(self, manager_id: str, target_user_id: str) -> bool:
        manager = self._resolver.load_active_user(manager_id)
        target = self._resolver.load_active_user(target_user_id)
        if manager is None or target is None:
            return False
        return manager.tenant_id is not None and manager.tenant_id == target.tenant_id
