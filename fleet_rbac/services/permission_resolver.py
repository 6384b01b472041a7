from __future__ import annotations

import logging

from fleet_rbac.infra.directory import DirectoryStore, DirectoryUser

logger = logging.getLogger(__name__)


def effective_codes(user: DirectoryUser) -> frozenset[str]:
    return frozenset(
        permission.code
        for role in user.roles
        if role.is_active
        for permission in role.permissions
        if permission.is_active
    )


class PermissionResolver:
    def __init__(self, store: DirectoryStore) -> None:
        self._store = store

    def load_active_user(self, user_id: str | None) -> DirectoryUser | None:
        if user_id is None:
            return None
        user = self._store.find_user_with_roles_and_permissions(user_id)
        if user is None or not user.is_active:
            logger.debug("user %s not found or inactive", user_id)
            return None
        return user

    def resolve(self, user_id: str | None) -> frozenset[str]:
        user = self.load_active_user(user_id)
        if user is None:
            return frozenset()
        codes = effective_codes(user)
        logger.debug("user %s resolves to %d permissions", user_id, len(codes))
        return codes
