from __future__ import annotations

from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from fleet_rbac.domain.models import Principal
from fleet_rbac.infra.tenant import bind_principal
from fleet_rbac.services.authorization_service import AuthorizationService, Code


def get_authorization_service() -> AuthorizationService:
    return AuthorizationService()


async def get_current_principal(request: Request) -> Principal:
    # Runs on the event loop so the bound context reaches the threadpool handlers.
    principal = getattr(request.state, "principal", None)
    if not isinstance(principal, Principal):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    bind_principal(principal)
    return principal


def _scope_from_request(request: Request, scope_param: str | None) -> str | None:
    if scope_param is None:
        return None
    value = request.path_params.get(scope_param)
    if value is None:
        value = request.query_params.get(scope_param)
    return value


def require_permission(code: Code, *, scope_param: str | None = None) -> Callable[..., Principal]:
    def _checker(
        request: Request,
        principal: Annotated[Principal, Depends(get_current_principal)],
        authz: Annotated[AuthorizationService, Depends(get_authorization_service)],
    ) -> Principal:
        scope_id = _scope_from_request(request, scope_param)
        if not authz.has_permission(principal.user_id, code, scope_id):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permission: {code}",
            )
        return principal

    return _checker


def require_any_permission(*codes: Code, scope_param: str | None = None) -> Callable[..., Principal]:
    expected = [item for item in codes if item]

    def _checker(
        request: Request,
        principal: Annotated[Principal, Depends(get_current_principal)],
        authz: Annotated[AuthorizationService, Depends(get_authorization_service)],
    ) -> Principal:
        scope_id = _scope_from_request(request, scope_param)
        if authz.has_any_permission(principal.user_id, expected, scope_id):
            return principal
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Missing any permission: {', '.join(str(item) for item in expected)}",
        )

    return _checker
