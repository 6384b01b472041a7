from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token

from fleet_rbac.domain.models import Principal

principal_ctx: ContextVar[Principal | None] = ContextVar("principal", default=None)


def bind_principal(principal: Principal | None) -> Token[Principal | None]:
    return principal_ctx.set(principal)


def clear_request_context() -> None:
    principal_ctx.set(None)


@contextmanager
def principal_context(principal: Principal) -> Iterator[Principal]:
    token = bind_principal(principal)
    try:
        yield principal
    finally:
        principal_ctx.reset(token)


def current_principal() -> Principal | None:
    return principal_ctx.get()


def get_tenant_id() -> str | None:
    principal = principal_ctx.get()
    return principal.tenant_id if principal is not None else None


def get_user_id() -> str | None:
    principal = principal_ctx.get()
    return principal.user_id if principal is not None else None
