from __future__ import annotations


class AuthorizationError(Exception):
    pass


class ForbiddenError(AuthorizationError):
    pass


class NotFoundError(AuthorizationError):
    pass


class ConflictError(AuthorizationError):
    pass


class InvalidStateError(AuthorizationError):
    pass


class ValidationError(AuthorizationError):
    pass
