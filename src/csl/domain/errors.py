from __future__ import annotations

from typing import Iterable


class AppError(Exception):
    """Base app error."""


class ValidationError(AppError):
    pass


class NotFoundError(AppError):
    pass


class InsufficientStockError(ValidationError):
    pass


class IntegrityGuardError(AppError):
    """A delete was refused because other records still depend on the target."""

    def __init__(self, message: str, offending: Iterable[str] = ()):
        super().__init__(message)
        self.offending = tuple(offending)


class PersistenceError(AppError):
    pass
