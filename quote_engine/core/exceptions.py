"""
Domain exceptions shared by the quote engine services.

Services raise these; the HTTP layer maps them to status codes in
``quote_engine.api.errors`` and the background jobs decide per type whether
to retry.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EngineError(Exception):
    """Base class for every error raised by the engine's services."""

    error_code: str = "engine_error"
    retryable: bool = False

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context


class NotFoundError(EngineError):
    """Referenced entity does not exist."""

    error_code = "not_found"


class UnauthorizedError(EngineError):
    """Caller is not permitted to act on the entity (e.g. not the request owner)."""

    error_code = "unauthorized"


class PreconditionFailedError(EngineError):
    """Entity is in the wrong state for the requested operation."""

    error_code = "precondition_failed"


class ConflictError(EngineError):
    """A competing operation won the race, or a uniqueness rule was hit."""

    error_code = "conflict"


class TransientStoreError(EngineError):
    """Storage was unavailable; the caller may retry the same operation."""

    error_code = "store_unavailable"
    retryable = True


def is_transient_db_error(exc: BaseException) -> bool:
    """True for driver errors that indicate a lost or busy connection."""
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


def translate_store_errors(
    func: Callable[..., Awaitable[T]],
) -> Callable[..., Awaitable[T]]:
    """Re-raise transient SQLAlchemy errors from *func* as ``TransientStoreError``."""

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return await func(*args, **kwargs)
        except DBAPIError as exc:
            if not is_transient_db_error(exc):
                raise
            logger.warning("Store unavailable in %s: %s", func.__name__, exc.orig)
            raise TransientStoreError(
                f"Store unavailable during {func.__name__}",
            ) from exc

    return wrapper
