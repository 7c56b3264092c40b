"""
Shared FastAPI dependencies for the quote engine.

Provides the async database session dependency used by all route handlers,
and authentication dependencies that resolve a bearer token to an
``Identity`` (user id + role).
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from quote_engine.core.config import settings
from quote_engine.models.user import UserRole
from quote_engine.services import auth_service
from quote_engine.services.auth_service import Identity

# ---------------------------------------------------------------------------
# Async engine & session factory
# ---------------------------------------------------------------------------
# Created once at import time. Route handlers get a request-scoped session
# through ``get_db``; background jobs open their own sessions from the
# same factory.
# ---------------------------------------------------------------------------

engine = create_async_engine(
    settings.database_url,
    echo=settings.sql_echo,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session that commits when the handler returns normally and
    rolls back when it raises, so every route runs as one transaction.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


DBSession = Annotated[AsyncSession, Depends(get_db)]


# ---------------------------------------------------------------------------
# Authentication dependencies
# ---------------------------------------------------------------------------

_bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_identity(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)
    ],
) -> Identity:
    """Resolve the Bearer token to an ``Identity``. Raises 401 when the
    token is missing, expired, or malformed.
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return auth_service.resolve_identity(credentials.credentials)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        )


CurrentIdentity = Annotated[Identity, Depends(get_current_identity)]


def require_role(*roles: UserRole):
    """Dependency factory that rejects identities outside *roles* with 403."""

    async def _checker(identity: CurrentIdentity) -> Identity:
        if identity.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=(
                    f"Role '{identity.role.value}' is not permitted; "
                    f"requires one of: {', '.join(r.value for r in roles)}"
                ),
            )
        return identity

    return _checker


BuyerIdentity = Annotated[Identity, Depends(require_role(UserRole.BUYER))]
SellerIdentity = Annotated[Identity, Depends(require_role(UserRole.SELLER))]
AdminIdentity = Annotated[Identity, Depends(require_role(UserRole.ADMIN))]
