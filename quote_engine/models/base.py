"""
Declarative base and shared column mixins for all ORM models.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from quote_engine.core.clock import utcnow


class Base(DeclarativeBase):
    """Declarative base shared by every model (and by Alembic autogenerate)."""


class UUIDPrimaryKeyMixin:
    """Random UUID primary key generated client-side."""

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )


class TimestampMixin:
    """``created_at`` / ``updated_at`` columns.

    Values are set client-side so they are available right after a flush
    without a reload; the server defaults cover rows written by raw SQL.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )


def enum_column(enum_cls: type[enum.Enum], name: str) -> Enum:
    """Enum column type that persists member *values* (lowercase strings)."""
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )
