"""
SQLAlchemy model for quotes.

A seller may hold at most one non-rejected quote per part request. The
partial unique index below enforces that in the database so concurrent
submissions cannot both land.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, ForeignKey, Index, Numeric, String, Text, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin, enum_column
from .part_request import PartCondition, part_condition_type

if TYPE_CHECKING:
    from .part_request import PartRequest


class QuoteStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


_ACTIVE_QUOTE_CLAUSE = text("status <> 'rejected'")


class Quote(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A seller's priced offer against a part request."""
    __tablename__ = "quotes"

    request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("part_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    seller_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    delivery_estimate: Mapped[str] = mapped_column(String(100), nullable=False)
    condition: Mapped[PartCondition] = mapped_column(
        part_condition_type,
        nullable=False,
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[QuoteStatus] = mapped_column(
        enum_column(QuoteStatus, "quote_status"),
        nullable=False,
        default=QuoteStatus.PENDING,
    )
    responded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Relationships
    request: Mapped["PartRequest"] = relationship(
        "PartRequest",
        back_populates="quotes",
        lazy="raise",
    )

    __table_args__ = (
        Index(
            "uq_quotes_request_seller_active",
            "request_id",
            "seller_id",
            unique=True,
            postgresql_where=_ACTIVE_QUOTE_CLAUSE,
            sqlite_where=_ACTIVE_QUOTE_CLAUSE,
        ),
        Index("ix_quotes_request_status", "request_id", "status"),
        Index("ix_quotes_seller", "seller_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Quote(id={self.id}, request_id={self.request_id}, "
            f"seller_id={self.seller_id}, price={self.price}, status={self.status})>"
        )
