"""
SQLAlchemy model for queue_entries.

One row per (part request, candidate seller) pair. The row is created
``pending`` with a tier-derived ``scheduled_delivery``; the delivery worker
flips it to ``processed`` once that time has passed, which is what makes the
request visible to the seller and unlocks quoting.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin, enum_column

if TYPE_CHECKING:
    from .part_request import PartRequest


class QueueEntryStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    REJECTED_BY_SELLER = "rejected_by_seller"


class QueueEntry(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Scheduled delivery of a part request to one seller."""
    __tablename__ = "queue_entries"

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
    scheduled_delivery: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    status: Mapped[QueueEntryStatus] = mapped_column(
        enum_column(QueueEntryStatus, "queue_entry_status"),
        nullable=False,
        default=QueueEntryStatus.PENDING,
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    rejected_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Relationships
    request: Mapped["PartRequest"] = relationship(
        "PartRequest",
        back_populates="queue_entries",
        lazy="raise",
    )

    __table_args__ = (
        UniqueConstraint("request_id", "seller_id", name="uq_queue_entries_request_seller"),
        Index("ix_queue_entries_due", "status", "scheduled_delivery"),
        Index("ix_queue_entries_seller", "seller_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<QueueEntry(id={self.id}, request_id={self.request_id}, "
            f"seller_id={self.seller_id}, status={self.status})>"
        )
