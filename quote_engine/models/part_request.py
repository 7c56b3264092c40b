"""
SQLAlchemy model for part_requests.

A part request is a buyer's need for a vehicle part. It is fanned out to
sellers through queue entries and collects competing quotes until one is
accepted (``fulfilled``) or the request ages out (``expired``).
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin, enum_column

if TYPE_CHECKING:
    from .queue_entry import QueueEntry
    from .quote import Quote
    from .user import User


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class RequestStatus(str, enum.Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    FULFILLED = "fulfilled"
    EXPIRED = "expired"


class Urgency(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class PartCondition(str, enum.Enum):
    NEW = "new"
    USED = "used"
    REFURBISHED = "refurbished"
    ANY = "any"


part_condition_type = enum_column(PartCondition, "part_condition")

# Requests in these states still accept quotes and distribution
ACTIVE_REQUEST_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.OPEN,
    RequestStatus.IN_PROGRESS,
})


# ---------------------------------------------------------------------------
# PartRequest
# ---------------------------------------------------------------------------

class PartRequest(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A buyer's request for a part, distributed to sellers for quoting."""
    __tablename__ = "part_requests"

    owner_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    # -- Vehicle --
    vehicle_make: Mapped[str] = mapped_column(String(100), nullable=False)
    vehicle_model: Mapped[str] = mapped_column(String(100), nullable=False)
    vehicle_year: Mapped[int] = mapped_column(Integer, nullable=False)

    # -- Part --
    part_name: Mapped[str] = mapped_column(String(200), nullable=False)
    part_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    condition_preference: Mapped[PartCondition] = mapped_column(
        part_condition_type,
        nullable=False,
        default=PartCondition.ANY,
    )
    budget: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    urgency: Mapped[Urgency] = mapped_column(
        enum_column(Urgency, "request_urgency"),
        nullable=False,
        default=Urgency.MEDIUM,
    )
    parish: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # -- Lifecycle --
    status: Mapped[RequestStatus] = mapped_column(
        enum_column(RequestStatus, "request_status"),
        nullable=False,
        default=RequestStatus.OPEN,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    fulfilled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    expiry_warning_sent_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Relationships
    owner: Mapped["User"] = relationship("User", lazy="raise")
    queue_entries: Mapped[list["QueueEntry"]] = relationship(
        "QueueEntry",
        back_populates="request",
        lazy="noload",
    )
    quotes: Mapped[list["Quote"]] = relationship(
        "Quote",
        back_populates="request",
        lazy="noload",
    )

    __table_args__ = (
        Index("ix_part_requests_owner", "owner_id", "created_at"),
        Index("ix_part_requests_status_expiry", "status", "expires_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<PartRequest(id={self.id}, part={self.part_name!r}, "
            f"status={self.status})>"
        )
