"""
SQLAlchemy models for notifications.

``Notification`` is the in-app feed item. Apart from the recipient flipping
``read`` / ``read_at`` it never changes after insert.

``NotificationDelivery`` is the outbox record for outbound delivery of one
notification (status, attempts, backoff). It is written together with the
notification inside the business transaction that produced it, and only the
notification dispatcher job updates it afterwards.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin, enum_column
from .user import UserRole


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class NotificationType(str, enum.Enum):
    """Classification of notification events."""
    NEW_REQUEST = "new_request"
    NEW_QUOTE = "new_quote"
    QUOTE_ACCEPTED = "quote_accepted"
    QUOTE_REJECTED = "quote_rejected"
    REQUEST_EXPIRING = "request_expiring"
    REQUEST_EXPIRED = "request_expired"
    SUBSCRIPTION_EVENT = "subscription_event"


class DeliveryStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Notification
# ---------------------------------------------------------------------------

class Notification(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Persistent notification addressed to a buyer or seller."""
    __tablename__ = "notifications"

    recipient_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    recipient_role: Mapped[UserRole] = mapped_column(
        enum_column(UserRole, "notification_recipient_role"),
        nullable=False,
    )
    notification_type: Mapped[NotificationType] = mapped_column(
        enum_column(NotificationType, "notification_type"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    request_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("part_requests.id", ondelete="SET NULL"),
        nullable=True,
    )
    data_json: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
    )

    # -- Feed state --
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Relationships
    delivery: Mapped[Optional["NotificationDelivery"]] = relationship(
        "NotificationDelivery",
        back_populates="notification",
        uselist=False,
        cascade="all, delete-orphan",
        lazy="raise",
    )

    __table_args__ = (
        Index("ix_notifications_recipient_read", "recipient_id", "read"),
        Index("ix_notifications_recipient_created", "recipient_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Notification(id={self.id}, recipient={self.recipient_id}, "
            f"type={self.notification_type}, read={self.read})>"
        )


# ---------------------------------------------------------------------------
# Outbound delivery (outbox)
# ---------------------------------------------------------------------------

class NotificationDelivery(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Outbound delivery state of one notification."""
    __tablename__ = "notification_deliveries"

    notification_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("notifications.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    status: Mapped[DeliveryStatus] = mapped_column(
        enum_column(DeliveryStatus, "notification_delivery_status"),
        nullable=False,
        default=DeliveryStatus.PENDING,
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_attempt_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Relationships
    notification: Mapped["Notification"] = relationship(
        "Notification",
        back_populates="delivery",
        lazy="raise",
    )

    __table_args__ = (
        Index("ix_notification_deliveries_due", "status", "next_attempt_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<NotificationDelivery(notification_id={self.notification_id}, "
            f"status={self.status}, attempts={self.attempts})>"
        )
