"""
Quote Engine SQLAlchemy Models
==============================

Central import point for all ORM models. Import ``Base`` from here for
Alembic auto-generation and for the ``create_all`` convenience in tests.

Usage::

    from quote_engine.models import Base, PartRequest, QueueEntry, Quote
"""

# -- Base & Mixins --
from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin

# -- Users --
from .user import PAID_PLANS, MembershipPlan, User, UserRole, UserStatus

# -- Part requests --
from .part_request import (
    ACTIVE_REQUEST_STATUSES,
    PartCondition,
    PartRequest,
    RequestStatus,
    Urgency,
)

# -- Distribution queue --
from .queue_entry import QueueEntry, QueueEntryStatus

# -- Quotes --
from .quote import Quote, QuoteStatus

# -- Notifications --
from .notification import (
    DeliveryStatus,
    Notification,
    NotificationDelivery,
    NotificationType,
)

__all__ = [
    "ACTIVE_REQUEST_STATUSES",
    "Base",
    "DeliveryStatus",
    "MembershipPlan",
    "Notification",
    "NotificationDelivery",
    "NotificationType",
    "PAID_PLANS",
    "PartCondition",
    "PartRequest",
    "Quote",
    "QuoteStatus",
    "QueueEntry",
    "QueueEntryStatus",
    "RequestStatus",
    "TimestampMixin",
    "Urgency",
    "User",
    "UserRole",
    "UserStatus",
    "UUIDPrimaryKeyMixin",
]
