"""
SQLAlchemy model for users.

Only the fields the distribution and quote engine reads are modelled here:
role, membership plan (which drives the request delay), parish, and the
account flags used by candidate selection. Credentials and profile data
belong to the external identity service.
"""

from __future__ import annotations

import enum
from typing import Optional

from sqlalchemy import Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin, enum_column


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class UserRole(str, enum.Enum):
    BUYER = "buyer"
    SELLER = "seller"
    ADMIN = "admin"


class MembershipPlan(str, enum.Enum):
    """Seller subscription tier. Higher tiers see new requests sooner."""
    FREE = "free"
    BASIC = "basic"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"


class UserStatus(str, enum.Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


# Plans eligible to receive part requests, best first
PAID_PLANS: tuple[MembershipPlan, ...] = (
    MembershipPlan.ENTERPRISE,
    MembershipPlan.PREMIUM,
    MembershipPlan.BASIC,
)


# ---------------------------------------------------------------------------
# User
# ---------------------------------------------------------------------------

class User(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Buyer, seller or admin account as seen by the engine."""
    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(200), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        enum_column(UserRole, "user_role"),
        nullable=False,
    )
    membership_plan: Mapped[MembershipPlan] = mapped_column(
        enum_column(MembershipPlan, "membership_plan"),
        nullable=False,
        default=MembershipPlan.FREE,
    )
    parish: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[UserStatus] = mapped_column(
        enum_column(UserStatus, "user_status"),
        nullable=False,
        default=UserStatus.ACTIVE,
    )
    email_verified: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    __table_args__ = (
        Index("ix_users_role_plan", "role", "membership_plan"),
    )

    def __repr__(self) -> str:
        return (
            f"<User(id={self.id}, role={self.role}, "
            f"plan={self.membership_plan})>"
        )
