"""
Shared pytest fixtures for quote engine unit tests.

Provides mock database sessions and sample domain objects that mirror
production ORM models without requiring a live database connection.
"""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from quote_engine.models.part_request import (
    PartCondition,
    PartRequest,
    RequestStatus,
    Urgency,
)
from quote_engine.models.queue_entry import QueueEntry, QueueEntryStatus
from quote_engine.models.quote import Quote, QuoteStatus
from quote_engine.models.user import MembershipPlan, User, UserRole, UserStatus


NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Database session mock
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_db() -> AsyncMock:
    """Async mock of ``AsyncSession``.

    Supports ``db.execute()``, ``db.add()``, ``db.flush()``, ``db.commit()``
    and ``async with db.begin_nested()`` out of the box, plus a plain
    ``info`` dict. Individual tests configure ``mock_db.execute.return_value``
    to control query results.
    """
    session = AsyncMock()
    session.add = MagicMock()
    session.begin_nested = MagicMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.refresh = AsyncMock()
    session.info = {}
    return session


# ---------------------------------------------------------------------------
# User fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_buyer() -> User:
    user = MagicMock(spec=User)
    user.id = uuid.uuid4()
    user.email = "buyer@example.com"
    user.display_name = "Andre B."
    user.role = UserRole.BUYER
    user.membership_plan = MembershipPlan.FREE
    user.parish = "Kingston"
    user.status = UserStatus.ACTIVE
    user.email_verified = True
    user.created_at = datetime(2025, 1, 15, tzinfo=timezone.utc)
    return user


@pytest.fixture
def sample_seller() -> User:
    """An enterprise seller in Kingston."""
    user = MagicMock(spec=User)
    user.id = uuid.uuid4()
    user.email = "seller@example.com"
    user.display_name = "Parts Depot"
    user.role = UserRole.SELLER
    user.membership_plan = MembershipPlan.ENTERPRISE
    user.parish = "Kingston"
    user.status = UserStatus.ACTIVE
    user.email_verified = True
    user.created_at = datetime(2025, 1, 10, tzinfo=timezone.utc)
    return user


# ---------------------------------------------------------------------------
# Part request / quote fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_request(sample_buyer: User) -> PartRequest:
    """An open request expiring 30 days after ``NOW``."""
    request = MagicMock(spec=PartRequest)
    request.id = uuid.uuid4()
    request.owner_id = sample_buyer.id
    request.vehicle_make = "Toyota"
    request.vehicle_model = "Corolla"
    request.vehicle_year = 2015
    request.part_name = "Alternator"
    request.part_number = None
    request.condition_preference = PartCondition.ANY
    request.budget = Decimal("25000.00")
    request.urgency = Urgency.MEDIUM
    request.parish = "Kingston"
    request.description = None
    request.status = RequestStatus.OPEN
    request.expires_at = NOW + timedelta(days=30)
    request.fulfilled_at = None
    request.created_at = NOW
    return request


@pytest.fixture
def sample_entry(sample_request: PartRequest, sample_seller: User) -> QueueEntry:
    entry = MagicMock(spec=QueueEntry)
    entry.id = uuid.uuid4()
    entry.request_id = sample_request.id
    entry.seller_id = sample_seller.id
    entry.scheduled_delivery = NOW
    entry.status = QueueEntryStatus.PROCESSED
    entry.processed_at = NOW
    entry.rejected_at = None
    return entry


@pytest.fixture
def sample_quote(sample_request: PartRequest, sample_seller: User) -> Quote:
    quote = MagicMock(spec=Quote)
    quote.id = uuid.uuid4()
    quote.request_id = sample_request.id
    quote.seller_id = sample_seller.id
    quote.price = Decimal("18000.00")
    quote.delivery_estimate = "2-3 days"
    quote.condition = PartCondition.USED
    quote.notes = None
    quote.status = QuoteStatus.PENDING
    quote.responded_at = None
    quote.created_at = NOW
    return quote
