"""
Queue Service
=============

Seller-side operations on queue entries and the admin queue monitor.

- ``decline_request`` -- a seller opts out of a request (pending or already
  delivered). Quotes the seller already submitted are left as they are.
- ``get_seller_entry`` -- the seller's entry for a request, used by the quote
  path to check that the request was delivered.
- ``get_queue_stats`` -- counts by status and plan, due backlog, and
  average delivery lag.
- ``get_seller_stats`` -- one seller's inbox and quote totals.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from quote_engine.core.clock import as_utc, utcnow
from quote_engine.core.exceptions import (
    NotFoundError,
    PreconditionFailedError,
    translate_store_errors,
)
from quote_engine.events import requestEvents
from quote_engine.models.queue_entry import QueueEntry, QueueEntryStatus
from quote_engine.models.quote import Quote, QuoteStatus
from quote_engine.models.user import User
from quote_engine.services.requestStateManager import (
    QUEUE_ENTRY_TRANSITIONS,
    sources_for,
    validate_queue_entry_transition,
)

logger = logging.getLogger(__name__)

LAG_WINDOW = timedelta(hours=24)


@translate_store_errors
async def get_seller_entry(
    db: AsyncSession,
    request_id: uuid.UUID,
    seller_id: uuid.UUID,
) -> Optional[QueueEntry]:
    result = await db.execute(
        select(QueueEntry).where(
            QueueEntry.request_id == request_id,
            QueueEntry.seller_id == seller_id,
        )
    )
    return result.scalar_one_or_none()


@translate_store_errors
async def decline_request(
    db: AsyncSession,
    request_id: uuid.UUID,
    seller_id: uuid.UUID,
    *,
    now: Optional[datetime] = None,
) -> QueueEntry:
    """Mark the seller's queue entry ``rejected_by_seller``.

    Declining twice is a no-op that returns the entry unchanged.

    Raises:
        NotFoundError: The request was never distributed to this seller.
    """
    entry = await get_seller_entry(db, request_id, seller_id)
    if entry is None:
        raise NotFoundError(
            f"Request {request_id} was not distributed to seller {seller_id}",
            request_id=request_id,
            seller_id=seller_id,
        )
    if entry.status == QueueEntryStatus.REJECTED_BY_SELLER:
        return entry

    check = validate_queue_entry_transition(
        entry.status, QueueEntryStatus.REJECTED_BY_SELLER
    )
    if not check.allowed:
        raise PreconditionFailedError(check.reason or "Cannot decline", entry_id=entry.id)

    now = now or utcnow()
    await db.execute(
        update(QueueEntry)
        .where(
            QueueEntry.id == entry.id,
            QueueEntry.status.in_(
                sources_for(QUEUE_ENTRY_TRANSITIONS, QueueEntryStatus.REJECTED_BY_SELLER)
            ),
        )
        .values(status=QueueEntryStatus.REJECTED_BY_SELLER, rejected_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.refresh(entry)

    logger.info("Seller %s declined request %s", seller_id, request_id)
    requestEvents.emit_entry_declined(request_id, seller_id)
    return entry


# ---------------------------------------------------------------------------
# Queue monitor
# ---------------------------------------------------------------------------

@dataclass
class QueueStats:
    by_status: dict[str, int] = field(default_factory=dict)
    pending_by_plan: dict[str, int] = field(default_factory=dict)
    pending_due: int = 0
    pending_overdue_minutes: float = 0.0
    processed_last_24h: int = 0
    average_delivery_lag_seconds: Optional[float] = None


@translate_store_errors
async def get_queue_stats(
    db: AsyncSession,
    *,
    now: Optional[datetime] = None,
) -> QueueStats:
    """Snapshot of the distribution queue for the admin monitor."""
    now = now or utcnow()
    stats = QueueStats()

    status_rows = await db.execute(
        select(QueueEntry.status, func.count(QueueEntry.id)).group_by(QueueEntry.status)
    )
    stats.by_status = {s.value: 0 for s in QueueEntryStatus}
    for status, count in status_rows.all():
        stats.by_status[status.value] = count

    plan_rows = await db.execute(
        select(User.membership_plan, func.count(QueueEntry.id))
        .join(User, User.id == QueueEntry.seller_id)
        .where(QueueEntry.status == QueueEntryStatus.PENDING)
        .group_by(User.membership_plan)
    )
    stats.pending_by_plan = {plan.value: count for plan, count in plan_rows.all()}

    due_rows = await db.execute(
        select(QueueEntry.scheduled_delivery).where(
            QueueEntry.status == QueueEntryStatus.PENDING,
            QueueEntry.scheduled_delivery <= now,
        )
    )
    due_times = [as_utc(t) for t in due_rows.scalars().all()]
    stats.pending_due = len(due_times)
    if due_times:
        stats.pending_overdue_minutes = round(
            (now - min(due_times)).total_seconds() / 60, 1
        )

    lag_rows = await db.execute(
        select(QueueEntry.scheduled_delivery, QueueEntry.processed_at).where(
            QueueEntry.processed_at.isnot(None),
            QueueEntry.processed_at >= now - LAG_WINDOW,
        )
    )
    lags = [
        (as_utc(processed) - as_utc(scheduled)).total_seconds()
        for scheduled, processed in lag_rows.all()
    ]
    stats.processed_last_24h = len(lags)
    if lags:
        stats.average_delivery_lag_seconds = round(sum(lags) / len(lags), 3)

    return stats


# ---------------------------------------------------------------------------
# Seller dashboard
# ---------------------------------------------------------------------------

@dataclass
class SellerStats:
    requests_received: int = 0
    requests_declined: int = 0
    quotes_total: int = 0
    quotes_pending: int = 0
    quotes_accepted: int = 0
    quotes_rejected: int = 0
    acceptance_rate: Optional[float] = None
    accepted_value: Decimal = Decimal("0.00")


@translate_store_errors
async def get_seller_stats(db: AsyncSession, seller_id: uuid.UUID) -> SellerStats:
    """Inbox and quote totals for one seller.

    ``requests_received`` counts entries the worker has delivered and the
    seller has not declined. ``acceptance_rate`` is the share of decided
    quotes (accepted or rejected) that were accepted, ``None`` until one is
    decided. ``accepted_value`` sums the prices of accepted quotes.
    """
    stats = SellerStats()

    entry_rows = await db.execute(
        select(QueueEntry.status, func.count(QueueEntry.id))
        .where(QueueEntry.seller_id == seller_id)
        .group_by(QueueEntry.status)
    )
    entry_counts = {status: count for status, count in entry_rows.all()}
    stats.requests_received = entry_counts.get(QueueEntryStatus.PROCESSED, 0)
    stats.requests_declined = entry_counts.get(QueueEntryStatus.REJECTED_BY_SELLER, 0)

    quote_rows = await db.execute(
        select(Quote.status, func.count(Quote.id), func.sum(Quote.price))
        .where(Quote.seller_id == seller_id)
        .group_by(Quote.status)
    )
    for status, count, total in quote_rows.all():
        stats.quotes_total += count
        if status == QuoteStatus.PENDING:
            stats.quotes_pending = count
        elif status == QuoteStatus.ACCEPTED:
            stats.quotes_accepted = count
            stats.accepted_value = Decimal(str(total or 0)).quantize(Decimal("0.01"))
        elif status == QuoteStatus.REJECTED:
            stats.quotes_rejected = count

    decided = stats.quotes_accepted + stats.quotes_rejected
    if decided:
        stats.acceptance_rate = round(stats.quotes_accepted / decided, 3)
    return stats
