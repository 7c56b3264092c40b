"""
Quote Service
=============

Seller quote submission and quote listings.

A seller can quote on a request only after the delivery worker has released
it to them (their queue entry is ``processed``). The parent request is
locked for the duration of the submission so it cannot be fulfilled or
expired underneath the new quote.

Resubmitting while the seller's previous quote is still ``pending`` revises
that quote in place; a seller never holds two active quotes on one request
(also enforced by a partial unique index).
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from quote_engine.core.clock import utcnow
from quote_engine.core.exceptions import (
    ConflictError,
    NotFoundError,
    PreconditionFailedError,
    UnauthorizedError,
    translate_store_errors,
)
from quote_engine.events import requestEvents
from quote_engine.models.part_request import PartCondition, PartRequest, RequestStatus
from quote_engine.models.queue_entry import QueueEntryStatus
from quote_engine.models.quote import Quote, QuoteStatus
from quote_engine.services import notificationService, queueService
from quote_engine.services.partRequestService import is_past_expiry
from quote_engine.services.requestStateManager import (
    REQUEST_TRANSITIONS,
    sources_for,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

async def lock_part_request(db: AsyncSession, request_id: uuid.UUID) -> PartRequest:
    """Load a part request with a row lock (``SELECT ... FOR UPDATE``).

    Raises:
        NotFoundError: If the request does not exist.
    """
    result = await db.execute(
        select(PartRequest)
        .where(PartRequest.id == request_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    request = result.scalar_one_or_none()
    if request is None:
        raise NotFoundError(f"Part request {request_id} not found", request_id=request_id)
    return request


def _ensure_quotable(request: PartRequest, now: datetime) -> None:
    if request.status in (RequestStatus.FULFILLED, RequestStatus.EXPIRED):
        raise PreconditionFailedError(
            f"Part request {request.id} is '{request.status.value}' and no "
            f"longer accepts quotes",
            request_id=request.id,
        )
    if is_past_expiry(request, now):
        raise PreconditionFailedError(
            f"Part request {request.id} has expired",
            request_id=request.id,
        )


async def _active_quote_for(
    db: AsyncSession,
    request_id: uuid.UUID,
    seller_id: uuid.UUID,
) -> Optional[Quote]:
    result = await db.execute(
        select(Quote).where(
            Quote.request_id == request_id,
            Quote.seller_id == seller_id,
            Quote.status != QuoteStatus.REJECTED,
        )
    )
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

@translate_store_errors
async def submit_quote(
    db: AsyncSession,
    request_id: uuid.UUID,
    seller_id: uuid.UUID,
    price: Decimal,
    delivery_estimate: str,
    condition: PartCondition,
    notes: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> Quote:
    """Submit (or revise) a seller's quote on a part request.

    Args:
        db: Async database session (caller owns the transaction).
        request_id: The part request being quoted.
        seller_id: The quoting seller.
        price: Quoted price; must be positive.
        delivery_estimate: Free-text delivery estimate (e.g. "2-3 days").
        condition: Condition of the offered part (``any`` is not allowed).
        notes: Optional seller notes.
        now: Reference time (defaults to the current UTC time).

    Returns:
        The new or revised ``pending`` quote.

    Raises:
        ValueError: Invalid price or condition.
        NotFoundError: The request does not exist.
        PreconditionFailedError: The request is fulfilled or expired, the
            request has not been delivered to the seller, the seller
            declined it, or the seller's quote was already accepted.
        ConflictError: A concurrent submission created the seller's quote
            first.
    """
    if price <= 0:
        raise ValueError("Quote price must be greater than zero")
    if condition == PartCondition.ANY:
        raise ValueError("Quote condition must be new, used or refurbished")

    now = now or utcnow()
    request = await lock_part_request(db, request_id)
    _ensure_quotable(request, now)

    entry = await queueService.get_seller_entry(db, request_id, seller_id)
    if entry is None or entry.status != QueueEntryStatus.PROCESSED:
        state = entry.status.value if entry is not None else "not distributed"
        raise PreconditionFailedError(
            f"Request {request_id} is not available to seller {seller_id} "
            f"({state})",
            request_id=request_id,
            seller_id=seller_id,
        )

    existing = await _active_quote_for(db, request_id, seller_id)
    if existing is not None and existing.status != QuoteStatus.PENDING:
        raise PreconditionFailedError(
            f"Quote {existing.id} is already '{existing.status.value}'",
            quote_id=existing.id,
        )

    revised = existing is not None
    if existing is not None:
        quote = existing
        quote.price = price
        quote.delivery_estimate = delivery_estimate
        quote.condition = condition
        quote.notes = notes
    else:
        quote = Quote(
            request_id=request_id,
            seller_id=seller_id,
            price=price,
            delivery_estimate=delivery_estimate,
            condition=condition,
            notes=notes,
            status=QuoteStatus.PENDING,
        )
        db.add(quote)

    try:
        await db.flush()
    except IntegrityError as exc:
        raise ConflictError(
            f"Seller {seller_id} already has an active quote on request {request_id}",
            request_id=request_id,
            seller_id=seller_id,
        ) from exc

    if request.status == RequestStatus.OPEN:
        result = await db.execute(
            update(PartRequest)
            .where(
                PartRequest.id == request_id,
                PartRequest.status.in_(
                    sources_for(REQUEST_TRANSITIONS, RequestStatus.IN_PROGRESS)
                ),
            )
            .values(status=RequestStatus.IN_PROGRESS)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            await db.refresh(request, attribute_names=["status"])
            requestEvents.emit_request_status_changed(
                request_id,
                RequestStatus.OPEN.value,
                RequestStatus.IN_PROGRESS.value,
                actor_id=seller_id,
            )

    logger.info(
        "Quote %s: request=%s, seller=%s, price=%s",
        "revised" if revised else "submitted",
        request_id,
        seller_id,
        price,
    )
    requestEvents.emit_quote_submitted(
        request_id, quote.id, seller_id, str(price), revised
    )
    await notificationService.notify_new_quote(db, request, quote, revised=revised)
    return quote


@translate_store_errors
async def list_quotes_for_request(
    db: AsyncSession,
    request_id: uuid.UUID,
    requester_id: uuid.UUID,
) -> list[Quote]:
    """All quotes on a request, cheapest first. Owner only."""
    request = await db.get(PartRequest, request_id)
    if request is None:
        raise NotFoundError(f"Part request {request_id} not found", request_id=request_id)
    if request.owner_id != requester_id:
        raise UnauthorizedError(
            "Only the buyer who created this request can view its quotes",
            request_id=request_id,
        )
    result = await db.execute(
        select(Quote)
        .where(Quote.request_id == request_id)
        .order_by(Quote.price, Quote.created_at)
    )
    return list(result.scalars().all())


@translate_store_errors
async def list_quotes_for_seller(
    db: AsyncSession,
    seller_id: uuid.UUID,
    *,
    status: Optional[QuoteStatus] = None,
) -> list[Quote]:
    stmt = select(Quote).where(Quote.seller_id == seller_id)
    if status is not None:
        stmt = stmt.where(Quote.status == status)
    result = await db.execute(stmt.order_by(Quote.created_at.desc(), Quote.id))
    return list(result.scalars().all())


@dataclass
class BuyerQuoteStats:
    total_quotes: int = 0
    pending_quotes: int = 0
    accepted_quotes: int = 0


@translate_store_errors
async def get_buyer_quote_stats(db: AsyncSession, buyer_id: uuid.UUID) -> BuyerQuoteStats:
    """Counts of the quotes received on all of a buyer's requests."""
    result = await db.execute(
        select(Quote.status, func.count(Quote.id))
        .join(PartRequest, PartRequest.id == Quote.request_id)
        .where(PartRequest.owner_id == buyer_id)
        .group_by(Quote.status)
    )
    stats = BuyerQuoteStats()
    for status, count in result.all():
        stats.total_quotes += count
        if status == QuoteStatus.PENDING:
            stats.pending_quotes = count
        elif status == QuoteStatus.ACCEPTED:
            stats.accepted_quotes = count
    return stats
