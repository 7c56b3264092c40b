"""
Acceptance Coordinator
======================

Single-winner acceptance of quotes. ``accept_quote`` runs as one unit inside
the caller's transaction:

1. Load the quote and lock its part request (``SELECT ... FOR UPDATE``).
2. Check ownership and state (fulfilled -> conflict, expired or quote not
   pending -> precondition failed).
3. Compare-and-set the request to ``fulfilled``. If zero rows change, a
   competing acceptance already won and the caller gets ``ConflictError``.
4. Accept the quote and reject every sibling quote.
5. Queue notifications for the winner, each losing seller, and the buyer.

Nothing is committed here: on any error the caller's rollback undoes every
step, so no observer sees a partially accepted request.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
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
from quote_engine.models.part_request import PartRequest, RequestStatus
from quote_engine.models.quote import Quote, QuoteStatus
from quote_engine.services import notificationService
from quote_engine.services.partRequestService import is_past_expiry
from quote_engine.services.quoteService import lock_part_request
from quote_engine.services.requestStateManager import (
    QUOTE_TRANSITIONS,
    REQUEST_TRANSITIONS,
    sources_for,
    validate_quote_transition,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

async def _load_quote(
    db: AsyncSession,
    request_id: uuid.UUID,
    quote_id: uuid.UUID,
) -> Quote:
    result = await db.execute(
        select(Quote)
        .where(Quote.id == quote_id)
        .execution_options(populate_existing=True)
    )
    quote = result.scalar_one_or_none()
    if quote is None or quote.request_id != request_id:
        raise NotFoundError(
            f"Quote {quote_id} not found on request {request_id}",
            request_id=request_id,
            quote_id=quote_id,
        )
    return quote


async def _lock_owned_request(
    db: AsyncSession,
    request_id: uuid.UUID,
    requester_id: uuid.UUID,
) -> PartRequest:
    request = await lock_part_request(db, request_id)
    if request.owner_id != requester_id:
        raise UnauthorizedError(
            "Only the buyer who created this request can respond to its quotes",
            request_id=request_id,
        )
    return request


def _ensure_pending(quote: Quote, target: QuoteStatus) -> None:
    check = validate_quote_transition(quote.status, target)
    if not check.allowed:
        raise PreconditionFailedError(
            check.reason or f"Quote {quote.id} is not pending",
            quote_id=quote.id,
        )


async def _set_quote_status(
    db: AsyncSession,
    quote: Quote,
    target: QuoteStatus,
    now: datetime,
) -> bool:
    """Conditional quote update guarded on the states that may reach *target*."""
    result = await db.execute(
        update(Quote)
        .where(
            Quote.id == quote.id,
            Quote.status.in_(sources_for(QUOTE_TRANSITIONS, target)),
        )
        .values(status=target, responded_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

@translate_store_errors
async def accept_quote(
    db: AsyncSession,
    request_id: uuid.UUID,
    quote_id: uuid.UUID,
    requester_id: uuid.UUID,
    *,
    now: Optional[datetime] = None,
) -> Quote:
    """Accept *quote_id* on behalf of the request owner.

    Returns:
        The accepted quote.

    Raises:
        NotFoundError: The quote does not exist or belongs to another request.
        UnauthorizedError: *requester_id* does not own the request.
        ConflictError: The request is already fulfilled, or a concurrent
            acceptance fulfilled it first.
        PreconditionFailedError: The request has expired or the quote is not
            ``pending``.
    """
    now = now or utcnow()

    await _load_quote(db, request_id, quote_id)
    request = await _lock_owned_request(db, request_id, requester_id)
    # Re-read under the request lock so a concurrent reject is visible
    quote = await _load_quote(db, request_id, quote_id)

    if request.status == RequestStatus.FULFILLED:
        raise ConflictError(
            f"Part request {request_id} is already fulfilled",
            request_id=request_id,
        )
    if request.status == RequestStatus.EXPIRED or is_past_expiry(request, now):
        raise PreconditionFailedError(
            f"Part request {request_id} has expired",
            request_id=request_id,
        )
    _ensure_pending(quote, QuoteStatus.ACCEPTED)

    old_status = request.status
    cas = await db.execute(
        update(PartRequest)
        .where(
            PartRequest.id == request_id,
            PartRequest.status.in_(
                sources_for(REQUEST_TRANSITIONS, RequestStatus.FULFILLED)
            ),
        )
        .values(status=RequestStatus.FULFILLED, fulfilled_at=now)
        .execution_options(synchronize_session=False)
    )
    if cas.rowcount != 1:
        raise ConflictError(
            f"Part request {request_id} was fulfilled by a concurrent acceptance",
            request_id=request_id,
        )

    if not await _set_quote_status(db, quote, QuoteStatus.ACCEPTED, now):
        raise ConflictError(
            f"Quote {quote_id} changed state during acceptance",
            quote_id=quote_id,
        )

    sibling_rows = await db.execute(
        select(Quote.id)
        .where(
            Quote.request_id == request_id,
            Quote.id != quote_id,
            Quote.status == QuoteStatus.PENDING,
        )
    )
    sibling_ids = list(sibling_rows.scalars().all())
    if sibling_ids:
        await db.execute(
            update(Quote)
            .where(Quote.id.in_(sibling_ids))
            .values(status=QuoteStatus.REJECTED, responded_at=now)
            .execution_options(synchronize_session=False)
        )

    await db.refresh(request)
    await db.refresh(quote)
    siblings = []
    if sibling_ids:
        siblings_result = await db.execute(
            select(Quote)
            .where(Quote.id.in_(sibling_ids))
            .execution_options(populate_existing=True)
        )
        siblings = list(siblings_result.scalars().all())

    logger.info(
        "Quote %s accepted for request %s by %s; %d sibling quotes rejected",
        quote_id,
        request_id,
        requester_id,
        len(siblings),
    )
    requestEvents.emit_request_status_changed(
        request_id, old_status.value, RequestStatus.FULFILLED.value, actor_id=requester_id
    )
    requestEvents.emit_quote_accepted(request_id, quote_id, requester_id, sibling_ids)

    await notificationService.notify_quote_accepted(db, request, quote)
    for sibling in siblings:
        await notificationService.notify_quote_rejected(
            db, request, sibling, reason="another_quote_accepted"
        )
    return quote


@translate_store_errors
async def reject_quote(
    db: AsyncSession,
    request_id: uuid.UUID,
    quote_id: uuid.UUID,
    requester_id: uuid.UUID,
    *,
    now: Optional[datetime] = None,
) -> Quote:
    """Reject a single pending quote. The request and sibling quotes are
    unchanged.

    Raises:
        NotFoundError: The quote does not exist or belongs to another request.
        UnauthorizedError: *requester_id* does not own the request.
        PreconditionFailedError: The quote is not ``pending``.
    """
    now = now or utcnow()

    await _load_quote(db, request_id, quote_id)
    request = await _lock_owned_request(db, request_id, requester_id)
    quote = await _load_quote(db, request_id, quote_id)
    _ensure_pending(quote, QuoteStatus.REJECTED)

    if not await _set_quote_status(db, quote, QuoteStatus.REJECTED, now):
        raise PreconditionFailedError(
            f"Quote {quote_id} is no longer pending",
            quote_id=quote_id,
        )
    await db.refresh(quote)

    logger.info("Quote %s rejected for request %s", quote_id, request_id)
    requestEvents.emit_quote_rejected(request_id, quote_id, actor_id=requester_id)
    await notificationService.notify_quote_rejected(
        db, request, quote, reason="rejected_by_buyer", notify_buyer=True
    )
    return quote
