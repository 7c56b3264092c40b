"""
Part Request Service
====================

Intake and lookup of buyer part requests:

- Creating a request (``open``, expiring ``request_ttl_days`` later) and
  distributing it to the selected sellers in the same transaction
- Reading a request, with lazy expiry: a request read after its
  ``expires_at`` is moved to ``expired`` on the spot
- Listing a buyer's requests and a seller's inbox
- Expiring a single request (shared with the expiry sweep)
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from quote_engine.core.clock import as_utc, utcnow
from quote_engine.core.config import settings
from quote_engine.core.exceptions import (
    NotFoundError,
    UnauthorizedError,
    translate_store_errors,
)
from quote_engine.events import requestEvents
from quote_engine.models.part_request import (
    ACTIVE_REQUEST_STATUSES,
    PartCondition,
    PartRequest,
    RequestStatus,
    Urgency,
)
from quote_engine.models.queue_entry import QueueEntry, QueueEntryStatus
from quote_engine.models.quote import Quote, QuoteStatus
from quote_engine.services import distributor, notificationService
from quote_engine.services.requestStateManager import (
    REQUEST_TRANSITIONS,
    sources_for,
)
from quote_engine.services.sellerSelection import (
    SellerTierLookup,
    select_candidate_sellers,
)

logger = logging.getLogger(__name__)

MIN_VEHICLE_YEAR = 1900


@dataclass
class PartRequestDraft:
    """Buyer-supplied fields of a new part request."""
    vehicle_make: str
    vehicle_model: str
    vehicle_year: int
    part_name: str
    part_number: Optional[str] = None
    condition_preference: PartCondition = PartCondition.ANY
    budget: Optional[Decimal] = None
    urgency: Urgency = Urgency.MEDIUM
    parish: Optional[str] = None
    description: Optional[str] = None


def _validate_draft(draft: PartRequestDraft, now: datetime) -> None:
    if not draft.part_name.strip():
        raise ValueError("Part name is required")
    if not MIN_VEHICLE_YEAR <= draft.vehicle_year <= now.year + 1:
        raise ValueError(
            f"Vehicle year must be between {MIN_VEHICLE_YEAR} and {now.year + 1}"
        )
    if draft.budget is not None and draft.budget < 0:
        raise ValueError("Budget cannot be negative")


# ---------------------------------------------------------------------------
# Intake
# ---------------------------------------------------------------------------

@translate_store_errors
async def create_part_request(
    db: AsyncSession,
    owner_id: uuid.UUID,
    draft: PartRequestDraft,
    *,
    now: Optional[datetime] = None,
) -> PartRequest:
    """Persist a new ``open`` part request.

    Raises:
        ValueError: If the draft fails validation.
    """
    now = now or utcnow()
    _validate_draft(draft, now)

    request = PartRequest(
        owner_id=owner_id,
        vehicle_make=draft.vehicle_make.strip(),
        vehicle_model=draft.vehicle_model.strip(),
        vehicle_year=draft.vehicle_year,
        part_name=draft.part_name.strip(),
        part_number=draft.part_number,
        condition_preference=draft.condition_preference,
        budget=draft.budget,
        urgency=draft.urgency,
        parish=draft.parish,
        description=draft.description,
        status=RequestStatus.OPEN,
        expires_at=now + timedelta(days=settings.request_ttl_days),
    )
    db.add(request)
    await db.flush()

    logger.info(
        "Part request created: id=%s, owner=%s, part=%r, urgency=%s",
        request.id,
        owner_id,
        request.part_name,
        request.urgency.value,
    )
    requestEvents.emit_request_created(request.id, owner_id, request.urgency.value)
    return request


async def submit_part_request(
    db: AsyncSession,
    owner_id: uuid.UUID,
    draft: PartRequestDraft,
    *,
    candidate_seller_ids: Optional[Sequence[uuid.UUID]] = None,
    tier_lookup: Optional[SellerTierLookup] = None,
    now: Optional[datetime] = None,
) -> tuple[PartRequest, list[QueueEntry]]:
    """Create a request and distribute it in the caller's transaction.

    When *candidate_seller_ids* is ``None`` the default candidate selection
    policy picks the sellers.
    """
    now = now or utcnow()
    request = await create_part_request(db, owner_id, draft, now=now)
    if candidate_seller_ids is None:
        candidate_seller_ids = await select_candidate_sellers(db, request)
    entries = await distributor.distribute(
        db,
        request,
        candidate_seller_ids,
        tier_lookup=tier_lookup,
        now=now,
    )
    return request, entries


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------

def is_past_expiry(request: PartRequest, now: datetime) -> bool:
    return as_utc(request.expires_at) <= now


async def expire_request(
    db: AsyncSession,
    request: PartRequest,
    *,
    now: Optional[datetime] = None,
) -> bool:
    """Move an active request to ``expired`` and reject its pending quotes.

    Uses a compare-and-set update so a concurrent acceptance wins cleanly.
    Returns ``True`` if this call performed the transition.
    """
    now = now or utcnow()
    result = await db.execute(
        update(PartRequest)
        .where(
            PartRequest.id == request.id,
            PartRequest.status.in_(
                sources_for(REQUEST_TRANSITIONS, RequestStatus.EXPIRED)
            ),
        )
        .values(status=RequestStatus.EXPIRED)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False

    old_status = request.status
    await db.refresh(request)
    await db.execute(
        update(Quote)
        .where(Quote.request_id == request.id, Quote.status == QuoteStatus.PENDING)
        .values(status=QuoteStatus.REJECTED, responded_at=now)
        .execution_options(synchronize_session=False)
    )

    logger.info("Part request %s expired", request.id)
    requestEvents.emit_request_status_changed(
        request.id, old_status.value, RequestStatus.EXPIRED.value
    )
    await notificationService.notify_request_expired(db, request)
    return True


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

@translate_store_errors
async def get_part_request(
    db: AsyncSession,
    request_id: uuid.UUID,
    *,
    now: Optional[datetime] = None,
) -> PartRequest:
    """Load a request, expiring it first if its time has passed.

    Raises:
        NotFoundError: If the request does not exist.
    """
    request = await db.get(PartRequest, request_id)
    if request is None:
        raise NotFoundError(f"Part request {request_id} not found", request_id=request_id)

    now = now or utcnow()
    if request.status in ACTIVE_REQUEST_STATUSES and is_past_expiry(request, now):
        await expire_request(db, request, now=now)
    return request


async def get_owned_part_request(
    db: AsyncSession,
    request_id: uuid.UUID,
    owner_id: uuid.UUID,
    *,
    now: Optional[datetime] = None,
) -> PartRequest:
    """Like ``get_part_request`` but only for the request's owner."""
    request = await get_part_request(db, request_id, now=now)
    if request.owner_id != owner_id:
        raise UnauthorizedError(
            "Only the buyer who created this request can view it",
            request_id=request_id,
        )
    return request


@translate_store_errors
async def list_owner_requests(
    db: AsyncSession,
    owner_id: uuid.UUID,
    *,
    status: Optional[RequestStatus] = None,
    page: int = 1,
    page_size: int = 20,
) -> list[PartRequest]:
    stmt = select(PartRequest).where(PartRequest.owner_id == owner_id)
    if status is not None:
        stmt = stmt.where(PartRequest.status == status)
    stmt = (
        stmt.order_by(PartRequest.created_at.desc(), PartRequest.id)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


@translate_store_errors
async def list_seller_inbox(
    db: AsyncSession,
    seller_id: uuid.UUID,
    *,
    include_closed: bool = False,
) -> list[tuple[QueueEntry, PartRequest]]:
    """Requests released to *seller_id*, newest delivery first.

    Only ``processed`` entries are visible: pending entries have not reached
    their scheduled delivery yet, and declined ones are hidden.
    """
    stmt = (
        select(QueueEntry, PartRequest)
        .join(PartRequest, PartRequest.id == QueueEntry.request_id)
        .where(
            QueueEntry.seller_id == seller_id,
            QueueEntry.status == QueueEntryStatus.PROCESSED,
        )
        .order_by(QueueEntry.processed_at.desc(), QueueEntry.id)
    )
    if not include_closed:
        stmt = stmt.where(
            PartRequest.status.in_(list(ACTIVE_REQUEST_STATUSES)),
            PartRequest.expires_at > utcnow(),
        )
    result = await db.execute(stmt)
    return [(row.QueueEntry, row.PartRequest) for row in result.all()]
