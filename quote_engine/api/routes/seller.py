"""
Seller API Routes
=================

  GET  /api/v1/seller/requests                         -- Inbox of delivered requests
  POST /api/v1/seller/requests/{request_id}/decline    -- Opt out of a request
  POST /api/v1/seller/requests/{request_id}/quotes     -- Submit or revise a quote
  GET  /api/v1/seller/quotes                           -- My quotes
  GET  /api/v1/seller/stats                            -- Inbox and quote totals
  PUT  /api/v1/seller/{seller_id}/tier                 -- Change membership plan (admin)
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status

from quote_engine.api.deps import AdminIdentity, DBSession, SellerIdentity
from quote_engine.api.schemas.part_request import (
    PartRequestOut,
    QueueEntryOut,
    SellerInboxItem,
)
from quote_engine.api.schemas.queue import (
    SellerStatsResponse,
    SellerTierResponse,
    SellerTierUpdate,
)
from quote_engine.api.schemas.quote import QuoteOut, QuoteSubmit
from quote_engine.models.quote import QuoteStatus
from quote_engine.services import (
    partRequestService,
    queueService,
    quoteService,
    sellerTiers,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/seller", tags=["Seller"])


@router.get(
    "/requests",
    response_model=list[SellerInboxItem],
    summary="Seller inbox",
    description=(
        "Part requests delivered to the calling seller. A request appears only "
        "once the seller's tier delay has passed and the delivery worker has "
        "released it."
    ),
)
async def seller_inbox(
    db: DBSession,
    identity: SellerIdentity,
    include_closed: bool = Query(default=False),
) -> list[SellerInboxItem]:
    rows = await partRequestService.list_seller_inbox(
        db, identity.user_id, include_closed=include_closed
    )
    return [
        SellerInboxItem(
            entry=QueueEntryOut.model_validate(entry),
            request=PartRequestOut.model_validate(request),
        )
        for entry, request in rows
    ]


@router.post(
    "/requests/{request_id}/decline",
    response_model=QueueEntryOut,
    summary="Decline a part request",
)
async def decline_request(
    db: DBSession,
    identity: SellerIdentity,
    request_id: uuid.UUID,
) -> QueueEntryOut:
    entry = await queueService.decline_request(db, request_id, identity.user_id)
    return QueueEntryOut.model_validate(entry)


@router.post(
    "/requests/{request_id}/quotes",
    response_model=QuoteOut,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a quote",
    description=(
        "Quotes on a delivered request. Submitting again while the previous "
        "quote is pending revises it in place."
    ),
)
async def submit_quote(
    db: DBSession,
    identity: SellerIdentity,
    request_id: uuid.UUID,
    body: QuoteSubmit,
) -> QuoteOut:
    try:
        quote = await quoteService.submit_quote(
            db,
            request_id,
            identity.user_id,
            body.price,
            body.delivery_estimate,
            body.condition,
            body.notes,
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        )
    return QuoteOut.model_validate(quote)


@router.get(
    "/quotes",
    response_model=list[QuoteOut],
    summary="List my quotes",
)
async def my_quotes(
    db: DBSession,
    identity: SellerIdentity,
    status_filter: Optional[QuoteStatus] = Query(default=None, alias="status"),
) -> list[QuoteOut]:
    quotes = await quoteService.list_quotes_for_seller(
        db, identity.user_id, status=status_filter
    )
    return [QuoteOut.model_validate(q) for q in quotes]


@router.get(
    "/stats",
    response_model=SellerStatsResponse,
    summary="My seller statistics",
)
async def my_stats(
    db: DBSession,
    identity: SellerIdentity,
) -> SellerStatsResponse:
    stats = await queueService.get_seller_stats(db, identity.user_id)
    return SellerStatsResponse.model_validate(stats)


@router.put(
    "/{seller_id}/tier",
    response_model=SellerTierResponse,
    summary="Change a seller's membership plan",
    description="Called by the subscription collaborator (admin token).",
)
async def change_tier(
    db: DBSession,
    _admin: AdminIdentity,
    seller_id: uuid.UUID,
    body: SellerTierUpdate,
) -> SellerTierResponse:
    seller = await sellerTiers.change_seller_tier(db, seller_id, body.plan)
    return SellerTierResponse.model_validate(seller)
