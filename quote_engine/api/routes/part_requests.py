"""
Part Request API Routes (buyer side)
====================================

  POST /api/v1/part-requests                                         -- Create + distribute
  GET  /api/v1/part-requests                                         -- List own requests
  GET  /api/v1/part-requests/stats                                   -- Quote counts across own requests
  GET  /api/v1/part-requests/{request_id}                            -- Request detail
  GET  /api/v1/part-requests/{request_id}/quotes                     -- Quotes on a request
  POST /api/v1/part-requests/{request_id}/quotes/{quote_id}/accept   -- Accept a quote
  POST /api/v1/part-requests/{request_id}/quotes/{quote_id}/reject   -- Reject a quote
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status

from quote_engine.api.deps import BuyerIdentity, DBSession
from quote_engine.api.schemas.part_request import (
    PartRequestCreate,
    PartRequestCreatedResponse,
    PartRequestOut,
    QueueEntryOut,
)
from quote_engine.api.schemas.quote import BuyerQuoteStatsResponse, QuoteOut
from quote_engine.core.config import settings
from quote_engine.models.part_request import RequestStatus
from quote_engine.services import acceptanceCoordinator, partRequestService, quoteService
from quote_engine.services.partRequestService import PartRequestDraft

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/part-requests", tags=["Part Requests"])


@router.post(
    "",
    response_model=PartRequestCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a part request",
    description=(
        "Creates an open part request and distributes it to eligible sellers. "
        "Each seller sees the request after their membership tier delay."
    ),
)
async def create_part_request(
    db: DBSession,
    identity: BuyerIdentity,
    body: PartRequestCreate,
) -> PartRequestCreatedResponse:
    try:
        request, entries = await partRequestService.submit_part_request(
            db,
            identity.user_id,
            PartRequestDraft(**body.model_dump()),
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        )

    return PartRequestCreatedResponse(
        request=PartRequestOut.model_validate(request),
        distributed_to=len(entries),
        queue_entries=[QueueEntryOut.model_validate(e) for e in entries],
    )


@router.get(
    "",
    response_model=list[PartRequestOut],
    summary="List my part requests",
)
async def list_my_requests(
    db: DBSession,
    identity: BuyerIdentity,
    status_filter: Optional[RequestStatus] = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=settings.default_page_size, ge=1, le=settings.max_page_size),
) -> list[PartRequestOut]:
    requests = await partRequestService.list_owner_requests(
        db,
        identity.user_id,
        status=status_filter,
        page=page,
        page_size=page_size,
    )
    return [PartRequestOut.model_validate(r) for r in requests]


@router.get(
    "/stats",
    response_model=BuyerQuoteStatsResponse,
    summary="Quote counts across my part requests",
)
async def my_quote_stats(
    db: DBSession,
    identity: BuyerIdentity,
) -> BuyerQuoteStatsResponse:
    stats = await quoteService.get_buyer_quote_stats(db, identity.user_id)
    return BuyerQuoteStatsResponse.model_validate(stats)


@router.get(
    "/{request_id}",
    response_model=PartRequestOut,
    summary="Get a part request",
)
async def get_request(
    db: DBSession,
    identity: BuyerIdentity,
    request_id: uuid.UUID,
) -> PartRequestOut:
    request = await partRequestService.get_owned_part_request(
        db, request_id, identity.user_id
    )
    return PartRequestOut.model_validate(request)


@router.get(
    "/{request_id}/quotes",
    response_model=list[QuoteOut],
    summary="List quotes on a part request",
)
async def list_request_quotes(
    db: DBSession,
    identity: BuyerIdentity,
    request_id: uuid.UUID,
) -> list[QuoteOut]:
    quotes = await quoteService.list_quotes_for_request(db, request_id, identity.user_id)
    return [QuoteOut.model_validate(q) for q in quotes]


@router.post(
    "/{request_id}/quotes/{quote_id}/accept",
    response_model=QuoteOut,
    summary="Accept a quote",
    description=(
        "Accepts one pending quote, fulfils the request and rejects every "
        "other quote. Returns 409 if another quote was accepted first."
    ),
)
async def accept_quote(
    db: DBSession,
    identity: BuyerIdentity,
    request_id: uuid.UUID,
    quote_id: uuid.UUID,
) -> QuoteOut:
    quote = await acceptanceCoordinator.accept_quote(
        db, request_id, quote_id, identity.user_id
    )
    return QuoteOut.model_validate(quote)


@router.post(
    "/{request_id}/quotes/{quote_id}/reject",
    response_model=QuoteOut,
    summary="Reject a quote",
)
async def reject_quote(
    db: DBSession,
    identity: BuyerIdentity,
    request_id: uuid.UUID,
    quote_id: uuid.UUID,
) -> QuoteOut:
    quote = await acceptanceCoordinator.reject_quote(
        db, request_id, quote_id, identity.user_id
    )
    return QuoteOut.model_validate(quote)
