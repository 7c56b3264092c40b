"""
Distributor
===========

Fans a part request out to candidate sellers by creating one ``pending``
queue entry per seller, scheduled at ``now + tier delay``. The delivery
worker later releases each entry to its seller.

All entries are written with a single multi-row ``INSERT ... ON CONFLICT DO
NOTHING``: a fan-out either lands completely or not at all, and running it
again for the same sellers returns the existing entries instead of creating
duplicates.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from quote_engine.core.clock import as_utc, utcnow
from quote_engine.core.exceptions import (
    PreconditionFailedError,
    translate_store_errors,
)
from quote_engine.events import requestEvents
from quote_engine.models.part_request import PartRequest, RequestStatus
from quote_engine.models.queue_entry import QueueEntry, QueueEntryStatus
from quote_engine.services.sellerSelection import (
    MembershipTierLookup,
    SellerTierLookup,
)

logger = logging.getLogger(__name__)


def _dialect_insert(db: AsyncSession):
    """Return the ``insert`` construct supporting ON CONFLICT for this session."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise RuntimeError(f"Distribution is not supported on dialect '{dialect}'")


@translate_store_errors
async def distribute(
    db: AsyncSession,
    request: PartRequest,
    candidate_seller_ids: Sequence[uuid.UUID],
    *,
    tier_lookup: Optional[SellerTierLookup] = None,
    now: Optional[datetime] = None,
) -> list[QueueEntry]:
    """Create queue entries for *request* and every candidate seller.

    Args:
        db: Async database session (caller owns the transaction).
        request: The part request to distribute; must be ``open``.
        candidate_seller_ids: Sellers to receive the request. Duplicates are
            ignored. An empty list is valid and creates nothing.
        tier_lookup: Resolves each seller's delay. Defaults to the
            membership-plan lookup.
        now: Reference time (defaults to the current UTC time).

    Returns:
        The queue entries for the candidates, in candidate order. Entries that
        already existed are returned unchanged.

    Raises:
        PreconditionFailedError: The request is not ``open`` or has passed
            its expiry time.
        NotFoundError: A candidate seller does not exist. Nothing is written.
        ValueError: The tier lookup returned a negative delay. Nothing is
            written.
    """
    now = now or utcnow()

    if request.status != RequestStatus.OPEN:
        raise PreconditionFailedError(
            f"Part request {request.id} is '{request.status.value}'; "
            f"only open requests can be distributed",
            request_id=request.id,
        )
    if as_utc(request.expires_at) <= now:
        raise PreconditionFailedError(
            f"Part request {request.id} has expired",
            request_id=request.id,
        )

    seller_ids = list(dict.fromkeys(candidate_seller_ids))
    if not seller_ids:
        logger.info("Request %s distributed to no sellers", request.id)
        requestEvents.emit_request_distributed(request.id, 0, 0)
        return []

    lookup = tier_lookup or MembershipTierLookup()
    delays = await lookup.delays_for(db, seller_ids)
    negative = [sid for sid in seller_ids if delays[sid] < timedelta(0)]
    if negative:
        raise ValueError(
            f"Tier lookup returned a negative delay for seller(s): "
            f"{', '.join(str(sid) for sid in negative)}"
        )

    rows = [
        {
            "id": uuid.uuid4(),
            "request_id": request.id,
            "seller_id": seller_id,
            "scheduled_delivery": now + delays[seller_id],
            "status": QueueEntryStatus.PENDING,
        }
        for seller_id in seller_ids
    ]
    insert = _dialect_insert(db)
    stmt = (
        insert(QueueEntry)
        .values(rows)
        .on_conflict_do_nothing(index_elements=["request_id", "seller_id"])
    )
    result = await db.execute(stmt)
    # rowcount is -1 when the driver cannot report it
    created = result.rowcount if result.rowcount >= 0 else len(rows)

    entries_result = await db.execute(
        select(QueueEntry).where(
            QueueEntry.request_id == request.id,
            QueueEntry.seller_id.in_(seller_ids),
        )
    )
    by_seller = {e.seller_id: e for e in entries_result.scalars().all()}
    entries = [by_seller[sid] for sid in seller_ids]

    logger.info(
        "Distributed request %s to %d sellers (%d new entries)",
        request.id,
        len(entries),
        created,
    )
    requestEvents.emit_request_distributed(request.id, len(entries), created)
    return entries
