"""
Delivery Worker -- Recurring Job.

Releases distributed part requests to sellers once their tier delay has
passed. Each tick:

1. Selects ``pending`` queue entries whose ``scheduled_delivery`` is due,
   most urgent request first, then oldest schedule first, up to the batch
   limit. Rows locked by another worker are skipped (``SKIP LOCKED``).
2. Claims every entry with a conditional update guarded on
   ``status = 'pending'``, inside its own savepoint. An entry another worker
   already claimed affects zero rows and is skipped.
3. Queues a ``new_request`` notification for the seller when the request is
   still accepting quotes.

A storage failure on one entry rolls back that entry's savepoint only; the
entry stays ``pending`` and is picked up again next tick. Several worker
processes may run concurrently.

Usage with a simple cron runner::

    python -m quote_engine.jobs.deliveryWorker
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import case, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from quote_engine.core.clock import as_utc, utcnow
from quote_engine.core.config import settings
from quote_engine.core.exceptions import TransientStoreError, is_transient_db_error
from quote_engine.events import requestEvents
from quote_engine.models.part_request import (
    ACTIVE_REQUEST_STATUSES,
    PartRequest,
    Urgency,
)
from quote_engine.models.queue_entry import QueueEntry, QueueEntryStatus
from quote_engine.services import notificationService
from quote_engine.services.requestStateManager import (
    QUEUE_ENTRY_TRANSITIONS,
    sources_for,
)

logger = logging.getLogger(__name__)

_URGENCY_RANK = case(
    {Urgency.HIGH: 0, Urgency.MEDIUM: 1, Urgency.LOW: 2},
    value=PartRequest.urgency,
    else_=3,
)


@dataclass
class DeliveryTickResult:
    """Outcome of one delivery tick."""
    selected: int = 0
    delivered: int = 0
    skipped: int = 0
    failed: int = 0
    notified: int = 0


async def _claim_entry(
    db: AsyncSession,
    entry_id,
    now: datetime,
) -> bool:
    """Flip one entry to ``processed`` if it is still ``pending``."""
    result = await db.execute(
        update(QueueEntry)
        .where(
            QueueEntry.id == entry_id,
            QueueEntry.status.in_(
                sources_for(QUEUE_ENTRY_TRANSITIONS, QueueEntryStatus.PROCESSED)
            ),
        )
        .values(status=QueueEntryStatus.PROCESSED, processed_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def run_delivery_tick(
    db: AsyncSession,
    *,
    now: Optional[datetime] = None,
    batch_limit: Optional[int] = None,
) -> DeliveryTickResult:
    """Deliver every due queue entry (up to *batch_limit*).

    Re-running over entries that are already processed is a no-op. The
    caller commits the session.
    """
    now = now or utcnow()
    limit = batch_limit or settings.delivery_batch_limit
    outcome = DeliveryTickResult()

    stmt = (
        select(
            QueueEntry.id,
            QueueEntry.request_id,
            QueueEntry.seller_id,
            QueueEntry.scheduled_delivery,
        )
        .join(PartRequest, PartRequest.id == QueueEntry.request_id)
        .where(
            QueueEntry.status == QueueEntryStatus.PENDING,
            QueueEntry.scheduled_delivery <= now,
        )
        .order_by(_URGENCY_RANK, QueueEntry.scheduled_delivery, QueueEntry.id)
        .limit(limit)
        .with_for_update(skip_locked=True, of=QueueEntry)
    )
    try:
        due = (await db.execute(stmt)).all()
    except SQLAlchemyError as exc:
        if not is_transient_db_error(exc):
            raise
        logger.warning("Delivery tick could not read the queue: %s", exc)
        return outcome

    outcome.selected = len(due)
    requests: dict = {}

    for row in due:
        try:
            async with db.begin_nested():
                if not await _claim_entry(db, row.id, now):
                    outcome.skipped += 1
                    continue

                request = requests.get(row.request_id)
                if request is None:
                    request = await db.get(PartRequest, row.request_id)
                    requests[row.request_id] = request
                if request is not None and request.status in ACTIVE_REQUEST_STATUSES:
                    stored = await notificationService.notify_new_request(
                        db, row.seller_id, request
                    )
                    if stored is not None:
                        outcome.notified += 1
        except (TransientStoreError, SQLAlchemyError) as exc:
            outcome.failed += 1
            if isinstance(exc, TransientStoreError) or is_transient_db_error(exc):
                logger.warning(
                    "Entry %s left pending after transient store error: %s",
                    row.id,
                    exc,
                )
            else:
                logger.exception("Failed to deliver queue entry %s", row.id)
            continue

        outcome.delivered += 1
        requestEvents.emit_entry_delivered(
            row.request_id,
            row.id,
            row.seller_id,
            (now - as_utc(row.scheduled_delivery)).total_seconds(),
        )

    if outcome.selected:
        logger.info(
            "Delivery tick: selected=%d delivered=%d skipped=%d failed=%d",
            outcome.selected,
            outcome.delivered,
            outcome.skipped,
            outcome.failed,
        )
    return outcome


# ---------------------------------------------------------------------------
# CLI entry point (for manual runs / simple cron)
# ---------------------------------------------------------------------------

async def _cli_main() -> None:
    """Run a single delivery tick in its own session."""
    from quote_engine.api.deps import async_session_factory

    async with async_session_factory() as session:
        try:
            result = await run_delivery_tick(session)
            await session.commit()
            print(f"Delivery tick completed: {result}")  # noqa: T201
        except Exception:
            await session.rollback()
            logger.exception("Delivery tick failed")
            raise
        finally:
            await session.close()


if __name__ == "__main__":
    logging.basicConfig(level=settings.log_level)
    asyncio.run(_cli_main())
