"""
Part Request Expiry Sweeper -- Scheduled Job.

This module provides a periodic job that:

1. Moves ``open`` / ``in_progress`` requests past their ``expires_at`` to
   ``expired``, rejects their pending quotes and notifies the buyer.
2. Sends one ``request_expiring`` warning per request when it enters the
   final ``expiry_warning_hours`` of its life.

Reads also expire requests lazily (see ``partRequestService``), so the sweep
only bounds how long an untouched request can look active.

Usage with a simple cron runner::

    python -m quote_engine.jobs.expirySweeper
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from quote_engine.core.clock import as_utc, utcnow
from quote_engine.core.config import settings
from quote_engine.models.part_request import ACTIVE_REQUEST_STATUSES, PartRequest
from quote_engine.services import notificationService
from quote_engine.services.partRequestService import expire_request

logger = logging.getLogger(__name__)


@dataclass
class ExpirySweepResult:
    expired: int = 0
    warned: int = 0


async def expire_overdue_requests(
    db: AsyncSession,
    *,
    now: Optional[datetime] = None,
    batch_limit: int = 500,
) -> int:
    """Expire every active request whose ``expires_at`` has passed."""
    now = now or utcnow()
    result = await db.execute(
        select(PartRequest)
        .where(
            PartRequest.status.in_(list(ACTIVE_REQUEST_STATUSES)),
            PartRequest.expires_at <= now,
        )
        .order_by(PartRequest.expires_at)
        .limit(batch_limit)
        .with_for_update(skip_locked=True)
    )
    expired = 0
    for request in result.scalars().all():
        if await expire_request(db, request, now=now):
            expired += 1
    return expired


async def send_expiry_warnings(
    db: AsyncSession,
    *,
    now: Optional[datetime] = None,
) -> int:
    """Warn buyers whose requests expire within ``expiry_warning_hours``.

    ``expiry_warning_sent_at`` is claimed with a conditional update first,
    so each request is warned at most once even with concurrent sweeps.
    """
    now = now or utcnow()
    horizon = now + timedelta(hours=settings.expiry_warning_hours)
    result = await db.execute(
        select(PartRequest).where(
            PartRequest.status.in_(list(ACTIVE_REQUEST_STATUSES)),
            PartRequest.expires_at > now,
            PartRequest.expires_at <= horizon,
            PartRequest.expiry_warning_sent_at.is_(None),
        )
    )
    warned = 0
    for request in result.scalars().all():
        claim = await db.execute(
            update(PartRequest)
            .where(
                PartRequest.id == request.id,
                PartRequest.expiry_warning_sent_at.is_(None),
            )
            .values(expiry_warning_sent_at=now)
            .execution_options(synchronize_session=False)
        )
        if claim.rowcount != 1:
            continue
        hours_remaining = math.ceil(
            (as_utc(request.expires_at) - now).total_seconds() / 3600
        )
        await notificationService.notify_request_expiring(db, request, hours_remaining)
        warned += 1
    return warned


async def run_expiry_sweep(
    db: AsyncSession,
    *,
    now: Optional[datetime] = None,
) -> ExpirySweepResult:
    """Expire overdue requests, then send upcoming-expiry warnings."""
    now = now or utcnow()
    outcome = ExpirySweepResult(
        expired=await expire_overdue_requests(db, now=now),
        warned=await send_expiry_warnings(db, now=now),
    )
    if outcome.expired or outcome.warned:
        logger.info(
            "Expiry sweep: expired=%d warned=%d",
            outcome.expired,
            outcome.warned,
        )
    return outcome


# ---------------------------------------------------------------------------
# CLI entry point (for manual runs / simple cron)
# ---------------------------------------------------------------------------

async def _cli_main() -> None:
    from quote_engine.api.deps import async_session_factory

    async with async_session_factory() as session:
        try:
            result = await run_expiry_sweep(session)
            await session.commit()
            print(f"Expiry sweep completed: {result}")  # noqa: T201
        except Exception:
            await session.rollback()
            logger.exception("Expiry sweep failed")
            raise
        finally:
            await session.close()


if __name__ == "__main__":
    logging.basicConfig(level=settings.log_level)
    asyncio.run(_cli_main())
