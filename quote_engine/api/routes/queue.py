"""
Queue Monitor API Routes (admin)
================================

  GET  /api/v1/queue/stats          -- Queue counts, backlog and delivery lag
  POST /api/v1/queue/process-now    -- Run one delivery tick immediately
"""

from __future__ import annotations

import logging
from dataclasses import asdict

from fastapi import APIRouter

from quote_engine.api.deps import AdminIdentity, DBSession
from quote_engine.api.schemas.queue import QueueStatsResponse
from quote_engine.jobs import scheduler
from quote_engine.jobs.deliveryWorker import run_delivery_tick
from quote_engine.services import queueService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/queue", tags=["Queue"])


@router.get(
    "/stats",
    response_model=QueueStatsResponse,
    summary="Distribution queue statistics",
)
async def queue_stats(
    db: DBSession,
    _admin: AdminIdentity,
) -> QueueStatsResponse:
    stats = await queueService.get_queue_stats(db)
    return QueueStatsResponse(
        **asdict(stats),
        jobs=[job.stats() for job in scheduler.get_jobs()],
    )


@router.post(
    "/process-now",
    summary="Run a delivery tick now",
    description="Releases every due queue entry without waiting for the worker interval.",
)
async def process_now(
    db: DBSession,
    _admin: AdminIdentity,
) -> dict:
    result = await run_delivery_tick(db)
    logger.info("Manual delivery tick: %s", result)
    return asdict(result)
