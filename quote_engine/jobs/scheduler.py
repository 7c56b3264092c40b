"""
Background Job Scheduler
========================

Runs the engine's recurring jobs inside the API process:

- delivery worker      (every ``delivery_worker_interval_seconds``)
- expiry sweep         (every ``expiry_sweep_interval_seconds``)
- notification dispatch (every ``notification_dispatch_interval_seconds``)

Usage (integrated into the FastAPI app lifespan)::

    from quote_engine.jobs.scheduler import start_background_jobs, stop_background_jobs

    await start_background_jobs()
    ...
    await stop_background_jobs()

Each job uses ``asyncio.create_task`` and sleeps between runs. Every run
gets its own session and transaction, except the notification dispatcher,
which opens short transactions of its own around each send. Correctness
under overlapping runs (or several API processes) comes from row-level
claims in the jobs themselves, not from this scheduler.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from quote_engine.core.clock import utcnow
from quote_engine.core.config import settings

logger = logging.getLogger(__name__)

TickFn = Union[
    Callable[[AsyncSession], Awaitable[Any]],
    Callable[[async_sessionmaker], Awaitable[Any]],
]


class PeriodicJob:
    """A named tick function executed on a fixed interval."""

    def __init__(
        self,
        name: str,
        tick: TickFn,
        interval_seconds: float,
        session_factory: Optional[async_sessionmaker] = None,
        before_tick: Optional[Callable[[async_sessionmaker], Awaitable[Any]]] = None,
        manages_sessions: bool = False,
    ) -> None:
        self.name = name
        self.tick = tick
        self.interval_seconds = interval_seconds
        self._session_factory = session_factory
        self._before_tick = before_tick
        # The tick takes the session factory and handles its own transactions
        self._manages_sessions = manages_sessions
        self._task: asyncio.Task | None = None
        self._running = False

        # Cumulative run statistics
        self.runs = 0
        self.failures = 0
        self.last_run_at: Optional[datetime] = None
        self.last_result: Any = None

    @property
    def session_factory(self) -> async_sessionmaker:
        if self._session_factory is None:
            from quote_engine.api.deps import async_session_factory

            self._session_factory = async_session_factory
        return self._session_factory

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> Any:
        """Execute one tick in a fresh session; commit or roll back. Jobs that
        manage their own sessions get the factory instead.

        Errors are logged and counted, never raised, so one bad tick does
        not stop the loop.
        """
        self.runs += 1
        self.last_run_at = utcnow()
        try:
            if self._before_tick is not None:
                await self._before_tick(self.session_factory)
            if self._manages_sessions:
                result = await self.tick(self.session_factory)
            else:
                async with self.session_factory() as session:
                    try:
                        result = await self.tick(session)
                        await session.commit()
                    except Exception:
                        await session.rollback()
                        raise
        except Exception:
            self.failures += 1
            logger.exception("Background job '%s' tick failed", self.name)
            return None

        self.last_result = result
        return result

    async def _loop(self) -> None:
        logger.info(
            "Background job '%s' started (interval=%.1fs)",
            self.name,
            self.interval_seconds,
        )
        while self._running:
            await self.run_once()
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self.running:
            logger.warning("Background job '%s' is already running", self.name)
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name=f"job:{self.name}")

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Background job '%s' stopped", self.name)

    def stats(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "running": self.running,
            "interval_seconds": self.interval_seconds,
            "runs": self.runs,
            "failures": self.failures,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
        }


# ---------------------------------------------------------------------------
# Job registry
# ---------------------------------------------------------------------------

_jobs: list[PeriodicJob] = []


def build_jobs(session_factory: Optional[async_sessionmaker] = None) -> list[PeriodicJob]:
    """Create the engine's recurring jobs (not started)."""
    from quote_engine.jobs.deliveryWorker import run_delivery_tick
    from quote_engine.jobs.expirySweeper import run_expiry_sweep
    from quote_engine.jobs.notificationDispatcher import run_dispatch_tick
    from quote_engine.services.notificationService import flush_retry_buffer

    return [
        PeriodicJob(
            "delivery_worker",
            run_delivery_tick,
            settings.delivery_worker_interval_seconds,
            session_factory,
        ),
        PeriodicJob(
            "expiry_sweep",
            run_expiry_sweep,
            settings.expiry_sweep_interval_seconds,
            session_factory,
        ),
        PeriodicJob(
            "notification_dispatch",
            run_dispatch_tick,
            settings.notification_dispatch_interval_seconds,
            session_factory,
            before_tick=flush_retry_buffer,
            manages_sessions=True,
        ),
    ]


def get_jobs() -> list[PeriodicJob]:
    return list(_jobs)


async def start_background_jobs(
    session_factory: Optional[async_sessionmaker] = None,
) -> None:
    """Start all recurring jobs."""
    if _jobs:
        logger.warning("Background jobs are already running")
        return
    _jobs.extend(build_jobs(session_factory))
    for job in _jobs:
        job.start()


async def stop_background_jobs() -> None:
    """Stop all recurring jobs."""
    for job in _jobs:
        await job.stop()
    _jobs.clear()
