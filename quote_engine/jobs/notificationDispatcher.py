"""
Notification Dispatcher -- Recurring Job.

Consumes the notification outbox. Each tick:

1. Re-inserts notifications that were parked after a failed insert
   (``notificationService.retry_buffer``); the scheduler does this before
   the tick.
2. Claims ``pending`` deliveries whose ``next_attempt_at`` is due in one
   short transaction: the attempt counter goes up and ``next_attempt_at``
   moves forward by the claim lease, so no other dispatcher picks the row up
   while it is being sent.
3. Sends each claimed notification through the messaging gateway with no
   transaction open.
4. Records each outcome in its own short transaction: ``sent``, a retry with
   exponential backoff, or ``failed`` once the attempt budget is spent (or
   immediately for non-retryable errors).

A dispatcher that dies between claim and record leaves the row ``pending``;
it becomes due again when the lease runs out. Delivery problems never touch
the business state or the feed row that produced the notification.

Usage with a simple cron runner::

    python -m quote_engine.jobs.notificationDispatcher
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from quote_engine.core.clock import utcnow
from quote_engine.core.config import settings
from quote_engine.integrations.messaging import (
    MessagingError,
    MessagingGateway,
    OutboundMessage,
    get_gateway,
)
from quote_engine.jobs.backoff import BackoffPolicy
from quote_engine.models.notification import (
    DeliveryStatus,
    Notification,
    NotificationDelivery,
)

logger = logging.getLogger(__name__)


@dataclass
class DispatchTickResult:
    selected: int = 0
    sent: int = 0
    retried: int = 0
    failed: int = 0
    lost: int = 0


@dataclass
class _Claim:
    delivery_id: uuid.UUID
    attempts: int
    message: OutboundMessage


def _to_message(notification: Notification) -> OutboundMessage:
    return OutboundMessage(
        notification_id=notification.id,
        recipient_id=notification.recipient_id,
        recipient_role=notification.recipient_role.value,
        notification_type=notification.notification_type.value,
        title=notification.title,
        body=notification.body,
        request_id=notification.request_id,
        data=dict(notification.data_json or {}),
    )


async def _claim_due(
    session_factory: async_sessionmaker,
    now: datetime,
    limit: int,
) -> list[_Claim]:
    lease = timedelta(seconds=settings.notification_claim_lease_seconds)
    async with session_factory() as session:
        result = await session.execute(
            select(NotificationDelivery, Notification)
            .join(Notification, Notification.id == NotificationDelivery.notification_id)
            .where(
                NotificationDelivery.status == DeliveryStatus.PENDING,
                or_(
                    NotificationDelivery.next_attempt_at.is_(None),
                    NotificationDelivery.next_attempt_at <= now,
                ),
            )
            .order_by(NotificationDelivery.next_attempt_at, NotificationDelivery.id)
            .limit(limit)
            .with_for_update(skip_locked=True, of=NotificationDelivery)
        )
        claims = []
        for delivery, notification in result.all():
            delivery.attempts += 1
            delivery.next_attempt_at = now + lease
            claims.append(
                _Claim(delivery.id, delivery.attempts, _to_message(notification))
            )
        await session.commit()
    return claims


async def _record(
    session_factory: async_sessionmaker,
    claim: _Claim,
    values: dict[str, Any],
) -> bool:
    """Store the outcome of one send if the claim is still ours."""
    async with session_factory() as session:
        result = await session.execute(
            update(NotificationDelivery)
            .where(
                NotificationDelivery.id == claim.delivery_id,
                NotificationDelivery.status == DeliveryStatus.PENDING,
                NotificationDelivery.attempts == claim.attempts,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await session.commit()
    if result.rowcount != 1:
        logger.warning(
            "Delivery %s was reclaimed before its outcome was recorded",
            claim.delivery_id,
        )
        return False
    return True


async def run_dispatch_tick(
    session_factory: async_sessionmaker,
    gateway: Optional[MessagingGateway] = None,
    *,
    now: Optional[datetime] = None,
    batch_limit: Optional[int] = None,
    policy: Optional[BackoffPolicy] = None,
) -> DispatchTickResult:
    """Deliver due outbox rows through *gateway*.

    Opens its own short-lived sessions from *session_factory*; no
    transaction is held while the gateway is called.
    """
    now = now or utcnow()
    gateway = gateway or get_gateway()
    policy = policy or BackoffPolicy.from_settings()
    limit = batch_limit or settings.notification_dispatch_batch_limit
    outcome = DispatchTickResult()

    claims = await _claim_due(session_factory, now, limit)
    outcome.selected = len(claims)

    for claim in claims:
        try:
            await gateway.send(claim.message)
        except MessagingError as exc:
            if not exc.retryable or policy.exhausted(claim.attempts):
                values = {
                    "status": DeliveryStatus.FAILED,
                    "next_attempt_at": None,
                    "last_error": str(exc)[:2000],
                }
                if await _record(session_factory, claim, values):
                    outcome.failed += 1
                    logger.error(
                        "Notification %s delivery failed permanently after %d attempts: %s",
                        claim.message.notification_id,
                        claim.attempts,
                        exc,
                    )
                else:
                    outcome.lost += 1
            else:
                delay = policy.next_delay(claim.attempts)
                values = {
                    "next_attempt_at": now + timedelta(seconds=delay),
                    "last_error": str(exc)[:2000],
                }
                if await _record(session_factory, claim, values):
                    outcome.retried += 1
                    logger.warning(
                        "Notification %s delivery failed (attempt %d); retrying in %.0fs",
                        claim.message.notification_id,
                        claim.attempts,
                        delay,
                    )
                else:
                    outcome.lost += 1
            continue

        values = {
            "status": DeliveryStatus.SENT,
            "sent_at": now,
            "next_attempt_at": None,
            "last_error": None,
        }
        if await _record(session_factory, claim, values):
            outcome.sent += 1
        else:
            outcome.lost += 1

    if outcome.selected:
        logger.info(
            "Dispatch tick: selected=%d sent=%d retried=%d failed=%d lost=%d",
            outcome.selected,
            outcome.sent,
            outcome.retried,
            outcome.failed,
            outcome.lost,
        )
    return outcome


# ---------------------------------------------------------------------------
# CLI entry point (for manual runs / simple cron)
# ---------------------------------------------------------------------------

async def _cli_main() -> None:
    from quote_engine.api.deps import async_session_factory
    from quote_engine.services import notificationService

    await notificationService.flush_retry_buffer(async_session_factory)
    try:
        result = await run_dispatch_tick(async_session_factory)
    except Exception:
        logger.exception("Dispatch tick failed")
        raise
    print(f"Dispatch tick completed: {result}")  # noqa: T201


if __name__ == "__main__":
    logging.basicConfig(level=settings.log_level)
    asyncio.run(_cli_main())
