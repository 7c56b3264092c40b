"""
Notification Service
====================

Writes notifications for buyers and sellers and serves their in-app feed.

``notify`` appends a notification and its pending outbox delivery inside a
SAVEPOINT of the caller's transaction, so both commit together with the
state change that caused them. A failed insert rolls back only the
savepoint: the failure is logged, the notification is parked on the
session, and the business transaction carries on.

Parked notifications move to the process-local retry buffer only when that
session's transaction commits; if it rolls back they are discarded along
with the state change. The dispatcher job drains the buffer and delivers
stored rows to the outbound messaging gateway.

The ``notify_*`` helpers build the title/body for each lifecycle event and
are what the other services call.
"""

from __future__ import annotations

import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import event, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Session, SessionTransaction

from quote_engine.core.clock import utcnow
from quote_engine.core.config import settings
from quote_engine.core.exceptions import (
    NotFoundError,
    UnauthorizedError,
    translate_store_errors,
)
from quote_engine.models.notification import (
    DeliveryStatus,
    Notification,
    NotificationDelivery,
    NotificationType,
)
from quote_engine.models.part_request import PartRequest
from quote_engine.models.quote import Quote
from quote_engine.models.user import UserRole

logger = logging.getLogger(__name__)

# Session.info key holding notifications parked during the current transaction
_PARKED_KEY = "quote_engine.parked_notifications"


@dataclass
class NotificationPayload:
    """Content of a notification, independent of its recipient."""
    title: str
    body: str
    request_id: Optional[uuid.UUID] = None
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class _ParkedNotification:
    recipient_id: uuid.UUID
    role: UserRole
    notification_type: NotificationType
    payload: NotificationPayload
    error: str
    attempts: int = 0


# ---------------------------------------------------------------------------
# Retry buffer for inserts that failed inside the business transaction
# ---------------------------------------------------------------------------

class NotificationRetryBuffer:
    """Bounded FIFO of notifications whose insert failed.

    Oldest entries are dropped (and logged) once ``maxlen`` is reached.
    """

    def __init__(self, maxlen: int = 1000) -> None:
        self._items: deque[_ParkedNotification] = deque()
        self._maxlen = maxlen

    def __len__(self) -> int:
        return len(self._items)

    def park(self, item: _ParkedNotification) -> None:
        if len(self._items) >= self._maxlen:
            dropped = self._items.popleft()
            logger.error(
                "Notification retry buffer full; dropping %s for recipient %s",
                dropped.notification_type.value,
                dropped.recipient_id,
            )
        self._items.append(item)

    def drain(self) -> list[_ParkedNotification]:
        items = list(self._items)
        self._items.clear()
        return items


retry_buffer = NotificationRetryBuffer()


@event.listens_for(Session, "after_commit")
def _hand_off_parked(session: Session) -> None:
    """Release a committed transaction's parked notifications to the buffer."""
    if session.in_nested_transaction():
        return
    for item in session.info.pop(_PARKED_KEY, []):
        retry_buffer.park(item)


@event.listens_for(Session, "after_transaction_end")
def _discard_parked(session: Session, transaction: SessionTransaction) -> None:
    """Drop whatever is still parked when the outermost transaction ends
    without committing."""
    if transaction.parent is not None:
        return
    dropped = session.info.pop(_PARKED_KEY, None)
    if dropped:
        logger.info(
            "Discarded %d parked notifications; their transaction did not commit",
            len(dropped),
        )


def _build_row(
    recipient_id: uuid.UUID,
    role: UserRole,
    notification_type: NotificationType,
    payload: NotificationPayload,
) -> Notification:
    notification = Notification(
        recipient_id=recipient_id,
        recipient_role=role,
        notification_type=notification_type,
        title=payload.title,
        body=payload.body,
        request_id=payload.request_id,
        data_json=payload.data,
        read=False,
    )
    notification.delivery = NotificationDelivery(
        status=DeliveryStatus.PENDING,
        attempts=0,
        next_attempt_at=utcnow(),
    )
    return notification


# ---------------------------------------------------------------------------
# Core write path
# ---------------------------------------------------------------------------

async def notify(
    db: AsyncSession,
    recipient_id: uuid.UUID,
    role: UserRole,
    notification_type: NotificationType,
    payload: NotificationPayload,
) -> Optional[Notification]:
    """Append a notification to the outbox within the caller's transaction.

    Returns the stored row, or ``None`` when the insert failed and the
    notification was parked until the caller's transaction commits. Never
    raises for storage errors.
    """
    notification = _build_row(recipient_id, role, notification_type, payload)
    try:
        async with db.begin_nested():
            db.add(notification)
    except SQLAlchemyError as exc:
        logger.warning(
            "Failed to store %s notification for %s; parked for retry: %s",
            notification_type.value,
            recipient_id,
            exc,
        )
        db.info.setdefault(_PARKED_KEY, []).append(
            _ParkedNotification(
                recipient_id=recipient_id,
                role=role,
                notification_type=notification_type,
                payload=payload,
                error=str(exc),
            )
        )
        return None

    logger.debug(
        "Notification queued: type=%s, recipient=%s, request=%s",
        notification_type.value,
        recipient_id,
        payload.request_id,
    )
    return notification


async def flush_retry_buffer(
    session_factory: async_sessionmaker,
    *,
    max_attempts: Optional[int] = None,
) -> int:
    """Re-insert parked notifications in an independent transaction.

    Each notification gets its own savepoint, so one that can never be
    stored does not hold back the rest. Failures go back into the buffer
    until ``max_attempts`` (config ``notification_max_attempts``) is spent,
    then they are dropped and logged. Returns the number stored.
    """
    parked = retry_buffer.drain()
    if not parked:
        return 0
    max_attempts = max_attempts or settings.notification_max_attempts

    stored: list[_ParkedNotification] = []
    failed: list[_ParkedNotification] = []
    async with session_factory() as session:
        for item in parked:
            try:
                async with session.begin_nested():
                    session.add(
                        _build_row(
                            item.recipient_id,
                            item.role,
                            item.notification_type,
                            item.payload,
                        )
                    )
            except SQLAlchemyError as exc:
                item.attempts += 1
                item.error = str(exc)
                failed.append(item)
            else:
                stored.append(item)

        try:
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.exception(
                "Committing %d parked notifications failed", len(stored)
            )
            for item in stored:
                item.attempts += 1
                item.error = str(exc)
            failed.extend(stored)
            stored = []

    for item in failed:
        if item.attempts >= max_attempts:
            logger.error(
                "Dropping parked %s notification for %s after %d attempts: %s",
                item.notification_type.value,
                item.recipient_id,
                item.attempts,
                item.error,
            )
        else:
            retry_buffer.park(item)

    if stored:
        logger.info("Stored %d previously parked notifications", len(stored))
    return len(stored)


# ---------------------------------------------------------------------------
# Lifecycle helpers
# ---------------------------------------------------------------------------

def _vehicle_label(request: PartRequest) -> str:
    return f"{request.vehicle_year} {request.vehicle_make} {request.vehicle_model}"


async def notify_new_request(
    db: AsyncSession,
    seller_id: uuid.UUID,
    request: PartRequest,
) -> Optional[Notification]:
    """Tell a seller that a request has reached their inbox."""
    return await notify(
        db,
        seller_id,
        UserRole.SELLER,
        NotificationType.NEW_REQUEST,
        NotificationPayload(
            title=f"New Part Request: {request.part_name}",
            body=(
                f"A buyer needs a {request.part_name} for a "
                f"{_vehicle_label(request)}."
            ),
            request_id=request.id,
            data={
                "vehicle": _vehicle_label(request),
                "condition": request.condition_preference.value,
                "urgency": request.urgency.value,
                "budget": str(request.budget) if request.budget is not None else None,
                "parish": request.parish,
            },
        ),
    )


async def notify_new_quote(
    db: AsyncSession,
    request: PartRequest,
    quote: Quote,
    revised: bool = False,
) -> Optional[Notification]:
    title = "Quote Updated" if revised else "New Quote Received"
    return await notify(
        db,
        request.owner_id,
        UserRole.BUYER,
        NotificationType.NEW_QUOTE,
        NotificationPayload(
            title=title,
            body=(
                f"A seller quoted {quote.price} for your {request.part_name} "
                f"({quote.condition.value}, {quote.delivery_estimate})."
            ),
            request_id=request.id,
            data={"quote_id": str(quote.id), "price": str(quote.price)},
        ),
    )


async def notify_quote_accepted(
    db: AsyncSession,
    request: PartRequest,
    quote: Quote,
) -> None:
    """Winner notification for the seller plus the buyer's confirmation."""
    data = {"quote_id": str(quote.id), "price": str(quote.price)}
    await notify(
        db,
        quote.seller_id,
        UserRole.SELLER,
        NotificationType.QUOTE_ACCEPTED,
        NotificationPayload(
            title="Your Quote Was Accepted!",
            body=(
                f"The buyer accepted your quote for {request.part_name} "
                f"at {quote.price}."
            ),
            request_id=request.id,
            data=data,
        ),
    )
    await notify(
        db,
        request.owner_id,
        UserRole.BUYER,
        NotificationType.QUOTE_ACCEPTED,
        NotificationPayload(
            title="Quote Accepted Successfully",
            body=(
                f"You accepted a quote for {request.part_name} at {quote.price}."
            ),
            request_id=request.id,
            data=data,
        ),
    )


async def notify_quote_rejected(
    db: AsyncSession,
    request: PartRequest,
    quote: Quote,
    *,
    reason: str,
    notify_buyer: bool = False,
) -> None:
    """Tell the seller their quote lost; optionally confirm to the buyer."""
    data = {"quote_id": str(quote.id), "reason": reason}
    await notify(
        db,
        quote.seller_id,
        UserRole.SELLER,
        NotificationType.QUOTE_REJECTED,
        NotificationPayload(
            title="Quote Not Selected",
            body=f"Your quote for {request.part_name} was not selected.",
            request_id=request.id,
            data=data,
        ),
    )
    if notify_buyer:
        await notify(
            db,
            request.owner_id,
            UserRole.BUYER,
            NotificationType.QUOTE_REJECTED,
            NotificationPayload(
                title="Quote Rejected",
                body=f"You rejected a quote for {request.part_name}.",
                request_id=request.id,
                data=data,
            ),
        )


async def notify_request_expiring(
    db: AsyncSession,
    request: PartRequest,
    hours_remaining: int,
) -> Optional[Notification]:
    return await notify(
        db,
        request.owner_id,
        UserRole.BUYER,
        NotificationType.REQUEST_EXPIRING,
        NotificationPayload(
            title="Request Expiring Soon",
            body=(
                f"Your request for {request.part_name} expires in about "
                f"{hours_remaining} hours."
            ),
            request_id=request.id,
            data={"hours_remaining": hours_remaining},
        ),
    )


async def notify_request_expired(
    db: AsyncSession,
    request: PartRequest,
) -> Optional[Notification]:
    return await notify(
        db,
        request.owner_id,
        UserRole.BUYER,
        NotificationType.REQUEST_EXPIRED,
        NotificationPayload(
            title="Request Expired",
            body=f"Your request for {request.part_name} has expired.",
            request_id=request.id,
        ),
    )


async def notify_subscription_event(
    db: AsyncSession,
    seller_id: uuid.UUID,
    old_plan: str,
    new_plan: str,
) -> Optional[Notification]:
    return await notify(
        db,
        seller_id,
        UserRole.SELLER,
        NotificationType.SUBSCRIPTION_EVENT,
        NotificationPayload(
            title="Membership Updated",
            body=f"Your membership changed from {old_plan} to {new_plan}.",
            data={"old_plan": old_plan, "new_plan": new_plan},
        ),
    )


# ---------------------------------------------------------------------------
# Feed operations
# ---------------------------------------------------------------------------

@translate_store_errors
async def list_notifications(
    db: AsyncSession,
    recipient_id: uuid.UUID,
    *,
    unread_only: bool = False,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Notification], int]:
    """Return one page of a recipient's notifications (newest first) and the
    total count matching the filter.
    """
    filters = [Notification.recipient_id == recipient_id]
    if unread_only:
        filters.append(Notification.read.is_(False))

    total = (
        await db.execute(select(func.count(Notification.id)).where(*filters))
    ).scalar_one()

    result = await db.execute(
        select(Notification)
        .where(*filters)
        .order_by(Notification.created_at.desc(), Notification.id)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(result.scalars().all()), total


@translate_store_errors
async def mark_read(
    db: AsyncSession,
    notification_id: uuid.UUID,
    recipient_id: uuid.UUID,
    *,
    now: Optional[datetime] = None,
) -> Notification:
    """Mark one notification read. Idempotent.

    Raises:
        NotFoundError: No such notification.
        UnauthorizedError: The caller is not the recipient.
    """
    notification = await db.get(Notification, notification_id)
    if notification is None:
        raise NotFoundError(
            f"Notification {notification_id} not found",
            notification_id=notification_id,
        )
    if notification.recipient_id != recipient_id:
        raise UnauthorizedError(
            "Only the recipient can mark a notification as read",
            notification_id=notification_id,
        )
    if not notification.read:
        notification.read = True
        notification.read_at = now or utcnow()
        await db.flush()
    return notification


@translate_store_errors
async def mark_all_read(
    db: AsyncSession,
    recipient_id: uuid.UUID,
    *,
    now: Optional[datetime] = None,
) -> int:
    """Mark every unread notification of *recipient_id* read; returns the count."""
    result = await db.execute(
        update(Notification)
        .where(
            Notification.recipient_id == recipient_id,
            Notification.read.is_(False),
        )
        .values(read=True, read_at=now or utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


@translate_store_errors
async def unread_count(db: AsyncSession, recipient_id: uuid.UUID) -> int:
    result = await db.execute(
        select(func.count(Notification.id)).where(
            Notification.recipient_id == recipient_id,
            Notification.read.is_(False),
        )
    )
    return result.scalar_one()
