"""
Notification API Routes
=======================

  GET   /api/v1/notifications                       -- Feed (paginated)
  GET   /api/v1/notifications/unread-count          -- Unread count
  PATCH /api/v1/notifications/read-all              -- Mark all as read
  PATCH /api/v1/notifications/{notification_id}/read -- Mark one as read
"""

from __future__ import annotations

import logging
import math
import uuid

from fastapi import APIRouter, Query

from quote_engine.api.deps import CurrentIdentity, DBSession
from quote_engine.api.schemas.notification import (
    MarkAllReadResponse,
    NotificationFeedResponse,
    NotificationOut,
    NotificationReadResponse,
    PaginationMeta,
    UnreadCountResponse,
)
from quote_engine.core.config import settings
from quote_engine.services import notificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get(
    "",
    response_model=NotificationFeedResponse,
    summary="Notification feed",
    description="Returns the caller's notifications, newest first.",
)
async def get_feed(
    db: DBSession,
    identity: CurrentIdentity,
    unread_only: bool = Query(default=False),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(
        default=settings.default_page_size, ge=1, le=settings.max_page_size
    ),
) -> NotificationFeedResponse:
    items, total = await notificationService.list_notifications(
        db,
        identity.user_id,
        unread_only=unread_only,
        page=page,
        page_size=page_size,
    )
    return NotificationFeedResponse(
        items=[NotificationOut.model_validate(n) for n in items],
        meta=PaginationMeta(
            page=page,
            page_size=page_size,
            total_items=total,
            total_pages=math.ceil(total / page_size) if total else 0,
        ),
    )


@router.get(
    "/unread-count",
    response_model=UnreadCountResponse,
    summary="Unread notification count",
)
async def get_unread_count(
    db: DBSession,
    identity: CurrentIdentity,
) -> UnreadCountResponse:
    count = await notificationService.unread_count(db, identity.user_id)
    return UnreadCountResponse(unread_count=count)


@router.patch(
    "/read-all",
    response_model=MarkAllReadResponse,
    summary="Mark all notifications as read",
)
async def read_all(
    db: DBSession,
    identity: CurrentIdentity,
) -> MarkAllReadResponse:
    updated = await notificationService.mark_all_read(db, identity.user_id)
    logger.info("Marked %d notifications read for %s", updated, identity.user_id)
    return MarkAllReadResponse(updated=updated)


@router.patch(
    "/{notification_id}/read",
    response_model=NotificationReadResponse,
    summary="Mark a notification as read",
)
async def read_one(
    db: DBSession,
    identity: CurrentIdentity,
    notification_id: uuid.UUID,
) -> NotificationReadResponse:
    notification = await notificationService.mark_read(
        db, notification_id, identity.user_id
    )
    return NotificationReadResponse(
        id=notification.id,
        read=notification.read,
        read_at=notification.read_at,
    )
