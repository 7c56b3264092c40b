"""
Pydantic v2 schemas for the Notifications API
=============================================

Response schemas for the notification feed and read-status management.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from quote_engine.models.notification import NotificationType
from quote_engine.models.user import UserRole


class NotificationOut(BaseModel):
    """A single notification record in the feed."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    recipient_id: uuid.UUID
    recipient_role: UserRole
    notification_type: NotificationType
    title: str
    body: str
    request_id: Optional[uuid.UUID] = None
    data: dict[str, Any] = Field(default_factory=dict, validation_alias="data_json")
    read: bool
    read_at: Optional[datetime] = None
    created_at: datetime


class PaginationMeta(BaseModel):
    page: int
    page_size: int
    total_items: int
    total_pages: int


class NotificationFeedResponse(BaseModel):
    items: list[NotificationOut]
    meta: PaginationMeta


class NotificationReadResponse(BaseModel):
    id: uuid.UUID
    read: bool
    read_at: Optional[datetime] = None


class MarkAllReadResponse(BaseModel):
    updated: int


class UnreadCountResponse(BaseModel):
    unread_count: int
