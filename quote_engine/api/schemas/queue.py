"""Pydantic v2 schemas for the queue monitor and seller tier admin endpoints."""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from quote_engine.models.user import MembershipPlan


class QueueStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    by_status: dict[str, int]
    pending_by_plan: dict[str, int]
    pending_due: int
    pending_overdue_minutes: float
    processed_last_24h: int
    average_delivery_lag_seconds: Optional[float] = None
    jobs: list[dict[str, Any]] = []


class SellerTierUpdate(BaseModel):
    plan: MembershipPlan


class SellerTierResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    membership_plan: MembershipPlan


class SellerStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    requests_received: int
    requests_declined: int
    quotes_total: int
    quotes_pending: int
    quotes_accepted: int
    quotes_rejected: int
    acceptance_rate: Optional[float] = None
    accepted_value: Decimal
