"""
Pydantic v2 schemas for the Part Request API
============================================

Request/response schemas for creating part requests, listing a buyer's
requests, and the seller inbox.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from quote_engine.models.part_request import PartCondition, RequestStatus, Urgency
from quote_engine.models.queue_entry import QueueEntryStatus


class PartRequestCreate(BaseModel):
    """Request body for creating and distributing a part request."""

    vehicle_make: str = Field(min_length=1, max_length=100)
    vehicle_model: str = Field(min_length=1, max_length=100)
    vehicle_year: int = Field(ge=1900, description="Model year of the vehicle")
    part_name: str = Field(min_length=1, max_length=200)
    part_number: Optional[str] = Field(default=None, max_length=100)
    condition_preference: PartCondition = PartCondition.ANY
    budget: Optional[Decimal] = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    urgency: Urgency = Urgency.MEDIUM
    parish: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=5000)


class PartRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    owner_id: uuid.UUID
    vehicle_make: str
    vehicle_model: str
    vehicle_year: int
    part_name: str
    part_number: Optional[str] = None
    condition_preference: PartCondition
    budget: Optional[Decimal] = None
    urgency: Urgency
    parish: Optional[str] = None
    description: Optional[str] = None
    status: RequestStatus
    expires_at: datetime
    fulfilled_at: Optional[datetime] = None
    created_at: datetime


class QueueEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    request_id: uuid.UUID
    seller_id: uuid.UUID
    scheduled_delivery: datetime
    status: QueueEntryStatus
    processed_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None


class PartRequestCreatedResponse(BaseModel):
    """Response after creating a request: the request plus its fan-out."""

    request: PartRequestOut
    distributed_to: int
    queue_entries: list[QueueEntryOut]


class SellerInboxItem(BaseModel):
    """A request visible in a seller's inbox."""

    entry: QueueEntryOut
    request: PartRequestOut
