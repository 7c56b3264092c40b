"""
Pydantic v2 schemas for the Quote API.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from quote_engine.models.part_request import PartCondition
from quote_engine.models.quote import QuoteStatus


class QuoteSubmit(BaseModel):
    """Request body for submitting or revising a quote."""

    price: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    delivery_estimate: str = Field(
        min_length=1,
        max_length=100,
        description="Free-text estimate, e.g. '2-3 business days'",
    )
    condition: PartCondition
    notes: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("condition")
    @classmethod
    def validate_condition(cls, v: PartCondition) -> PartCondition:
        if v == PartCondition.ANY:
            raise ValueError("Condition must be 'new', 'used' or 'refurbished'")
        return v


class QuoteOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    request_id: uuid.UUID
    seller_id: uuid.UUID
    price: Decimal
    delivery_estimate: str
    condition: PartCondition
    notes: Optional[str] = None
    status: QuoteStatus
    responded_at: Optional[datetime] = None
    created_at: datetime


class BuyerQuoteStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_quotes: int
    pending_quotes: int
    accepted_quotes: int
