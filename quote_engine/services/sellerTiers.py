"""
Seller Tier Service
===================

Applies membership plan changes coming from the subscription/payment
collaborator. A new plan only affects requests distributed afterwards;
queue entries already scheduled keep their original delivery time.
"""

from __future__ import annotations

import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from quote_engine.core.exceptions import (
    NotFoundError,
    PreconditionFailedError,
    translate_store_errors,
)
from quote_engine.events import requestEvents
from quote_engine.models.user import MembershipPlan, User, UserRole
from quote_engine.services import notificationService

logger = logging.getLogger(__name__)


@translate_store_errors
async def change_seller_tier(
    db: AsyncSession,
    seller_id: uuid.UUID,
    plan: MembershipPlan,
) -> User:
    """Set a seller's membership plan and notify them.

    Raises:
        NotFoundError: The user does not exist.
        PreconditionFailedError: The user is not a seller.
    """
    seller = await db.get(User, seller_id)
    if seller is None:
        raise NotFoundError(f"User {seller_id} not found", seller_id=seller_id)
    if seller.role != UserRole.SELLER:
        raise PreconditionFailedError(
            f"User {seller_id} is not a seller",
            seller_id=seller_id,
        )
    if seller.membership_plan == plan:
        return seller

    old_plan = seller.membership_plan
    seller.membership_plan = plan
    await db.flush()

    logger.info(
        "Seller %s membership changed: %s -> %s",
        seller_id,
        old_plan.value,
        plan.value,
    )
    requestEvents.emit_seller_tier_changed(seller_id, old_plan.value, plan.value)
    await notificationService.notify_subscription_event(
        db, seller_id, old_plan.value, plan.value
    )
    return seller
