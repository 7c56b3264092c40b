"""
Seller Selection
================

Two pluggable policies used by the distributor:

* **Tier lookup** -- maps a seller to the delay before a new request becomes
  visible to them. The default reads the seller's membership plan and looks
  the delay up in settings (enterprise sees requests immediately, free-plan
  sellers two days later).
* **Candidate selection** -- decides which sellers receive a request at all.
  The default picks active, email-verified sellers on a paid plan, excluding
  the buyer, with sellers in the request's parish first.
"""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from typing import Mapping, Protocol, Sequence

from sqlalchemy import case, select
from sqlalchemy.ext.asyncio import AsyncSession

from quote_engine.core.config import settings
from quote_engine.core.exceptions import NotFoundError
from quote_engine.models.part_request import PartRequest
from quote_engine.models.user import (
    PAID_PLANS,
    MembershipPlan,
    User,
    UserRole,
    UserStatus,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tier lookup
# ---------------------------------------------------------------------------

class SellerTierLookup(Protocol):
    async def delays_for(
        self,
        db: AsyncSession,
        seller_ids: Sequence[uuid.UUID],
    ) -> dict[uuid.UUID, timedelta]:
        """Return the request delay for every seller in *seller_ids*.

        Raises ``NotFoundError`` if any seller is unknown.
        """
        ...


class MembershipTierLookup:
    """Delay by membership plan, using a plan -> seconds table."""

    def __init__(self, delays: Mapping[str, int] | None = None) -> None:
        self._delays = dict(delays if delays is not None else settings.tier_delays)
        negative = sorted(plan for plan, seconds in self._delays.items() if seconds < 0)
        if negative:
            raise ValueError(f"Tier delays must not be negative: {', '.join(negative)}")

    def delay_for_plan(self, plan: MembershipPlan) -> timedelta:
        try:
            return timedelta(seconds=self._delays[plan.value])
        except KeyError:
            # Unlisted plans get the slowest configured delay
            return timedelta(seconds=max(self._delays.values(), default=0))

    async def delays_for(
        self,
        db: AsyncSession,
        seller_ids: Sequence[uuid.UUID],
    ) -> dict[uuid.UUID, timedelta]:
        if not seller_ids:
            return {}
        result = await db.execute(
            select(User.id, User.membership_plan).where(
                User.id.in_(list(seller_ids)),
                User.role == UserRole.SELLER,
            )
        )
        plans = {row.id: row.membership_plan for row in result.all()}
        missing = [sid for sid in seller_ids if sid not in plans]
        if missing:
            raise NotFoundError(
                f"Unknown seller(s): {', '.join(str(m) for m in missing)}",
                seller_ids=missing,
            )
        return {sid: self.delay_for_plan(plans[sid]) for sid in seller_ids}


# ---------------------------------------------------------------------------
# Candidate selection
# ---------------------------------------------------------------------------

_PLAN_RANK = case(
    {plan: rank for rank, plan in enumerate(PAID_PLANS)},
    value=User.membership_plan,
    else_=len(PAID_PLANS),
)


async def select_candidate_sellers(
    db: AsyncSession,
    request: PartRequest,
    *,
    limit: int | None = None,
) -> list[uuid.UUID]:
    """Pick the sellers a request should be distributed to.

    Eligible sellers are active, email-verified, on a paid plan, and are not
    the request owner. Sellers in the request's parish come first, then by
    plan (enterprise, premium, basic), then by account age.
    """
    ordering = [_PLAN_RANK, User.created_at, User.id]
    if request.parish:
        ordering.insert(0, case((User.parish == request.parish, 0), else_=1))

    stmt = (
        select(User.id)
        .where(
            User.role == UserRole.SELLER,
            User.status == UserStatus.ACTIVE,
            User.email_verified.is_(True),
            User.membership_plan.in_(PAID_PLANS),
            User.id != request.owner_id,
        )
        .order_by(*ordering)
    )
    if limit is not None:
        stmt = stmt.limit(limit)

    result = await db.execute(stmt)
    seller_ids = list(result.scalars().all())
    logger.info(
        "Selected %d candidate sellers for request %s (parish=%s)",
        len(seller_ids),
        request.id,
        request.parish,
    )
    return seller_ids
