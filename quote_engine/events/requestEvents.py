"""
Part Request Event Emission
===========================

Domain events for the part request and quote lifecycle. Each emitter logs
the event and returns the payload dict, so services can record what
happened without depending on a transport. User-facing delivery is the job
of ``notificationService``; these events are for audit and analytics
consumers reading the structured log.

Events emitted:
  - part_request.created
  - part_request.distributed
  - part_request.status_changed
  - queue_entry.delivered
  - queue_entry.declined
  - quote.submitted
  - quote.accepted
  - quote.rejected
  - seller.tier_changed
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)


def _build_event(
    event_type: str,
    subject_id: uuid.UUID,
    *,
    subject_type: str = "part_request",
    data: dict[str, Any] | None = None,
    actor_id: uuid.UUID | None = None,
) -> dict[str, Any]:
    """Construct a standardised event payload."""
    return {
        "event_type": event_type,
        "subject_type": subject_type,
        "subject_id": str(subject_id),
        "actor_id": str(actor_id) if actor_id else None,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "data": data or {},
    }


def emit_request_created(
    request_id: uuid.UUID,
    owner_id: uuid.UUID,
    urgency: str,
) -> dict[str, Any]:
    event = _build_event(
        "part_request.created",
        request_id,
        actor_id=owner_id,
        data={"urgency": urgency},
    )
    logger.info("Event emitted: %s for request %s", event["event_type"], request_id)
    return event


def emit_request_distributed(
    request_id: uuid.UUID,
    seller_count: int,
    created_count: int,
) -> dict[str, Any]:
    """Emit event after a request has been fanned out to sellers."""
    event = _build_event(
        "part_request.distributed",
        request_id,
        data={"seller_count": seller_count, "created_count": created_count},
    )
    logger.info(
        "Event emitted: %s for request %s (%d sellers, %d new entries)",
        event["event_type"],
        request_id,
        seller_count,
        created_count,
    )
    return event


def emit_request_status_changed(
    request_id: uuid.UUID,
    old_status: str,
    new_status: str,
    actor_id: uuid.UUID | None = None,
) -> dict[str, Any]:
    event = _build_event(
        "part_request.status_changed",
        request_id,
        actor_id=actor_id,
        data={"old_status": old_status, "new_status": new_status},
    )
    logger.info(
        "Event emitted: %s for request %s (%s -> %s)",
        event["event_type"],
        request_id,
        old_status,
        new_status,
    )
    return event


def emit_entry_delivered(
    request_id: uuid.UUID,
    entry_id: uuid.UUID,
    seller_id: uuid.UUID,
    lag_seconds: float,
) -> dict[str, Any]:
    """Emit event when the worker releases a request to a seller's inbox."""
    event = _build_event(
        "queue_entry.delivered",
        request_id,
        data={
            "entry_id": str(entry_id),
            "seller_id": str(seller_id),
            "lag_seconds": round(lag_seconds, 3),
        },
    )
    logger.debug(
        "Event emitted: %s for request %s (seller=%s)",
        event["event_type"],
        request_id,
        seller_id,
    )
    return event


def emit_entry_declined(
    request_id: uuid.UUID,
    seller_id: uuid.UUID,
) -> dict[str, Any]:
    event = _build_event(
        "queue_entry.declined",
        request_id,
        actor_id=seller_id,
    )
    logger.info(
        "Event emitted: %s for request %s by seller %s",
        event["event_type"],
        request_id,
        seller_id,
    )
    return event


def emit_quote_submitted(
    request_id: uuid.UUID,
    quote_id: uuid.UUID,
    seller_id: uuid.UUID,
    price: str,
    revised: bool,
) -> dict[str, Any]:
    event = _build_event(
        "quote.submitted",
        request_id,
        actor_id=seller_id,
        data={"quote_id": str(quote_id), "price": price, "revised": revised},
    )
    logger.info(
        "Event emitted: %s for request %s (quote=%s, revised=%s)",
        event["event_type"],
        request_id,
        quote_id,
        revised,
    )
    return event


def emit_quote_accepted(
    request_id: uuid.UUID,
    quote_id: uuid.UUID,
    buyer_id: uuid.UUID,
    rejected_quote_ids: list[uuid.UUID],
) -> dict[str, Any]:
    event = _build_event(
        "quote.accepted",
        request_id,
        actor_id=buyer_id,
        data={
            "quote_id": str(quote_id),
            "rejected_quote_ids": [str(q) for q in rejected_quote_ids],
        },
    )
    logger.info(
        "Event emitted: %s for request %s (quote=%s, %d siblings rejected)",
        event["event_type"],
        request_id,
        quote_id,
        len(rejected_quote_ids),
    )
    return event


def emit_quote_rejected(
    request_id: uuid.UUID,
    quote_id: uuid.UUID,
    actor_id: uuid.UUID | None = None,
) -> dict[str, Any]:
    event = _build_event(
        "quote.rejected",
        request_id,
        actor_id=actor_id,
        data={"quote_id": str(quote_id)},
    )
    logger.info(
        "Event emitted: %s for request %s (quote=%s)",
        event["event_type"],
        request_id,
        quote_id,
    )
    return event


def emit_seller_tier_changed(
    seller_id: uuid.UUID,
    old_plan: str,
    new_plan: str,
) -> dict[str, Any]:
    """Emit event when a seller's membership plan changes.

    Keyed by seller rather than by part request.
    """
    event = _build_event(
        "seller.tier_changed",
        seller_id,
        subject_type="seller",
        actor_id=seller_id,
        data={"old_plan": old_plan, "new_plan": new_plan},
    )
    logger.info(
        "Event emitted: %s for seller %s (%s -> %s)",
        event["event_type"],
        seller_id,
        old_plan,
        new_plan,
    )
    return event
