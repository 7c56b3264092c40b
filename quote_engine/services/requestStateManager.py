"""
Request / Quote / Queue Entry State Manager
===========================================

Finite state machines for the three lifecycles the engine drives. Every
status change goes through ``validate_*_transition`` before it is persisted;
services turn a refused transition into ``PreconditionFailedError`` (or
``ConflictError`` when the refusal means a competing writer already won).

Part request::

    open --> in_progress --> fulfilled
      |           |
      +-----------+--> expired

    open --> fulfilled        (buyer accepts the very first quote)

Quote::

    pending --> accepted
    pending --> rejected

Queue entry::

    pending --> processed --> rejected_by_seller
    pending --> rejected_by_seller
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TypeVar

from quote_engine.models.part_request import RequestStatus
from quote_engine.models.queue_entry import QueueEntryStatus
from quote_engine.models.quote import QuoteStatus

S = TypeVar("S", bound=enum.Enum)


@dataclass(frozen=True)
class TransitionResult:
    """Result of a transition validation attempt."""
    allowed: bool
    reason: str | None = None


# ---------------------------------------------------------------------------
# Transition tables
# ---------------------------------------------------------------------------

REQUEST_TRANSITIONS: dict[RequestStatus, set[RequestStatus]] = {
    RequestStatus.OPEN: {
        RequestStatus.IN_PROGRESS,
        RequestStatus.FULFILLED,
        RequestStatus.EXPIRED,
    },
    RequestStatus.IN_PROGRESS: {
        RequestStatus.FULFILLED,
        RequestStatus.EXPIRED,
    },
    RequestStatus.FULFILLED: set(),
    RequestStatus.EXPIRED: set(),
}

QUOTE_TRANSITIONS: dict[QuoteStatus, set[QuoteStatus]] = {
    QuoteStatus.PENDING: {QuoteStatus.ACCEPTED, QuoteStatus.REJECTED},
    QuoteStatus.ACCEPTED: set(),
    QuoteStatus.REJECTED: set(),
}

QUEUE_ENTRY_TRANSITIONS: dict[QueueEntryStatus, set[QueueEntryStatus]] = {
    QueueEntryStatus.PENDING: {
        QueueEntryStatus.PROCESSED,
        QueueEntryStatus.REJECTED_BY_SELLER,
    },
    QueueEntryStatus.PROCESSED: {QueueEntryStatus.REJECTED_BY_SELLER},
    QueueEntryStatus.REJECTED_BY_SELLER: set(),
}

TERMINAL_REQUEST_STATUSES: frozenset[RequestStatus] = frozenset(
    s for s, targets in REQUEST_TRANSITIONS.items() if not targets
)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _validate(
    table: dict[S, set[S]],
    current: S,
    target: S,
    entity: str,
) -> TransitionResult:
    if current == target:
        return TransitionResult(
            allowed=False,
            reason=f"{entity} is already '{current.value}'.",
        )
    allowed_targets = table.get(current, set())
    if target not in allowed_targets:
        valid = ", ".join(sorted(s.value for s in allowed_targets)) or "none"
        return TransitionResult(
            allowed=False,
            reason=(
                f"Cannot move {entity} from '{current.value}' to "
                f"'{target.value}'. Valid targets: {valid}."
            ),
        )
    return TransitionResult(allowed=True)


def validate_request_transition(
    current: RequestStatus,
    target: RequestStatus,
) -> TransitionResult:
    return _validate(REQUEST_TRANSITIONS, current, target, "part request")


def validate_quote_transition(
    current: QuoteStatus,
    target: QuoteStatus,
) -> TransitionResult:
    return _validate(QUOTE_TRANSITIONS, current, target, "quote")


def validate_queue_entry_transition(
    current: QueueEntryStatus,
    target: QueueEntryStatus,
) -> TransitionResult:
    return _validate(QUEUE_ENTRY_TRANSITIONS, current, target, "queue entry")


def sources_for(table: dict[S, set[S]], target: S) -> list[S]:
    """All states from which *target* is reachable in one step.

    Used to build the ``WHERE status IN (...)`` guard of compare-and-set
    updates so the SQL guard and the table cannot drift apart.
    """
    return [state for state, targets in table.items() if target in targets]
