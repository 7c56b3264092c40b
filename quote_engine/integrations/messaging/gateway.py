"""
Outbound messaging gateway.

The notification dispatcher hands each stored notification to a
``MessagingGateway``. Two implementations ship here:

* ``LoggingGateway`` -- logs the message; the default when no webhook is
  configured (local development, tests).
* ``WebhookGateway`` -- POSTs the message as JSON to
  ``settings.messaging_webhook_url`` (an email/SMS/push relay). Uses httpx
  with retry logic (3 attempts, exponential backoff) on timeouts,
  connection errors and 5xx responses.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Optional, Protocol

import httpx

from quote_engine.core.config import settings

logger = logging.getLogger(__name__)

_MAX_RETRIES = 3
_INITIAL_BACKOFF_SECONDS = 0.5  # doubles each retry: 0.5, 1.0, 2.0


# ---------------------------------------------------------------------------
# Message + errors
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OutboundMessage:
    notification_id: uuid.UUID
    recipient_id: uuid.UUID
    recipient_role: str
    notification_type: str
    title: str
    body: str
    request_id: Optional[uuid.UUID] = None
    data: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["notification_id"] = str(self.notification_id)
        payload["recipient_id"] = str(self.recipient_id)
        payload["request_id"] = str(self.request_id) if self.request_id else None
        return payload


class MessagingError(Exception):
    """Raised when a message could not be handed to the relay.

    ``retryable`` is False for failures that will not go away on their own
    (4xx responses).
    """

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class MessagingGateway(Protocol):
    async def send(self, message: OutboundMessage) -> None:
        ...


# ---------------------------------------------------------------------------
# Implementations
# ---------------------------------------------------------------------------

class LoggingGateway:
    """Gateway that only logs; every send succeeds."""

    async def send(self, message: OutboundMessage) -> None:
        logger.info(
            "MESSAGE STUB: %s to %s %s -- %s",
            message.notification_type,
            message.recipient_role,
            message.recipient_id,
            message.title,
        )


class WebhookGateway:
    """POST messages to an HTTP relay."""

    def __init__(
        self,
        url: str,
        *,
        timeout_seconds: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        initial_backoff_seconds: float = _INITIAL_BACKOFF_SECONDS,
    ) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._client = client
        self._initial_backoff = initial_backoff_seconds

    async def send(self, message: OutboundMessage) -> None:
        if self._client is not None:
            await self._post_with_retry(self._client, message)
            return
        async with httpx.AsyncClient() as client:
            await self._post_with_retry(client, message)

    async def _post_with_retry(
        self,
        client: httpx.AsyncClient,
        message: OutboundMessage,
    ) -> None:
        last_error: str = ""
        backoff = self._initial_backoff

        for attempt in range(1, _MAX_RETRIES + 1):
            try:
                response = await client.post(
                    self.url,
                    json=message.to_json(),
                    timeout=self.timeout_seconds,
                )
                if 400 <= response.status_code < 500:
                    raise MessagingError(
                        f"Messaging relay rejected notification "
                        f"{message.notification_id}: HTTP {response.status_code}",
                        retryable=False,
                    )
                if response.status_code < 400:
                    return
                last_error = f"HTTP {response.status_code}"
                logger.warning(
                    "Messaging relay server error on attempt %d/%d: HTTP %d",
                    attempt,
                    _MAX_RETRIES,
                    response.status_code,
                )
            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                last_error = f"{type(exc).__name__}: {exc}"
                logger.warning(
                    "Messaging relay unreachable on attempt %d/%d: %s",
                    attempt,
                    _MAX_RETRIES,
                    exc,
                )

            if attempt < _MAX_RETRIES:
                await asyncio.sleep(backoff)
                backoff *= 2

        raise MessagingError(
            f"Messaging relay failed after {_MAX_RETRIES} attempts: {last_error}"
        )


def get_gateway() -> MessagingGateway:
    """Gateway selected by configuration."""
    if settings.messaging_webhook_url:
        return WebhookGateway(
            settings.messaging_webhook_url,
            timeout_seconds=settings.messaging_webhook_timeout_seconds,
        )
    return LoggingGateway()
