"""Backoff policy for notification outbox retries."""

from __future__ import annotations

from dataclasses import dataclass

from quote_engine.core.config import settings


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff with an upper bound and an attempt budget."""

    base_seconds: float = 30.0
    cap_seconds: float = 3600.0
    max_attempts: int = 5

    @classmethod
    def from_settings(cls) -> "BackoffPolicy":
        return cls(
            base_seconds=settings.notification_retry_base_seconds,
            cap_seconds=settings.notification_retry_cap_seconds,
            max_attempts=settings.notification_max_attempts,
        )

    def next_delay(self, attempts: int) -> float:
        """Delay in seconds before the next try, after *attempts* failures."""
        attempt = max(attempts, 1)
        delay = self.base_seconds * (2 ** (attempt - 1))
        return float(min(max(delay, self.base_seconds), self.cap_seconds))

    def exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_attempts
