"""Rate Limiter: janela fixa por destinatário e canal."""

from __future__ import annotations

from datetime import datetime

from mtn_notifications.domain.enums import Channel
from mtn_notifications.domain.protocols.rate_limit import RateLimitDecision, RateLimitStore
from mtn_notifications.observability.logging import get_logger, mask_recipient

logger = get_logger(__name__)


def recipient_key(recipient: str, channel: Channel | None = None) -> str:
    normalized = recipient.strip().lower()
    return f"{channel.value}:{normalized}" if channel else normalized


class RateLimiter:
    """try_acquire(recipient, now) → ALLOWED | THROTTLED(retry_after)."""

    def __init__(self, store: RateLimitStore, window_seconds: int, max_count: int) -> None:
        if window_seconds <= 0 or max_count < 1:
            raise ValueError("window_seconds > 0 e max_count >= 1 são obrigatórios")
        self._store = store
        self._window_seconds = window_seconds
        self._max_count = max_count

    def try_acquire(
        self,
        recipient: str,
        now: datetime,
        channel: Channel | None = None,
    ) -> RateLimitDecision:
        decision = self._store.acquire(
            recipient_key(recipient, channel),
            now,
            self._window_seconds,
            self._max_count,
        )
        if not decision.allowed:
            logger.info(
                "recipient_throttled",
                extra={
                    "recipient": mask_recipient(recipient),
                    "channel": channel.value if channel else None,
                    "retry_after_seconds": decision.retry_after_seconds,
                },
            )
        return decision

    def sweep(self, now: datetime) -> int:
        """Descarta buckets de janelas encerradas."""
        purged = self._store.purge_expired(now, self._window_seconds)
        if purged:
            logger.debug("rate_limit_sweep", extra={"purged": purged})
        return purged
