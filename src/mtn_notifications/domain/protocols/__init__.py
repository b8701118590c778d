"""Re-exports dos protocolos de domínio para uso por Application."""

from __future__ import annotations

from mtn_notifications.domain.protocols.dead_letter import DeadLetterStore
from mtn_notifications.domain.protocols.idempotency import IdempotencyStore
from mtn_notifications.domain.protocols.rate_limit import RateLimitDecision, RateLimitStore
from mtn_notifications.domain.protocols.transport import ChannelTransport

__all__ = [
    "ChannelTransport",
    "DeadLetterStore",
    "IdempotencyStore",
    "RateLimitDecision",
    "RateLimitStore",
]
