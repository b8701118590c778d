"""Disjuntor por provedor de entrega (e-mail/SMS).

Enquanto o provedor está fora do ar, cada tentativa falha na hora como
transitória e volta para o Retry Scheduler, sem segurar um worker até o
timeout HTTP.

Estados:
    CLOSED  → entregas passam; falhas transitórias consecutivas são contadas
    OPEN    → entregas recusadas até ``cooldown_seconds`` após a abertura
    TRIAL   → até ``trial_limit`` entregas de teste; sucesso fecha, falha reabre
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

from mtn_notifications.domain.enums import FailureKind
from mtn_notifications.observability.logging import get_logger

logger = get_logger(__name__)


class BreakerState(StrEnum):
    CLOSED = "closed"
    OPEN = "open"
    TRIAL = "trial"


@dataclass(frozen=True)
class ProviderBreakerConfig:
    """Desligado por padrão; ligado via TRANSPORT_CIRCUIT_BREAKER_*."""

    enabled: bool = False
    failure_threshold: int = 5
    cooldown_seconds: float = 60.0
    trial_limit: int = 1


class ProviderBreaker:
    """Conta só falhas TRANSIENT: um 4xx prova que o provedor está de pé."""

    def __init__(
        self,
        provider: str,
        config: ProviderBreakerConfig,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._provider = provider
        self._config = config
        self._clock = clock or time.monotonic
        self._lock = asyncio.Lock()
        self._state = BreakerState.CLOSED
        self._transient_streak = 0
        self._opened_at: float | None = None
        self._trials = 0

    @property
    def state(self) -> BreakerState:
        return self._state

    @property
    def transient_streak(self) -> int:
        return self._transient_streak

    async def admit(self) -> bool:
        """False enquanto o provedor está em cooldown ou as tentativas de teste esgotaram."""
        if not self._config.enabled:
            return True

        async with self._lock:
            if self._state is BreakerState.OPEN:
                assert self._opened_at is not None
                if self._clock() - self._opened_at < self._config.cooldown_seconds:
                    return False
                self._state = BreakerState.TRIAL
                self._trials = 0
                logger.info("provider_breaker_trial", extra={"provider": self._provider})

            if self._state is BreakerState.TRIAL:
                if self._trials >= self._config.trial_limit:
                    return False
                self._trials += 1
            return True

    async def on_delivered(self) -> BreakerState:
        if not self._config.enabled:
            return BreakerState.CLOSED
        async with self._lock:
            if self._state is not BreakerState.CLOSED:
                logger.info("provider_breaker_closed", extra={"provider": self._provider})
            self._close()
            return self._state

    async def on_failure(self, kind: FailureKind) -> BreakerState:
        if not self._config.enabled:
            return BreakerState.CLOSED

        async with self._lock:
            if kind is FailureKind.PERMANENT:
                self._close()
            elif self._state is BreakerState.TRIAL:
                self._open()
            else:
                self._transient_streak += 1
                if self._transient_streak >= self._config.failure_threshold:
                    self._open()
            return self._state

    def _close(self) -> None:
        self._state = BreakerState.CLOSED
        self._transient_streak = 0
        self._opened_at = None
        self._trials = 0

    def _open(self) -> None:
        self._state = BreakerState.OPEN
        self._opened_at = self._clock()
        self._trials = 0
        logger.error(
            "provider_breaker_opened",
            extra={"provider": self._provider, "transient_streak": self._transient_streak},
        )
