"""Protocolo de domínio para o store de rate limit."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime


@dataclass(slots=True, frozen=True)
class RateLimitDecision:
    """Resultado de try_acquire: ALLOWED ou THROTTLED com retry_after."""

    allowed: bool
    count: int
    max_count: int
    window_start: datetime
    retry_after_seconds: float = 0.0


class RateLimitStore(ABC):
    """Contrato para contadores de janela fixa.

    acquire deve ser atômico por chave (check-and-increment).
    """

    @abstractmethod
    def acquire(
        self,
        key: str,
        now: datetime,
        window_seconds: int,
        max_count: int,
    ) -> RateLimitDecision:
        """Incrementa o contador se abaixo do limite.

        Raises:
            RateLimitStoreError: Em caso de falha no backend (fail-closed)
        """

    @abstractmethod
    def purge_expired(self, now: datetime, window_seconds: int) -> int:
        """Remove buckets de janelas já encerradas; retorna quantos."""
