"""Protocolo de domínio para o store de chaves de idempotência."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from mtn_notifications.domain.models import IdempotencyRecord


class IdempotencyStore(ABC):
    """Contrato para stores de idempotência.

    Implementações devem garantir check-and-insert atômico por chave e
    tratar chaves com ``now - first_seen_at >= window`` como inexistentes.
    """

    @abstractmethod
    def insert_if_absent(
        self, key: str, now: datetime, window_seconds: int
    ) -> IdempotencyRecord | None:
        """Insere a chave se ausente (ou expirada).

        Returns:
            None se a chave foi inserida agora (ADMITTED); o registro existente
            se ainda está dentro da janela (DUPLICATE).

        Raises:
            IdempotencyStoreError: Em caso de falha no backend (fail-closed)
        """

    @abstractmethod
    def release(self, key: str) -> bool:
        """Remove a chave (desfaz uma admissão rejeitada depois).

        Returns:
            True se removida, False se não existia
        """

    @abstractmethod
    def purge_expired(self, now: datetime, window_seconds: int) -> int:
        """Remove chaves expiradas; retorna quantas foram removidas."""
