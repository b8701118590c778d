"""Protocolo de domínio para o store de dead-letter."""

from __future__ import annotations

from abc import ABC, abstractmethod

from mtn_notifications.domain.models import DeadLetterEntry


class DeadLetterStore(ABC):
    """Persistência durável de entregas terminalmente falhas."""

    @abstractmethod
    def save(self, entry: DeadLetterEntry) -> None:
        """Persiste a entrada (sobrescreve a do mesmo request_id)."""

    @abstractmethod
    def get(self, request_id: str) -> DeadLetterEntry | None:
        """Busca uma entrada por request_id."""

    @abstractmethod
    def list(self, limit: int = 100) -> list[DeadLetterEntry]:  # noqa: A003
        """Lista entradas, mais antigas primeiro."""

    @abstractmethod
    def claim(self, request_id: str) -> DeadLetterEntry | None:
        """Remove e retorna a entrada numa única operação atômica.

        Dois reprocessamentos concorrentes nunca recebem a mesma entrada:
        o segundo recebe None.
        """
