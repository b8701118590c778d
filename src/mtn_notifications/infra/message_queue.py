"""Fila de eventos de domínio (EmailRequested.v1 / SmsRequested.v1).

Desacopla o recebimento do evento da submissão ao pipeline:
publish → enqueue → EventConsumer drena e submete.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from mtn_notifications.observability.logging import get_logger

logger: logging.Logger = get_logger(__name__)


@dataclass
class QueuedMessage:
    """Mensagem enfileirada."""

    payload: dict[str, Any]
    task_id: str | None = None


class MessageQueueError(Exception):
    """Erro ao operar fila."""


class MessageQueue(ABC):
    """Contrato abstrato para fila de mensagens."""

    @abstractmethod
    async def enqueue(self, payload: dict[str, Any]) -> str:
        """Enfileira um envelope de evento e retorna task_id.

        Raises:
            MessageQueueError: Se enfileiramento falhar
        """

    @abstractmethod
    async def dequeue(self, batch_size: int = 1) -> list[QueuedMessage]:
        """Desenfileira até ``batch_size`` mensagens (não bloqueia)."""

    @abstractmethod
    async def acknowledge(self, task_id: str) -> None:
        """Marca tarefa como processada."""

    @abstractmethod
    async def nack(self, task_id: str, error: str | None = None) -> None:
        """Marca tarefa como falha."""


class InMemoryMessageQueue(MessageQueue):
    """Implementação em memória para dev/teste.

    ⚠️ NÃO use em produção (perde mensagens ao restart).
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[QueuedMessage] | None = None
        self._task_counter = 0
        self.nacked: list[tuple[str, str | None]] = []

    def _ensure_queue(self) -> asyncio.Queue[QueuedMessage]:
        # Criada sob demanda, dentro do event loop
        if self._queue is None:
            self._queue = asyncio.Queue()
        return self._queue

    async def enqueue(self, payload: dict[str, Any]) -> str:
        queue = self._ensure_queue()
        self._task_counter += 1
        task_id = f"mem-{self._task_counter}"
        await queue.put(QueuedMessage(payload=payload, task_id=task_id))
        logger.debug("enqueued_in_memory", extra={"task_id": task_id})
        return task_id

    async def dequeue(self, batch_size: int = 1) -> list[QueuedMessage]:
        queue = self._ensure_queue()
        messages: list[QueuedMessage] = []
        for _ in range(batch_size):
            try:
                messages.append(queue.get_nowait())
            except asyncio.QueueEmpty:
                break
        return messages

    async def acknowledge(self, task_id: str) -> None:
        logger.debug("acknowledged", extra={"task_id": task_id})

    async def nack(self, task_id: str, error: str | None = None) -> None:
        self.nacked.append((task_id, error))
        logger.warning("nacked", extra={"task_id": task_id, "error": error})

    def __len__(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0
