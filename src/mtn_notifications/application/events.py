"""Consumo de eventos de domínio EmailRequested.v1 / SmsRequested.v1.

Envelope esperado:
    {"type": "EmailRequested.v1", "id": "<event-id>", "data": {
        "recipient": "...", "templateName": "...", "variables": {...},
        "subject": "...", "correlationId": "..."}}

O id do evento vira a idempotency_key: reentregas do broker são duplicatas.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any

from mtn_notifications.application.pipeline import DeliveryPipeline
from mtn_notifications.domain.enums import EventType
from mtn_notifications.domain.errors import DeliveryError
from mtn_notifications.domain.models import DeliveryRequest
from mtn_notifications.infra.message_queue import MessageQueue
from mtn_notifications.observability.logging import get_logger

logger = get_logger(__name__)


class InvalidEvent(ValueError):
    """Envelope malformado ou tipo de evento desconhecido."""


def request_from_event(envelope: dict[str, Any]) -> DeliveryRequest:
    """Converte envelope de evento em DeliveryRequest.

    Raises:
        InvalidEvent: Se tipo, id ou campos obrigatórios estiverem ausentes
    """
    try:
        event_type = EventType(envelope.get("type"))
    except ValueError as exc:
        raise InvalidEvent(f"Tipo de evento desconhecido: {envelope.get('type')}") from exc

    event_id = envelope.get("id")
    data = envelope.get("data")
    if not event_id or not isinstance(data, dict):
        raise InvalidEvent("Envelope sem id ou data")

    recipient = data.get("recipient")
    template_name = data.get("templateName")
    if not recipient or not template_name:
        raise InvalidEvent("Evento sem recipient ou templateName")

    variables = data.get("variables") or {}
    if not isinstance(variables, dict):
        raise InvalidEvent("variables deve ser um objeto")

    return DeliveryRequest(
        channel=event_type.channel,
        recipient=str(recipient),
        template_name=str(template_name),
        variables=variables,
        idempotency_key=str(event_id),
        subject=data.get("subject"),
        correlation_id=data.get("correlationId"),
    )


class EventConsumer:
    """Drena a MessageQueue e submete ao pipeline.

    Rejeições de negócio (duplicata, throttling, template) são confirmadas
    (ack): reenviar não mudaria o resultado. Envelope inválido e falha de
    infraestrutura recebem nack.
    """

    def __init__(
        self,
        queue: MessageQueue,
        pipeline: DeliveryPipeline,
        batch_size: int = 10,
        idle_poll_seconds: float = 1.0,
    ) -> None:
        self._queue = queue
        self._pipeline = pipeline
        self._batch_size = batch_size
        self._idle_poll_seconds = idle_poll_seconds
        self._task: asyncio.Task[None] | None = None

    @property
    def queue(self) -> MessageQueue:
        return self._queue

    async def publish(self, envelope: dict[str, Any]) -> str:
        """Valida o envelope antes de enfileirar.

        Raises:
            InvalidEvent: Se o envelope for inválido
        """
        request_from_event(envelope)
        return await self._queue.enqueue(envelope)

    async def drain_once(self) -> int:
        """Processa um lote; retorna quantas mensagens foram lidas."""
        messages = await self._queue.dequeue(self._batch_size)
        for message in messages:
            task_id = message.task_id or ""
            try:
                request = request_from_event(message.payload)
                self._pipeline.submit(request)
            except InvalidEvent as exc:
                await self._queue.nack(task_id, str(exc))
            except DeliveryError as exc:
                logger.info(
                    "event_rejected",
                    extra={"task_id": task_id, "error_type": type(exc).__name__},
                )
                await self._queue.acknowledge(task_id)
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "event_processing_failed",
                    extra={"task_id": task_id, "error_type": type(exc).__name__},
                )
                await self._queue.nack(task_id, type(exc).__name__)
            else:
                await self._queue.acknowledge(task_id)
        return len(messages)

    async def _run(self) -> None:
        while True:
            if not await self.drain_once():
                await asyncio.sleep(self._idle_poll_seconds)

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="event-consumer")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
