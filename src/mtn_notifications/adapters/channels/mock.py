"""Transporte mock (modo de desenvolvimento): registra entregas em memória."""

from __future__ import annotations

import uuid
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass

from mtn_notifications.domain.enums import Channel, FailureKind
from mtn_notifications.domain.errors import PermanentTransportError, TransientTransportError
from mtn_notifications.domain.models import RenderedPayload, TransportResult
from mtn_notifications.domain.protocols.transport import ChannelTransport
from mtn_notifications.observability.logging import get_logger, mask_recipient

logger = get_logger(__name__)


@dataclass(slots=True, frozen=True)
class MockDelivery:
    recipient: str
    payload: RenderedPayload
    provider_message_id: str


class MockChannelTransport(ChannelTransport):
    """Nunca falha por padrão.

    Para testes, ``failures`` define falhas consumidas em ordem (uma por
    chamada) e ``fail_always`` força o mesmo tipo de falha em toda chamada.
    """

    def __init__(
        self,
        channel: Channel,
        *,
        failures: Iterable[FailureKind] = (),
        fail_always: FailureKind | None = None,
    ) -> None:
        self.channel = channel
        self._failures = deque(failures)
        self.fail_always = fail_always
        self.sent: list[MockDelivery] = []
        self.calls = 0

    async def transmit(self, recipient: str, payload: RenderedPayload) -> TransportResult:
        self.calls += 1
        failure = self._failures.popleft() if self._failures else self.fail_always
        if failure is FailureKind.TRANSIENT:
            raise TransientTransportError("Falha transitória simulada")
        if failure is FailureKind.PERMANENT:
            raise PermanentTransportError("Falha permanente simulada")

        message_id = f"mock-{uuid.uuid4().hex[:12]}"
        self.sent.append(MockDelivery(recipient, payload, message_id))
        logger.info(
            "mock_delivery",
            extra={
                "channel": self.channel.value,
                "recipient": mask_recipient(recipient),
                "template": payload.template_name,
                "provider_message_id": message_id,
            },
        )
        return TransportResult(success=True, provider_message_id=message_id)
