"""Porta para channel adapters (transporte de e-mail/SMS)."""

from __future__ import annotations

from abc import ABC, abstractmethod

from mtn_notifications.domain.enums import Channel
from mtn_notifications.domain.models import RenderedPayload, TransportResult


class ChannelTransport(ABC):
    """Colaborador externo que efetivamente entrega o payload.

    Implementações podem levantar TransientTransportError ou
    PermanentTransportError, ou retornar TransportResult com failure_kind.
    """

    channel: Channel

    @abstractmethod
    async def transmit(self, recipient: str, payload: RenderedPayload) -> TransportResult:
        """Entrega o payload ao destinatário."""

    async def close(self) -> None:
        """Libera recursos (clientes HTTP)."""
        return None
