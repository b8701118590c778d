"""Delivery Dispatcher: entrega o payload via channel adapter e classifica o resultado."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from mtn_notifications.adapters.channels.validators import validate_recipient
from mtn_notifications.domain.enums import AttemptOutcome, Channel, FailureKind
from mtn_notifications.domain.errors import PermanentTransportError, TransientTransportError
from mtn_notifications.domain.models import RenderedPayload
from mtn_notifications.domain.protocols.transport import ChannelTransport
from mtn_notifications.observability.logging import get_logger, mask_recipient
from mtn_notifications.observability.timing import timed

logger = get_logger(__name__)


@dataclass(slots=True, frozen=True)
class DispatchResult:
    """SENT ou FAILED(reason) com a classificação da falha."""

    outcome: AttemptOutcome
    failure_kind: FailureKind | None = None
    error: str | None = None
    provider_message_id: str | None = None

    @property
    def sent(self) -> bool:
        return self.outcome is AttemptOutcome.SENT

    @classmethod
    def failed(cls, kind: FailureKind, error: str) -> DispatchResult:
        return cls(outcome=AttemptOutcome.FAILED, failure_kind=kind, error=error)


class DeliveryDispatcher:
    """send(channel, recipient, payload) → DispatchResult.

    Nenhuma exceção do adapter escapa sem classificação:
    - destinatário inválido, canal sem adapter, PermanentTransportError → PERMANENT
    - TransientTransportError e erros inesperados → TRANSIENT
    """

    def __init__(self, transports: Mapping[Channel, ChannelTransport]) -> None:
        self._transports = dict(transports)

    @property
    def transports(self) -> dict[Channel, ChannelTransport]:
        return dict(self._transports)

    async def send(
        self,
        channel: Channel,
        recipient: str,
        payload: RenderedPayload,
    ) -> DispatchResult:
        transport = self._transports.get(channel)
        if transport is None:
            return DispatchResult.failed(
                FailureKind.PERMANENT, f"Nenhum adapter registrado para {channel.value}"
            )

        invalid = validate_recipient(channel, recipient)
        if invalid:
            return DispatchResult.failed(FailureKind.PERMANENT, invalid)

        try:
            with timed("dispatch", channel=channel.value, template=payload.template_name):
                result = await transport.transmit(recipient, payload)
        except PermanentTransportError as exc:
            return DispatchResult.failed(FailureKind.PERMANENT, str(exc))
        except TransientTransportError as exc:
            return DispatchResult.failed(FailureKind.TRANSIENT, str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "unexpected_transport_error",
                extra={
                    "channel": channel.value,
                    "recipient": mask_recipient(recipient),
                    "error_type": type(exc).__name__,
                },
            )
            return DispatchResult.failed(
                FailureKind.TRANSIENT, f"Erro inesperado: {type(exc).__name__}"
            )

        if not result.success:
            return DispatchResult.failed(
                result.failure_kind or FailureKind.TRANSIENT,
                result.error or "Falha de transporte sem detalhe",
            )
        return DispatchResult(
            outcome=AttemptOutcome.SENT,
            provider_message_id=result.provider_message_id,
        )

    async def close(self) -> None:
        for transport in self._transports.values():
            await transport.close()
