"""Transportes HTTP para provedores de e-mail e SMS.

Ambos fazem POST JSON ao provedor via HttpClient e traduzem HttpError:
retentável → TransientTransportError, demais → PermanentTransportError.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Any

from mtn_notifications.domain.enums import Channel
from mtn_notifications.domain.errors import PermanentTransportError, TransientTransportError
from mtn_notifications.domain.models import RenderedPayload, TransportResult
from mtn_notifications.domain.protocols.transport import ChannelTransport
from mtn_notifications.infra.http import HttpClient, HttpError
from mtn_notifications.observability.logging import get_logger

logger = get_logger(__name__)


def _provider_message_id(body: Any) -> str | None:
    if isinstance(body, dict):
        value = body.get("id") or body.get("message_id")
        return str(value) if value else None
    return None


class _HttpChannelTransport(ChannelTransport):
    def __init__(self, client: HttpClient, api_url: str, api_key: str | None) -> None:
        self._client = client
        self._api_url = api_url
        self._api_key = api_key

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    @abstractmethod
    def _build_body(self, recipient: str, payload: RenderedPayload) -> dict[str, Any]:
        """Corpo JSON esperado pelo provedor."""

    async def transmit(self, recipient: str, payload: RenderedPayload) -> TransportResult:
        try:
            response = await self._client.post(
                self._api_url,
                json=self._build_body(recipient, payload),
                headers=self._headers(),
            )
        except HttpError as exc:
            if exc.is_retryable:
                raise TransientTransportError(str(exc)) from exc
            raise PermanentTransportError(str(exc)) from exc

        try:
            body = response.json()
        except ValueError:
            body = None
        return TransportResult(success=True, provider_message_id=_provider_message_id(body))

    async def close(self) -> None:
        await self._client.close()


class HttpEmailTransport(_HttpChannelTransport):
    channel = Channel.EMAIL

    def __init__(
        self,
        client: HttpClient,
        api_url: str,
        api_key: str | None,
        *,
        from_address: str,
        from_name: str,
    ) -> None:
        super().__init__(client, api_url, api_key)
        self._from_address = from_address
        self._from_name = from_name

    def _build_body(self, recipient: str, payload: RenderedPayload) -> dict[str, Any]:
        return {
            "from": {"email": self._from_address, "name": self._from_name},
            "to": [{"email": recipient}],
            "subject": payload.subject or "",
            "text": payload.body,
        }


class HttpSmsTransport(_HttpChannelTransport):
    channel = Channel.SMS

    def __init__(
        self,
        client: HttpClient,
        api_url: str,
        api_key: str | None,
        *,
        sender_id: str,
    ) -> None:
        super().__init__(client, api_url, api_key)
        self._sender_id = sender_id

    def _build_body(self, recipient: str, payload: RenderedPayload) -> dict[str, Any]:
        return {"from": self._sender_id, "to": recipient, "body": payload.body}
