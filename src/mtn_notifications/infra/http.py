"""Cliente HTTP para provedores de entrega (e-mail/SMS).

Uma chamada = uma requisição: o retry pertence ao Retry Scheduler do
pipeline, não ao cliente. O cliente apenas classifica a falha:
- 429, 5xx, timeout e erro de conexão → retentável (transitória)
- demais 4xx → não retentável (permanente)

Nunca logar payloads (contêm destinatário e conteúdo renderizado).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

import httpx

from mtn_notifications.domain.enums import FailureKind
from mtn_notifications.infra.circuit_breaker import ProviderBreaker, ProviderBreakerConfig
from mtn_notifications.observability.logging import get_logger

logger: logging.Logger = get_logger(__name__)

_SECRET_QUERY_PATTERN = re.compile(r"(api_key|access_token|token)=[^&]+")


def _sanitize_url(url: str) -> str:
    """Remove credenciais da query string para logging seguro."""
    return _SECRET_QUERY_PATTERN.sub(r"\1=***", url)


@dataclass
class HttpClientConfig:
    """Configuração do cliente HTTP."""

    timeout_seconds: float = 15.0
    default_headers: dict[str, str] = field(default_factory=dict)
    verify_ssl: bool = True
    provider: str = "provider"
    breaker: ProviderBreakerConfig = field(default_factory=ProviderBreakerConfig)


class HttpError(Exception):
    """Erro de requisição HTTP sem expor informações sensíveis."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        is_retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.is_retryable = is_retryable


def is_retryable_status(status_code: int) -> bool:
    """429 ou 5xx permitem nova tentativa."""
    return status_code == 429 or 500 <= status_code < 600


class HttpClient:
    """Cliente HTTP assíncrono com timeout e disjuntor por provedor.

    Uso típico:
        async with HttpClient(config) as client:
            response = await client.post(url, json=payload)
    """

    def __init__(
        self,
        config: HttpClientConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or HttpClientConfig()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._breaker = ProviderBreaker(self._config.provider, self._config.breaker)

    @property
    def breaker(self) -> ProviderBreaker:
        return self._breaker

    async def _get_client(self) -> httpx.AsyncClient:
        """Retorna cliente httpx (lazy loading)."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._config.timeout_seconds),
                headers=self._config.default_headers,
                verify=self._config.verify_ssl,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Fecha o cliente e libera recursos."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> HttpClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _send_once(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        client = await self._get_client()
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning(
                "Timeout em requisição HTTP",
                extra={"method": method, "url": _sanitize_url(url)},
            )
            raise HttpError("Timeout", is_retryable=True) from exc
        except httpx.TransportError as exc:
            logger.warning(
                "Erro de conexão HTTP",
                extra={
                    "method": method,
                    "url": _sanitize_url(url),
                    "error_type": type(exc).__name__,
                },
            )
            raise HttpError("Erro de conexão", is_retryable=True) from exc

        if response.is_success:
            logger.debug(
                "Requisição HTTP bem-sucedida",
                extra={
                    "method": method,
                    "url": _sanitize_url(url),
                    "status_code": response.status_code,
                },
            )
            return response

        retryable = is_retryable_status(response.status_code)
        logger.warning(
            "Requisição HTTP falhou",
            extra={
                "method": method,
                "url": _sanitize_url(url),
                "status_code": response.status_code,
                "is_retryable": retryable,
            },
        )
        raise HttpError(
            f"HTTP {response.status_code}",
            status_code=response.status_code,
            is_retryable=retryable,
        )

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Executa a requisição passando pelo disjuntor do provedor.

        Raises:
            HttpError: Falha classificada (``is_retryable``)
        """
        if not await self._breaker.admit():
            logger.warning(
                "Provedor em cooldown - falha rápida",
                extra={
                    "provider": self._config.provider,
                    "method": method,
                    "url": _sanitize_url(url),
                    "breaker_state": self._breaker.state.value,
                },
            )
            # Provedor indisponível: o Retry Scheduler reagenda
            raise HttpError("Provedor indisponível (disjuntor aberto)", is_retryable=True)

        try:
            response = await self._send_once(method, url, **kwargs)
        except HttpError as exc:
            kind = FailureKind.TRANSIENT if exc.is_retryable else FailureKind.PERMANENT
            await self._breaker.on_failure(kind)
            raise

        await self._breaker.on_delivered()
        return response

    async def post(
        self,
        url: str,
        json: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        return await self.request("POST", url, json=json, **kwargs)
