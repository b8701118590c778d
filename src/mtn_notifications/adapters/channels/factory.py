"""Factory de channel adapters conforme DELIVERY_MODE."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from mtn_notifications.adapters.channels.http_transport import HttpEmailTransport, HttpSmsTransport
from mtn_notifications.adapters.channels.mock import MockChannelTransport
from mtn_notifications.domain.enums import Channel
from mtn_notifications.domain.protocols.transport import ChannelTransport
from mtn_notifications.infra.circuit_breaker import ProviderBreakerConfig
from mtn_notifications.infra.http import HttpClient, HttpClientConfig
from mtn_notifications.observability.logging import get_logger

if TYPE_CHECKING:
    from mtn_notifications.config.settings import Settings

logger: logging.Logger = get_logger(__name__)


def _http_client(settings: Settings, provider: str) -> HttpClient:
    return HttpClient(
        HttpClientConfig(
            timeout_seconds=settings.transport_timeout_seconds,
            provider=provider,
            breaker=ProviderBreakerConfig(
                enabled=settings.transport_circuit_breaker_enabled,
                failure_threshold=settings.transport_circuit_breaker_fail_max,
                cooldown_seconds=settings.transport_circuit_breaker_reset_timeout_seconds,
                trial_limit=settings.transport_circuit_breaker_half_open_max_calls,
            ),
        )
    )


def create_channel_transports(settings: Settings) -> dict[Channel, ChannelTransport]:
    """Cria um adapter por canal.

    Raises:
        ValueError: Se DELIVERY_MODE inválido ou URL de provedor ausente
    """
    mode = settings.delivery_mode.lower()

    if mode == "mock":
        logger.warning("Using mock channel transports (no real delivery)")
        return {channel: MockChannelTransport(channel) for channel in Channel}

    if mode == "http":
        if not settings.email_api_url or not settings.sms_api_url:
            raise ValueError("DELIVERY_MODE=http requer EMAIL_API_URL e SMS_API_URL")
        logger.info("Using HTTP channel transports")
        return {
            Channel.EMAIL: HttpEmailTransport(
                _http_client(settings, "email"),
                settings.email_api_url,
                settings.email_api_key,
                from_address=settings.email_from_address,
                from_name=settings.email_from_name,
            ),
            Channel.SMS: HttpSmsTransport(
                _http_client(settings, "sms"),
                settings.sms_api_url,
                settings.sms_api_key,
                sender_id=settings.sms_sender_id,
            ),
        }

    raise ValueError(f"Unknown delivery mode: {mode}")
