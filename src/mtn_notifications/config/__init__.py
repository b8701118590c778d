"""Configurações centralizadas do mtn_notifications.

Uso típico:
    from mtn_notifications.config import get_settings
"""

from mtn_notifications.config.settings import (
    DEFAULT_IDEMPOTENCY_WINDOW_SECONDS,
    DEFAULT_RETRY_MAX_ATTEMPTS,
    Settings,
    get_settings,
)

__all__ = [
    "Settings",
    "get_settings",
    "DEFAULT_IDEMPOTENCY_WINDOW_SECONDS",
    "DEFAULT_RETRY_MAX_ATTEMPTS",
]
