"""Channel adapters (e-mail/SMS)."""

from __future__ import annotations

from mtn_notifications.adapters.channels.factory import create_channel_transports
from mtn_notifications.adapters.channels.http_transport import HttpEmailTransport, HttpSmsTransport
from mtn_notifications.adapters.channels.mock import MockChannelTransport
from mtn_notifications.adapters.channels.validators import validate_recipient

__all__ = [
    "HttpEmailTransport",
    "HttpSmsTransport",
    "MockChannelTransport",
    "create_channel_transports",
    "validate_recipient",
]
