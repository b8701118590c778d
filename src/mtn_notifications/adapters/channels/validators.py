"""Validação de formato de destinatário por canal."""

from __future__ import annotations

import re

from mtn_notifications.domain.enums import Channel

_EMAIL_PATTERN = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9-]+(\.[A-Za-z0-9-]+)*\.[A-Za-z]{2,}")
# E.164: '+' seguido de 8 a 15 dígitos, sem zero à esquerda
_E164_PATTERN = re.compile(r"\+[1-9]\d{7,14}")


def is_valid_email(recipient: str) -> bool:
    return bool(_EMAIL_PATTERN.fullmatch(recipient)) and len(recipient) <= 254


def is_valid_phone(recipient: str) -> bool:
    return bool(_E164_PATTERN.fullmatch(recipient))


def validate_recipient(channel: Channel, recipient: str) -> str | None:
    """Retorna motivo de rejeição ou None se válido."""
    if channel is Channel.EMAIL:
        return None if is_valid_email(recipient) else "Endereço de e-mail inválido"
    if channel is Channel.SMS:
        return None if is_valid_phone(recipient) else "Telefone fora do formato E.164"
    return f"Canal não suportado: {channel}"
