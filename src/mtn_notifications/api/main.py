"""Entrypoint ASGI: uvicorn mtn_notifications.api.main:app"""

from __future__ import annotations

from mtn_notifications.api.app import create_app

app = create_app()
