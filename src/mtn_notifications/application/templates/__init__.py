"""Templates de notificação."""

from __future__ import annotations

from mtn_notifications.application.templates.catalog import BUILTIN_TEMPLATES, build_renderer
from mtn_notifications.application.templates.renderer import TemplateDefinition, TemplateRenderer

__all__ = ["BUILTIN_TEMPLATES", "TemplateDefinition", "TemplateRenderer", "build_renderer"]
