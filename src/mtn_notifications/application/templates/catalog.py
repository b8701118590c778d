"""Catálogo de templates do Sistema de Admisión MTN.

Templates embutidos cobrem os eventos do processo de admissão; templates
adicionais podem ser carregados de um arquivo JSON (TEMPLATES_PATH):

    {"templates": [{"name": "...", "subject": "...", "body": "...",
                    "channels": ["EMAIL", "SMS"]}]}
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from mtn_notifications.application.templates.renderer import TemplateDefinition, TemplateRenderer
from mtn_notifications.domain.enums import Channel
from mtn_notifications.observability.logging import get_logger

logger = get_logger(__name__)

_SIGNATURE = "Sistema de Admisión MTN\nColegio Monte Tabor y Nazaret"
_EMAIL = frozenset({Channel.EMAIL})
_ALL = frozenset(Channel)

BUILTIN_TEMPLATES: tuple[TemplateDefinition, ...] = (
    TemplateDefinition(
        name="welcome",
        subject="Bienvenido al Sistema de Admisión MTN",
        body=(
            "Estimado(a) {{ name | default('apoderado(a)') }}:\n\n"
            "Le damos la bienvenida al Sistema de Admisión del Colegio Monte Tabor y Nazaret.\n\n"
            + _SIGNATURE
        ),
        channels=_ALL,
    ),
    TemplateDefinition(
        name="APPLICATION_SUBMITTED",
        subject="Postulación Recibida - Sistema de Admisión MTN",
        body=(
            "Hemos recibido exitosamente la postulación de {{ studentName }} "
            "para el año académico {{ applicationYear | default('2026') }}.\n"
            "ID de Postulación: #{{ applicationId }}\n"
            "Fecha de Recepción: {{ submissionDate }}\n\n"
            "{{ nextSteps | default('Le contactaremos para coordinar los siguientes pasos.') }}\n\n"
            + _SIGNATURE
        ),
        channels=_EMAIL,
    ),
    TemplateDefinition(
        name="STATUS_CHANGE",
        subject="Actualización de Postulación - {{ newStatus }}",
        body=(
            "El estado de la postulación de {{ studentName }} ha sido actualizado.\n"
            "ID de Postulación: #{{ applicationId }}\n"
            "Estado Anterior: {{ oldStatus }}\n"
            "Nuevo Estado: {{ newStatus }}\n\n"
            "{{ message | default('') }}\n\n"
            + _SIGNATURE
        ),
        channels=_ALL,
    ),
    TemplateDefinition(
        name="INTERVIEW_SCHEDULED",
        subject="Entrevista Programada - Sistema de Admisión MTN",
        body=(
            "Se ha programado una entrevista para {{ studentName }}.\n"
            "Fecha: {{ interviewDate }}\n"
            "Hora: {{ interviewTime }}\n"
            "Entrevistador: {{ interviewer | default('Por confirmar') }}\n"
            "Ubicación: {{ location | default('Colegio Monte Tabor y Nazaret') }}\n\n"
            + _SIGNATURE
        ),
        channels=_ALL,
    ),
    TemplateDefinition(
        name="DOCUMENTS_REQUIRED",
        subject="Documentación Pendiente - Acción Requerida",
        body=(
            "La postulación de {{ studentName }} tiene documentos pendientes:\n"
            "{{ missingDocuments }}\n\n"
            "Por favor, cárguelos en el portal antes del {{ deadline | default('plazo indicado') }}.\n\n"
            + _SIGNATURE
        ),
        channels=_EMAIL,
    ),
    TemplateDefinition(
        name="APPLICATION_APPROVED",
        subject="Postulación Aprobada - Felicitaciones",
        body=(
            "¡Felicitaciones! La postulación de {{ studentName }} ha sido aprobada.\n"
            "ID de Postulación: #{{ applicationId }}\n\n"
            + _SIGNATURE
        ),
        channels=_ALL,
    ),
    TemplateDefinition(
        name="VERIFICATION_CODE",
        subject="Código de Verificación - Sistema de Admisión MTN",
        body=(
            "Su código de verificación es: {{ code }}\n"
            "Este código expira en {{ expiresInMinutes | default(10) }} minutos."
        ),
        channels=_ALL,
    ),
)


def _definition_from_dict(data: dict[str, Any]) -> TemplateDefinition:
    channels = data.get("channels") or [c.value for c in Channel]
    return TemplateDefinition(
        name=data["name"],
        body=data["body"],
        subject=data.get("subject"),
        channels=frozenset(Channel(c) for c in channels),
    )


def load_template_file(path: str | Path) -> list[TemplateDefinition]:
    """Lê definições de um arquivo JSON.

    Raises:
        ValueError: Se o arquivo não tiver o formato esperado
    """
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    items = raw.get("templates") if isinstance(raw, dict) else raw
    if not isinstance(items, list):
        raise ValueError(f"Arquivo de templates inválido: {path}")
    try:
        return [_definition_from_dict(item) for item in items]
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError(f"Definição de template inválida em {path}: {exc}") from exc


def build_renderer(templates_path: str | None = None) -> TemplateRenderer:
    """Catálogo embutido + templates adicionais do arquivo (se houver)."""
    definitions = list(BUILTIN_TEMPLATES)
    if templates_path:
        extra = load_template_file(templates_path)
        definitions.extend(extra)
        logger.info("templates_loaded", extra={"path": templates_path, "count": len(extra)})
    return TemplateRenderer(definitions)
