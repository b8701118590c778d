"""Template Renderer: registro fechado nome → template compilado (jinja2).

Placeholders usam ``{{ nome }}``; defaults usam ``{{ nome | default("x") }}``.
StrictUndefined transforma placeholder ausente em MissingVariable.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from jinja2 import Environment, StrictUndefined, Template, TemplateSyntaxError, UndefinedError, meta

from mtn_notifications.domain.enums import Channel
from mtn_notifications.domain.errors import MissingVariable, TemplateNotFound
from mtn_notifications.domain.models import RenderedPayload
from mtn_notifications.observability.logging import get_logger

logger = get_logger(__name__)

_UNDEFINED_NAME = re.compile(r"'([^']+)' is undefined")


@dataclass(slots=True, frozen=True)
class TemplateDefinition:
    """Template declarado (texto-fonte, antes da compilação)."""

    name: str
    body: str
    subject: str | None = None
    channels: frozenset[Channel] = field(default_factory=lambda: frozenset(Channel))


@dataclass(slots=True, frozen=True)
class _CompiledTemplate:
    definition: TemplateDefinition
    body: Template
    subject: Template | None
    variables: frozenset[str]


def _missing_name(exc: UndefinedError) -> str:
    match = _UNDEFINED_NAME.search(str(exc))
    return match.group(1) if match else str(exc)


class TemplateRenderer:
    """Renderização pura e determinística sobre um registro fechado.

    O registro é montado na inicialização; não há busca dinâmica depois.
    """

    def __init__(self, definitions: Iterable[TemplateDefinition]) -> None:
        self._env = Environment(
            undefined=StrictUndefined,
            autoescape=False,
            keep_trailing_newline=False,
        )
        self._registry: dict[str, _CompiledTemplate] = {}
        for definition in definitions:
            self._register(definition)

    def _register(self, definition: TemplateDefinition) -> None:
        if definition.name in self._registry:
            raise ValueError(f"Template duplicado: {definition.name}")
        sources = [definition.body] + ([definition.subject] if definition.subject else [])
        try:
            variables = frozenset().union(
                *(meta.find_undeclared_variables(self._env.parse(source)) for source in sources)
            )
            compiled = _CompiledTemplate(
                definition=definition,
                body=self._env.from_string(definition.body),
                subject=(
                    self._env.from_string(definition.subject) if definition.subject else None
                ),
                variables=variables,
            )
        except TemplateSyntaxError as exc:
            raise ValueError(f"Template inválido {definition.name}: {exc.message}") from exc
        self._registry[definition.name] = compiled

    @property
    def names(self) -> list[str]:
        return sorted(self._registry)

    def __contains__(self, name: object) -> bool:
        return name in self._registry

    def describe(self) -> list[dict[str, Any]]:
        """Catálogo para listagem: nome, canais, assunto e variáveis referenciadas."""
        return [
            {
                "name": name,
                "channels": sorted(channel.value for channel in compiled.definition.channels),
                "subject": compiled.definition.subject,
                "variables": sorted(compiled.variables),
            }
            for name, compiled in sorted(self._registry.items())
        ]

    def render(
        self,
        template_name: str,
        variables: Mapping[str, Any],
        channel: Channel | None = None,
    ) -> RenderedPayload:
        """Renderiza o template para o canal.

        Raises:
            TemplateNotFound: nome não registrado ou canal não suportado
            MissingVariable: placeholder sem valor e sem default
        """
        compiled = self._registry.get(template_name)
        if compiled is None:
            raise TemplateNotFound(template_name)

        definition = compiled.definition
        target = channel or next(iter(sorted(definition.channels)))
        if target not in definition.channels:
            raise TemplateNotFound(
                template_name,
                f"Template {template_name} não suporta o canal {target.value}",
            )

        context = dict(variables)
        try:
            body = compiled.body.render(context)
            subject = None
            if compiled.subject is not None and target is Channel.EMAIL:
                subject = compiled.subject.render(context)
        except UndefinedError as exc:
            raise MissingVariable(template_name, _missing_name(exc)) from exc

        return RenderedPayload(
            template_name=template_name,
            channel=target,
            body=body.strip(),
            subject=subject.strip() if subject else None,
        )
