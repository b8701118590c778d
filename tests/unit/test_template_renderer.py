"""Testes para o Template Renderer e o catálogo embutido."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from mtn_notifications.application.templates.catalog import (
    BUILTIN_TEMPLATES,
    build_renderer,
    load_template_file,
)
from mtn_notifications.application.templates.renderer import TemplateDefinition, TemplateRenderer
from mtn_notifications.domain.enums import Channel
from mtn_notifications.domain.errors import MissingVariable, TemplateNotFound


@pytest.fixture()
def renderer() -> TemplateRenderer:
    return build_renderer()


class TestRender:
    def test_renders_placeholders(self, renderer: TemplateRenderer) -> None:
        payload = renderer.render(
            "APPLICATION_APPROVED",
            {"studentName": "Sofía Pérez", "applicationId": "1042"},
            Channel.EMAIL,
        )
        assert "Sofía Pérez" in payload.body
        assert "#1042" in payload.body
        assert payload.subject == "Postulación Aprobada - Felicitaciones"
        assert payload.channel is Channel.EMAIL

    def test_subject_is_rendered(self, renderer: TemplateRenderer) -> None:
        payload = renderer.render(
            "STATUS_CHANGE",
            {
                "studentName": "Sofía",
                "applicationId": "7",
                "oldStatus": "SUBMITTED",
                "newStatus": "UNDER_REVIEW",
            },
            Channel.EMAIL,
        )
        assert payload.subject == "Actualización de Postulación - UNDER_REVIEW"

    def test_sms_has_no_subject(self, renderer: TemplateRenderer) -> None:
        payload = renderer.render("VERIFICATION_CODE", {"code": "482913"}, Channel.SMS)
        assert payload.subject is None
        assert "482913" in payload.body

    def test_default_used_when_variable_absent(self, renderer: TemplateRenderer) -> None:
        payload = renderer.render("welcome", {}, Channel.EMAIL)
        assert "apoderado(a)" in payload.body

    def test_default_overridden_by_variable(self, renderer: TemplateRenderer) -> None:
        payload = renderer.render("welcome", {"name": "Ana"}, Channel.EMAIL)
        assert "Estimado(a) Ana:" in payload.body

    def test_is_deterministic(self, renderer: TemplateRenderer) -> None:
        """Mesmas entradas produzem sempre a mesma saída."""
        variables = {"studentName": "Sofía", "interviewDate": "2026-04-10", "interviewTime": "10:00"}
        first = renderer.render("INTERVIEW_SCHEDULED", variables, Channel.EMAIL)
        second = renderer.render("INTERVIEW_SCHEDULED", dict(variables), Channel.EMAIL)
        assert first == second

    def test_channel_defaults_when_omitted(self, renderer: TemplateRenderer) -> None:
        payload = renderer.render("welcome", {"name": "Ana"})
        assert payload.channel is Channel.EMAIL


class TestRenderErrors:
    def test_unknown_template(self, renderer: TemplateRenderer) -> None:
        with pytest.raises(TemplateNotFound) as exc_info:
            renderer.render("does_not_exist", {})
        assert exc_info.value.template_name == "does_not_exist"

    def test_missing_variable(self, renderer: TemplateRenderer) -> None:
        with pytest.raises(MissingVariable) as exc_info:
            renderer.render("VERIFICATION_CODE", {}, Channel.SMS)
        assert exc_info.value.variable == "code"

    def test_missing_variable_in_subject(self) -> None:
        renderer = TemplateRenderer(
            [TemplateDefinition(name="t", subject="Hola {{ who }}", body="ok")]
        )
        with pytest.raises(MissingVariable) as exc_info:
            renderer.render("t", {}, Channel.EMAIL)
        assert exc_info.value.variable == "who"

    def test_unsupported_channel_is_not_found(self, renderer: TemplateRenderer) -> None:
        """APPLICATION_SUBMITTED só existe para EMAIL."""
        with pytest.raises(TemplateNotFound):
            renderer.render("APPLICATION_SUBMITTED", {}, Channel.SMS)


class TestRegistry:
    def test_builtin_catalog(self, renderer: TemplateRenderer) -> None:
        assert set(renderer.names) == {t.name for t in BUILTIN_TEMPLATES}
        assert "welcome" in renderer

    def test_describe_lists_referenced_variables(self, renderer: TemplateRenderer) -> None:
        catalog = {item["name"]: item for item in renderer.describe()}

        assert set(catalog) == set(renderer.names)
        welcome = catalog["welcome"]
        assert welcome["channels"] == ["EMAIL", "SMS"]
        assert welcome["subject"] == "Bienvenido al Sistema de Admisión MTN"
        assert welcome["variables"] == ["name"]
        assert "newStatus" in catalog["STATUS_CHANGE"]["variables"]

    def test_duplicate_name_rejected(self) -> None:
        definition = TemplateDefinition(name="t", body="x")
        with pytest.raises(ValueError):
            TemplateRenderer([definition, definition])

    def test_syntax_error_rejected_at_startup(self) -> None:
        with pytest.raises(ValueError):
            TemplateRenderer([TemplateDefinition(name="t", body="{{ broken ")])

    def test_load_from_json_file(self, tmp_path: Path) -> None:
        path = tmp_path / "templates.json"
        path.write_text(
            json.dumps(
                {
                    "templates": [
                        {"name": "REMINDER", "body": "Recuerde: {{ what }}", "channels": ["SMS"]}
                    ]
                }
            ),
            encoding="utf-8",
        )
        definitions = load_template_file(path)
        assert definitions[0].channels == frozenset({Channel.SMS})

        renderer = build_renderer(str(path))
        assert renderer.render("REMINDER", {"what": "entrevista"}, Channel.SMS).body == (
            "Recuerde: entrevista"
        )

    def test_invalid_json_file(self, tmp_path: Path) -> None:
        path = tmp_path / "templates.json"
        path.write_text(json.dumps({"templates": [{"body": "sin nombre"}]}), encoding="utf-8")
        with pytest.raises(ValueError):
            load_template_file(path)
