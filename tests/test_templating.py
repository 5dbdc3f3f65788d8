"""Tests for placeholder rendering."""

from __future__ import annotations

from uuid import uuid4

import pytest

from litestar_flows.core.models import Contact
from litestar_flows.core.templating import lookup_path, render, render_value


@pytest.fixture
def maria() -> Contact:
    return Contact(
        id=uuid4(),
        organization_id="org",
        phone_number="5511999990000",
        name="Maria Silva",
        email="maria@example.com",
        custom_fields={"Plano": "gold"},
    )


@pytest.mark.unit
class TestRender:
    """Tests for render and render_value."""

    def test_contact_placeholders(self, maria: Contact) -> None:
        text = render("Oi {{first_name}}! ({{name}}, {{phone}}, {{email}})", maria)
        assert text == "Oi Maria! (Maria Silva, 5511999990000, maria@example.com)"

    def test_portuguese_aliases_are_case_insensitive(self, maria: Contact) -> None:
        assert render("{{NOME}} / {{Primeiro_Nome}} / {{telefone}}", maria) == "Maria Silva / Maria / 5511999990000"

    def test_custom_field_lookup_ignores_case(self, maria: Contact) -> None:
        assert render("Plano: {{plano}}", maria) == "Plano: gold"

    def test_variables_with_dotted_paths(self, maria: Contact) -> None:
        variables = {"order": {"items": [{"sku": "A1"}]}, "total": 42}
        assert render("{{vars.order.items.0.sku}} = {{ vars.total }}", maria, variables) == "A1 = 42"

    def test_unknown_placeholder_is_left_untouched(self, maria: Contact) -> None:
        assert render("Hi {{nickname}} {{vars.missing}}", maria, {}) == "Hi {{nickname}} {{vars.missing}}"

    def test_without_contact_only_variables_resolve(self) -> None:
        assert render("{{name}} {{vars.x}}", None, {"x": 1}) == "{{name}} 1"

    def test_render_value_recurses(self, maria: Contact) -> None:
        value = {"to": "{{phone}}", "tags": ["{{first_name}}", 3], "nested": {"ok": True}}
        assert render_value(value, maria) == {"to": "5511999990000", "tags": ["Maria", 3], "nested": {"ok": True}}


@pytest.mark.unit
class TestLookupPath:
    """Tests for dotted path lookup."""

    def test_nested_dicts_and_lists(self) -> None:
        data = {"a": {"b": [10, {"c": "deep"}]}}
        assert lookup_path(data, "a.b.1.c") == "deep"
        assert lookup_path(data, "a.b.0") == 10

    def test_missing_segments_return_none(self) -> None:
        data = {"a": {"b": [1]}}
        assert lookup_path(data, "a.x") is None
        assert lookup_path(data, "a.b.5") is None
        assert lookup_path(data, "a.b.first") is None
        assert lookup_path("text", "a") is None
