"""
Unit tests for the report template engine and template registry
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from cms_reports.reporting.template_engine import (
    TemplateEngine, TemplateNotFoundError, find_unrendered_tokens, get_nested_value, stringify
)
from cms_reports.reporting.template_registry import TemplateRegistry, create_default_registry


class TestNestedValues:
    """Test dot-path lookups."""

    def test_nested_mapping(self):
        data = {'summary': {'sla': {'compliance': 85.5}}}
        assert get_nested_value(data, 'summary.sla.compliance') == 85.5

    def test_missing_key_at_any_depth_is_none(self):
        data = {'summary': {'total': 3}}
        assert get_nested_value(data, 'summary.missing.deeper') is None
        assert get_nested_value(data, 'absent') is None

    def test_sequence_index(self):
        data = {'items': [{'name': 'a'}, {'name': 'b'}]}
        assert get_nested_value(data, 'items.1.name') == 'b'
        assert get_nested_value(data, 'items.5.name') is None

    def test_stringify(self):
        assert stringify(True) == "true"
        assert stringify(12.0) == "12"
        assert stringify(12.5) == "12.5"
        assert stringify("text") == "text"


class TestRendering:
    """Test variable and section rendering."""

    def setup_method(self):
        self.engine = TemplateEngine()

    def test_variable_substitution(self):
        result = self.engine.render("Hello {{name}}, total {{summary.total}}", {'name': 'Ward 1', 'summary': {'total': 4}})
        assert result == "Hello Ward 1, total 4"

    def test_missing_variable_renders_empty(self):
        assert self.engine.render("[{{missing}}]", {}) == "[]"

    def test_values_are_html_escaped(self):
        result = self.engine.render("<p>{{description}}</p>", {'description': '<script>alert("x")</script> & more'})
        assert '<script>' not in result
        assert '&lt;script&gt;' in result
        assert '&amp; more' in result

    def test_escaping_can_be_disabled(self):
        result = self.engine.render("{{html}}", {'html': '<b>bold</b>'}, escape_html=False)
        assert result == '<b>bold</b>'

    def test_falsy_section_is_removed(self):
        template = "a{{#flag}}hidden{{/flag}}b"
        for value in (False, None, [], 0, ''):
            assert self.engine.render(template, {'flag': value}) == "ab"

    def test_truthy_scalar_section_keeps_body(self):
        assert self.engine.render("{{#flag}}shown {{name}}{{/flag}}", {'flag': True, 'name': 'x'}) == "shown x"

    def test_list_section_repeats_with_item_scope(self):
        template = "{{#wards}}<li>{{name}}: {{count}} ({{appName}})</li>{{/wards}}"
        data = {
            'appName': 'CMS',
            'wards': [{'name': 'Ward 1', 'count': 2}, {'name': 'Ward 2', 'count': 5}],
        }
        result = self.engine.render(template, data)
        assert result == "<li>Ward 1: 2 (CMS)</li><li>Ward 2: 5 (CMS)</li>"

    def test_mapping_section_scopes_fields(self):
        template = "{{#dateRange}}{{from}} - {{to}}{{/dateRange}}"
        result = self.engine.render(template, {'dateRange': {'from': '2024-01-01', 'to': '2024-01-31'}})
        assert result == "2024-01-01 - 2024-01-31"

    def test_empty_mapping_section_renders_once(self):
        assert self.engine.render("a{{#meta}}X{{/meta}}b", {'meta': {}}) == "aXb"
        assert self.engine.render("{{#meta}}{{appName}}{{/meta}}", {'meta': {}, 'appName': 'CMS'}) == "CMS"

    def test_template_without_tokens_is_unchanged(self):
        template = "<style>td { padding: 4px; } .x{}</style><p>{ not a token } }} {</p>"
        assert self.engine.render(template, {'name': 'Ward 1', 'items': [{'a': 1}]}) == template

    def test_substituted_values_are_not_expanded_again(self):
        data = {
            'secret': 'S3CR3T',
            'description': 'see {{secret}}',
            'items': [{'note': '{{secret}}'}],
        }
        result = self.engine.render("{{description}}|{{#items}}{{note}}{{/items}}", data, escape_html=False)
        assert result == "see {{secret}}|{{secret}}"

    def test_nested_sections(self):
        template = "{{#categories}}[{{name}}{{#resolved}} resolved={{resolved}}{{/resolved}}]{{/categories}}"
        data = {'categories': [{'name': 'Water', 'resolved': 3}, {'name': 'Roads', 'resolved': 0}]}
        assert self.engine.render(template, data) == "[Water resolved=3][Roads]"

    def test_render_is_idempotent_for_same_input(self):
        template = "{{#items}}{{name}},{{/items}}{{title}}"
        data = {'items': [{'name': 'a'}, {'name': 'b'}], 'title': 'Report'}
        assert self.engine.render(template, data) == self.engine.render(template, data)

    def test_rendering_does_not_mutate_data(self):
        data = {'items': [{'name': 'a'}], 'title': 'Report'}
        self.engine.render("{{#items}}{{name}}{{title}}{{/items}}", data)
        assert data == {'items': [{'name': 'a'}], 'title': 'Report'}

    def test_find_unrendered_tokens(self):
        assert find_unrendered_tokens("done {{#broken}} text") == ["{{#broken}}"]
        assert find_unrendered_tokens("<p>clean</p>") == []


class TestTemplateLoading:
    """Test template loading and caching."""

    @pytest.mark.asyncio
    async def test_loads_bundled_template(self):
        engine = TemplateEngine()
        content = await engine.load_template('/templates/export/unifiedReport.html')
        assert '{{reportTitle}}' in content

    @pytest.mark.asyncio
    async def test_loads_from_custom_directory_and_caches(self, tmp_path):
        export_dir = tmp_path / "export"
        export_dir.mkdir()
        template_file = export_dir / "custom.html"
        template_file.write_text("<h1>{{reportTitle}}</h1>", encoding='utf-8')

        engine = TemplateEngine(str(tmp_path))
        first = await engine.load_template('/templates/export/custom.html')

        template_file.write_text("changed", encoding='utf-8')
        second = await engine.load_template('/templates/export/custom.html')

        assert first == second == "<h1>{{reportTitle}}</h1>"
        assert engine.cached_paths() == ['/templates/export/custom.html']

    @pytest.mark.asyncio
    async def test_clear_cache_reloads(self, tmp_path):
        template_file = tmp_path / "report.html"
        template_file.write_text("v1", encoding='utf-8')
        engine = TemplateEngine(str(tmp_path))

        assert await engine.load_template('report.html') == "v1"
        template_file.write_text("v2", encoding='utf-8')
        engine.clear_cache()
        assert await engine.load_template('report.html') == "v2"

    @pytest.mark.asyncio
    async def test_preload_templates(self):
        engine = TemplateEngine()
        paths = ['/templates/export/unifiedReport.html', '/templates/export/analyticsReport.html']
        await engine.preload_templates(paths)
        assert engine.cached_paths() == paths

    @pytest.mark.asyncio
    async def test_unknown_template_raises(self, tmp_path):
        engine = TemplateEngine(str(tmp_path))
        with pytest.raises(TemplateNotFoundError, match="Template not found"):
            await engine.load_template('/templates/export/doesNotExist.html')
        assert engine.cached_paths() == []

    @pytest.mark.asyncio
    async def test_remote_template_uses_session(self):
        response = MagicMock()
        response.status = 200
        response.text = AsyncMock(return_value="<p>{{appName}}</p>")
        context = MagicMock()
        context.__aenter__ = AsyncMock(return_value=response)
        context.__aexit__ = AsyncMock(return_value=False)
        session = MagicMock()
        session.get.return_value = context

        engine = TemplateEngine(session=session)
        content = await engine.load_template('https://cdn.example.com/report.html')

        assert content == "<p>{{appName}}</p>"
        session.get.assert_called_once_with('https://cdn.example.com/report.html')

    @pytest.mark.asyncio
    async def test_remote_template_not_found(self):
        response = MagicMock()
        response.status = 404
        context = MagicMock()
        context.__aenter__ = AsyncMock(return_value=response)
        context.__aexit__ = AsyncMock(return_value=False)
        session = MagicMock()
        session.get.return_value = context

        engine = TemplateEngine(session=session)
        with pytest.raises(TemplateNotFoundError, match="HTTP 404"):
            await engine.load_template('https://cdn.example.com/missing.html')


class TestTemplateRegistry:
    """Test the template catalog."""

    def test_default_templates(self):
        registry = create_default_registry()
        ids = [t.id for t in registry.get_all_templates()]
        assert ids == ['unified', 'analytics', 'complaints-list']
        assert registry.get_template_path('unified') == '/templates/export/unifiedReport.html'

    def test_unknown_template_is_none(self):
        registry = create_default_registry()
        assert registry.get('missing') is None
        assert registry.get_template_path('missing') is None
        assert 'missing' not in registry

    def test_duplicate_registration_rejected(self):
        registry = TemplateRegistry()
        registry.register('custom', 'Custom', '/templates/custom.html', 'Custom report')
        with pytest.raises(ValueError, match="already registered"):
            registry.register('custom', 'Other', '/templates/other.html', 'Other report')
        assert len(registry) == 1

    def test_template_info_to_dict(self):
        info = create_default_registry().get('analytics')
        assert info.to_dict()['name'] == 'Analytics Report'

    @pytest.mark.asyncio
    async def test_every_registered_template_loads(self):
        engine = TemplateEngine()
        registry = create_default_registry()
        for info in registry.get_all_templates():
            content = await engine.load_template(info.path)
            assert content.strip()
