"""
Tests for export diagnostics and self-test tools
"""

import json

import pytest

from cms_reports.reporting.export_diagnostics import (
    STATUS_FAIL, STATUS_PASS, DiagnosticResult, check_encoder_libraries, check_runtime_capabilities,
    check_template_registry, check_templates, diagnostics_to_json, generate_diagnostic_report,
    run_export_diagnostics, summarize, write_diagnostic_report
)
from cms_reports.reporting.template_engine import TemplateEngine
from cms_reports.reporting.template_registry import TemplateRegistry, create_default_registry
from cms_reports.reporting.testing_tools import (
    SelfTestType, check_export_flow, check_rbac_validation, check_template_rendering,
    create_mock_analytics_data, create_mock_complaints, create_mock_template_data,
    run_all_export_checks
)
from cms_reports.utils.capabilities import CapabilityProbe


class TestDiagnostics:
    """Test the export health checks."""

    def test_registry_check(self):
        assert check_template_registry(create_default_registry()).status == STATUS_PASS
        assert check_template_registry(TemplateRegistry()).status == STATUS_FAIL

    @pytest.mark.asyncio
    async def test_bundled_templates_pass(self):
        results = await check_templates(TemplateEngine(), create_default_registry())
        assert len(results) == 3
        assert all(r.status == STATUS_PASS for r in results)

    @pytest.mark.asyncio
    async def test_missing_template_fails(self, tmp_path):
        registry = TemplateRegistry()
        registry.register('ghost', 'Ghost', '/templates/export/ghost.html', 'Missing template')
        results = await check_templates(TemplateEngine(str(tmp_path)), registry)
        assert results[0].status == STATUS_FAIL
        assert 'Failed to load template' in results[0].message

    def test_encoder_libraries(self):
        results = check_encoder_libraries(CapabilityProbe())
        components = [r.component for r in results]
        assert 'openpyxl' in components
        assert 'Format: pdf' in components
        assert all(r.status == STATUS_PASS for r in results)

    def test_runtime_capabilities(self, tmp_path):
        results = check_runtime_capabilities(tmp_path / "downloads")
        assert all(r.status == STATUS_PASS for r in results)
        assert list((tmp_path / "downloads").iterdir()) == []

    @pytest.mark.asyncio
    async def test_full_run_and_reports(self, tmp_path):
        results = await run_export_diagnostics(download_dir=tmp_path / "downloads")
        counts = summarize(results)
        assert counts['fail'] == 0
        assert counts['total'] == len(results)

        paths = write_diagnostic_report(results, tmp_path / "reports")
        html = paths['html'].read_text(encoding='utf-8')
        assert 'Export Diagnostics Report' in html
        assert json.loads(paths['json'].read_text(encoding='utf-8'))['summary']['fail'] == 0

    def test_report_escapes_messages(self):
        results = [DiagnosticResult('Template: x', STATUS_FAIL, '<script>bad</script>')]
        html = generate_diagnostic_report(results)
        assert '<script>bad' not in html
        assert json.loads(diagnostics_to_json(results))['results'][0]['status'] == STATUS_FAIL


class TestSelfTests:
    """Test the export self-test tools."""

    def test_mock_data_is_consistent(self):
        complaints = create_mock_complaints(7)
        assert len(complaints) == 7
        assert len({c.id for c in complaints}) == 7
        assert create_mock_analytics_data().summary.total == 150

        data = create_mock_template_data()
        assert data['appName'] == 'Smart City CMS'
        assert data['summary']['totalComplaints'] == 150

    @pytest.mark.asyncio
    @pytest.mark.parametrize('template_id', ['unified', 'analytics', 'complaints-list'])
    async def test_template_rendering(self, template_id):
        result = await check_template_rendering(template_id)
        assert result.success, result.error_message
        assert result.test_type == SelfTestType.TEMPLATE_RENDERING.value

    @pytest.mark.asyncio
    async def test_template_rendering_unknown_template(self):
        result = await check_template_rendering('missing')
        assert not result.success
        assert 'Template path not found' in result.error_message

    @pytest.mark.asyncio
    @pytest.mark.parametrize('fmt', ['csv', 'excel', 'pdf', 'html'])
    async def test_export_flow(self, fmt, tmp_path):
        result = await check_export_flow(format=fmt, output_dir=tmp_path)
        assert result.success, result.error_message
        assert (tmp_path / result.details['filename']).exists()

    def test_rbac_validation(self):
        result = check_rbac_validation()
        assert result.success, result.error_message
        assert result.to_dict()['details']['invalid_role_rejected'] is True

    @pytest.mark.asyncio
    async def test_run_all(self):
        results = await run_all_export_checks()
        assert set(results) == {'template_rendering', 'rbac_validation', 'export_flow'}
        assert all(r.success for r in results.values())
