"""
Tests for the command line entry point
"""

import argparse
import json

import pytest

from main import ReportExportApp
from cms_reports.utils.export_validation import build_export_request


def make_args(**overrides) -> argparse.Namespace:
    values = {
        'request': None, 'format': 'csv', 'role': 'ADMINISTRATOR', 'user_ward': None,
        'date_from': '2024-01-01', 'date_to': '2024-01-31', 'ward': None, 'type': None,
        'status': None, 'priority': None, 'template': 'unified', 'title': 'Complaints Report',
        'app_name': 'Smart CMS', 'dataset_version': None, 'output_dir': None, 'report_dir': None,
    }
    values.update(overrides)
    return argparse.Namespace(**values)


class TestReportExportApp:
    """Test request building and listing commands."""

    def test_build_request_from_options(self, settings):
        app = ReportExportApp(settings)
        raw = app.build_request(make_args(format='pdf', ward='Ward 3', role='ward_officer', user_ward='Ward 3'))
        request = build_export_request(raw)

        assert request.format == 'pdf'
        assert request.options.user_role == 'WARD_OFFICER'
        assert request.options.filters.ward == 'Ward 3'
        assert request.options.filters.type == 'all'

    def test_build_request_from_file(self, settings, tmp_path):
        request_file = tmp_path / "request.json"
        request_file.write_text(json.dumps({
            'format': 'excel',
            'options': {'userRole': 'ADMINISTRATOR', 'filters': {'status': 'resolved'}},
        }), encoding='utf-8')

        raw = ReportExportApp(settings).build_request(make_args(request=str(request_file)))
        assert build_export_request(raw).options.filters.status == 'RESOLVED'

    def test_listing_commands(self, settings, capsys):
        app = ReportExportApp(settings)
        assert app.list_templates() is True
        assert app.list_formats() is True

        output = capsys.readouterr().out
        assert 'unified' in output
        assert 'excel' in output

    @pytest.mark.asyncio
    async def test_self_tests_pass(self, settings, capsys):
        assert await ReportExportApp(settings).run_self_tests() is True
        assert 'PASS RBAC validation' in capsys.readouterr().out
