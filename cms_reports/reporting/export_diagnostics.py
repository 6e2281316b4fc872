"""
Export Diagnostics

Self-checks for the export subsystem: template registry and template
loadability, encoder library availability and runtime capabilities. Results
can be logged, serialized to JSON, or rendered as an HTML health report.
"""

import importlib
import json
import logging
import tempfile
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import aiohttp
from jinja2 import Template

from ..utils.capabilities import CapabilityProbe
from .template_engine import TemplateEngine, VARIABLE_PATTERN, find_unrendered_tokens
from .template_registry import TemplateRegistry, default_registry
from .testing_tools import create_mock_template_data

logger = logging.getLogger(__name__)

STATUS_PASS = 'pass'
STATUS_FAIL = 'fail'
STATUS_WARNING = 'warning'

ENCODER_LIBRARIES = {
    'openpyxl': 'Excel export library',
    'reportlab': 'PDF export library',
    'pandas': 'Statistics library',
}


@dataclass
class DiagnosticResult:
    component: str
    status: str
    message: str
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def check_template_registry(registry: TemplateRegistry) -> DiagnosticResult:
    templates = registry.get_all_templates()
    if not templates:
        return DiagnosticResult('Template Registry', STATUS_FAIL, 'No templates registered')
    return DiagnosticResult(
        'Template Registry',
        STATUS_PASS,
        f"{len(templates)} templates registered",
        {'templates': [t.id for t in templates]}
    )


async def check_templates(engine: TemplateEngine, registry: TemplateRegistry) -> List[DiagnosticResult]:
    """Load every registered template and render it with mock data."""
    results = []
    mock_data = create_mock_template_data()

    for info in registry.get_all_templates():
        component = f"Template: {info.id}"
        try:
            content = await engine.load_template(info.path)
        except Exception as e:
            results.append(DiagnosticResult(component, STATUS_FAIL, f"Failed to load template: {e}"))
            continue

        if not content.strip():
            results.append(DiagnosticResult(component, STATUS_FAIL, 'Template is empty or could not be loaded'))
            continue

        variables = sorted(set(VARIABLE_PATTERN.findall(content)))
        results.append(DiagnosticResult(
            component,
            STATUS_PASS,
            f"Template loaded successfully ({len(content)} chars, {len(variables)} variables)",
            {'path': info.path, 'variables': variables[:10]}
        ))

        leftovers = find_unrendered_tokens(engine.render(content, mock_data))
        if leftovers:
            results.append(DiagnosticResult(
                f"{component} rendering",
                STATUS_WARNING,
                f"{len(leftovers)} template tokens were not rendered",
                {'tokens': leftovers[:5]}
            ))

    return results


def check_encoder_libraries(probe: CapabilityProbe) -> List[DiagnosticResult]:
    results = []

    for module_name, description in ENCODER_LIBRARIES.items():
        try:
            module = importlib.import_module(module_name)
        except ImportError as e:
            results.append(DiagnosticResult(module_name, STATUS_FAIL, f"{description} not available: {e}"))
            continue
        results.append(DiagnosticResult(
            module_name,
            STATUS_PASS,
            f"{description} loaded successfully",
            {'version': getattr(module, '__version__', 'unknown')}
        ))

    for fmt, status in probe.probe_all().items():
        results.append(DiagnosticResult(
            f"Format: {fmt}",
            STATUS_PASS if status.available else STATUS_FAIL,
            'Available' if status.available else status.reason or 'Unavailable'
        ))

    return results


def check_runtime_capabilities(download_dir: Union[str, Path]) -> List[DiagnosticResult]:
    """Check the capabilities exports rely on at runtime."""
    results = []
    directory = Path(download_dir)

    try:
        directory.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(dir=directory, prefix='.diagnostics'):
            pass
        results.append(DiagnosticResult(
            'Runtime: Download directory', STATUS_PASS, f"{directory} is writable"
        ))
    except OSError as e:
        results.append(DiagnosticResult(
            'Runtime: Download directory', STATUS_FAIL, f"{directory} is not writable: {e}"
        ))

    try:
        with tempfile.TemporaryFile() as handle:
            handle.write(b'diagnostics')
        results.append(DiagnosticResult('Runtime: Temporary files', STATUS_PASS, 'Temporary files are supported'))
    except OSError as e:
        results.append(DiagnosticResult('Runtime: Temporary files', STATUS_FAIL, f"Temporary files unavailable: {e}"))

    results.append(DiagnosticResult(
        'Runtime: HTTP client',
        STATUS_PASS,
        'aiohttp client is available',
        {'version': aiohttp.__version__}
    ))
    return results


async def run_export_diagnostics(
    engine: Optional[TemplateEngine] = None,
    registry: Optional[TemplateRegistry] = None,
    probe: Optional[CapabilityProbe] = None,
    download_dir: Union[str, Path] = "downloads"
) -> List[DiagnosticResult]:
    """
    Run every export diagnostic.

    Returns:
        Results in check order: registry, templates, libraries, runtime
    """
    engine = engine or TemplateEngine()
    registry = registry or default_registry
    probe = probe or CapabilityProbe()

    results = [check_template_registry(registry)]
    results.extend(await check_templates(engine, registry))
    results.extend(check_encoder_libraries(probe))
    results.extend(check_runtime_capabilities(download_dir))
    return results


def summarize(results: List[DiagnosticResult]) -> Dict[str, int]:
    counts = {STATUS_PASS: 0, STATUS_FAIL: 0, STATUS_WARNING: 0}
    for result in results:
        counts[result.status] = counts.get(result.status, 0) + 1
    counts['total'] = len(results)
    return counts


REPORT_TEMPLATE = Template("""<!DOCTYPE html>
<html>
<head>
    <title>Export Diagnostics Report</title>
    <style>
        body { font-family: Arial, sans-serif; margin: 20px; }
        .result { margin: 10px 0; padding: 10px; border-radius: 5px; }
        .pass { background-color: #d4edda; border: 1px solid #c3e6cb; }
        .fail { background-color: #f8d7da; border: 1px solid #f5c6cb; }
        .warning { background-color: #fff3cd; border: 1px solid #ffeaa7; }
        .details { margin-top: 5px; font-size: 12px; color: #666; }
        pre { white-space: pre-wrap; }
    </style>
</head>
<body>
    <h1>Export Diagnostics Report</h1>
    <p>Generated: {{ generated_at }}</p>
    <p>Passed: {{ summary['pass'] }} | Failed: {{ summary['fail'] }} | Warnings: {{ summary['warning'] }}</p>
    {% for result in results %}
    <div class="result {{ result.status }}">
        <strong>{{ result.component }}</strong>: {{ result.message }}
        {% if result.details %}
        <div class="details"><pre>{{ result.details | tojson(indent=2) }}</pre></div>
        {% endif %}
    </div>
    {% endfor %}
</body>
</html>
""", autoescape=True)


def generate_diagnostic_report(results: List[DiagnosticResult]) -> str:
    """Render diagnostic results as an HTML report."""
    return REPORT_TEMPLATE.render(
        generated_at=datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S %Z'),
        summary=summarize(results),
        results=results
    )


def diagnostics_to_json(results: List[DiagnosticResult]) -> str:
    return json.dumps(
        {
            'generated_at': datetime.now(timezone.utc).isoformat(),
            'summary': summarize(results),
            'results': [r.to_dict() for r in results],
        },
        indent=2,
        default=str
    )


def write_diagnostic_report(results: List[DiagnosticResult], directory: Union[str, Path]) -> Dict[str, Path]:
    """Write the HTML and JSON reports into a directory."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')

    html_path = directory / f"export_diagnostics_{stamp}.html"
    json_path = directory / f"export_diagnostics_{stamp}.json"
    html_path.write_text(generate_diagnostic_report(results), encoding='utf-8')
    json_path.write_text(diagnostics_to_json(results), encoding='utf-8')

    logger.info(f"Diagnostic reports written to {directory}")
    return {'html': html_path, 'json': json_path}


def log_diagnostics(results: List[DiagnosticResult]) -> None:
    """Log each result at a level matching its status."""
    for result in results:
        message = f"{result.component}: {result.message}"
        if result.status == STATUS_FAIL:
            logger.error(message)
        elif result.status == STATUS_WARNING:
            logger.warning(message)
        else:
            logger.info(message)

    counts = summarize(results)
    logger.info(
        f"Export diagnostics: {counts[STATUS_PASS]} passed, {counts[STATUS_FAIL]} failed, "
        f"{counts[STATUS_WARNING]} warnings"
    )
