"""
HTML export generator backed by the report template engine.
"""

import logging

from ..reporting.template_engine import find_unrendered_tokens
from ..utils.errors import ExportConfigurationError
from .base import ExportArtifact, MIME_TYPES, ReportBundle, artifact_filename

logger = logging.getLogger(__name__)


def generate_html(bundle: ReportBundle) -> ExportArtifact:
    """
    Render the bundle's template with its template data.

    Raises:
        ExportConfigurationError: If no template or engine was supplied
    """
    if bundle.template is None or bundle.template_engine is None:
        raise ExportConfigurationError("HTML export requires a loaded report template", format='html')

    html = bundle.template_engine.render(bundle.template, bundle.template_data or {})

    leftovers = find_unrendered_tokens(html)
    if leftovers:
        logger.warning(f"Rendered report contains unresolved template tokens: {leftovers[:5]}")

    content = html.encode('utf-8')
    logger.info(f"Generated HTML export ({len(content)} bytes)")

    return ExportArtifact(
        filename=artifact_filename(bundle, 'html'),
        content=content,
        mime_type=MIME_TYPES['html'],
        format='html',
        record_count=len(bundle.rows),
        metadata={'unresolved_tokens': len(leftovers)}
    )
