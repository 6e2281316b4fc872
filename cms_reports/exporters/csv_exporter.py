"""
CSV export generator

Standard library only: CSV is the fallback when the PDF or Excel encoders
are unavailable.
"""

import csv
import io
import logging
from datetime import datetime
from typing import Any

from ..utils.errors import ExportValidationError
from .base import ExportArtifact, MIME_TYPES, ReportBundle, artifact_filename

logger = logging.getLogger(__name__)

UTF8_BOM = '\ufeff'


def _format_value(value: Any) -> str:
    """Format a cell value for CSV output."""
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    return str(value)


def generate_csv(bundle: ReportBundle) -> ExportArtifact:
    """
    Export normalized rows as a UTF-8 CSV with a byte-order mark.

    The header is the key order of the first row. Fields containing a comma,
    quote or line break are quoted with embedded quotes doubled.

    Raises:
        ExportValidationError: If there are no rows to export
    """
    rows = bundle.rows
    if not rows:
        raise ExportValidationError("No data available to export", format='csv')

    headers = list(rows[0].keys())
    output = io.StringIO(newline='')
    writer = csv.writer(output, lineterminator='\r\n')
    writer.writerow(headers)
    for row in rows:
        writer.writerow([_format_value(row.get(header)) for header in headers])

    content = (UTF8_BOM + output.getvalue()).encode('utf-8')
    logger.info(f"Generated CSV export with {len(rows)} rows ({len(content)} bytes)")

    return ExportArtifact(
        filename=artifact_filename(bundle, 'csv'),
        content=content,
        mime_type=MIME_TYPES['csv'],
        format='csv',
        record_count=len(rows),
        metadata={'columns': len(headers)}
    )
