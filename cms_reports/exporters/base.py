"""
Shared types for format generators.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from ..models import AnalyticsSummary, ExportOptions

MIME_TYPES = {
    'csv': 'text/csv;charset=utf-8',
    'excel': 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
    'pdf': 'application/pdf',
    'html': 'text/html;charset=utf-8',
}

EXTENSIONS = {
    'csv': 'csv',
    'excel': 'xlsx',
    'pdf': 'pdf',
    'html': 'html',
}


@dataclass
class ReportBundle:
    """Normalized input shared by every format generator."""
    rows: List[Dict[str, Any]]
    options: ExportOptions
    statistics: Optional[AnalyticsSummary] = None
    report_title: str = "Complaints Report"
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    record_cap: int = 50
    # HTML only
    template: Optional[str] = None
    template_data: Optional[Dict[str, Any]] = None
    template_engine: Optional[Any] = None

    @property
    def summary(self) -> AnalyticsSummary:
        return self.statistics if self.statistics is not None else AnalyticsSummary()


@dataclass
class ExportArtifact:
    """A fully generated export, ready for delivery."""
    filename: str
    content: bytes
    mime_type: str
    format: str
    record_count: int
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def size(self) -> int:
        return len(self.content)


def report_name(app_name: str) -> str:
    """Filesystem-safe report name derived from the application name."""
    safe = re.sub(r'[^A-Za-z0-9]+', '_', app_name or '').strip('_')
    return f"{safe or 'Report'}_Complaints"


def build_export_filename(name: str, ext: str, on: Optional[date] = None) -> str:
    """Deterministic, date-stamped filename: <ReportName>_<ISODate>.<ext>"""
    stamp = (on or date.today()).isoformat()
    return f"{name}_{stamp}.{ext}"


def artifact_filename(bundle: ReportBundle, format: str) -> str:
    return build_export_filename(
        report_name(bundle.options.system_config.app_name),
        EXTENSIONS[format],
        bundle.generated_at.date()
    )
