"""
Format generators for complaint exports.

Generators are imported on demand so that a broken PDF or Excel encoder
never prevents a CSV export.
"""

import importlib
from typing import Callable, Dict, Tuple

from ..utils.errors import ExportConfigurationError
from .base import ExportArtifact, ReportBundle

GENERATORS: Dict[str, Tuple[str, str]] = {
    'csv': ('csv_exporter', 'generate_csv'),
    'excel': ('excel_exporter', 'generate_excel'),
    'pdf': ('pdf_exporter', 'generate_pdf'),
    'html': ('html_exporter', 'generate_html'),
}


def load_generator(format: str) -> Callable[[ReportBundle], ExportArtifact]:
    """
    Import and return the generator function for a format.

    Raises:
        ExportConfigurationError: If no generator exists for the format
        ImportError: If the generator's encoder library cannot be imported
    """
    if format not in GENERATORS:
        raise ExportConfigurationError(f"No generator registered for format: {format}", format=format)
    module_name, function_name = GENERATORS[format]
    module = importlib.import_module(f".{module_name}", __name__)
    return getattr(module, function_name)


__all__ = ['ExportArtifact', 'ReportBundle', 'GENERATORS', 'load_generator']
