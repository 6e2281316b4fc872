"""
Encoder capability probes

Each export format depends on a set of encoder modules. Probing imports them
once and caches the outcome for the process lifetime, so callers branch on
availability instead of catching import failures mid-export.
"""

import importlib
import logging
from dataclasses import dataclass, asdict
from typing import Callable, Dict, Optional, Tuple

from ..models import EXPORT_FORMATS

logger = logging.getLogger(__name__)

FORMAT_MODULES: Dict[str, Tuple[str, ...]] = {
    'csv': (),
    'excel': ('openpyxl', 'openpyxl.styles'),
    'pdf': ('reportlab', 'reportlab.pdfgen.canvas'),
    'html': ('markupsafe',),
}


@dataclass(frozen=True)
class CapabilityStatus:
    available: bool
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


class CapabilityProbe:
    """Caches encoder availability per export format."""

    def __init__(self, importer: Callable[[str], object] = importlib.import_module):
        self._importer = importer
        self._cache: Dict[str, CapabilityStatus] = {}

    def probe(self, format: str) -> CapabilityStatus:
        """
        Report whether the encoders needed for a format can be loaded.

        Args:
            format: Export format (csv, excel, pdf, html)

        Returns:
            CapabilityStatus; CSV is always available
        """
        if format in self._cache:
            return self._cache[format]

        if format not in FORMAT_MODULES:
            return CapabilityStatus(False, f"Unsupported export format: {format}")

        status = CapabilityStatus(True)
        for module_name in FORMAT_MODULES[format]:
            try:
                self._importer(module_name)
            except ImportError as e:
                logger.warning(f"Encoder for {format} unavailable: {module_name} ({e})")
                status = CapabilityStatus(False, f"{module_name} could not be loaded: {e}")
                break

        self._cache[format] = status
        return status

    def probe_all(self) -> Dict[str, CapabilityStatus]:
        return {fmt: self.probe(fmt) for fmt in EXPORT_FORMATS}

    def reset(self) -> None:
        self._cache.clear()


def available_export_formats(probe: Optional[CapabilityProbe] = None) -> Dict[str, CapabilityStatus]:
    """List every export format with its availability."""
    return (probe or CapabilityProbe()).probe_all()
