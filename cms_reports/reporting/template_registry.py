"""
Catalog of report templates available for HTML/PDF exports.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TemplateInfo:
    """Descriptive metadata of a registered template."""
    id: str
    name: str
    path: str
    description: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


class TemplateRegistry:
    """Append-only mapping of template identifiers to template resources."""

    def __init__(self):
        self._templates: Dict[str, TemplateInfo] = {}

    def register(self, template_id: str, name: str, path: str, description: str) -> TemplateInfo:
        """
        Register a template.

        Raises:
            ValueError: If the identifier is already registered
        """
        if template_id in self._templates:
            raise ValueError(f"Template already registered: {template_id}")
        info = TemplateInfo(id=template_id, name=name, path=path, description=description)
        self._templates[template_id] = info
        logger.debug(f"Registered template {template_id} at {path}")
        return info

    def get(self, template_id: str) -> Optional[TemplateInfo]:
        return self._templates.get(template_id)

    def get_all_templates(self) -> List[TemplateInfo]:
        return list(self._templates.values())

    def get_template_path(self, template_id: str) -> Optional[str]:
        info = self._templates.get(template_id)
        return info.path if info else None

    def __contains__(self, template_id: str) -> bool:
        return template_id in self._templates

    def __len__(self) -> int:
        return len(self._templates)


def create_default_registry() -> TemplateRegistry:
    """Build a registry holding the bundled export templates."""
    registry = TemplateRegistry()
    registry.register(
        'unified',
        'Unified Report',
        '/templates/export/unifiedReport.html',
        'Comprehensive analytics and performance report with summary cards, trends, and detailed breakdowns'
    )
    registry.register(
        'analytics',
        'Analytics Report',
        '/templates/export/analyticsReport.html',
        'Advanced analytics report focusing on performance metrics, trends analysis, and SLA compliance'
    )
    registry.register(
        'complaints-list',
        'Complaints List',
        '/templates/export/complaintsListReport.html',
        'Detailed listing of complaints with filters, status information, and summary statistics'
    )
    return registry


# Global template registry instance
default_registry = create_default_registry()
