"""
Lightweight template engine for report generation

Supports a Mustache-like syntax:
- {{key}} / {{nested.key}}: variable interpolation, HTML-escaped by default
- {{#key}}...{{/key}}: sections, repeated for lists, rendered once with the
  value's fields in scope for mappings (empty ones included), and removed
  for any other falsy value
"""

import logging
import re
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import aiohttp
from markupsafe import escape

logger = logging.getLogger(__name__)

TemplateData = Dict[str, Any]

DEFAULT_TEMPLATES_DIR = Path(__file__).parent / "templates"

SECTION_PATTERN = re.compile(r"\{\{#([\w.]+)\}\}(.*?)\{\{/\1\}\}", re.DOTALL)
VARIABLE_PATTERN = re.compile(r"\{\{(\w+(?:\.\w+)*)\}\}")
TOKEN_PATTERN = re.compile(r"\{\{[^}]+\}\}")
RENDER_PATTERN = re.compile(SECTION_PATTERN.pattern + "|" + VARIABLE_PATTERN.pattern, re.DOTALL)


class TemplateNotFoundError(Exception):
    """Raised when a template cannot be loaded from any candidate location."""


def get_nested_value(data: Any, path: str) -> Any:
    """
    Resolve a dot-separated path against nested mappings and sequences.

    Missing keys at any depth resolve to None rather than raising.
    """
    current = data
    for key in path.split('.'):
        if current is None:
            return None
        if isinstance(current, Mapping):
            current = current.get(key)
        elif isinstance(current, Sequence) and not isinstance(current, str) and key.isdigit():
            index = int(key)
            current = current[index] if index < len(current) else None
        else:
            return None
    return current


def stringify(value: Any) -> str:
    """Render a scalar the way report templates expect to display it."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class TemplateEngine:
    """Loads, caches and renders report templates."""

    def __init__(self, templates_dir: Optional[str] = None, session: Optional[aiohttp.ClientSession] = None):
        self.templates_dir = Path(templates_dir) if templates_dir else DEFAULT_TEMPLATES_DIR
        self.session = session
        self._cache: Dict[str, str] = {}

    async def load_template(self, template_path: str) -> str:
        """
        Load a template by path or URL, caching the text by the requested path.

        Args:
            template_path: Registry path (e.g. /templates/export/unifiedReport.html),
                filesystem path, or http(s) URL

        Returns:
            Template text

        Raises:
            TemplateNotFoundError: If no candidate location yields the template
        """
        if template_path in self._cache:
            return self._cache[template_path]

        if template_path.startswith(('http://', 'https://')):
            template = await self._fetch_remote(template_path)
        else:
            template = self._read_local(template_path)

        self._cache[template_path] = template
        return template

    def _candidate_paths(self, template_path: str) -> List[Path]:
        relative = template_path.lstrip('/')
        for prefix in ('public/templates/', 'templates/'):
            if relative.startswith(prefix):
                relative = relative[len(prefix):]
                break

        candidates = [
            Path(template_path),
            self.templates_dir / relative,
            self.templates_dir / Path(template_path).name,
        ]
        unique = []
        for candidate in candidates:
            if candidate not in unique:
                unique.append(candidate)
        return unique

    def _read_local(self, template_path: str) -> str:
        attempted = []
        for candidate in self._candidate_paths(template_path):
            attempted.append(str(candidate))
            if candidate.is_file():
                logger.debug(f"Loaded template {template_path} from {candidate}")
                return candidate.read_text(encoding='utf-8')

        logger.error(f"Template not found: {template_path} (attempted {', '.join(attempted)})")
        raise TemplateNotFoundError(f"Template not found: {template_path}")

    async def _fetch_remote(self, url: str) -> str:
        session = self.session
        owns_session = session is None
        if owns_session:
            session = aiohttp.ClientSession()
        try:
            async with session.get(url) as response:
                if response.status != 200:
                    raise TemplateNotFoundError(
                        f"Template not found: {url} (HTTP {response.status})"
                    )
                return await response.text()
        except aiohttp.ClientError as e:
            logger.error(f"Error fetching template {url}: {e}")
            raise TemplateNotFoundError(f"Template not found: {url}") from e
        finally:
            if owns_session:
                await session.close()

    def render(self, template: str, data: TemplateData, escape_html: bool = True) -> str:
        """
        Render a template against nested data.

        Sections and variables are resolved in one left-to-right pass. Section
        bodies are rendered with their own scope, and substituted text is never
        scanned again, so values containing {{...}} come out literally.
        """
        def replace(match: re.Match) -> str:
            if match.group(1) is not None:
                return self._render_section(match.group(1), match.group(2), data, escape_html)
            return self._render_variable(match.group(3), data, escape_html)

        return RENDER_PATTERN.sub(replace, template)

    def _render_section(self, key: str, content: str, data: TemplateData, escape_html: bool) -> str:
        value = get_nested_value(data, key)

        if isinstance(value, (list, tuple)):
            parts = []
            for item in value:
                scope = {**data, **item} if isinstance(item, Mapping) else data
                parts.append(self.render(content, scope, escape_html))
            return ''.join(parts)

        # Mappings render once with their fields in scope, even when empty
        if isinstance(value, Mapping):
            return self.render(content, {**data, **value}, escape_html)

        if not value:
            return ''
        return self.render(content, data, escape_html)

    def _render_variable(self, path: str, data: TemplateData, escape_html: bool) -> str:
        value = get_nested_value(data, path)
        if value is None:
            return ''
        text = stringify(value)
        return str(escape(text)) if escape_html else text

    def clear_cache(self) -> None:
        """Forget every cached template."""
        self._cache.clear()

    def cached_paths(self) -> List[str]:
        return list(self._cache.keys())

    async def preload_templates(self, template_paths: Iterable[str]) -> None:
        """Load several templates into the cache."""
        for path in template_paths:
            await self.load_template(path)


def find_unrendered_tokens(rendered: str) -> List[str]:
    """Return template tokens left in rendered output."""
    return TOKEN_PATTERN.findall(rendered)
