import os
import yaml
import logging
from dataclasses import dataclass, field, fields
from typing import Dict, List, Optional, Any
from pathlib import Path

logger = logging.getLogger(__name__)

# Environment variables that override individual settings
ENV_OVERRIDES = {
    'CMS_API_BASE_URL': 'api_base_url',
    'CMS_API_TOKEN': 'api_token',
    'CMS_EXPORT_TIMEOUT': 'request_timeout_seconds',
    'CMS_DOWNLOAD_DIR': 'download_dir',
    'CMS_TEMPLATES_DIR': 'templates_dir',
    'CMS_STALE_EXPORT_SECONDS': 'stale_threshold_seconds',
    'CMS_EXPORT_RETENTION_SECONDS': 'completed_retention_seconds',
    'LOG_LEVEL': 'log_level'
}

DEFAULT_ROLE_RECORD_LIMITS = {
    'ADMINISTRATOR': 10000,
    'WARD_OFFICER': 2000,
    'MAINTENANCE_TEAM': 500,
    'CITIZEN': 0
}


@dataclass
class ExportSettings:
    """Runtime settings for the report export service."""
    api_base_url: str = "http://localhost:4005"
    export_endpoint: str = "/api/reports-revamped/export"
    api_token: Optional[str] = None
    request_timeout_seconds: float = 30.0
    response_cache_seconds: float = 30.0
    download_dir: str = "downloads"
    templates_dir: Optional[str] = None

    allowed_roles: List[str] = field(default_factory=lambda: ['ADMINISTRATOR', 'WARD_OFFICER'])
    role_record_limits: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_ROLE_RECORD_LIMITS))
    redacted_roles: List[str] = field(default_factory=lambda: ['CITIZEN'])
    max_date_range_days: int = 365

    # Export state lifecycle
    completed_retention_seconds: float = 30.0
    stale_threshold_seconds: float = 300.0
    sweep_interval_seconds: float = 10.0
    fingerprint_bucket_seconds: int = 60

    # Report content
    pdf_record_cap: int = 50
    sla_target_hours: int = 72
    notification_duration_seconds: float = 5.0

    log_level: str = "INFO"

    @property
    def export_url(self) -> str:
        return self.api_base_url.rstrip('/') + '/' + self.export_endpoint.lstrip('/')


def get_config_path(config_path: Optional[str] = None) -> Optional[Path]:
    """
    Get the configuration file path.

    Args:
        config_path: Optional custom path to configuration file

    Returns:
        Path to the configuration file, or None when the default file is absent

    Raises:
        FileNotFoundError: If an explicitly requested file does not exist
    """
    if config_path is None:
        # Default to config/export_settings.yaml relative to project root
        project_root = Path(__file__).parent.parent.parent
        default_path = project_root / "config" / "export_settings.yaml"
        return default_path if default_path.exists() else None

    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")
    return path


def load_export_settings(config_path: Optional[str] = None) -> ExportSettings:
    """
    Load export settings from YAML and environment variables.

    Args:
        config_path: Path to the configuration file. If None, uses default.

    Returns:
        Validated ExportSettings

    Raises:
        FileNotFoundError: If an explicit configuration file is not found
        ValueError: If YAML is invalid or settings fail validation
    """
    raw: Dict[str, Any] = {}
    config_file = get_config_path(config_path)

    if config_file is not None:
        try:
            with open(config_file, 'r', encoding='utf-8') as file:
                loaded = yaml.safe_load(file) or {}
        except yaml.YAMLError as e:
            logger.error(f"Invalid YAML in configuration file: {e}")
            raise ValueError(f"Invalid YAML in configuration file: {e}")

        raw = expand_environment_variables(loaded.get('export_settings', loaded))
        logger.info(f"Configuration loaded successfully from {config_file}")
    else:
        logger.info("No export configuration file found, using defaults")

    raw.update(get_environment_overrides())

    errors = validate_config(raw)
    if errors:
        raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")

    return build_settings(raw)


def get_environment_overrides() -> Dict[str, Any]:
    """
    Get settings overridden through environment variables.

    Returns:
        Dictionary of setting name to raw (string) value
    """
    overrides = {}
    for var, setting in ENV_OVERRIDES.items():
        value = os.getenv(var)
        if value:
            overrides[setting] = value
    return overrides


def build_settings(raw: Dict[str, Any]) -> ExportSettings:
    """Coerce raw configuration values into an ExportSettings instance."""
    known = {f.name: f for f in fields(ExportSettings)}
    values = {}

    for key, value in raw.items():
        if key not in known:
            logger.warning(f"Ignoring unknown export setting: {key}")
            continue
        default = getattr(ExportSettings, key, None)
        if isinstance(default, bool):
            values[key] = str(value).lower() in ('1', 'true', 'yes') if isinstance(value, str) else bool(value)
        elif isinstance(default, int) and not isinstance(default, bool):
            values[key] = int(value)
        elif isinstance(default, float):
            values[key] = float(value)
        else:
            values[key] = value

    settings = ExportSettings(**values)
    settings.allowed_roles = [role.upper() for role in settings.allowed_roles]
    settings.redacted_roles = [role.upper() for role in settings.redacted_roles]
    return settings


def validate_config(config: Dict[str, Any]) -> List[str]:
    """
    Validate configuration for value ranges and structure.

    Args:
        config: Configuration dictionary to validate

    Returns:
        List of validation errors (empty if valid)
    """
    errors = []

    numeric_keys = [
        'request_timeout_seconds', 'response_cache_seconds', 'completed_retention_seconds',
        'stale_threshold_seconds', 'sweep_interval_seconds', 'fingerprint_bucket_seconds',
        'pdf_record_cap', 'sla_target_hours', 'notification_duration_seconds',
        'max_date_range_days'
    ]
    for key in numeric_keys:
        if key not in config:
            continue
        try:
            value = float(config[key])
        except (TypeError, ValueError):
            errors.append(f"Setting '{key}' must be numeric")
            continue
        if value < 0:
            errors.append(f"Setting '{key}' must not be negative")

    if 'pdf_record_cap' in config and not errors:
        if float(config['pdf_record_cap']) < 1:
            errors.append("Setting 'pdf_record_cap' must be at least 1")

    for key in ('allowed_roles', 'redacted_roles'):
        if key in config and not isinstance(config[key], list):
            errors.append(f"Setting '{key}' must be a list")

    limits = config.get('role_record_limits')
    if limits is not None:
        if not isinstance(limits, dict):
            errors.append("Setting 'role_record_limits' must be a mapping")
        else:
            for role, limit in limits.items():
                if not isinstance(limit, int) or limit < 0:
                    errors.append(f"Record limit for role '{role}' must be a non-negative integer")

    return errors


def expand_environment_variables(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Expand environment variables in configuration values.

    Args:
        config: Configuration dictionary

    Returns:
        Configuration with environment variables expanded
    """
    def expand_value(value: Any) -> Any:
        if isinstance(value, str):
            return os.path.expandvars(value)
        elif isinstance(value, dict):
            return {k: expand_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [expand_value(item) for item in value]
        else:
            return value

    return expand_value(config)
