"""
Export permission and filter validation

Role-based export permissions, filter sanity checks, ward scoping and
context-rich filename generation for report exports.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from ..models import ExportFilters, ExportRequest
from .config_loader import DEFAULT_ROLE_RECORD_LIMITS
from .errors import ExportPermissionError, ExportValidationError

logger = logging.getLogger(__name__)

LARGE_EXPORT_THRESHOLD = 1000

FILENAME_EXTENSIONS = {
    'csv': '.csv',
    'excel': '.xlsx',
    'pdf': '.pdf',
    'html': '.html',
    'json': '.json',
}


@dataclass(frozen=True)
class ExportPermissions:
    """What a role may export."""
    can_export_data: bool
    can_export_all_wards: bool
    can_export_large_datasets: bool
    max_records: int


def get_export_permissions(role: str, role_limits: Optional[Dict[str, int]] = None) -> ExportPermissions:
    """
    Get export permissions for a user role.

    Args:
        role: User role (case-insensitive)
        role_limits: Record ceilings per role, defaults to the built-in limits

    Returns:
        ExportPermissions for the role; unknown roles may not export
    """
    role = (role or '').upper()
    limits = role_limits if role_limits is not None else DEFAULT_ROLE_RECORD_LIMITS
    max_records = int(limits.get(role, 0))

    if role == 'ADMINISTRATOR':
        return ExportPermissions(True, True, True, max_records)
    if role in ('WARD_OFFICER', 'MAINTENANCE_TEAM'):
        return ExportPermissions(max_records > 0, False, False, max_records)
    return ExportPermissions(False, False, False, 0)


def validate_export_permissions(
    role: str,
    allowed_roles: Iterable[str],
    requested_ward: Optional[str] = None,
    user_ward: Optional[str] = None,
    record_count: Optional[int] = None,
    role_limits: Optional[Dict[str, int]] = None
) -> List[str]:
    """
    Check that a role may export the requested data.

    Args:
        role: Requesting user's role
        allowed_roles: Roles allow-listed for exports
        requested_ward: Ward filter of the request ("all" or None for every ward)
        user_ward: Ward the user is assigned to
        record_count: Number of records about to be exported, when known
        role_limits: Record ceilings per role

    Returns:
        List of non-blocking warnings

    Raises:
        ExportPermissionError: If the role may not export, or asks for another ward
        ExportValidationError: If the record count exceeds the role's ceiling
    """
    role = (role or '').upper()
    permissions = get_export_permissions(role, role_limits)

    if role not in {r.upper() for r in allowed_roles} or not permissions.can_export_data:
        logger.warning(f"Export rejected for role {role}: not permitted")
        raise ExportPermissionError("You don't have permission to export data")

    if requested_ward and requested_ward != 'all' and requested_ward != user_ward:
        if not permissions.can_export_all_wards:
            logger.warning(f"Export rejected for role {role}: ward {requested_ward} outside scope")
            raise ExportPermissionError("You don't have permission to export data from other wards")

    warnings = []
    if record_count is not None:
        if record_count > permissions.max_records:
            raise ExportValidationError(
                f"Export size exceeds limit. Maximum {permissions.max_records} records allowed for your role.",
                details={'record_count': record_count, 'max_records': permissions.max_records}
            )
        if record_count > LARGE_EXPORT_THRESHOLD:
            warnings.append("Large export detected. This may take a few moments to generate.")

    return warnings


def validate_export_filters(
    filters: ExportFilters,
    role: str,
    max_range_days: int = 365,
    role_limits: Optional[Dict[str, int]] = None
) -> List[str]:
    """
    Validate an export's filter set.

    Returns:
        List of non-blocking warnings

    Raises:
        ExportValidationError: If the date range is inverted, or too long for
            a role that may not export large datasets
    """
    warnings = []

    if filters.from_date and filters.to_date:
        if filters.from_date > filters.to_date:
            raise ExportValidationError("Start date cannot be after end date")

        days = (filters.to_date - filters.from_date).days
        if days > max_range_days:
            if not get_export_permissions(role, role_limits).can_export_large_datasets:
                raise ExportValidationError(
                    f"Date range exceeds {max_range_days} days. Please select a shorter period.",
                    details={'days': days}
                )
            warnings.append(
                "Date range exceeds 1 year. Consider using smaller date ranges for better performance."
            )

    if not filters.to_query_params():
        warnings.append("No filters applied. Export will include all available data.")

    return warnings


def scope_filters(
    filters: ExportFilters,
    role: str,
    user_ward: Optional[str],
    role_limits: Optional[Dict[str, int]] = None
) -> ExportFilters:
    """
    Restrict filters to the data a role may see.

    Roles without all-ward access are pinned to their own ward.

    Raises:
        ExportPermissionError: If a ward-scoped role has no ward assigned
    """
    if get_export_permissions(role, role_limits).can_export_all_wards:
        return filters

    if not user_ward:
        raise ExportPermissionError("Your account is not assigned to a ward")

    if filters.ward == user_ward:
        return filters
    return filters.model_copy(update={'ward': user_ward})


def generate_export_filename(
    app_name: str,
    format: str,
    filters: Optional[ExportFilters] = None,
    on: Optional[date] = None
) -> str:
    """
    Generate a filename that carries the export's filter context.

    Example: Smart-CMS-Report-2024-02-01-2024-01-01-to-2024-01-31-Ward-5.csv
    """
    safe_app_name = re.sub(r'[^a-zA-Z0-9]', '-', app_name)
    stamp = (on or date.today()).isoformat()
    filename = f"{safe_app_name}-Report-{stamp}"

    if filters is not None:
        if filters.from_date and filters.to_date:
            filename += f"-{filters.from_date.isoformat()}-to-{filters.to_date.isoformat()}"
        if filters.ward != 'all':
            filename += f"-Ward-{filters.ward}"
        if filters.type != 'all':
            filename += f"-{filters.type}"

    return filename + FILENAME_EXTENSIONS.get(format, '.txt')


def build_export_request(raw: Dict[str, Any]) -> ExportRequest:
    """
    Validate a raw export request.

    Raises:
        ExportValidationError: If the request does not match the expected schema
    """
    try:
        return ExportRequest.model_validate(raw)
    except ValidationError as e:
        problems = '; '.join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in e.errors()
        )
        logger.error(f"Invalid export request: {problems}")
        raise ExportValidationError(f"Invalid export request: {problems}") from e
