"""
Export Self-Test Tools

Mock data factories and end-to-end checks for the export pipeline: template
rendering against realistic data, a full in-memory export flow per format,
and role-based access validation.
"""

import logging
import time
from dataclasses import dataclass, asdict, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..exporters import load_generator
from ..exporters.base import ReportBundle
from ..exports.delivery import FileDownloadDelivery
from ..models import (
    AnalyticsSummary, BreakdownBucket, ComplaintRecord, ExportFilters, ExportOptions,
    PerformanceMetrics, SlaMetrics, SummaryCounts, SystemBranding, TrendPoint
)
from ..utils.errors import ExportError
from ..utils.export_validation import scope_filters, validate_export_permissions
from .data_formatters import format_records_for_export, prepare_unified_report_data
from .template_engine import TemplateEngine, find_unrendered_tokens
from .template_registry import TemplateRegistry, default_registry

logger = logging.getLogger(__name__)

MOCK_REFERENCE_TIME = datetime(2024, 1, 31, 18, 0, tzinfo=timezone.utc)


class SelfTestType(Enum):
    """Types of export self-tests."""
    TEMPLATE_RENDERING = "template_rendering"
    EXPORT_FLOW = "export_flow"
    RBAC_VALIDATION = "rbac_validation"


@dataclass
class SelfTestResult:
    """Result of an export self-test."""
    test_type: str
    test_name: str
    success: bool
    duration: float
    details: Dict[str, Any] = field(default_factory=dict)
    error_message: Optional[str] = None
    timestamp: Optional[datetime] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        return data


def create_mock_analytics_data() -> AnalyticsSummary:
    """Analytics aggregates resembling a month of activity in a mid-sized city."""
    return AnalyticsSummary(
        summary=SummaryCounts(
            total=150, resolved=110, closed=10, pending=25, in_progress=12,
            overdue=6, reopened=5, resolution_rate=80.0
        ),
        sla=SlaMetrics(compliance=85.5, avg_resolution_hours=2.3, target_hours=72, on_time=102, breached=18),
        performance=PerformanceMetrics(
            user_satisfaction=4.2, escalation_rate=5.5, first_call_resolution=78.5, repeat_complaint_rate=12.3
        ),
        priorities=[
            BreakdownBucket(name='CRITICAL', count=10, resolved=9, percentage=6.67),
            BreakdownBucket(name='HIGH', count=40, resolved=33, percentage=26.67),
            BreakdownBucket(name='MEDIUM', count=70, resolved=55, percentage=46.67),
            BreakdownBucket(name='LOW', count=30, resolved=23, percentage=20.0),
        ],
        categories=[
            BreakdownBucket(name='Water Supply', count=45, resolved=38, avg_resolution_hours=2.1, efficiency=84.44, percentage=30.0),
            BreakdownBucket(name='Road Maintenance', count=35, resolved=27, avg_resolution_hours=3.2, efficiency=77.14, percentage=23.33),
            BreakdownBucket(name='Garbage Collection', count=25, resolved=21, avg_resolution_hours=1.8, efficiency=84.0, percentage=16.67),
            BreakdownBucket(name='Street Lighting', count=20, resolved=16, avg_resolution_hours=2.5, efficiency=80.0, percentage=13.33),
            BreakdownBucket(name='Others', count=25, resolved=18, avg_resolution_hours=2.8, efficiency=72.0, percentage=16.67),
        ],
        wards=[
            BreakdownBucket(name='Ward 1', count=50, resolved=40, pending=10, avg_resolution_hours=2.2, efficiency=80.0),
            BreakdownBucket(name='Ward 2', count=45, resolved=38, pending=7, avg_resolution_hours=2.1, efficiency=84.44),
            BreakdownBucket(name='Ward 3', count=55, resolved=42, pending=13, avg_resolution_hours=2.4, efficiency=76.36),
        ],
        trends=[
            TrendPoint(date='2024-01-01', complaints=10, resolved=8, sla_compliance=80.0),
            TrendPoint(date='2024-01-02', complaints=12, resolved=10, sla_compliance=83.0),
            TrendPoint(date='2024-01-03', complaints=8, resolved=7, sla_compliance=87.0),
        ],
        generated_at=MOCK_REFERENCE_TIME,
    )


def create_mock_system_config() -> SystemBranding:
    return SystemBranding(appName='Smart City CMS', appLogoUrl='/logo.png', complaintIdPrefix='KSC')


def create_mock_user(role: str = 'ADMINISTRATOR') -> Dict[str, Any]:
    return {
        'id': '1',
        'full_name': 'Test User',
        'role': role,
        'ward': 'Ward 1' if role == 'WARD_OFFICER' else None,
    }


def create_mock_filters() -> ExportFilters:
    return ExportFilters(from_date=date(2024, 1, 1), to_date=date(2024, 1, 31))


def create_mock_options(role: str = 'ADMINISTRATOR') -> ExportOptions:
    user = create_mock_user(role)
    return ExportOptions(
        system_config=create_mock_system_config(),
        user_role=user['role'],
        user_ward=user['ward'],
        filters=create_mock_filters(),
    )


_MOCK_COMPLAINTS = [
    # (type, status, priority, ward, hours to resolve or None, deadline hours)
    ('Water Supply', 'RESOLVED', 'HIGH', 'Ward 1', 20, 72),
    ('Road Maintenance', 'IN_PROGRESS', 'MEDIUM', 'Ward 2', None, 96),
    ('Garbage Collection', 'CLOSED', 'LOW', 'Ward 1', 120, 72),
    ('Street Lighting', 'REGISTERED', 'CRITICAL', 'Ward 3', None, 24),
    ('Water Supply', 'REOPENED', 'HIGH', 'Ward 2', None, 48),
]


def create_mock_complaints(count: int = 5, start: Optional[datetime] = None) -> List[ComplaintRecord]:
    """Deterministic complaint records cycling through typical lifecycle states."""
    start = start or datetime(2024, 1, 10, 9, 0, tzinfo=timezone.utc)
    complaints = []

    for index in range(count):
        kind, status, priority, ward, resolve_hours, deadline_hours = _MOCK_COMPLAINTS[index % len(_MOCK_COMPLAINTS)]
        submitted = start + timedelta(hours=6 * index)
        resolved = submitted + timedelta(hours=resolve_hours) if resolve_hours is not None else None

        complaints.append(ComplaintRecord(
            id=str(1000 + index),
            complaintId=f"KSC-{1000 + index}",
            type=kind,
            description=f"{kind} issue reported near block {index + 1}",
            status=status,
            priority=priority,
            ward={'id': ward.split()[-1], 'name': ward},
            submittedOn=submitted,
            assignedOn=submitted + timedelta(hours=2) if status != 'REGISTERED' else None,
            resolvedOn=resolved if status == 'RESOLVED' else None,
            closedOn=resolved if status == 'CLOSED' else None,
            deadline=submitted + timedelta(hours=deadline_hours),
            assignedTo={'id': '7', 'fullName': 'Field Officer'} if status != 'REGISTERED' else None,
            citizenName=f"Citizen {index + 1}",
            contactPhone=f"+91-98000{index:05d}",
            contactEmail=f"citizen{index + 1}@example.com",
            location=f"Block {index + 1}, Main Road",
            feedback={'rating': 4, 'comment': 'Resolved quickly'} if status == 'RESOLVED' else None,
            attachmentCount=index % 3,
        ))

    return complaints


def create_mock_template_data(role: str = 'ADMINISTRATOR', report_title: str = 'Complaints Report') -> Dict[str, Any]:
    return prepare_unified_report_data(
        create_mock_analytics_data(),
        create_mock_complaints(),
        create_mock_options(role),
        report_title,
        now=MOCK_REFERENCE_TIME,
    )


async def check_template_rendering(
    template_id: str = 'unified',
    engine: Optional[TemplateEngine] = None,
    registry: Optional[TemplateRegistry] = None
) -> SelfTestResult:
    """
    Load a registered template, render it with mock data and verify the output.

    The check fails when tokens are left unrendered or when the report
    title, app name or complaint total is missing from the output.
    """
    engine = engine or TemplateEngine()
    registry = registry or default_registry
    start = time.time()
    details: Dict[str, Any] = {'template_id': template_id}

    try:
        path = registry.get_template_path(template_id)
        if path is None:
            raise ValueError(f"Template path not found for: {template_id}")

        template = await engine.load_template(path)
        details['template_length'] = len(template)

        data = create_mock_template_data()
        rendered = engine.render(template, data)
        details['rendered_length'] = len(rendered)

        leftovers = find_unrendered_tokens(rendered)
        if leftovers:
            details['unrendered_tokens'] = leftovers[:5]
            raise ValueError(f"Found {len(leftovers)} unrendered variables")

        missing = [
            label for label, value in (
                ('report title', data['reportTitle']),
                ('app name', data['appName']),
                ('total complaints', str(data['summary']['totalComplaints'])),
            )
            if value not in rendered
        ]
        if missing:
            raise ValueError(f"Essential content missing from rendered template: {', '.join(missing)}")

        logger.info(f"Template rendering check passed for {template_id}")
        return SelfTestResult(
            test_type=SelfTestType.TEMPLATE_RENDERING.value,
            test_name=f"Template rendering: {template_id}",
            success=True,
            duration=time.time() - start,
            details=details
        )

    except Exception as e:
        logger.error(f"Template rendering check failed for {template_id}: {e}")
        return SelfTestResult(
            test_type=SelfTestType.TEMPLATE_RENDERING.value,
            test_name=f"Template rendering: {template_id}",
            success=False,
            duration=time.time() - start,
            details=details,
            error_message=str(e)
        )


async def check_export_flow(
    template_id: str = 'unified',
    format: str = 'html',
    engine: Optional[TemplateEngine] = None,
    registry: Optional[TemplateRegistry] = None,
    output_dir: Optional[Union[str, Path]] = None
) -> SelfTestResult:
    """
    Run one format generator end to end on mock data.

    The artifact is written to output_dir when given, otherwise it is only
    generated in memory.
    """
    engine = engine or TemplateEngine()
    registry = registry or default_registry
    start = time.time()
    details: Dict[str, Any] = {'template_id': template_id, 'format': format}

    try:
        options = create_mock_options()
        complaints = create_mock_complaints()
        template = None
        template_data = None

        if format == 'html':
            path = registry.get_template_path(template_id)
            if path is None:
                raise ValueError(f"Template path not found for: {template_id}")
            template = await engine.load_template(path)
            template_data = create_mock_template_data()

        bundle = ReportBundle(
            rows=format_records_for_export(complaints, options, MOCK_REFERENCE_TIME),
            options=options,
            statistics=create_mock_analytics_data(),
            report_title='Export Self-Test',
            generated_at=MOCK_REFERENCE_TIME,
            template=template,
            template_data=template_data,
            template_engine=engine,
        )
        artifact = load_generator(format)(bundle)
        details.update({'filename': artifact.filename, 'size': artifact.size})

        if output_dir is not None:
            details['path'] = str(FileDownloadDelivery(output_dir).deliver(artifact))

        logger.info(f"Export flow check passed: {template_id} -> {format}")
        return SelfTestResult(
            test_type=SelfTestType.EXPORT_FLOW.value,
            test_name=f"Export flow: {template_id} -> {format}",
            success=True,
            duration=time.time() - start,
            details=details
        )

    except Exception as e:
        logger.error(f"Export flow check failed ({template_id} -> {format}): {e}")
        return SelfTestResult(
            test_type=SelfTestType.EXPORT_FLOW.value,
            test_name=f"Export flow: {template_id} -> {format}",
            success=False,
            duration=time.time() - start,
            details=details,
            error_message=str(e)
        )


def check_rbac_validation(allowed_roles: Optional[List[str]] = None) -> SelfTestResult:
    """Verify that administrators and ward officers pass and other cases are rejected."""
    allowed_roles = allowed_roles or ['ADMINISTRATOR', 'WARD_OFFICER']
    filters = create_mock_filters()
    start = time.time()

    def passes(role: str, ward: Optional[str]) -> bool:
        try:
            validate_export_permissions(role, allowed_roles, filters.ward, ward)
            scope_filters(filters, role, ward)
            return True
        except ExportError:
            return False

    cases = {
        'administrator': passes('ADMINISTRATOR', None),
        'ward_officer_with_ward': passes('WARD_OFFICER', '1'),
        'ward_officer_without_ward_rejected': not passes('WARD_OFFICER', None),
        'invalid_role_rejected': not passes('INVALID_ROLE', None),
    }
    failed = [name for name, ok in cases.items() if not ok]

    return SelfTestResult(
        test_type=SelfTestType.RBAC_VALIDATION.value,
        test_name="RBAC validation",
        success=not failed,
        duration=time.time() - start,
        details=cases,
        error_message=f"Failed cases: {', '.join(failed)}" if failed else None
    )


async def run_all_export_checks(
    engine: Optional[TemplateEngine] = None,
    registry: Optional[TemplateRegistry] = None
) -> Dict[str, SelfTestResult]:
    """Run the template, RBAC and export flow checks."""
    results = {
        'template_rendering': await check_template_rendering(engine=engine, registry=registry),
        'rbac_validation': check_rbac_validation(),
        'export_flow': await check_export_flow(engine=engine, registry=registry),
    }

    passed = sum(1 for r in results.values() if r.success)
    logger.info(f"Export self-tests: {passed}/{len(results)} passed")
    return results
