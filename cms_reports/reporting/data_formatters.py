"""
Data formatters for complaint exports

Pure transforms that turn complaint records into flat export rows, derive
SLA status and resolution times, aggregate analytics for the report
generators, and prepare the nested data consumed by HTML templates.
"""

import math
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

import pandas as pd

from ..models import (
    AnalyticsSummary, BreakdownBucket, ComplaintPriority, ComplaintRecord, ComplaintStatus,
    ExportOptions, OPEN_STATUSES, PerformanceMetrics, SlaMetrics, SummaryCounts, TrendPoint,
    ensure_utc
)

REDACTION_MARKER = "[REDACTED]"
DEFAULT_REDACTED_ROLES = ('CITIZEN',)
REDACTED_COLUMNS = ('Citizen Name', 'Contact Phone', 'Contact Email')

SLA_MET = "Met"
SLA_BREACHED = "Breached"
SLA_OVERDUE = "Overdue"
SLA_ACTIVE = "Active"

EXPORT_COLUMNS = [
    'Complaint ID',
    'Type',
    'Description',
    'Status',
    'Priority',
    'Ward',
    'Submitted On',
    'Assigned On',
    'Resolved On',
    'Closed On',
    'Deadline',
    'SLA Status',
    'Resolution Time (Hours)',
    'Assigned To',
    'Citizen Name',
    'Contact Phone',
    'Contact Email',
    'Location',
    'Landmark',
    'Feedback Rating',
    'Feedback Comment',
    'Attachments',
]

DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"

PRIORITY_ORDER = [p.value for p in (
    ComplaintPriority.CRITICAL, ComplaintPriority.HIGH, ComplaintPriority.MEDIUM, ComplaintPriority.LOW
)]


def _now(now: Optional[datetime]) -> datetime:
    return ensure_utc(now) if now is not None else datetime.now(timezone.utc)


def _format_timestamp(value: Optional[datetime]) -> str:
    return value.strftime(DATETIME_FORMAT) if value else ""


def completion_time(record: ComplaintRecord) -> Optional[datetime]:
    """Time the complaint was resolved (or closed), None while it is still open."""
    if record.status == ComplaintStatus.REOPENED:
        return None
    return record.resolved_on or record.closed_on


def classify_sla_status(record: ComplaintRecord, now: Optional[datetime] = None) -> str:
    """
    Classify a complaint's timeliness relative to its deadline.

    Returns:
        "Met" if completed on or before the deadline, "Breached" if completed
        after it, "Overdue" if still open past the deadline, "Active" otherwise
    """
    completed = completion_time(record)
    deadline = record.deadline

    if completed is not None:
        if deadline is None or completed <= deadline:
            return SLA_MET
        return SLA_BREACHED

    if deadline is not None and _now(now) > deadline:
        return SLA_OVERDUE
    return SLA_ACTIVE


def resolution_time_hours(record: ComplaintRecord) -> Optional[int]:
    """Whole hours from submission to resolution, rounded half up."""
    resolved = record.resolved_on or record.closed_on
    if resolved is None:
        return None
    hours = (resolved - record.submitted_on).total_seconds() / 3600
    return int(math.floor(hours + 0.5))


def should_redact(user_role: str, redacted_roles: Iterable[str] = DEFAULT_REDACTED_ROLES) -> bool:
    return user_role.upper() in {role.upper() for role in redacted_roles}


def format_record_for_export(
    record: ComplaintRecord,
    options: ExportOptions,
    now: Optional[datetime] = None,
    redacted_roles: Iterable[str] = DEFAULT_REDACTED_ROLES
) -> Dict[str, Any]:
    """
    Map a complaint record to one flat export row with fixed columns.

    Args:
        record: Complaint snapshot
        options: Export options of the requesting user
        now: Reference time for SLA classification
        redacted_roles: Roles that must not see submitter contact details

    Returns:
        Ordered dictionary keyed by EXPORT_COLUMNS
    """
    resolution_hours = resolution_time_hours(record)
    feedback = record.feedback

    row = {
        'Complaint ID': record.display_id,
        'Type': record.type,
        'Description': record.description,
        'Status': record.status.value,
        'Priority': record.priority.value,
        'Ward': record.ward_name,
        'Submitted On': _format_timestamp(record.submitted_on),
        'Assigned On': _format_timestamp(record.assigned_on),
        'Resolved On': _format_timestamp(record.resolved_on),
        'Closed On': _format_timestamp(record.closed_on),
        'Deadline': _format_timestamp(record.deadline),
        'SLA Status': classify_sla_status(record, now),
        'Resolution Time (Hours)': resolution_hours if resolution_hours is not None else "",
        'Assigned To': record.assigned_to.full_name or "" if record.assigned_to else "",
        'Citizen Name': record.submitter_name,
        'Contact Phone': record.contact_phone or "",
        'Contact Email': record.contact_email or "",
        'Location': record.location or "",
        'Landmark': record.landmark or "",
        'Feedback Rating': feedback.rating if feedback and feedback.rating is not None else "",
        'Feedback Comment': feedback.comment or "" if feedback else "",
        'Attachments': record.attachment_count,
    }

    if should_redact(options.user_role, redacted_roles):
        for column in REDACTED_COLUMNS:
            row[column] = REDACTION_MARKER

    return row


def format_records_for_export(
    records: Sequence[ComplaintRecord],
    options: ExportOptions,
    now: Optional[datetime] = None,
    redacted_roles: Iterable[str] = DEFAULT_REDACTED_ROLES
) -> List[Dict[str, Any]]:
    """Format every record, using one reference time for the whole export."""
    reference = _now(now)
    return [format_record_for_export(r, options, reference, redacted_roles) for r in records]


def _record_facts(record: ComplaintRecord, now: datetime) -> Dict[str, Any]:
    hours = resolution_time_hours(record)
    sla_status = classify_sla_status(record, now)
    rating = record.feedback.rating if record.feedback and record.feedback.rating is not None else math.nan
    return {
        'id': record.id,
        'status': record.status.value,
        'priority': record.priority.value,
        'category': record.type or 'General',
        'ward': record.ward_name or 'Unassigned',
        'submitted_date': record.submitted_on.date().isoformat(),
        'is_complete': completion_time(record) is not None,
        'is_on_time': sla_status == SLA_MET,
        'sla_status': sla_status,
        'resolution_hours': float(hours) if hours is not None else math.nan,
        'rating': rating,
    }


def _percentage(part: float, whole: float) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


def _safe_round(value: Any, digits: int = 2) -> float:
    if value is None or pd.isna(value):
        return 0.0
    return round(float(value), digits)


def _breakdown(frame: pd.DataFrame, key: str, total: int) -> List[BreakdownBucket]:
    grouped = frame.groupby(key, sort=False).agg(
        count=('id', 'count'),
        resolved=('is_complete', 'sum'),
        avg_resolution_hours=('resolution_hours', 'mean'),
    )

    buckets = []
    for name, row in grouped.iterrows():
        count = int(row['count'])
        resolved = int(row['resolved'])
        buckets.append(BreakdownBucket(
            name=str(name),
            count=count,
            resolved=resolved,
            pending=count - resolved,
            avg_resolution_hours=_safe_round(row['avg_resolution_hours']),
            efficiency=_percentage(resolved, count),
            percentage=_percentage(count, total),
        ))

    buckets.sort(key=lambda b: (-b.count, b.name))
    return buckets


def _trends(frame: pd.DataFrame) -> List[TrendPoint]:
    grouped = frame.groupby('submitted_date').agg(
        complaints=('id', 'count'),
        resolved=('is_complete', 'sum'),
        on_time=('is_on_time', 'sum'),
    ).sort_index()

    return [
        TrendPoint(
            date=str(day),
            complaints=int(row['complaints']),
            resolved=int(row['resolved']),
            sla_compliance=_percentage(int(row['on_time']), int(row['resolved'])),
        )
        for day, row in grouped.iterrows()
    ]


def calculate_statistics(
    records: Sequence[ComplaintRecord],
    now: Optional[datetime] = None,
    sla_target_hours: int = 72,
    metadata: Optional[Dict[str, Any]] = None
) -> AnalyticsSummary:
    """
    Recompute summary counts, SLA metrics and breakdowns from scratch.

    Args:
        records: Complaint records included in the export
        now: Reference time for SLA classification
        sla_target_hours: Resolution target shown alongside SLA metrics
        metadata: Endpoint metadata; its "performance" mapping supplies
            escalation and first-call resolution rates

    Returns:
        AnalyticsSummary derived from the records
    """
    reference = _now(now)
    performance_overrides = (metadata or {}).get('performance') or {}

    if not records:
        return AnalyticsSummary(
            sla=SlaMetrics(target_hours=sla_target_hours),
            performance=PerformanceMetrics(
                escalation_rate=float(performance_overrides.get('escalation_rate', 0.0)),
                first_call_resolution=float(performance_overrides.get('first_call_resolution', 0.0)),
            ),
            generated_at=reference,
        )

    frame = pd.DataFrame([_record_facts(r, reference) for r in records])
    total = len(frame)
    status_counts = frame['status'].value_counts().to_dict()
    sla_counts = frame['sla_status'].value_counts().to_dict()

    def status_count(status: ComplaintStatus) -> int:
        return int(status_counts.get(status.value, 0))

    completed = int(frame['is_complete'].sum())
    resolved = status_count(ComplaintStatus.RESOLVED)
    closed = status_count(ComplaintStatus.CLOSED)
    on_time = int(sla_counts.get(SLA_MET, 0))

    summary = SummaryCounts(
        total=total,
        registered=status_count(ComplaintStatus.REGISTERED),
        assigned=status_count(ComplaintStatus.ASSIGNED),
        in_progress=status_count(ComplaintStatus.IN_PROGRESS),
        resolved=resolved,
        closed=closed,
        reopened=status_count(ComplaintStatus.REOPENED),
        pending=sum(status_count(s) for s in OPEN_STATUSES),
        overdue=int(sla_counts.get(SLA_OVERDUE, 0)),
        resolution_rate=_percentage(resolved + closed, total),
    )

    sla = SlaMetrics(
        compliance=_percentage(on_time, completed),
        avg_resolution_hours=_safe_round(frame['resolution_hours'].mean()),
        target_hours=sla_target_hours,
        on_time=on_time,
        breached=int(sla_counts.get(SLA_BREACHED, 0)),
    )

    performance = PerformanceMetrics(
        user_satisfaction=_safe_round(frame['rating'].mean()),
        escalation_rate=float(performance_overrides.get('escalation_rate', 0.0)),
        first_call_resolution=float(performance_overrides.get('first_call_resolution', 0.0)),
        repeat_complaint_rate=_percentage(summary.reopened, total),
    )

    priorities = _breakdown(frame, 'priority', total)
    priorities.sort(key=lambda b: PRIORITY_ORDER.index(b.name) if b.name in PRIORITY_ORDER else len(PRIORITY_ORDER))

    return AnalyticsSummary(
        summary=summary,
        sla=sla,
        performance=performance,
        priorities=priorities,
        statuses=_breakdown(frame, 'status', total),
        categories=_breakdown(frame, 'category', total),
        wards=_breakdown(frame, 'ward', total),
        trends=_trends(frame),
        generated_at=reference,
    )


def format_date(value: Optional[datetime]) -> str:
    """Long date for template display, e.g. "January 5, 2024"."""
    if value is None:
        return "N/A"
    return f"{value:%B} {value.day}, {value.year}"


def format_datetime(value: Optional[datetime]) -> str:
    """Short date and time for template display, e.g. "Jan 5, 2024, 09:30 AM"."""
    if value is None:
        return "N/A"
    return f"{value:%b} {value.day}, {value.year}, {value:%I:%M %p}"


def status_to_class(status: str) -> str:
    return status.lower().replace('_', '-')


def priority_to_class(priority: str) -> str:
    return priority.lower()


def prepare_complaint_template_data(
    record: ComplaintRecord,
    options: ExportOptions,
    now: Optional[datetime] = None,
    redacted_roles: Iterable[str] = DEFAULT_REDACTED_ROLES
) -> Dict[str, Any]:
    """Flatten one complaint for list sections of the HTML templates."""
    if should_redact(options.user_role, redacted_roles):
        citizen_name = REDACTION_MARKER
    else:
        citizen_name = record.submitter_name or 'Anonymous'

    return {
        'complaintId': record.display_id,
        'typeName': record.type or 'General',
        'description': record.description,
        'status': record.status.value,
        'statusClass': status_to_class(record.status.value),
        'priority': record.priority.value,
        'priorityClass': priority_to_class(record.priority.value),
        'wardName': record.ward_name or 'Unassigned',
        'submittedOnFormatted': format_date(record.submitted_on),
        'resolvedOnFormatted': format_date(record.resolved_on),
        'assignedToName': record.assigned_to.full_name if record.assigned_to and record.assigned_to.full_name else 'Unassigned',
        'citizenName': citizen_name,
        'slaStatus': classify_sla_status(record, now),
        'location': record.location or '',
    }


def prepare_unified_report_data(
    statistics: AnalyticsSummary,
    records: Sequence[ComplaintRecord],
    options: ExportOptions,
    report_title: str = "Complaints Report",
    now: Optional[datetime] = None,
    redacted_roles: Iterable[str] = DEFAULT_REDACTED_ROLES
) -> Dict[str, Any]:
    """
    Build the template data tree for the bundled HTML report templates.

    Args:
        statistics: Aggregates computed by calculate_statistics
        records: Complaint records included in the export
        options: Export options (branding, role, filters)
        report_title: Title shown in the report header
        now: Generation time

    Returns:
        Nested dictionary of camelCase keys used by the templates
    """
    generated_at = _now(now)
    branding = options.system_config
    filters = options.filters
    summary = statistics.summary
    applied_filters = filters.applied()

    complaints = [
        prepare_complaint_template_data(r, options, generated_at, redacted_roles) for r in records
    ]

    date_range = None
    if filters.from_date or filters.to_date:
        date_range = {
            'from': filters.from_date.isoformat() if filters.from_date else 'Beginning',
            'to': filters.to_date.isoformat() if filters.to_date else 'Today',
        }

    return {
        'reportTitle': report_title,
        'appName': branding.app_name,
        'appLogoUrl': branding.app_logo_url,
        'complaintIdPrefix': branding.complaint_id_prefix,
        'generatedAt': format_datetime(generated_at),
        'generatedBy': options.user_role.replace('_', ' ').title(),
        'userWard': options.user_ward,
        'dateRange': date_range,
        'filtersApplied': applied_filters,
        'hasFilters': bool(applied_filters),
        'summary': {
            'totalComplaints': summary.total,
            'resolvedComplaints': summary.resolved + summary.closed,
            'pendingComplaints': summary.pending,
            'inProgressComplaints': summary.in_progress,
            'overdueComplaints': summary.overdue,
            'reopenedComplaints': summary.reopened,
            'resolutionRate': summary.resolution_rate,
        },
        'sla': {
            'compliance': statistics.sla.compliance,
            'avgResolutionTime': statistics.sla.avg_resolution_hours,
            'target': statistics.sla.target_hours,
            'onTime': statistics.sla.on_time,
            'breached': statistics.sla.breached,
        },
        'performance': {
            'userSatisfaction': statistics.performance.user_satisfaction,
            'escalationRate': statistics.performance.escalation_rate,
            'firstCallResolution': statistics.performance.first_call_resolution,
            'repeatComplaints': statistics.performance.repeat_complaint_rate,
        },
        'priorities': [
            {'name': b.name, 'count': b.count, 'percentage': b.percentage,
             'priorityClass': priority_to_class(b.name)}
            for b in statistics.priorities
        ],
        'statuses': [
            {'name': b.name, 'count': b.count, 'percentage': b.percentage}
            for b in statistics.statuses
        ],
        'categories': [
            {'name': b.name, 'count': b.count, 'resolved': b.resolved,
             'avgTime': b.avg_resolution_hours, 'efficiency': b.efficiency,
             'percentage': b.percentage}
            for b in statistics.categories
        ],
        'wards': [
            {'name': b.name, 'complaints': b.count, 'resolved': b.resolved,
             'pending': b.pending, 'avgTime': b.avg_resolution_hours,
             'efficiency': b.efficiency}
            for b in statistics.wards
        ],
        'trends': [
            {'date': t.date, 'complaints': t.complaints, 'resolved': t.resolved,
             'slaCompliance': t.sla_compliance}
            for t in statistics.trends
        ],
        'complaints': complaints,
        'hasComplaints': bool(complaints),
        'totalRecords': len(complaints),
    }
