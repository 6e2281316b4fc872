"""
Pydantic models for complaint records, export requests and analytics summaries.
"""

import json
from datetime import date, datetime, timezone
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


EXPORT_FORMATS = ('csv', 'excel', 'pdf', 'html')
ExportFormat = Literal['csv', 'excel', 'pdf', 'html']


class ComplaintStatus(str, Enum):
    """Lifecycle status of a complaint."""
    REGISTERED = "REGISTERED"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"
    REOPENED = "REOPENED"


class ComplaintPriority(str, Enum):
    """Priority assigned to a complaint."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


OPEN_STATUSES = (ComplaintStatus.REGISTERED, ComplaintStatus.ASSIGNED, ComplaintStatus.IN_PROGRESS)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Interpret naive timestamps as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class _ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class WardRef(_ApiModel):
    id: Optional[str] = None
    name: str


class PersonRef(_ApiModel):
    id: Optional[str] = None
    full_name: Optional[str] = Field(None, alias="fullName")


class Feedback(_ApiModel):
    rating: Optional[float] = Field(None, ge=0, le=5)
    comment: Optional[str] = None


class ComplaintRecord(_ApiModel):
    """Immutable snapshot of one complaint as delivered by the data endpoint."""

    id: str
    complaint_id: Optional[str] = Field(None, alias="complaintId")
    type: str = "General"
    description: str = ""
    status: ComplaintStatus
    priority: ComplaintPriority = ComplaintPriority.MEDIUM
    ward: Optional[WardRef] = None

    submitted_on: datetime = Field(..., alias="submittedOn")
    assigned_on: Optional[datetime] = Field(None, alias="assignedOn")
    resolved_on: Optional[datetime] = Field(None, alias="resolvedOn")
    closed_on: Optional[datetime] = Field(None, alias="closedOn")
    deadline: Optional[datetime] = None

    assigned_to: Optional[PersonRef] = Field(None, alias="assignedTo")
    submitted_by: Optional[PersonRef] = Field(None, alias="submittedBy")
    citizen_name: Optional[str] = Field(None, alias="citizenName")
    contact_phone: Optional[str] = Field(None, alias="contactPhone")
    contact_email: Optional[str] = Field(None, alias="contactEmail")

    location: Optional[str] = None
    landmark: Optional[str] = None
    feedback: Optional[Feedback] = None
    attachment_count: int = Field(0, ge=0, alias="attachmentCount")

    @field_validator('id', mode='before')
    @classmethod
    def coerce_id(cls, v):
        return str(v) if v is not None else v

    @field_validator('status', 'priority', mode='before')
    @classmethod
    def uppercase_enums(cls, v):
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator('ward', mode='before')
    @classmethod
    def coerce_ward(cls, v):
        # The endpoint sends either a ward object or a bare ward name
        if isinstance(v, str):
            return {'name': v}
        return v

    @field_validator('submitted_on', 'assigned_on', 'resolved_on', 'closed_on', 'deadline')
    @classmethod
    def normalize_timezone(cls, v):
        return ensure_utc(v)

    @property
    def display_id(self) -> str:
        return self.complaint_id or self.id

    @property
    def ward_name(self) -> str:
        return self.ward.name if self.ward else ""

    @property
    def submitter_name(self) -> str:
        if self.citizen_name:
            return self.citizen_name
        if self.submitted_by and self.submitted_by.full_name:
            return self.submitted_by.full_name
        return ""


class ExportMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='allow')

    total_records: Optional[int] = Field(None, alias="totalRecords")
    performance: Dict[str, float] = Field(default_factory=dict)


class ExportDataSet(BaseModel):
    complaints: List[ComplaintRecord] = Field(default_factory=list)
    metadata: ExportMetadata = Field(default_factory=ExportMetadata)


class ExportPayload(BaseModel):
    """The single accepted response shape of the export data endpoint."""

    success: bool
    message: Optional[str] = None
    data: Optional[ExportDataSet] = None

    @model_validator(mode='after')
    def require_data_on_success(self):
        if self.success and self.data is None:
            raise ValueError('Successful responses must include a data object')
        return self


class SystemBranding(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    app_name: str = Field("Smart CMS", alias="appName")
    app_logo_url: Optional[str] = Field(None, alias="appLogoUrl")
    complaint_id_prefix: str = Field("CMP", alias="complaintIdPrefix")


class ExportFilters(BaseModel):
    """Filters applied to an export. The literal "all" means unfiltered."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    from_date: Optional[date] = Field(None, alias="from")
    to_date: Optional[date] = Field(None, alias="to")
    ward: str = "all"
    type: str = "all"
    status: str = "all"
    priority: str = "all"

    @field_validator('ward', 'type', 'status', 'priority', mode='before')
    @classmethod
    def default_all(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            return "all"
        return str(v).strip()

    @field_validator('status')
    @classmethod
    def validate_status(cls, v):
        if v != "all" and v.upper() not in ComplaintStatus.__members__:
            raise ValueError(f"Unknown complaint status: {v}")
        return v if v == "all" else v.upper()

    @field_validator('priority')
    @classmethod
    def validate_priority(cls, v):
        if v != "all" and v.upper() not in ComplaintPriority.__members__:
            raise ValueError(f"Unknown complaint priority: {v}")
        return v if v == "all" else v.upper()

    def to_query_params(self) -> Dict[str, str]:
        """Query parameters understood by the data endpoint."""
        params = {}
        if self.from_date:
            params['from'] = self.from_date.isoformat()
        if self.to_date:
            params['to'] = self.to_date.isoformat()
        for key in ('ward', 'type', 'status', 'priority'):
            value = getattr(self, key)
            if value != "all":
                params[key] = value
        return params

    def serialize(self) -> str:
        """Deterministic serialization used in request fingerprints."""
        return json.dumps(self.model_dump(by_alias=True, mode='json'), sort_keys=True)

    def applied(self) -> List[Dict[str, str]]:
        """Label/value pairs of the filters that narrow the export."""
        labels = {
            'from': 'From', 'to': 'To', 'ward': 'Ward',
            'type': 'Complaint Type', 'status': 'Status', 'priority': 'Priority'
        }
        return [
            {'label': labels[key], 'value': value}
            for key, value in self.to_query_params().items()
        ]


class ExportOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    system_config: SystemBranding = Field(default_factory=SystemBranding, alias="systemConfig")
    user_role: str = Field(..., alias="userRole")
    user_ward: Optional[str] = Field(None, alias="userWard")
    filters: ExportFilters = Field(default_factory=ExportFilters)
    max_records: Optional[int] = Field(None, ge=0, alias="maxRecords")

    @field_validator('user_role')
    @classmethod
    def normalize_role(cls, v):
        return v.strip().upper()


class ExportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    format: ExportFormat
    options: ExportOptions
    template_id: str = Field("unified", alias="templateId")
    report_title: str = Field("Complaints Report", alias="reportTitle")
    dataset_version: Optional[str] = Field(None, alias="datasetVersion")

    @field_validator('format', mode='before')
    @classmethod
    def normalize_format(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
            if v == 'xlsx':
                return 'excel'
        return v


class SummaryCounts(BaseModel):
    total: int = 0
    registered: int = 0
    assigned: int = 0
    in_progress: int = 0
    resolved: int = 0
    closed: int = 0
    reopened: int = 0
    pending: int = 0
    overdue: int = 0
    resolution_rate: float = 0.0


class SlaMetrics(BaseModel):
    compliance: float = 0.0
    avg_resolution_hours: float = 0.0
    target_hours: int = 72
    on_time: int = 0
    breached: int = 0


class PerformanceMetrics(BaseModel):
    user_satisfaction: float = 0.0
    escalation_rate: float = 0.0
    first_call_resolution: float = 0.0
    repeat_complaint_rate: float = 0.0


class BreakdownBucket(BaseModel):
    name: str
    count: int
    resolved: int = 0
    pending: int = 0
    avg_resolution_hours: float = 0.0
    efficiency: float = 0.0
    percentage: float = 0.0


class TrendPoint(BaseModel):
    date: str
    complaints: int
    resolved: int
    sla_compliance: float = 0.0


class AnalyticsSummary(BaseModel):
    """Aggregates derived from a list of complaint records for one export."""

    summary: SummaryCounts = Field(default_factory=SummaryCounts)
    sla: SlaMetrics = Field(default_factory=SlaMetrics)
    performance: PerformanceMetrics = Field(default_factory=PerformanceMetrics)
    priorities: List[BreakdownBucket] = Field(default_factory=list)
    statuses: List[BreakdownBucket] = Field(default_factory=list)
    categories: List[BreakdownBucket] = Field(default_factory=list)
    wards: List[BreakdownBucket] = Field(default_factory=list)
    trends: List[TrendPoint] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def has_data(self) -> bool:
        return self.summary.total > 0 or bool(self.categories or self.wards or self.trends)
