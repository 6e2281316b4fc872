import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

# Add the project root to Python path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from cms_reports.models import ComplaintRecord, ExportOptions
from cms_reports.utils.config_loader import ExportSettings


REFERENCE_TIME = datetime(2024, 1, 31, 18, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock for coordinator and cache tests."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_record(**overrides) -> ComplaintRecord:
    """Build a complaint record from API-shaped (camelCase) fields."""
    data = {
        'id': 'c-1',
        'complaintId': 'CMP-0001',
        'type': 'Water Supply',
        'description': 'No water since morning',
        'status': 'REGISTERED',
        'priority': 'MEDIUM',
        'ward': {'id': '1', 'name': 'Ward 1'},
        'submittedOn': '2024-01-10T09:00:00Z',
        'deadline': '2024-01-13T09:00:00Z',
        'citizenName': 'Asha Rao',
        'contactPhone': '+91-9800000001',
        'contactEmail': 'asha@example.com',
    }
    data.update(overrides)
    return ComplaintRecord.model_validate(data)


@pytest.fixture
def settings(tmp_path):
    """Export settings that never touch the network or the working directory."""
    return ExportSettings(
        api_base_url="http://cms.test",
        download_dir=str(tmp_path / "downloads"),
        request_timeout_seconds=5.0,
        response_cache_seconds=30.0,
        fingerprint_bucket_seconds=60,
        completed_retention_seconds=30.0,
        stale_threshold_seconds=300.0,
    )


@pytest.fixture
def admin_options():
    return ExportOptions.model_validate({
        'userRole': 'ADMINISTRATOR',
        'systemConfig': {'appName': 'Smart CMS'},
        'filters': {'from': '2024-01-01', 'to': '2024-01-31', 'ward': 'all'},
    })


@pytest.fixture
def reference_time():
    return REFERENCE_TIME


@pytest.fixture
def scenario_records():
    """Three complaints: resolved on time, open past its deadline, open within it."""
    submitted = datetime(2024, 1, 10, 9, 0, tzinfo=timezone.utc)
    return [
        make_record(
            id='1', complaintId='CMP-1', status='RESOLVED',
            submittedOn=submitted, resolvedOn=submitted + timedelta(hours=20),
            deadline=submitted + timedelta(hours=72)
        ),
        make_record(
            id='2', complaintId='CMP-2', status='ASSIGNED', type='Road Maintenance',
            submittedOn=submitted, deadline=submitted + timedelta(hours=48)
        ),
        make_record(
            id='3', complaintId='CMP-3', status='IN_PROGRESS', type='Street Lighting',
            submittedOn=REFERENCE_TIME - timedelta(hours=10),
            deadline=REFERENCE_TIME + timedelta(hours=62)
        ),
    ]


@pytest.fixture
def clock():
    return FakeClock()
