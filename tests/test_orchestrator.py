"""
Integration tests for the export orchestrator

The data endpoint is replaced by in-memory data sources; generators, the
coordinator, delivery and notifications are the real implementations.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import aiohttp
import pytest

from cms_reports.exporters.csv_exporter import UTF8_BOM
from cms_reports.exports.coordinator import ExportCoordinator, ExportStatus
from cms_reports.exports.delivery import FileDownloadDelivery
from cms_reports.exports.orchestrator import ExportOrchestrator
from cms_reports.models import ExportDataSet, ExportRequest
from cms_reports.notifications.progress_notifier import NotificationLevel, ProgressNotifier
from cms_reports.reporting import data_formatters
from cms_reports.utils.capabilities import CapabilityProbe
from cms_reports.utils.errors import (
    ExportCancelledError, ExportConcurrencyError, ExportConfigurationError, ExportGeneratorError,
    ExportPermissionError, ExportTransientError, ExportValidationError
)


class BlockingDataSource:
    """Data source that holds every fetch until released."""

    def __init__(self, dataset: ExportDataSet):
        self.dataset = dataset
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = []

    async def fetch_export_data(self, filters, role=None, user_ward=None):
        self.calls.append((filters, role, user_ward))
        self.started.set()
        await self.release.wait()
        return self.dataset


def make_request(fmt: str = 'csv', role: str = 'ADMINISTRATOR', user_ward=None, **extra) -> ExportRequest:
    filters = extra.pop('filters', {'from': '2024-01-01', 'to': '2024-01-31', 'ward': 'all'})
    options = {
        'userRole': role,
        'userWard': user_ward,
        'systemConfig': {'appName': 'Smart CMS'},
        'filters': filters,
    }
    options.update(extra.pop('options', {}))
    return ExportRequest.model_validate({'format': fmt, 'options': options, **extra})


@pytest.fixture
def dataset(scenario_records):
    return ExportDataSet(complaints=scenario_records)


@pytest.fixture
def data_source(dataset):
    source = AsyncMock()
    source.fetch_export_data = AsyncMock(return_value=dataset)
    return source


@pytest.fixture
def notifier():
    return ProgressNotifier(duration_seconds=0)


@pytest.fixture
def coordinator(settings, clock):
    return ExportCoordinator(settings, clock=clock)


@pytest.fixture
def orchestrator(settings, coordinator, data_source, notifier):
    return ExportOrchestrator(
        settings,
        coordinator=coordinator,
        data_source=data_source,
        delivery=FileDownloadDelivery(settings.download_dir),
        notifier=notifier
    )


class TestSuccessfulExports:
    """Test exports that complete."""

    @pytest.mark.asyncio
    async def test_csv_export(self, orchestrator, coordinator, data_source, notifier):
        result = await orchestrator.run_export(make_request('csv'))

        content = result.path.read_bytes().decode('utf-8')
        assert content.startswith(UTF8_BOM)
        assert len(content[len(UTF8_BOM):].split('\r\n')) - 1 == 4
        assert result.record_count == 3
        assert result.filename.endswith('.csv')

        state = coordinator.get_state(result.export_id)
        assert state.status == ExportStatus.COMPLETED
        assert 'CSV export completed' in state.progress
        assert coordinator.active == {}

        data_source.fetch_export_data.assert_awaited_once()
        levels = [n.level for n in notifier.active()]
        assert levels == [NotificationLevel.SUCCESS]

    @pytest.mark.asyncio
    @pytest.mark.parametrize('fmt, extension', [('excel', '.xlsx'), ('pdf', '.pdf'), ('html', '.html')])
    async def test_other_formats(self, orchestrator, fmt, extension):
        result = await orchestrator.run_export(make_request(fmt))
        assert result.path.exists()
        assert result.filename.endswith(extension)
        assert result.size == result.path.stat().st_size

    @pytest.mark.asyncio
    async def test_ward_officer_is_scoped_to_own_ward(self, orchestrator, data_source):
        await orchestrator.run_export(make_request('csv', role='WARD_OFFICER', user_ward='Ward 1'))

        filters, role, user_ward = data_source.fetch_export_data.await_args.args
        assert filters.ward == 'Ward 1'
        assert role == 'WARD_OFFICER'
        assert user_ward == 'Ward 1'

    @pytest.mark.asyncio
    async def test_warnings_are_returned(self, orchestrator):
        result = await orchestrator.run_export(make_request('csv', filters={}))
        assert "No filters applied. Export will include all available data." in result.warnings
        assert result.to_dict()['format'] == 'csv'

    @pytest.mark.asyncio
    async def test_generators_receive_private_copies(self, orchestrator, dataset):
        seen = []
        original = data_formatters.format_records_for_export

        def spy(records, *args, **kwargs):
            seen.extend(records)
            return original(records, *args, **kwargs)

        with patch('cms_reports.exports.orchestrator.format_records_for_export', side_effect=spy):
            await orchestrator.run_export(make_request('csv'))

        assert len(seen) == len(dataset.complaints)
        assert all(copy is not source for copy, source in zip(seen, dataset.complaints))
        assert [r.id for r in seen] == [r.id for r in dataset.complaints]


class TestDeduplication:
    """Test the single-flight guard."""

    @pytest.mark.asyncio
    async def test_duplicate_request_rejected_while_in_flight(self, settings, coordinator, dataset, notifier):
        source = BlockingDataSource(dataset)
        orchestrator = ExportOrchestrator(
            settings, coordinator=coordinator, data_source=source,
            delivery=FileDownloadDelivery(settings.download_dir), notifier=notifier
        )
        request = make_request('csv')

        first = asyncio.create_task(orchestrator.run_export(request))
        await source.started.wait()

        with pytest.raises(ExportConcurrencyError, match="already in progress"):
            await orchestrator.run_export(request)
        assert len(coordinator.states) == 1
        assert len(source.calls) == 1

        source.release.set()
        result = await first
        assert coordinator.get_state(result.export_id).status == ExportStatus.COMPLETED

        third = await orchestrator.run_export(request)
        assert third.export_id != result.export_id
        assert len(source.calls) == 2

    @pytest.mark.asyncio
    async def test_different_format_runs_concurrently(self, settings, coordinator, dataset, notifier):
        source = BlockingDataSource(dataset)
        orchestrator = ExportOrchestrator(
            settings, coordinator=coordinator, data_source=source,
            delivery=FileDownloadDelivery(settings.download_dir), notifier=notifier
        )

        csv_task = asyncio.create_task(orchestrator.run_export(make_request('csv')))
        excel_task = asyncio.create_task(orchestrator.run_export(make_request('excel')))
        await asyncio.sleep(0)
        await source.started.wait()
        source.release.set()

        results = await asyncio.gather(csv_task, excel_task)
        assert {r.format for r in results} == {'csv', 'excel'}

    @pytest.mark.asyncio
    async def test_officers_of_different_wards_do_not_collide(self, settings, coordinator, dataset, notifier):
        source = BlockingDataSource(dataset)
        orchestrator = ExportOrchestrator(
            settings, coordinator=coordinator, data_source=source,
            delivery=FileDownloadDelivery(settings.download_dir), notifier=notifier
        )
        ward_one = make_request('csv', role='WARD_OFFICER', user_ward='Ward 1')
        ward_two = make_request('csv', role='WARD_OFFICER', user_ward='Ward 2')
        assert orchestrator.fingerprint_for(ward_one) != orchestrator.fingerprint_for(ward_two)

        first = asyncio.create_task(orchestrator.run_export(ward_one))
        await source.started.wait()
        source.release.set()

        second = await orchestrator.run_export(ward_two)
        first_result = await first

        assert first_result.fingerprint != second.fingerprint
        assert [call[0].ward for call in source.calls] == ['Ward 1', 'Ward 2']

    def test_fingerprint_uses_scoped_ward(self, orchestrator):
        implicit = make_request('csv', role='WARD_OFFICER', user_ward='Ward 1')
        explicit = make_request(
            'csv', role='WARD_OFFICER', user_ward='Ward 1',
            filters={'from': '2024-01-01', 'to': '2024-01-31', 'ward': 'Ward 1'}
        )
        assert orchestrator.fingerprint_for(implicit, at=0) == orchestrator.fingerprint_for(explicit, at=0)


class TestFailures:
    """Test failures ending in the failed state."""

    @pytest.mark.asyncio
    async def test_citizen_rejected_before_fetch(self, orchestrator, coordinator, data_source):
        with pytest.raises(ExportPermissionError, match="don't have permission"):
            await orchestrator.run_export(make_request('csv', role='CITIZEN'))

        data_source.fetch_export_data.assert_not_awaited()
        states = coordinator.list_states()
        assert len(states) == 1
        assert states[0].status == ExportStatus.FAILED
        assert states[0].error_kind == 'permission'
        assert coordinator.active == {}

    @pytest.mark.asyncio
    async def test_ward_officer_other_ward_rejected(self, orchestrator, data_source):
        request = make_request(
            'csv', role='WARD_OFFICER', user_ward='Ward 1',
            filters={'from': '2024-01-01', 'to': '2024-01-31', 'ward': 'Ward 2'}
        )
        with pytest.raises(ExportPermissionError, match="other wards"):
            await orchestrator.run_export(request)
        data_source.fetch_export_data.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_inverted_date_range(self, orchestrator, data_source):
        request = make_request('csv', filters={'from': '2024-02-01', 'to': '2024-01-01'})
        with pytest.raises(ExportValidationError, match="Start date cannot be after end date"):
            await orchestrator.run_export(request)
        data_source.fetch_export_data.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_permission_checked_before_filters(self, orchestrator, coordinator, data_source):
        request = make_request('csv', role='CITIZEN', filters={'from': '2024-02-01', 'to': '2024-01-01'})
        with pytest.raises(ExportPermissionError, match="don't have permission"):
            await orchestrator.run_export(request)
        assert coordinator.list_states()[0].error_kind == 'permission'
        data_source.fetch_export_data.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_dataset(self, orchestrator, coordinator, data_source, notifier):
        data_source.fetch_export_data.return_value = ExportDataSet(complaints=[])

        with pytest.raises(ExportValidationError, match="No data for selected filters"):
            await orchestrator.run_export(make_request('csv'))

        state = coordinator.list_states()[0]
        assert state.status == ExportStatus.FAILED
        assert state.progress == "No data for selected filters"
        assert [n.level for n in notifier.active()] == [NotificationLevel.ERROR]

    @pytest.mark.asyncio
    async def test_record_ceiling(self, orchestrator):
        request = make_request('csv', options={'maxRecords': 2})
        with pytest.raises(ExportValidationError, match="Maximum 2 records"):
            await orchestrator.run_export(request)

    @pytest.mark.asyncio
    async def test_generator_failure_suggests_csv(self, orchestrator, coordinator):
        def broken(bundle):
            raise RuntimeError("font cache corrupted")

        with patch('cms_reports.exports.orchestrator.load_generator', return_value=broken):
            with pytest.raises(ExportGeneratorError) as exc_info:
                await orchestrator.run_export(make_request('pdf'))

        assert "Please try again or use CSV export." in str(exc_info.value)
        state = coordinator.list_states()[0]
        assert state.status == ExportStatus.FAILED
        assert state.error_kind == 'generator'
        assert "use CSV export" in state.progress

    @pytest.mark.asyncio
    async def test_missing_encoder_fails_fast(self, settings, coordinator, data_source, notifier):
        def importer(name):
            if name.startswith('openpyxl'):
                raise ImportError("No module named 'openpyxl'")

        orchestrator = ExportOrchestrator(
            settings, coordinator=coordinator, data_source=data_source,
            delivery=FileDownloadDelivery(settings.download_dir), notifier=notifier,
            capability_probe=CapabilityProbe(importer=importer)
        )
        with pytest.raises(ExportTransientError, match="use CSV export"):
            await orchestrator.run_export(make_request('excel'))
        data_source.fetch_export_data.assert_not_awaited()

        result = await orchestrator.run_export(make_request('csv'))
        assert result.path.exists()

    @pytest.mark.asyncio
    async def test_unknown_template(self, orchestrator, coordinator):
        with pytest.raises(ExportConfigurationError, match="Unknown report template"):
            await orchestrator.run_export(make_request('html', templateId='missing'))
        assert coordinator.list_states()[0].error_kind == 'configuration'

    @pytest.mark.asyncio
    async def test_fetch_timeout(self, settings, orchestrator, data_source):
        settings.request_timeout_seconds = 0.01

        async def slow(*args, **kwargs):
            await asyncio.sleep(1)

        data_source.fetch_export_data.side_effect = slow
        with pytest.raises(ExportTransientError, match="Request timed out"):
            await orchestrator.run_export(make_request('csv'))

    @pytest.mark.asyncio
    async def test_network_failure(self, orchestrator, data_source):
        data_source.fetch_export_data.side_effect = aiohttp.ClientConnectionError("refused")
        with pytest.raises(ExportTransientError, match="Network connection failed"):
            await orchestrator.run_export(make_request('csv'))

    @pytest.mark.asyncio
    async def test_failed_export_can_be_retried(self, orchestrator, data_source, dataset):
        data_source.fetch_export_data.return_value = ExportDataSet(complaints=[])
        request = make_request('csv')
        with pytest.raises(ExportValidationError):
            await orchestrator.run_export(request)

        data_source.fetch_export_data.return_value = dataset
        result = await orchestrator.run_export(request)
        assert result.record_count == 3


class TestCancellation:
    """Test cancellation of in-flight exports."""

    @pytest.mark.asyncio
    async def test_cancel_during_fetch(self, settings, coordinator, dataset, notifier):
        source = BlockingDataSource(dataset)
        delivery = FileDownloadDelivery(settings.download_dir)
        orchestrator = ExportOrchestrator(
            settings, coordinator=coordinator, data_source=source, delivery=delivery, notifier=notifier
        )
        request = make_request('csv')

        task = asyncio.create_task(orchestrator.run_export(request))
        await source.started.wait()
        state = coordinator.list_states()[0]

        assert orchestrator.cancel_export(orchestrator.fingerprint_for(request)) is True
        source.release.set()

        with pytest.raises(ExportCancelledError):
            await task
        assert orchestrator.get_export_status(state.id) is None
        assert delivery.list_downloads() == []
        assert coordinator.active == {}

    @pytest.mark.asyncio
    async def test_task_cancellation_marks_failed(self, settings, coordinator, dataset, notifier):
        source = BlockingDataSource(dataset)
        orchestrator = ExportOrchestrator(
            settings, coordinator=coordinator, data_source=source,
            delivery=FileDownloadDelivery(settings.download_dir), notifier=notifier
        )

        task = asyncio.create_task(orchestrator.run_export(make_request('csv')))
        await source.started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        state = coordinator.list_states()[0]
        assert state.status == ExportStatus.FAILED
        assert coordinator.active == {}

    def test_cancel_unknown_fingerprint(self, orchestrator):
        assert orchestrator.cancel_export('missing') is False
