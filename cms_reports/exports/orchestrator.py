"""
Export orchestrator

Sequences one export through preparing, fetching and generating to a
terminal state: deduplication, filter and permission validation, scoped data
fetch, normalization, format generation and delivery. Every failure ends the
export in the failed state with a readable progress message and is
re-raised as an ExportError.
"""

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..exporters import load_generator
from ..exporters.base import ExportArtifact, ReportBundle
from ..models import ExportDataSet, ExportRequest
from ..notifications.progress_notifier import ProgressNotifier
from ..reporting.data_formatters import (
    calculate_statistics, format_records_for_export, prepare_unified_report_data
)
from ..reporting.template_engine import TemplateEngine, TemplateNotFoundError
from ..reporting.template_registry import TemplateRegistry, default_registry
from ..utils.capabilities import CapabilityProbe
from ..utils.config_loader import ExportSettings
from ..utils.errors import (
    ExportCancelledError, ExportConfigurationError, ExportError, ExportGeneratorError,
    ExportTransientError, ExportValidationError, fallback_suggestion, handle_export_error
)
from ..utils.export_validation import (
    get_export_permissions, scope_filters, validate_export_filters, validate_export_permissions
)
from .coordinator import ExportCoordinator, ExportState, ExportStatus
from .data_client import ComplaintDataClient
from .delivery import FileDownloadDelivery

logger = logging.getLogger(__name__)

FORMAT_LABELS = {
    'csv': 'CSV',
    'excel': 'Excel',
    'pdf': 'PDF',
    'html': 'HTML',
}


@dataclass
class ExportResult:
    """Outcome of a completed export."""
    export_id: str
    fingerprint: str
    format: str
    filename: str
    path: Path
    record_count: int
    size: int
    warnings: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'export_id': self.export_id,
            'fingerprint': self.fingerprint,
            'format': self.format,
            'filename': self.filename,
            'path': str(self.path),
            'record_count': self.record_count,
            'size': self.size,
            'warnings': self.warnings,
            'metadata': self.metadata,
        }


class ExportOrchestrator:
    """Runs exports exactly once per fingerprint."""

    def __init__(
        self,
        settings: Optional[ExportSettings] = None,
        coordinator: Optional[ExportCoordinator] = None,
        data_source: Optional[Any] = None,
        delivery: Optional[FileDownloadDelivery] = None,
        notifier: Optional[ProgressNotifier] = None,
        template_engine: Optional[TemplateEngine] = None,
        registry: Optional[TemplateRegistry] = None,
        capability_probe: Optional[CapabilityProbe] = None
    ):
        self.settings = settings or ExportSettings()
        self.coordinator = coordinator or ExportCoordinator(self.settings)
        self.data_source = data_source or ComplaintDataClient(self.settings)
        self.delivery = delivery or FileDownloadDelivery(self.settings.download_dir)
        self.notifier = notifier or ProgressNotifier(self.settings.notification_duration_seconds)
        self.template_engine = template_engine or TemplateEngine(self.settings.templates_dir)
        self.registry = registry or default_registry
        self.capability_probe = capability_probe or CapabilityProbe()

    def fingerprint_for(self, request: ExportRequest, at: Optional[float] = None) -> str:
        """Dedup key over the filters as scoped to the requesting user's ward."""
        options = request.options
        filters = options.filters
        limits = self.settings.role_record_limits
        if options.user_ward and filters.ward in (None, 'all', options.user_ward):
            filters = scope_filters(filters, options.user_role, options.user_ward, limits)

        return self.coordinator.compute_fingerprint(
            options.user_role,
            request.format,
            filters,
            at=at,
            dataset_version=request.dataset_version
        )

    async def run_export(self, request: ExportRequest) -> ExportResult:
        """
        Run one export to completion.

        Args:
            request: Validated export request

        Returns:
            ExportResult describing the delivered file

        Raises:
            ExportConcurrencyError: If an identical export is in flight
            ExportError: Any other failure, after the export is marked failed
        """
        fmt = request.format
        label = FORMAT_LABELS[fmt]
        fingerprint = self.fingerprint_for(request)

        # Raises before any state exists for duplicates
        state = self.coordinator.begin(fingerprint, fmt)
        notification_id = self.notifier.progress(f"Preparing {label} export...")
        logger.info(f"Export {state.id} started: {fmt} for {request.options.user_role}")

        try:
            result = await self._execute(state, request, notification_id)
            message = f"{label} export completed: {result.filename} ({result.record_count} records)"
            self.coordinator.complete(state.id, message)
        except asyncio.CancelledError:
            self.coordinator.fail(state.id, "Export was interrupted", 'cancelled')
            raise
        except Exception as e:
            error = handle_export_error(e, fmt)
            self.coordinator.fail(state.id, str(error), error.kind.value)
            self.notifier.error(str(error))
            logger.error(f"Export {state.id} failed ({error.kind.value}): {error}")
            if error is e:
                raise
            raise error from e
        finally:
            self.coordinator.release(fingerprint, state.id)
            self.notifier.dismiss(notification_id)

        self.notifier.success(message)
        logger.info(f"Export {state.id} completed: {result.path}")
        return result

    async def _execute(self, state: ExportState, request: ExportRequest, notification_id: str) -> ExportResult:
        settings = self.settings
        options = request.options
        fmt = request.format
        label = FORMAT_LABELS[fmt]

        # preparing: permissions first, no network traffic unless the role may export
        warnings = validate_export_permissions(
            options.user_role,
            settings.allowed_roles,
            requested_ward=options.filters.ward,
            user_ward=options.user_ward,
            role_limits=settings.role_record_limits
        )
        scoped = scope_filters(options.filters, options.user_role, options.user_ward, settings.role_record_limits)
        warnings += validate_export_filters(
            options.filters, options.user_role, settings.max_date_range_days, settings.role_record_limits
        )
        capability = self.capability_probe.probe(fmt)
        if not capability.available:
            raise ExportTransientError(
                f"{label} export is currently unavailable: {capability.reason}",
                format=fmt,
                suggestion=fallback_suggestion(fmt)
            )

        self._advance(state, ExportStatus.FETCHING, "Fetching complaint data...", notification_id)

        dataset = await asyncio.wait_for(
            self.data_source.fetch_export_data(scoped, options.user_role, options.user_ward),
            timeout=settings.request_timeout_seconds
        )
        self._check_cancelled(state, fmt)

        if not dataset.complaints:
            raise ExportValidationError("No data for selected filters", format=fmt)
        self._check_record_ceiling(request, len(dataset.complaints))
        if len(dataset.complaints) > 1000:
            warnings.append("Large export detected. This may take a few moments to generate.")

        self._advance(state, ExportStatus.GENERATING, f"Generating {label} file...", notification_id)

        # Generators work on a private copy, never on data a data source may cache
        dataset = copy.deepcopy(dataset)

        template = None
        if fmt == 'html':
            template = await self._load_template(request.template_id)
            self._check_cancelled(state, fmt)

        bundle = self._build_bundle(request, dataset, template)
        artifact = self._generate(fmt, bundle)

        self._check_cancelled(state, fmt)
        try:
            path = self.delivery.deliver(artifact)
        except OSError as e:
            raise ExportTransientError(f"Could not save the {label} export: {e}", format=fmt) from e

        return ExportResult(
            export_id=state.id,
            fingerprint=state.fingerprint,
            format=fmt,
            filename=artifact.filename,
            path=path,
            record_count=artifact.record_count,
            size=artifact.size,
            warnings=warnings,
            metadata=artifact.metadata
        )

    def _advance(self, state: ExportState, status: ExportStatus, progress: str, notification_id: str) -> None:
        self._check_cancelled(state, state.format)
        self.coordinator.transition(state.id, status, progress)
        self.notifier.update(notification_id, progress)

    def _check_cancelled(self, state: ExportState, fmt: str) -> None:
        if not self.coordinator.is_running(state.id):
            logger.info(f"Export {state.id} was cancelled, stopping")
            raise ExportCancelledError("Export was cancelled", format=fmt)

    def _check_record_ceiling(self, request: ExportRequest, record_count: int) -> None:
        options = request.options
        ceiling = get_export_permissions(options.user_role, self.settings.role_record_limits).max_records
        if options.max_records is not None:
            ceiling = min(ceiling, options.max_records)
        if record_count > ceiling:
            raise ExportValidationError(
                f"Export size exceeds limit. Maximum {ceiling} records allowed for your role.",
                format=request.format,
                details={'record_count': record_count, 'max_records': ceiling}
            )

    async def _load_template(self, template_id: str) -> str:
        info = self.registry.get(template_id)
        if info is None:
            raise ExportConfigurationError(f"Unknown report template: {template_id}", format='html')
        try:
            return await self.template_engine.load_template(info.path)
        except TemplateNotFoundError as e:
            raise ExportConfigurationError(str(e), format='html') from e

    def _build_bundle(self, request: ExportRequest, dataset: ExportDataSet, template: Optional[str]) -> ReportBundle:
        settings = self.settings
        options = request.options
        records = dataset.complaints
        now = datetime.now(timezone.utc)

        rows = format_records_for_export(records, options, now, settings.redacted_roles)

        statistics = None
        template_data = None
        if request.format != 'csv':
            statistics = calculate_statistics(
                records, now, settings.sla_target_hours, dataset.metadata.model_dump()
            )
        if request.format == 'html':
            template_data = prepare_unified_report_data(
                statistics, records, options, request.report_title, now, settings.redacted_roles
            )

        return ReportBundle(
            rows=rows,
            options=options,
            statistics=statistics,
            report_title=request.report_title,
            generated_at=now,
            record_cap=settings.pdf_record_cap,
            template=template,
            template_data=template_data,
            template_engine=self.template_engine
        )

    def _generate(self, fmt: str, bundle: ReportBundle) -> ExportArtifact:
        label = FORMAT_LABELS[fmt]
        try:
            generator = load_generator(fmt)
            return generator(bundle)
        except ExportError:
            raise
        except Exception as e:
            logger.error(f"{label} generator failed: {e}")
            raise ExportGeneratorError(
                f"Failed to generate {label} export: {e}",
                format=fmt,
                suggestion=fallback_suggestion(fmt),
                details={'error_type': type(e).__name__}
            ) from e

    def cancel_export(self, fingerprint: str) -> bool:
        """Cancel an in-flight export. Best effort: running work stops at its next checkpoint."""
        cancelled = self.coordinator.cancel(fingerprint)
        if cancelled:
            self.notifier.info("Export cancelled")
        return cancelled

    def get_export_status(self, export_id: str) -> Optional[ExportState]:
        return self.coordinator.get_state(export_id)
