#!/usr/bin/env python3
"""
Complaint Report Export Service - Main Entry Point

Generates complaint report exports (CSV, Excel, PDF, HTML) from the
complaint management API, and runs health checks for the export subsystem.

Usage:
    python main.py [command] [options]

Commands:
    export        Run one export and write the file to the download directory
    diagnostics   Check templates, encoder libraries and runtime capabilities
    self-test     Run template rendering, RBAC and export flow self-tests
    templates     List registered report templates
    formats       List export formats and their availability

Examples:
    python main.py export --format csv --role ADMINISTRATOR --from 2024-01-01 --to 2024-01-31
    python main.py export --format pdf --role WARD_OFFICER --user-ward "Ward 1"
    python main.py export --request request.json
    python main.py diagnostics --report-dir reports
    python main.py formats
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict

from cms_reports.exports.coordinator import ExportCoordinator
from cms_reports.exports.data_client import ComplaintDataClient
from cms_reports.exports.delivery import FileDownloadDelivery
from cms_reports.exports.orchestrator import ExportOrchestrator
from cms_reports.notifications.progress_notifier import Notification, ProgressNotifier
from cms_reports.reporting.export_diagnostics import (
    log_diagnostics, run_export_diagnostics, summarize, write_diagnostic_report
)
from cms_reports.reporting.template_engine import TemplateEngine
from cms_reports.reporting.template_registry import default_registry
from cms_reports.reporting.testing_tools import run_all_export_checks
from cms_reports.utils.capabilities import CapabilityProbe
from cms_reports.utils.config_loader import ExportSettings, load_export_settings
from cms_reports.utils.errors import ExportError
from cms_reports.utils.export_validation import build_export_request


# Configure logging
def setup_logging(log_level: str = "INFO") -> None:
    """Set up logging configuration."""
    log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    # Create logs directory if it doesn't exist
    logs_dir = Path("logs")
    logs_dir.mkdir(exist_ok=True)

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format=log_format,
        handlers=[
            logging.FileHandler(logs_dir / 'cms_reports.log'),
            logging.StreamHandler(sys.stdout)
        ]
    )

logger = logging.getLogger(__name__)


def print_notification(event: str, notification: Notification) -> None:
    if event in ('shown', 'updated'):
        print(f"[{notification.level.value}] {notification.message}")


class ReportExportApp:
    """Command line application for the report export service."""

    def __init__(self, settings: ExportSettings):
        self.settings = settings
        self.probe = CapabilityProbe()
        self.engine = TemplateEngine(settings.templates_dir)

    def build_request(self, args: argparse.Namespace) -> Dict[str, Any]:
        """Build a raw export request from a JSON file or command line options."""
        if args.request:
            with open(args.request, 'r', encoding='utf-8') as f:
                return json.load(f)

        filters = {
            'from': args.date_from,
            'to': args.date_to,
            'ward': args.ward,
            'type': args.type,
            'status': args.status,
            'priority': args.priority,
        }
        return {
            'format': args.format,
            'templateId': args.template,
            'reportTitle': args.title,
            'datasetVersion': args.dataset_version,
            'options': {
                'systemConfig': {'appName': args.app_name},
                'userRole': args.role,
                'userWard': args.user_ward,
                'filters': {k: v for k, v in filters.items() if v is not None},
            },
        }

    async def run_export(self, args: argparse.Namespace) -> bool:
        request = build_export_request(self.build_request(args))

        notifier = ProgressNotifier(self.settings.notification_duration_seconds)
        notifier.subscribe(print_notification)
        coordinator = ExportCoordinator(self.settings)

        async with ComplaintDataClient(self.settings) as client:
            orchestrator = ExportOrchestrator(
                self.settings,
                coordinator=coordinator,
                data_source=client,
                delivery=FileDownloadDelivery(args.output_dir or self.settings.download_dir),
                notifier=notifier,
                template_engine=self.engine,
                registry=default_registry,
                capability_probe=self.probe
            )
            coordinator.start_sweeper()
            try:
                result = await orchestrator.run_export(request)
            except ExportError as e:
                logger.error(f"Export failed: {e}")
                print(json.dumps({'success': False, 'error': e.to_dict()}, indent=2, default=str))
                return False
            finally:
                await coordinator.stop_sweeper()

        for warning in result.warnings:
            logger.warning(warning)
        print(json.dumps({'success': True, 'export': result.to_dict()}, indent=2, default=str))
        return True

    async def run_diagnostics(self, args: argparse.Namespace) -> bool:
        results = await run_export_diagnostics(
            self.engine, default_registry, self.probe, args.output_dir or self.settings.download_dir
        )
        log_diagnostics(results)
        if args.report_dir:
            paths = write_diagnostic_report(results, args.report_dir)
            logger.info(f"Diagnostic report: {paths['html']}")
        return summarize(results)['fail'] == 0

    async def run_self_tests(self) -> bool:
        results = await run_all_export_checks(engine=self.engine, registry=default_registry)
        for result in results.values():
            status = "PASS" if result.success else "FAIL"
            print(f"{status} {result.test_name}" + (f" - {result.error_message}" if result.error_message else ""))
        return all(r.success for r in results.values())

    def list_templates(self) -> bool:
        for info in default_registry.get_all_templates():
            print(f"{info.id:<18} {info.name:<20} {info.path}")
            print(f"{'':<18} {info.description}")
        return True

    def list_formats(self) -> bool:
        for fmt, status in self.probe.probe_all().items():
            state = "available" if status.available else f"unavailable ({status.reason})"
            print(f"{fmt:<8} {state}")
        return True


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Complaint Report Export Service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    parser.add_argument(
        'command',
        choices=['export', 'diagnostics', 'self-test', 'templates', 'formats'],
        help='Command to execute'
    )

    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default=None,
        help='Set logging level (defaults to the configured level)'
    )
    parser.add_argument('--config', help='Path to export settings YAML')
    parser.add_argument('--output-dir', help='Directory for exported files')
    parser.add_argument('--report-dir', help='Write diagnostic HTML/JSON reports to this directory')

    export_group = parser.add_argument_group('export options')
    export_group.add_argument('--request', help='JSON file holding a complete export request')
    export_group.add_argument('--format', default='csv', help='csv, excel, pdf or html')
    export_group.add_argument('--role', default='ADMINISTRATOR', help='Requesting user role')
    export_group.add_argument('--user-ward', help='Ward of the requesting user')
    export_group.add_argument('--from', dest='date_from', help='Start date (YYYY-MM-DD)')
    export_group.add_argument('--to', dest='date_to', help='End date (YYYY-MM-DD)')
    export_group.add_argument('--ward', help='Ward filter')
    export_group.add_argument('--type', help='Complaint type filter')
    export_group.add_argument('--status', help='Status filter')
    export_group.add_argument('--priority', help='Priority filter')
    export_group.add_argument('--template', default='unified', help='Template id for HTML exports')
    export_group.add_argument('--title', default='Complaints Report', help='Report title')
    export_group.add_argument('--app-name', default='Smart CMS', help='Application name used for branding')
    export_group.add_argument('--dataset-version', help='Dataset version or ETag to include in deduplication')

    args = parser.parse_args()

    try:
        settings = load_export_settings(args.config)
    except (FileNotFoundError, ValueError) as e:
        setup_logging(args.log_level or "INFO")
        logger.error(f"Could not load configuration: {e}")
        sys.exit(1)

    # Set up logging
    setup_logging(args.log_level or settings.log_level)

    logger.info(f"Complaint Report Export Service - {args.command.upper()}")

    app = ReportExportApp(settings)
    success = False

    try:
        if args.command == 'export':
            success = asyncio.run(app.run_export(args))

        elif args.command == 'diagnostics':
            success = asyncio.run(app.run_diagnostics(args))

        elif args.command == 'self-test':
            success = asyncio.run(app.run_self_tests())

        elif args.command == 'templates':
            success = app.list_templates()

        elif args.command == 'formats':
            success = app.list_formats()

    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
        sys.exit(0)
    except ExportError as e:
        logger.error(f"{e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        sys.exit(1)

    if success:
        logger.info(f"Command '{args.command}' completed successfully!")
        sys.exit(0)
    else:
        logger.error(f"Command '{args.command}' failed!")
        sys.exit(1)


if __name__ == "__main__":
    main()
