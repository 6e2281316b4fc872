"""
Excel export generator

Builds a multi-sheet workbook: an executive summary, the full record list,
and breakdown sheets that are only added when they have data.
"""

import io
import logging
from typing import Any, List, Sequence

import openpyxl
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from ..reporting.data_formatters import EXPORT_COLUMNS
from .base import ExportArtifact, MIME_TYPES, ReportBundle, artifact_filename

logger = logging.getLogger(__name__)

HEADER_FILL = PatternFill(start_color="366092", end_color="366092", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True)

# Fixed widths for the record sheet, in characters
RECORD_COLUMN_WIDTHS = {
    'Complaint ID': 16,
    'Type': 20,
    'Description': 50,
    'Status': 14,
    'Priority': 12,
    'Ward': 18,
    'Submitted On': 20,
    'Assigned On': 20,
    'Resolved On': 20,
    'Closed On': 20,
    'Deadline': 20,
    'SLA Status': 12,
    'Resolution Time (Hours)': 14,
    'Assigned To': 22,
    'Citizen Name': 22,
    'Contact Phone': 16,
    'Contact Email': 28,
    'Location': 30,
    'Landmark': 24,
    'Feedback Rating': 10,
    'Feedback Comment': 40,
    'Attachments': 12,
}
DEFAULT_COLUMN_WIDTH = 15


class ExcelReportBuilder:
    """Assembles the export workbook sheet by sheet."""

    def __init__(self, bundle: ReportBundle):
        self.bundle = bundle
        self.summary = bundle.summary
        self.wb = openpyxl.Workbook()
        self.wb.remove(self.wb.active)

    def build(self) -> bytes:
        self._create_executive_summary()

        if self.bundle.rows:
            self._create_records_sheet()
        if self.summary.priorities:
            self._create_breakdown_sheet(
                "Priority Breakdown",
                ['Priority', 'Count', 'Percentage', 'Resolved', 'Avg Resolution (Hours)'],
                [[b.name, b.count, b.percentage, b.resolved, b.avg_resolution_hours]
                 for b in self.summary.priorities]
            )
        if self.summary.statuses:
            self._create_breakdown_sheet(
                "Status Breakdown",
                ['Status', 'Count', 'Percentage'],
                [[b.name, b.count, b.percentage] for b in self.summary.statuses]
            )
        if self.summary.categories:
            self._create_breakdown_sheet(
                "Category Analysis",
                ['Category', 'Count', 'Percentage', 'Resolved', 'Avg Resolution (Hours)', 'Efficiency (%)'],
                [[b.name, b.count, b.percentage, b.resolved, b.avg_resolution_hours, b.efficiency]
                 for b in self.summary.categories]
            )
        if self.summary.wards:
            self._create_breakdown_sheet(
                "Ward Performance",
                ['Ward', 'Complaints', 'Resolved', 'Pending', 'Avg Resolution (Hours)', 'Efficiency (%)'],
                [[b.name, b.count, b.resolved, b.pending, b.avg_resolution_hours, b.efficiency]
                 for b in self.summary.wards]
            )
        if self.summary.trends:
            self._create_breakdown_sheet(
                "Trends",
                ['Date', 'Complaints', 'Resolved', 'SLA Compliance (%)'],
                [[t.date, t.complaints, t.resolved, t.sla_compliance] for t in self.summary.trends]
            )

        applied = self.bundle.options.filters.applied()
        if applied:
            self._create_breakdown_sheet(
                "Filters Applied",
                ['Filter', 'Value'],
                [[item['label'], item['value']] for item in applied]
            )

        output = io.BytesIO()
        self.wb.save(output)
        return output.getvalue()

    def _create_executive_summary(self):
        """Create the executive summary sheet of label/value pairs."""
        ws = self.wb.create_sheet("Executive Summary")
        options = self.bundle.options
        summary = self.summary

        ws['A1'] = f"{options.system_config.app_name} - {self.bundle.report_title}"
        ws['A1'].font = Font(bold=True, size=16)
        ws['A2'] = f"Generated: {self.bundle.generated_at.strftime('%Y-%m-%d %H:%M:%S %Z')}"
        ws['A3'] = f"Generated By: {options.user_role}"

        rows = [
            ("Total Complaints", summary.summary.total),
            ("Resolved", summary.summary.resolved),
            ("Closed", summary.summary.closed),
            ("Pending", summary.summary.pending),
            ("In Progress", summary.summary.in_progress),
            ("Overdue", summary.summary.overdue),
            ("Reopened", summary.summary.reopened),
            ("Resolution Rate (%)", summary.summary.resolution_rate),
            ("SLA Compliance (%)", summary.sla.compliance),
            ("Average Resolution Time (Hours)", summary.sla.avg_resolution_hours),
            ("SLA Target (Hours)", summary.sla.target_hours),
            ("On-Time Resolutions", summary.sla.on_time),
            ("SLA Breaches", summary.sla.breached),
            ("User Satisfaction (of 5)", summary.performance.user_satisfaction),
            ("Escalation Rate (%)", summary.performance.escalation_rate),
            ("First Call Resolution (%)", summary.performance.first_call_resolution),
            ("Repeat Complaint Rate (%)", summary.performance.repeat_complaint_rate),
        ]

        header_row = 5
        for col, header in enumerate(["Metric", "Value"], 1):
            cell = ws.cell(row=header_row, column=col, value=header)
            cell.fill = HEADER_FILL
            cell.font = HEADER_FONT

        for offset, (label, value) in enumerate(rows, 1):
            ws.cell(row=header_row + offset, column=1, value=label)
            ws.cell(row=header_row + offset, column=2, value=value)

        ws.column_dimensions['A'].width = 36
        ws.column_dimensions['B'].width = 18

    def _create_records_sheet(self):
        """Create the record sheet with one row per formatted complaint."""
        ws = self.wb.create_sheet("All Records")
        rows = self.bundle.rows
        headers = list(rows[0].keys()) if rows else list(EXPORT_COLUMNS)

        self._write_header(ws, headers)
        for row_idx, row in enumerate(rows, 2):
            for col, header in enumerate(headers, 1):
                ws.cell(row=row_idx, column=col, value=row.get(header, ""))

        for col, header in enumerate(headers, 1):
            width = RECORD_COLUMN_WIDTHS.get(header, DEFAULT_COLUMN_WIDTH)
            ws.column_dimensions[get_column_letter(col)].width = width
        ws.freeze_panes = 'A2'

    def _create_breakdown_sheet(self, title: str, headers: List[str], rows: Sequence[Sequence[Any]]):
        ws = self.wb.create_sheet(title)
        self._write_header(ws, headers)
        for row_idx, values in enumerate(rows, 2):
            for col, value in enumerate(values, 1):
                ws.cell(row=row_idx, column=col, value=value)
        self._auto_fit(ws)

    @staticmethod
    def _write_header(ws, headers: Sequence[str]):
        for col, header in enumerate(headers, 1):
            cell = ws.cell(row=1, column=col, value=header)
            cell.fill = HEADER_FILL
            cell.font = HEADER_FONT
            cell.alignment = Alignment(horizontal='center', vertical='center', wrap_text=True)

    @staticmethod
    def _auto_fit(ws):
        """Size each column to its longest value, capped at 50 characters."""
        for column in ws.columns:
            max_length = max(len(str(cell.value)) for cell in column if cell.value is not None)
            ws.column_dimensions[column[0].column_letter].width = min(max_length + 2, 50)


def generate_excel(bundle: ReportBundle) -> ExportArtifact:
    """Export rows and statistics as an .xlsx workbook."""
    builder = ExcelReportBuilder(bundle)
    content = builder.build()
    sheets = list(builder.wb.sheetnames)
    logger.info(f"Generated Excel export with sheets {sheets} ({len(content)} bytes)")

    return ExportArtifact(
        filename=artifact_filename(bundle, 'excel'),
        content=content,
        mime_type=MIME_TYPES['excel'],
        format='excel',
        record_count=len(bundle.rows),
        metadata={'sheets': sheets}
    )
