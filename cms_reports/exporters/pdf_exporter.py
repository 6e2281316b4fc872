"""
PDF export generator

Builds the report as a platypus story on A4: a letterhead drawn on every
page, a bordered executive summary, breakdown tables and a record listing
whose header row repeats across page breaks. The record listing is capped to
keep documents readable and generation time bounded.
"""

import functools
import io
import logging
from typing import Any, List, Optional, Sequence

from markupsafe import escape
from reportlab.lib import colors
from reportlab.lib.enums import TA_LEFT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.pdfgen import canvas
from reportlab.platypus import KeepTogether, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from .base import ExportArtifact, MIME_TYPES, ReportBundle, artifact_filename

logger = logging.getLogger(__name__)

PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN = 0.6 * inch
LETTERHEAD_HEIGHT = 64
BOTTOM_MARGIN = 0.8 * inch
# Frames pad 6 points on each side
TABLE_WIDTH = PAGE_WIDTH - 2 * MARGIN - 12

BRAND_COLOR = colors.HexColor("#366092")
BORDER_COLOR = colors.HexColor("#9ca3af")
ROW_COLOR = colors.HexColor("#f3f4f6")

# (header, row key, share of the table width)
RECORD_COLUMNS = [
    ('ID', 'Complaint ID', 0.15),
    ('Type', 'Type', 0.17),
    ('Status', 'Status', 0.14),
    ('Priority', 'Priority', 0.10),
    ('Ward', 'Ward', 0.15),
    ('Submitted', 'Submitted On', 0.12),
    ('SLA', 'SLA Status', 0.10),
    ('Hours', 'Resolution Time (Hours)', 0.07),
]


class _NumberedCanvas(canvas.Canvas):
    """Canvas that defers page output so the footer can show the total page count."""

    def __init__(self, *args, footer_text: str = "", **kwargs):
        canvas.Canvas.__init__(self, *args, **kwargs)
        self._saved_page_states = []
        self.footer_text = footer_text

    def showPage(self):
        self._saved_page_states.append(dict(self.__dict__))
        self._startPage()

    def save(self):
        total = len(self._saved_page_states)
        for state in self._saved_page_states:
            self.__dict__.update(state)
            self._draw_footer(total)
            canvas.Canvas.showPage(self)
        canvas.Canvas.save(self)

    def _draw_footer(self, total: int):
        self.setFont("Helvetica", 8)
        self.setFillColor(colors.grey)
        self.drawString(MARGIN, 0.5 * inch, self.footer_text)
        self.drawRightString(PAGE_WIDTH - MARGIN, 0.5 * inch, f"Page {self._pageNumber} of {total}")


class _Letterhead:
    """Page callback drawing the application letterhead above the frame."""

    def __init__(self, bundle: ReportBundle):
        self.bundle = bundle

    def __call__(self, canv: canvas.Canvas, doc: SimpleDocTemplate):
        options = self.bundle.options
        top = PAGE_HEIGHT - MARGIN
        generated = self.bundle.generated_at.strftime('%Y-%m-%d %H:%M:%S %Z')

        canv.saveState()
        canv.setFillColor(BRAND_COLOR)
        canv.setFont("Helvetica-Bold", 16)
        canv.drawString(MARGIN, top - 16, options.system_config.app_name)

        canv.setFillColor(colors.black)
        canv.setFont("Helvetica", 12)
        canv.drawString(MARGIN, top - 34, self.bundle.report_title)

        canv.setFont("Helvetica", 8)
        canv.setFillColor(colors.grey)
        canv.drawString(
            MARGIN, top - 48,
            f"Generated: {generated} | Generated by: {options.user_role} | Records: {len(self.bundle.rows)}"
        )

        canv.setStrokeColor(BRAND_COLOR)
        canv.setLineWidth(1.5)
        canv.line(MARGIN, top - 56, PAGE_WIDTH - MARGIN, top - 56)
        canv.restoreState()


def _styles():
    styles = getSampleStyleSheet()
    styles.add(ParagraphStyle(
        'SectionHeading',
        parent=styles['Heading3'],
        textColor=BRAND_COLOR,
        spaceBefore=6,
        spaceAfter=6
    ))
    styles.add(ParagraphStyle(
        'Notice',
        parent=styles['Normal'],
        fontName='Helvetica-Oblique',
        fontSize=9,
        spaceBefore=4,
        spaceAfter=8
    ))
    styles.add(ParagraphStyle('Cell', parent=styles['Normal'], fontSize=7.5, leading=9, alignment=TA_LEFT))
    return styles


def _text(value: Any) -> str:
    return str(escape("" if value is None else value))


def _data_table(headers: Sequence[str], rows: Sequence[Sequence[Any]], widths: Sequence[float]) -> Table:
    """Striped table with a brand-coloured header row that repeats on every page."""
    table = Table([list(headers)] + [list(row) for row in rows], colWidths=list(widths), repeatRows=1)
    table.setStyle(TableStyle([
        ('BACKGROUND', (0, 0), (-1, 0), BRAND_COLOR),
        ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 8),
        ('VALIGN', (0, 0), (-1, -1), 'TOP'),
        ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, ROW_COLOR]),
        ('LINEBELOW', (0, 0), (-1, -1), 0.25, colors.lightgrey),
    ]))
    return table


def _section(title: str, table: Table, styles) -> KeepTogether:
    return KeepTogether([Paragraph(_text(title), styles['SectionHeading']), table, Spacer(1, 10)])


def _summary_box(bundle: ReportBundle) -> Table:
    """Bordered executive summary of label/value pairs, two pairs per row."""
    stats = bundle.summary
    pairs = [
        ("Total Complaints", stats.summary.total),
        ("Resolved", stats.summary.resolved + stats.summary.closed),
        ("Pending", stats.summary.pending),
        ("Overdue", stats.summary.overdue),
        ("Resolution Rate", f"{stats.summary.resolution_rate}%"),
        ("SLA Compliance", f"{stats.sla.compliance}%"),
        ("Avg Resolution Time", f"{stats.sla.avg_resolution_hours}h"),
        ("User Satisfaction", f"{stats.performance.user_satisfaction}/5"),
    ]

    data = [["Executive Summary", "", "", ""]]
    for index in range(0, len(pairs), 2):
        row = []
        for label, value in pairs[index:index + 2]:
            row.extend([f"{label}:", str(value)])
        data.append(row)

    quarter = TABLE_WIDTH / 4
    table = Table(data, colWidths=[quarter * 1.2, quarter * 0.8, quarter * 1.2, quarter * 0.8])
    table.setStyle(TableStyle([
        ('SPAN', (0, 0), (-1, 0)),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, 0), 11),
        ('FONTSIZE', (0, 1), (-1, -1), 9),
        ('FONTNAME', (1, 1), (1, -1), 'Helvetica-Bold'),
        ('FONTNAME', (3, 1), (3, -1), 'Helvetica-Bold'),
        ('ALIGN', (1, 1), (1, -1), 'RIGHT'),
        ('ALIGN', (3, 1), (3, -1), 'RIGHT'),
        ('BOX', (0, 0), (-1, -1), 1, BORDER_COLOR),
        ('BOTTOMPADDING', (0, 0), (-1, 0), 8),
    ]))
    return table


def _record_rows(rows: Sequence[dict], styles) -> List[List[Any]]:
    cell = styles['Cell']
    listing = []
    for row in rows:
        values = []
        for _, key, _ in RECORD_COLUMNS:
            value = row.get(key, "")
            if key == 'Submitted On':
                value = str(value)[:10]
            values.append(Paragraph(_text(value), cell))
        listing.append(values)
    return listing


def _widths(shares: Sequence[float]) -> List[float]:
    return [TABLE_WIDTH * share for share in shares]


def generate_pdf(bundle: ReportBundle, record_cap: Optional[int] = None) -> ExportArtifact:
    """
    Export rows and statistics as a paginated PDF.

    Args:
        bundle: Normalized report input
        record_cap: Maximum records listed individually, defaults to bundle.record_cap

    Returns:
        ExportArtifact whose metadata records the page count and how many
        records were listed or omitted
    """
    cap = record_cap if record_cap is not None else bundle.record_cap
    stats = bundle.summary
    app_name = bundle.options.system_config.app_name
    styles = _styles()

    output = io.BytesIO()
    doc = SimpleDocTemplate(
        output,
        pagesize=A4,
        leftMargin=MARGIN,
        rightMargin=MARGIN,
        topMargin=MARGIN + LETTERHEAD_HEIGHT,
        bottomMargin=BOTTOM_MARGIN,
        title=f"{app_name} - {bundle.report_title}",
        author=app_name
    )

    story = [_summary_box(bundle), Spacer(1, 12)]

    applied = bundle.options.filters.applied()
    if applied:
        filters = ", ".join(f"{f['label']}: {f['value']}" for f in applied)
        story.append(Paragraph(_text(f"Filters: {filters}"), styles['Notice']))

    if stats.priorities:
        story.append(_section("Priority Breakdown", _data_table(
            ['Priority', 'Count', 'Share', 'Resolved'],
            [(b.name, b.count, f"{b.percentage}%", b.resolved) for b in stats.priorities],
            _widths([0.34, 0.22, 0.22, 0.22])
        ), styles))

    if stats.statuses:
        story.append(_section("Status Breakdown", _data_table(
            ['Status', 'Count', 'Share'],
            [(b.name, b.count, f"{b.percentage}%") for b in stats.statuses],
            _widths([0.4, 0.3, 0.3])
        ), styles))

    story.append(_section("SLA Performance", _data_table(
        ['Target (hours)', 'Avg Resolution (hours)', 'Compliance', 'On Time', 'Breached'],
        [(stats.sla.target_hours, stats.sla.avg_resolution_hours, f"{stats.sla.compliance}%",
          stats.sla.on_time, stats.sla.breached)],
        _widths([0.2, 0.28, 0.18, 0.17, 0.17])
    ), styles))

    if stats.categories:
        story.append(_section("Category Analysis", _data_table(
            ['Category', 'Count', 'Resolved', 'Avg Time (h)', 'Efficiency'],
            [(b.name, b.count, b.resolved, b.avg_resolution_hours, f"{b.efficiency}%") for b in stats.categories],
            _widths([0.34, 0.14, 0.16, 0.18, 0.18])
        ), styles))

    if stats.wards:
        story.append(_section("Ward Performance", _data_table(
            ['Ward', 'Complaints', 'Resolved', 'Pending', 'Avg Time (h)', 'Efficiency'],
            [(b.name, b.count, b.resolved, b.pending, b.avg_resolution_hours, f"{b.efficiency}%")
             for b in stats.wards],
            _widths([0.3, 0.15, 0.14, 0.14, 0.14, 0.13])
        ), styles))

    listed = bundle.rows[:cap]
    omitted = len(bundle.rows) - len(listed)
    if listed:
        story.append(_section(f"Complaint Records ({len(bundle.rows)})", _data_table(
            [header for header, _, _ in RECORD_COLUMNS],
            _record_rows(listed, styles),
            _widths([share for _, _, share in RECORD_COLUMNS])
        ), styles))
    if omitted > 0:
        story.append(Paragraph(
            f"{omitted} more records not shown. Please use Excel or CSV export for the complete dataset.",
            styles['Notice']
        ))

    letterhead = _Letterhead(bundle)
    doc.build(
        story,
        onFirstPage=letterhead,
        onLaterPages=letterhead,
        canvasmaker=functools.partial(_NumberedCanvas, footer_text=f"{app_name} - {bundle.report_title}")
    )
    content = output.getvalue()
    logger.info(f"Generated PDF export: {doc.page} pages, {len(listed)} records listed, {omitted} omitted")

    return ExportArtifact(
        filename=artifact_filename(bundle, 'pdf'),
        content=content,
        mime_type=MIME_TYPES['pdf'],
        format='pdf',
        record_count=len(bundle.rows),
        metadata={'pages': doc.page, 'records_listed': len(listed), 'records_omitted': omitted}
    )
