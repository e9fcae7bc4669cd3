"""PDF export for budget allocation plans."""

import io
from datetime import datetime
from typing import Dict, List
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import PageBreak, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from utils.ai_markdown_formatter import markdown_to_plaintext
from utils.budget_planner import format_crore, format_lakh


PAGE_MARGIN = 18 * mm
CONTENT_WIDTH = A4[0] - (PAGE_MARGIN * 2)


styles = getSampleStyleSheet()

TITLE_STYLE = ParagraphStyle(
    name="ReportTitle",
    parent=styles["Title"],
    fontName="Helvetica-Bold",
    fontSize=20,
    leading=24,
    alignment=1,
    spaceAfter=6,
    textColor=colors.black,
)

SUBTITLE_STYLE = ParagraphStyle(
    name="ReportSubtitle",
    fontName="Helvetica",
    fontSize=10,
    leading=13,
    alignment=1,
    textColor=colors.black,
)

HEADING_STYLE = ParagraphStyle(
    name="SectionHeading",
    fontName="Helvetica-Bold",
    fontSize=13,
    leading=16,
    textColor=colors.black,
    spaceBefore=6,
    spaceAfter=6,
    keepWithNext=True,
)

BODY_STYLE = ParagraphStyle(
    name="BodyText",
    fontName="Helvetica",
    fontSize=9,
    leading=12,
    textColor=colors.black,
    wordWrap="CJK",
    splitLongWords=True,
)

LABEL_STYLE = ParagraphStyle(
    name="LabelText",
    parent=BODY_STYLE,
    fontName="Helvetica-Bold",
)

FOOTER_STYLE = ParagraphStyle(
    name="FooterText",
    parent=BODY_STYLE,
    fontSize=8,
    alignment=1,
)

# Helvetica has no rupee glyph.
_CURRENCY = "Rs. "


def _money(text: str) -> str:
    return text.replace("₹", _CURRENCY)


def _para(value, style: ParagraphStyle = BODY_STYLE) -> Paragraph:
    """Create a wrapping paragraph with safe escaping and soft line handling."""
    text = escape(str(value if value is not None else "").strip())
    text = text.replace("\n", "<br/>")
    text = text if text else "N/A"
    return Paragraph(text, style)


def _grid_style(header: bool) -> TableStyle:
    commands = [
        ("TEXTCOLOR", (0, 0), (-1, -1), colors.black),
        ("FONTSIZE", (0, 0), (-1, -1), 8),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
        ("LEFTPADDING", (0, 0), (-1, -1), 4),
        ("RIGHTPADDING", (0, 0), (-1, -1), 4),
        ("TOPPADDING", (0, 0), (-1, -1), 4),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
    ]
    if header:
        commands.append(("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey))
    return TableStyle(commands)


def _kv_table(rows: List[List[str]]) -> Table:
    table_rows = [[_para(label, LABEL_STYLE), _para(value)] for label, value in rows]
    table = Table(table_rows, colWidths=[55 * mm, CONTENT_WIDTH - (55 * mm)], hAlign="LEFT")
    table.setStyle(_grid_style(header=False))
    return table


def _table_with_header(rows: List[List], col_widths: List[float]) -> Table:
    formatted_rows: List[List] = []
    for idx, row in enumerate(rows):
        style = LABEL_STYLE if idx == 0 else BODY_STYLE
        formatted_rows.append([cell if isinstance(cell, Paragraph) else _para(cell, style) for cell in row])
    table = Table(formatted_rows, colWidths=col_widths, repeatRows=1, splitByRow=1, hAlign="LEFT")
    table.setStyle(_grid_style(header=True))
    return table


def build_allocation_pdf(allocation: Dict) -> bytes:
    """Render a serialized BudgetAllocation (``BudgetAllocation.to_dict()``) to PDF bytes."""
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=PAGE_MARGIN,
        rightMargin=PAGE_MARGIN,
        topMargin=PAGE_MARGIN,
        bottomMargin=PAGE_MARGIN,
        title=f"Budget Allocation {allocation.get('fiscalYear', '')}",
    )

    story: List = []
    story.append(Paragraph("Budget Allocation Report", TITLE_STYLE))
    story.append(_para(f"Fiscal Year: {allocation.get('fiscalYear', '')}", SUBTITLE_STYLE))
    story.append(_para(f"Generated: {datetime.utcnow().strftime('%d %b %Y')}", SUBTITLE_STYLE))
    story.append(Spacer(1, 12))

    story.append(Paragraph("Executive Summary", HEADING_STYLE))
    story.append(_para(markdown_to_plaintext(allocation.get("summary") or "")))
    story.append(Spacer(1, 8))

    story.append(Paragraph("Budget Overview", HEADING_STYLE))
    story.append(
        _kv_table(
            [
                ["Total Budget", _money(format_crore(allocation.get("totalBudget") or 0))],
                ["Allocated Budget", _money(format_crore(allocation.get("allocatedBudget") or 0))],
                ["Contingency Reserve", _money(format_crore(allocation.get("contingencyReserve") or 0))],
                ["Ideas Analyzed", allocation.get("analyzedCount", 0)],
                ["Status", allocation.get("status", "")],
            ]
        )
    )
    story.append(Spacer(1, 8))

    recommendations = allocation.get("recommendations") or []
    if recommendations:
        story.append(Paragraph("Key Recommendations", HEADING_STYLE))
        for index, rec in enumerate(recommendations, start=1):
            story.append(_para(f"{index}. {rec}"))
        story.append(Spacer(1, 8))

    story.append(PageBreak())
    story.append(Paragraph("Budget Allocations by Priority", HEADING_STYLE))
    rows: List[List] = [["#", "Idea", "Priority", "Allocated", "Timeline / ROI", "Justification"]]
    for index, line in enumerate(allocation.get("allocations") or [], start=1):
        idea = line.get("idea") if isinstance(line.get("idea"), dict) else {}
        rows.append(
            [
                str(index),
                f"{idea.get('title') or 'Unknown Idea'}\n({idea.get('category') or 'N/A'})",
                f"{line.get('priority')} ({line.get('priorityScore')}/100)",
                _money(format_lakh(line.get("allocatedBudget") or 0)),
                f"{line.get('estimatedTimeline') or 'TBD'}\nROI: {line.get('expectedROI') or 'N/A'}",
                line.get("justification") or "",
            ]
        )
    story.append(
        _table_with_header(
            rows,
            col_widths=[8 * mm, 42 * mm, 24 * mm, 24 * mm, 26 * mm, CONTENT_WIDTH - (124 * mm)],
        )
    )
    story.append(Spacer(1, 12))

    creator = allocation.get("createdBy") if isinstance(allocation.get("createdBy"), dict) else {}
    approver = allocation.get("approvedBy") if isinstance(allocation.get("approvedBy"), dict) else {}
    if allocation.get("status") == "Approved":
        approval = f"Approved by: {approver.get('name') or 'Unknown'}"
    else:
        approval = f"Status: {allocation.get('status', 'Draft')}"
    story.append(_para(f"Created by: {creator.get('name') or 'Unknown'} | {approval}", FOOTER_STYLE))

    doc.build(story)
    return buffer.getvalue()
