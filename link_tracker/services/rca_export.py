"""
RCA Export Service - closure reports as CSV and PDF.

Rows join each RCA with its escalation's ticket, provider and link. The PDF
is a one-page-per-link closure report followed by a summary table.
"""

import csv
import io
import logging
from datetime import datetime, timezone
from typing import Any, Sequence
from uuid import UUID
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import (
    PageBreak,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..models import Escalation, MttrStatus, Provider, RcaForm
from .lifecycle_engine import human_duration

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = (
    "TICKET_ID",
    "PROVIDER",
    "LINK_ID",
    "LINK_TYPE",
    "START_TIME",
    "END_TIME",
    "MTTR_USED",
    "MTTR_STATUS",
    "COF",
    "POF",
    "ACTUAL_COF",
    "DETAILED_COF",
    "RESOLUTION",
    "OFC",
    "JC",
    "COD",
    "TEAM_LEAD",
    "TEAM_MANAGER",
    "BOTTLE_CASSETTE_TRAY",
    "SEGMENT",
    "TIME_TO_POF",
    "TIME_TO_TEST",
    "TT_NUMBER",
)


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "value"):
        return str(value.value)
    return str(value)


def export_row(rca: RcaForm) -> dict[str, str]:
    """Flatten an RCA and its escalation into export columns."""
    escalation = rca.escalation
    return {
        "TICKET_ID": _text(escalation.ticket_id),
        "PROVIDER": _text(escalation.provider),
        "LINK_ID": _text(escalation.link_id),
        "LINK_TYPE": _text(rca.link_type),
        "START_TIME": _text(rca.start_time),
        "END_TIME": _text(rca.end_time),
        "MTTR_USED": _text(rca.mttr_used),
        "MTTR_STATUS": _text(rca.mttr_status),
        "COF": _text(rca.cof),
        "POF": _text(rca.pof),
        "ACTUAL_COF": _text(rca.actual_cof),
        "DETAILED_COF": _text(rca.detailed_cof),
        "RESOLUTION": _text(rca.resolution),
        "OFC": _text(rca.ofc),
        "JC": _text(rca.jc),
        "COD": _text(rca.cod),
        "TEAM_LEAD": _text(rca.team_lead),
        "TEAM_MANAGER": _text(rca.team_manager),
        "BOTTLE_CASSETTE_TRAY": _text(rca.bottle_cassette_tray),
        "SEGMENT": _text(rca.segment),
        "TIME_TO_POF": _text(rca.time_to_pof),
        "TIME_TO_TEST": _text(rca.time_to_test),
        "TT_NUMBER": _text(rca.tt_number),
    }


def export_filename(extension: str, now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"rca_forms_{now.strftime('%Y%m%d_%H%M%S')}.{extension}"


# =============================================================================
# RCA EXPORT SERVICE
# =============================================================================


class RcaExportService:
    """Loads RCAs for export and renders them."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_rcas_for_export(
        self,
        escalation_id: UUID | None = None,
        provider: Provider | None = None,
    ) -> Sequence[RcaForm]:
        query = (
            select(RcaForm)
            .join(RcaForm.escalation)
            .options(selectinload(RcaForm.escalation))
        )
        if escalation_id is not None:
            query = query.where(RcaForm.escalation_id == escalation_id)
        if provider is not None:
            query = query.where(Escalation.provider == provider)

        result = await self.session.execute(query.order_by(RcaForm.created_at.desc()))
        return result.scalars().all()

    async def export_csv(
        self,
        escalation_id: UUID | None = None,
        provider: Provider | None = None,
    ) -> str:
        rcas = await self.get_rcas_for_export(escalation_id, provider)
        logger.info(f"Exporting {len(rcas)} RCA form(s) as CSV")
        return render_csv(rcas)

    async def export_pdf(
        self,
        escalation_id: UUID | None = None,
        provider: Provider | None = None,
        generated_by: str | None = None,
    ) -> bytes:
        rcas = await self.get_rcas_for_export(escalation_id, provider)
        logger.info(f"Exporting {len(rcas)} RCA form(s) as PDF")
        return RcaPDFGenerator(rcas, generated_by=generated_by).generate()


def render_csv(rcas: Sequence[RcaForm]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=EXPORT_COLUMNS)
    writer.writeheader()
    for rca in rcas:
        writer.writerow(export_row(rca))
    return buffer.getvalue()


# =============================================================================
# PDF GENERATOR
# =============================================================================


class RcaPDFGenerator:
    """Renders RCA closure reports to PDF."""

    def __init__(self, rcas: Sequence[RcaForm], generated_by: str | None = None):
        self.rcas = rcas
        self.generated_by = generated_by
        self.generated_at = datetime.now(timezone.utc)
        self.styles = self._create_styles()
        self.buffer = io.BytesIO()

    def _create_styles(self) -> dict[str, ParagraphStyle]:
        base_styles = getSampleStyleSheet()

        return {
            "title": ParagraphStyle(
                "Title",
                parent=base_styles["Title"],
                fontSize=22,
                spaceAfter=18,
                textColor=colors.HexColor("#1e293b"),
                alignment=TA_CENTER,
            ),
            "subtitle": ParagraphStyle(
                "Subtitle",
                parent=base_styles["Normal"],
                fontSize=11,
                spaceAfter=12,
                textColor=colors.HexColor("#64748b"),
                alignment=TA_CENTER,
            ),
            "heading": ParagraphStyle(
                "Heading",
                parent=base_styles["Heading2"],
                fontSize=14,
                spaceBefore=12,
                spaceAfter=8,
                textColor=colors.HexColor("#0f172a"),
            ),
            "cell": ParagraphStyle(
                "Cell",
                parent=base_styles["Normal"],
                fontSize=8,
                leading=10,
                textColor=colors.HexColor("#334155"),
            ),
            "body": ParagraphStyle(
                "Body",
                parent=base_styles["Normal"],
                fontSize=9,
                spaceAfter=6,
                textColor=colors.HexColor("#334155"),
            ),
        }

    def generate(self) -> bytes:
        doc = SimpleDocTemplate(
            self.buffer,
            pagesize=landscape(A4),
            rightMargin=0.5 * inch,
            leftMargin=0.5 * inch,
            topMargin=0.75 * inch,
            bottomMargin=0.75 * inch,
            title="RCA Closure Report",
        )

        story: list = []
        story.extend(self._build_summary())
        for rca in self.rcas:
            story.append(PageBreak())
            story.extend(self._build_rca_section(rca))

        doc.build(story, onFirstPage=self._add_page_footer, onLaterPages=self._add_page_footer)

        pdf_bytes = self.buffer.getvalue()
        self.buffer.close()
        return pdf_bytes

    def _paragraph(self, value: Any, style: str = "cell") -> Paragraph:
        return Paragraph(escape(_text(value)), self.styles[style])

    def _build_summary(self) -> list:
        elements = [
            Paragraph("RCA Closure Report", self.styles["title"]),
            Paragraph(
                f"{len(self.rcas)} link(s) closed"
                + (f" | Generated by {escape(self.generated_by)}" if self.generated_by else ""),
                self.styles["subtitle"],
            ),
            Spacer(1, 0.2 * inch),
        ]

        if not self.rcas:
            elements.append(Paragraph("No RCA forms match this export.", self.styles["body"]))
            return elements

        header = ["Ticket", "Provider", "Link", "Type", "MTTR Used", "Status", "COF", "POF"]
        rows = [header]
        for rca in self.rcas:
            rows.append([
                self._paragraph(rca.escalation.ticket_id),
                self._paragraph(rca.escalation.provider.value.upper()),
                self._paragraph(rca.escalation.link_id),
                self._paragraph(rca.link_type),
                self._paragraph(f"{rca.mttr_used} h"),
                self._paragraph(rca.mttr_status),
                self._paragraph(rca.cof),
                self._paragraph(rca.pof),
            ])

        table = Table(
            rows,
            colWidths=[1.0 * inch, 0.8 * inch, 2.4 * inch, 0.7 * inch,
                       0.8 * inch, 1.1 * inch, 1.5 * inch, 1.5 * inch],
            repeatRows=1,
        )
        style = [
            ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#1e293b")),
            ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
            ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
            ("FONTSIZE", (0, 0), (-1, 0), 9),
            ("GRID", (0, 0), (-1, -1), 0.5, colors.HexColor("#e2e8f0")),
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ]
        for row_index, rca in enumerate(self.rcas, start=1):
            if rca.mttr_status == MttrStatus.EXCEEDED:
                style.append(
                    ("BACKGROUND", (5, row_index), (5, row_index), colors.HexColor("#fee2e2"))
                )
        table.setStyle(TableStyle(style))
        elements.append(table)
        return elements

    def _build_rca_section(self, rca: RcaForm) -> list:
        escalation = rca.escalation
        elements = [
            Paragraph(
                f"{escape(escalation.ticket_id)} | {escape(escalation.link_id)}",
                self.styles["heading"],
            )
        ]

        minutes = int(rca.mttr_used or 0) * 60
        details = [
            ("Provider", escalation.provider.value.upper()),
            ("Segment", rca.segment),
            ("Link type", rca.link_type),
            ("Start time", rca.start_time),
            ("End time", rca.end_time),
            ("MTTR budget", f"{escalation.mttr_hours} h"),
            ("MTTR used", human_duration(minutes)),
            ("MTTR status", rca.mttr_status),
            ("Cause of failure", rca.cof),
            ("Point of failure", rca.pof),
            ("Actual COF", rca.actual_cof),
            ("Detailed COF", rca.detailed_cof),
            ("Resolution", rca.resolution),
            ("OFC", rca.ofc),
            ("JC", rca.jc),
            ("Cause of delay", rca.cod),
            ("Team lead", rca.team_lead),
            ("Team manager", rca.team_manager),
            ("Bottle / cassette / tray", rca.bottle_cassette_tray),
            ("Time to POF", rca.time_to_pof),
            ("Time to test", rca.time_to_test),
            ("TT number", rca.tt_number),
        ]
        table = Table(
            [[self._paragraph(label), self._paragraph(value)] for label, value in details],
            colWidths=[2.2 * inch, 7.5 * inch],
        )
        table.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (0, -1), colors.HexColor("#f1f5f9")),
            ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
            ("GRID", (0, 0), (-1, -1), 0.5, colors.HexColor("#e2e8f0")),
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ]))
        elements.append(table)
        return elements

    def _add_page_footer(self, canvas, doc):
        canvas.saveState()
        width, _ = landscape(A4)
        canvas.setFont("Helvetica", 8)
        canvas.setFillColor(colors.HexColor("#94a3b8"))
        canvas.drawString(
            0.5 * inch,
            0.4 * inch,
            f"Generated: {self.generated_at.strftime('%Y-%m-%d %H:%M UTC')}",
        )
        canvas.drawRightString(width - 0.5 * inch, 0.4 * inch, f"Page {doc.page}")
        canvas.restoreState()
