"""Audit trail report export (PDF)."""
from __future__ import annotations

from typing import Iterable

from signflow.services.audit_log import TaggedEntry


def _escape_for_reportlab(s: str) -> str:
    """Escape text for ReportLab Paragraph (XML-like markup)."""
    return (
        s.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
    )


def audit_report_pdf(title: str, entries: Iterable[TaggedEntry]) -> bytes:
    """Render audit entries as a PDF: one block per entry, oldest first."""
    from io import BytesIO
    from reportlab.lib import colors
    from reportlab.lib.pagesizes import letter
    from reportlab.lib.styles import getSampleStyleSheet
    from reportlab.lib.units import inch
    from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer

    buf = BytesIO()
    doc = SimpleDocTemplate(
        buf,
        pagesize=letter,
        leftMargin=0.75 * inch,
        rightMargin=0.75 * inch,
        topMargin=0.75 * inch,
        bottomMargin=0.75 * inch,
        title=title,
    )
    styles = getSampleStyleSheet()
    heading_style = styles["Heading4"]
    body_style = styles["Normal"].clone("AuditBody", spaceAfter=2)
    meta_style = styles["Normal"].clone("AuditMeta", fontSize=8, textColor=colors.grey, spaceAfter=8)

    story = [Paragraph(_escape_for_reportlab(title.replace("\n", " ")), styles["Title"]), Spacer(1, 0.2 * inch)]
    count = 0
    for t in entries:
        e = t.entry
        count += 1
        story.append(Paragraph(_escape_for_reportlab(f"{e.action.value.replace('_', ' ').capitalize()} - {t.document_name}"), heading_style))
        story.append(Paragraph(_escape_for_reportlab(e.details), body_style))
        meta = f"{e.timestamp.strftime('%Y-%m-%d %H:%M:%S %Z').strip()} | {e.user} | {e.ip_address or 'unknown address'} | entry {e.id}"
        story.append(Paragraph(_escape_for_reportlab(meta), meta_style))
    if not count:
        story.append(Paragraph("No audit entries.", body_style))

    doc.build(story)
    return buf.getvalue()
