# ctidash/report.py
from io import BytesIO
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle

from .ai import SECTION_HEADERS, SECTION_KEYS
from .utils import iso

def _para(text, style):
    return Paragraph(escape(text or "").replace("\n", "<br/>"), style)

def build_incident_pdf(incident, sections, generated_at=None) -> BytesIO:
    """Render the AI vulnerability summary of one incident. Returns a rewound buffer."""
    buffer = BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=letter, title=f"Vulnerability Summary - {incident.get('title', '')}")
    styles = getSampleStyleSheet()
    elements = []

    elements.append(_para("Vulnerability Summary", styles["Title"]))
    elements.append(_para(incident.get("title") or "", styles["Heading2"]))
    elements.append(Spacer(1, 12))

    rows = [
        ["Status", incident.get("status") or ""],
        ["Priority", incident.get("priority") or ""],
        ["Type", incident.get("type") or "Not specified"],
        ["Reported by", incident.get("reportedByUserName") or ""],
        ["Assigned to", incident.get("assignedToUserName") or "Unassigned"],
        ["CVEs", ", ".join(incident.get("cveIds") or []) or "None"],
        ["Created", iso(incident.get("dateCreated")) or ""],
    ]
    table = Table(rows, colWidths=[110, 360])
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (0, -1), colors.HexColor("#e5e7eb")),
        ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
        ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
    ]))
    elements.append(table)
    elements.append(Spacer(1, 18))

    for header in SECTION_HEADERS:
        elements.append(_para(header.title(), styles["Heading3"]))
        elements.append(_para(sections.get(SECTION_KEYS[header]) or "Not available.", styles["BodyText"]))
        elements.append(Spacer(1, 10))

    if generated_at:
        elements.append(_para(f"Generated {iso(generated_at)}", styles["Italic"]))

    doc.build(elements)
    buffer.seek(0)
    return buffer
