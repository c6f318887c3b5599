from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import inch
from typing import Dict, List, Optional
import io

from models import AuditEntry, PassengerStatus, PassengerStatusValue, StudentStop, Trip


def _fmt_time(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "-"


def generate_trip_report_pdf(
    trip: Trip,
    students: List[StudentStop],
    statuses: Dict[str, PassengerStatus],
    audit: Optional[List[AuditEntry]] = None,
) -> io.BytesIO:
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4)
    elements = []

    styles = getSampleStyleSheet()
    title_style = styles['Title']
    heading_style = styles['Heading2']
    normal_style = styles['Normal']

    # Title
    elements.append(Paragraph(f"Trip Report: {trip.id}", title_style))
    elements.append(Spacer(1, 0.25 * inch))

    # Summary
    counts = {value: 0 for value in PassengerStatusValue}
    for student in students:
        record = statuses.get(student.id)
        counts[record.status if record else PassengerStatusValue.PENDING] += 1
    summary_text = (
        f"School: {trip.school_id} | Mode: {trip.mode.value} | Status: {trip.status.value} | "
        f"Started: {_fmt_time(trip.started_at)} | Ended: {_fmt_time(trip.ended_at)}"
    )
    elements.append(Paragraph(summary_text, normal_style))
    counts_text = " | ".join(f"{value.value}: {count}" for value, count in counts.items())
    elements.append(Paragraph(f"Students: {len(students)} ({counts_text})", normal_style))
    elements.append(Spacer(1, 0.4 * inch))

    # Passengers
    elements.append(Paragraph("Passengers", heading_style))
    data = [['Student', 'Status', 'Method', 'Updated', 'By']]
    for student in students:
        record = statuses.get(student.id)
        data.append([
            student.name,
            record.status.value if record else PassengerStatusValue.PENDING.value,
            record.method.value if record else '-',
            _fmt_time(record.timestamp) if record else '-',
            (record.updated_by or '-') if record else '-',
        ])

    table = Table(data, colWidths=[2 * inch, 1 * inch, 0.9 * inch, 1.5 * inch, 1.2 * inch])
    table.setStyle(TableStyle([
        ('BACKGROUND', (0, 0), (-1, 0), colors.indigo),
        ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
        ('ALIGN', (0, 0), (-1, -1), 'CENTER'),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('BOTTOMPADDING', (0, 0), (-1, 0), 10),
        ('BACKGROUND', (0, 1), (-1, -1), colors.beige),
        ('GRID', (0, 0), (-1, -1), 1, colors.black),
    ]))
    elements.append(table)

    # Audit trail
    if audit:
        names = {s.id: s.name for s in students}
        elements.append(Spacer(1, 0.4 * inch))
        elements.append(Paragraph("Check-in history", heading_style))
        rows = [['Time', 'Student', 'Change', 'Method', 'By']]
        for entry in audit:
            previous = entry.previous_status.value if entry.previous_status else PassengerStatusValue.PENDING.value
            rows.append([
                _fmt_time(entry.timestamp),
                names.get(entry.student_id, entry.student_id),
                f"{previous} -> {entry.new_status.value}",
                entry.method.value,
                entry.actor_id,
            ])
        audit_table = Table(rows, colWidths=[1.5 * inch, 1.8 * inch, 1.6 * inch, 0.8 * inch, 1 * inch])
        audit_table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), colors.grey),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 8),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.black),
        ]))
        elements.append(audit_table)

    doc.build(elements)
    buffer.seek(0)
    return buffer
