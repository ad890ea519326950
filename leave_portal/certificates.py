import io
import logging
from datetime import date, datetime
from xml.sax.saxutils import escape

from reportlab.graphics.barcode.qr import QrCodeWidget
from reportlab.graphics.shapes import Drawing
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_RIGHT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm, inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from .errors import PolicyError
from .models import APPROVED

logger = logging.getLogger(__name__)

QR_SIZE = 2.5 * cm


def _format_date(value):
    if value is None:
        return '-'
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if isinstance(value, datetime):
        value = value.date()
    return value.strftime('%d %b %Y')


def verification_code(leave):
    return f'Leave#{leave.id}|{leave.requester_name or ""}|{leave.status}'


def _qr_drawing(value):
    widget = QrCodeWidget(value)
    x1, y1, x2, y2 = widget.getBounds()
    drawing = Drawing(QR_SIZE, QR_SIZE,
                      transform=[QR_SIZE / (x2 - x1), 0, 0, QR_SIZE / (y2 - y1), 0, 0])
    drawing.add(widget)
    return drawing


def decision_rows(leave, approver_name=None, generated_on=None):
    """Label/value rows describing the decision; the reviewer label follows the status"""
    reviewer_label = 'Approved By' if leave.status == APPROVED else 'Rejected By'
    rows = [
        ['Status', leave.status.capitalize()],
        [reviewer_label, approver_name or leave.approved_by_name or '-'],
        ['Decided On', _format_date(leave.status_decided_at)],
        ['Generated On', _format_date(generated_on or date.today())],
    ]
    if leave.comments:
        rows.insert(2, ['Comments', leave.comments])
    if leave.overridden_by_admin:
        rows.append(['Note', f'Changed by an administrator from {leave.overridden_from}'])
    return rows


def render_leave_certificate(leave, approver_name=None, institution='College Leave Portal',
                             generated_on=None):
    """Build the PDF certificate of a decided leave application and return its bytes"""
    if not leave.is_decided:
        raise PolicyError('Certificates are only available once a leave has been decided')

    generated_on = generated_on or date.today()
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        rightMargin=2 * cm,
        leftMargin=2 * cm,
        topMargin=2 * cm,
        bottomMargin=2 * cm,
        title=f'Leave certificate #{leave.id}',
    )

    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        'CertTitle',
        parent=styles['Heading1'],
        fontSize=22,
        textColor=colors.HexColor('#1a365d'),
        alignment=TA_CENTER,
        spaceAfter=4,
    )
    subtitle_style = ParagraphStyle(
        'CertSubtitle',
        parent=styles['Normal'],
        fontSize=10,
        textColor=colors.HexColor('#718096'),
        alignment=TA_CENTER,
        spaceAfter=16,
    )
    body_style = ParagraphStyle(
        'CertBody',
        parent=styles['Normal'],
        fontSize=11,
        textColor=colors.HexColor('#2d3748'),
        leading=15,
    )
    signature_style = ParagraphStyle(
        'CertSignature',
        parent=styles['Normal'],
        fontSize=9,
        textColor=colors.HexColor('#718096'),
        alignment=TA_RIGHT,
    )

    content = [
        Paragraph(escape(institution), subtitle_style),
        Paragraph('Leave Application Certificate', title_style),
        Paragraph('For audit/verification use', subtitle_style),
    ]

    details = [
        ['Name', leave.requester_name or '-'],
        ['Role', (leave.requester_role or '-').capitalize()],
        ['Leave Type', leave.leave_type or '-'],
        ['From', _format_date(leave.start_date)],
        ['To', _format_date(leave.end_date)],
        ['Duration', f'{leave.duration_days} day(s)'],
        ['Emergency', 'Yes' if leave.is_emergency else 'No'],
    ]
    content.append(_table(details))
    content.append(Spacer(1, 12))
    content.append(Paragraph(f'<b>Reason:</b> {escape(leave.reason or "-")}', body_style))
    content.append(Spacer(1, 12))

    content.append(_table(decision_rows(leave, approver_name, generated_on)))
    content.append(Spacer(1, 30))

    footer = Table(
        [[_qr_drawing(verification_code(leave)),
          Paragraph('______________________<br/>Signature of Reviewer', signature_style)]],
        colWidths=[2 * inch, None],
    )
    footer.setStyle(TableStyle([('VALIGN', (0, 0), (-1, -1), 'BOTTOM')]))
    content.append(footer)

    doc.build(content)
    pdf_bytes = buffer.getvalue()
    buffer.close()
    logger.info('Rendered certificate for leave %s (%d bytes)', leave.id, len(pdf_bytes))
    return pdf_bytes


def _table(rows):
    styles = getSampleStyleSheet()
    cell_style = styles['BodyText']
    data = [[label, Paragraph(escape(str(value)), cell_style)] for label, value in rows]
    table = Table(data, colWidths=[1.6 * inch, 4.4 * inch])
    table.setStyle(TableStyle([
        ('BACKGROUND', (0, 0), (0, -1), colors.HexColor('#e2e8f0')),
        ('TEXTCOLOR', (0, 0), (0, -1), colors.HexColor('#2d3748')),
        ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 10),
        ('GRID', (0, 0), (-1, -1), 1, colors.HexColor('#cbd5e0')),
        ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
        ('TOPPADDING', (0, 0), (-1, -1), 6),
        ('BOTTOMPADDING', (0, 0), (-1, -1), 6),
    ]))
    return table
