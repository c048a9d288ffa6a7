"""Printable sheets of student QR code labels."""

import io
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence

import qrcode
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Image, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from ..config import GENERATED_FOLDER
from ..grading.qr_scanner import encode_student_code

LABELS_PER_ROW = 3


def qr_png_bytes(payload: str, box_size: int = 4) -> bytes:
    """Render a QR payload as PNG bytes."""
    qr = qrcode.QRCode(version=1, box_size=box_size, border=1)
    qr.add_data(payload)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    # Save to bytes buffer
    buffer = io.BytesIO()
    img.save(buffer, format='PNG')
    return buffer.getvalue()


class LabelSheetGenerator:
    """Generate label sheets students stick in a corner of their work."""

    def __init__(self, output_folder: Optional[Path] = None):
        self.output_folder = Path(output_folder or GENERATED_FOLDER)
        self.styles = getSampleStyleSheet()
        self.styles.add(ParagraphStyle(
            name='LabelText',
            parent=self.styles['Normal'],
            fontSize=9,
            alignment=TA_CENTER
        ))

    def _generate_qr_image(self, payload: str) -> Image:
        """Generate a QR code flowable for one label."""
        return Image(io.BytesIO(qr_png_bytes(payload)), width=1.0*inch, height=1.0*inch)

    def _label(self, student, question_id: Optional[str]) -> list:
        payload = encode_student_code(student.code, question_id)
        caption = f"{student.name}<br/>{student.code}"
        if question_id:
            caption += f"<br/>Q: {question_id}"
        return [self._generate_qr_image(payload), Paragraph(caption, self.styles['LabelText'])]

    def generate_labels(
        self,
        students: Sequence,
        question_ids: Sequence[Optional[str]] = (None,),
        title: str = "Student Labels",
    ) -> Optional[str]:
        """One label per student per question; `None` means a student-only code."""
        if not students:
            return None

        labels = [self._label(s, q) for s in students for q in (question_ids or (None,))]
        rows = [labels[i:i + LABELS_PER_ROW] for i in range(0, len(labels), LABELS_PER_ROW)]
        rows[-1] = rows[-1] + [""] * (LABELS_PER_ROW - len(rows[-1]))

        self.output_folder.mkdir(parents=True, exist_ok=True)
        filepath = self.output_folder / f"labels_{datetime.now().strftime('%Y%m%d_%H%M%S')}.pdf"

        doc = SimpleDocTemplate(
            str(filepath),
            pagesize=letter,
            rightMargin=0.5*inch,
            leftMargin=0.5*inch,
            topMargin=0.5*inch,
            bottomMargin=0.5*inch
        )

        table = Table(rows, colWidths=[2.45*inch] * LABELS_PER_ROW)
        table.setStyle(TableStyle([
            ('GRID', (0, 0), (-1, -1), 0.25, colors.lightgrey),
            ('ALIGN', (0, 0), (-1, -1), 'CENTER'),
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
            ('TOPPADDING', (0, 0), (-1, -1), 8),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 8),
        ]))

        doc.build([Paragraph(title, self.styles['Heading2']), Spacer(1, 0.2*inch), table])
        return str(filepath)
