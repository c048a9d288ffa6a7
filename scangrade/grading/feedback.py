"""Generate grade report PDFs for saved grades."""

import re
from datetime import datetime
from pathlib import Path
from typing import Optional

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from ..config import GENERATED_FOLDER
from ..database import Gradebook, GradeRecord

SOURCE_LABELS = {
    "ai": "AI grading",
    "teacher-guided": "Teacher-guided AI grading",
    "manual": "Teacher score",
    None: "No work detected",
}


def _escape(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


class GradeReportGenerator:
    """Render one saved grade as a printable PDF."""

    def __init__(self, gradebook: Optional[Gradebook] = None, output_folder: Optional[Path] = None):
        self.gradebook = gradebook or Gradebook()
        self.output_folder = Path(output_folder or GENERATED_FOLDER)
        self.styles = getSampleStyleSheet()
        self._setup_custom_styles()

    def _setup_custom_styles(self):
        """Set up custom paragraph styles."""
        self.styles.add(ParagraphStyle(
            name='ReportTitle',
            parent=self.styles['Heading1'],
            fontSize=20,
            spaceAfter=15,
            alignment=TA_CENTER
        ))
        self.styles.add(ParagraphStyle(
            name='Misconception',
            parent=self.styles['Normal'],
            fontSize=11,
            textColor=colors.darkred,
            leftIndent=20
        ))
        self.styles.add(ParagraphStyle(
            name='Justification',
            parent=self.styles['Normal'],
            fontSize=11,
            spaceBefore=10,
            spaceAfter=10,
            textColor=colors.darkblue,
            borderPadding=8,
            backColor=colors.lightyellow
        ))

    def _score_table(self, record: GradeRecord) -> Table:
        level = record.proficiency_level
        percentage = record.raw_percentage
        data = [
            [f"Final Grade: {record.final_grade}", f"Source: {SOURCE_LABELS.get(record.source_tag, record.source_tag)}"],
            [
                f"Proficiency: {level}/4" if level is not None else "Proficiency: -",
                f"Raw score: {percentage:.0f}%" if percentage is not None else "Raw score: -",
            ],
            [
                f"Date: {record.created_at.strftime('%B %d, %Y') if record.created_at else 'N/A'}",
                "Teacher override" if record.overridden else (record.adjudication_method or ""),
            ],
        ]
        color = colors.darkgreen if record.final_grade >= 85 else colors.orange if record.final_grade >= 70 else colors.darkred
        table = Table(data, colWidths=[3.5*inch, 3.5*inch])
        table.setStyle(TableStyle([
            ('BOX', (0, 0), (-1, -1), 2, color),
            ('INNERGRID', (0, 0), (-1, -1), 0.5, colors.gray),
            ('ALIGN', (0, 0), (-1, -1), 'CENTER'),
            ('FONTSIZE', (0, 0), (-1, -1), 12),
            ('PADDING', (0, 0), (-1, -1), 10),
            ('BACKGROUND', (0, 0), (-1, 0), colors.lightgrey),
        ]))
        return table

    def _rubric_table(self, rubric: list[dict]) -> Table:
        data = [["Criterion", "Points", "Feedback"]]
        for item in rubric:
            data.append([
                Paragraph(_escape(str(item.get("criterion", ""))), self.styles['Normal']),
                f"{item.get('earned', 0):g} / {item.get('possible', 0):g}",
                Paragraph(_escape(str(item.get("feedback", ""))), self.styles['Normal']),
            ])
        table = Table(data, colWidths=[2.5*inch, 1*inch, 3.5*inch])
        table.setStyle(TableStyle([
            ('GRID', (0, 0), (-1, -1), 0.5, colors.gray),
            ('BACKGROUND', (0, 0), (-1, 0), colors.lightgrey),
            ('VALIGN', (0, 0), (-1, -1), 'TOP'),
            ('ALIGN', (1, 0), (1, -1), 'CENTER'),
        ]))
        return table

    def generate_report(self, record_id: int) -> Optional[str]:
        """Generate a report PDF for a saved grade. Returns the path, or None if not found."""
        record = self.gradebook.get_record(record_id)
        if not record:
            return None

        student = record.student
        safe_code = re.sub(r"[^A-Za-z0-9_-]", "_", student.code)
        filename = f"grade_{safe_code}_{record.id}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.pdf"
        self.output_folder.mkdir(parents=True, exist_ok=True)
        filepath = self.output_folder / filename

        doc = SimpleDocTemplate(
            str(filepath),
            pagesize=letter,
            rightMargin=0.75*inch,
            leftMargin=0.75*inch,
            topMargin=0.75*inch,
            bottomMargin=0.75*inch
        )

        elements = [
            Paragraph(f"Grade Report: {_escape(student.name)}", self.styles['ReportTitle']),
        ]
        if record.question_id:
            elements.append(Paragraph(f"Question {_escape(record.question_id)}", self.styles['Heading3']))

        elements.append(self._score_table(record))
        elements.append(Spacer(1, 0.3*inch))

        if record.justification:
            elements.append(Paragraph("<b>Why this grade:</b>", self.styles['Heading2']))
            elements.append(Paragraph(_escape(record.justification), self.styles['Justification']))

        rubric = record.rubric_json or []
        if rubric:
            elements.append(Paragraph("<b>Rubric:</b>", self.styles['Heading2']))
            elements.append(self._rubric_table(rubric))
            elements.append(Spacer(1, 0.2*inch))

        misconceptions = record.misconceptions_json or []
        if misconceptions:
            elements.append(Paragraph("<b>Areas to Focus On:</b>", self.styles['Heading2']))
            for text in misconceptions:
                elements.append(Paragraph(f"• {_escape(text)}", self.styles['Misconception']))

        if not record.has_work:
            elements.append(Spacer(1, 0.2*inch))
            elements.append(Paragraph(
                "No student work was found on this submission.",
                self.styles['Normal']
            ))

        doc.build(elements)
        return str(filepath)
