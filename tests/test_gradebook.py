"""
Tests for the roster, grade records, report PDFs and label sheets.
"""
import pytest

from scangrade.database import Gradebook
from scangrade.errors import InputError, PolicyViolation
from scangrade.grading.adjudicator import AdjudicationDecision, SelectionMethod
from scangrade.grading.feedback import GradeReportGenerator
from scangrade.grading.outcomes import GradingOutcome, NormalizedGrade, OutcomeTag, RubricScore
from scangrade.pdf.generator import LabelSheetGenerator
from scangrade.session import ScanSession, ScanState


@pytest.fixture
def gradebook(db):
    book = Gradebook()
    book.add_student("S-1", "Ada Park", "period-3")
    book.add_student("S-2", "Ben Ortiz", "period-5")
    return book


def normalized_session(student_id="S-1", grade=90):
    outcome = GradingOutcome(
        OutcomeTag.AI,
        rubric_scores=(RubricScore("setup", 3, 4, "good"), RubricScore("solve", 2, 2)),
        misconceptions=("sign error",),
        proficiency_level=3,
        justification="Correct answer, one slip in the setup.",
        raw_percentage=83.3,
        grade=83,
    )
    session = ScanSession(key="teacher-1", state=ScanState.NORMALIZING, student_id=student_id)
    session.outcomes = {OutcomeTag.AI: outcome}
    session.adjudication = AdjudicationDecision(OutcomeTag.AI, 0, SelectionMethod.AUTOMATIC)
    session.normalized_grade = NormalizedGrade(grade, True, OutcomeTag.AI)
    session.selected_question_ids = ["Q2"]
    return session


class TestRoster:

    def test_add_and_find(self, gradebook):
        student = gradebook.find_student("S-1")
        assert student.name == "Ada Park"
        assert student.class_id == "period-3"
        assert gradebook.find_student("S-9") is None
        assert gradebook.find_student("") is None

    def test_add_existing_code_updates(self, gradebook):
        gradebook.add_student("S-1", "Ada Park-Lee")
        student = gradebook.find_student("S-1")
        assert student.name == "Ada Park-Lee"
        assert student.class_id == "period-3"
        assert len(gradebook.list_students()) == 2

    def test_requires_code_and_name(self, gradebook):
        with pytest.raises(InputError):
            gradebook.add_student("", "Nobody")
        with pytest.raises(InputError):
            gradebook.add_student("S-3", "  ")

    def test_list_by_class(self, gradebook):
        assert [s.code for s in gradebook.list_students("period-5")] == ["S-2"]
        assert [s.name for s in gradebook.list_students()] == ["Ada Park", "Ben Ortiz"]


class TestGradeRecords:

    def test_record_and_history(self, gradebook):
        record_id = gradebook.record(normalized_session())
        gradebook.record(normalized_session("S-2", 70))

        record = gradebook.get_record(record_id)
        assert record.final_grade == 90
        assert record.question_id == "Q2"
        assert record.class_id == "period-3"
        assert record.proficiency_level == 3
        assert record.misconceptions_json == ["sign error"]
        assert record.rubric_json[0]["criterion"] == "setup"
        assert record.adjudication_method == "automatic"

        assert [r.student.code for r in gradebook.history("S-1")] == ["S-1"]
        assert len(gradebook.history()) == 2

    def test_record_needs_a_grade(self, gradebook):
        session = normalized_session()
        session.normalized_grade = None
        with pytest.raises(PolicyViolation):
            gradebook.record(session)

    def test_record_needs_a_roster_student(self, gradebook):
        with pytest.raises(PolicyViolation):
            gradebook.record(normalized_session("S-404"))

    def test_missing_record(self, gradebook):
        assert gradebook.get_record(999) is None


class TestReports:

    def test_grade_report_pdf(self, gradebook, tmp_path):
        record_id = gradebook.record(normalized_session())
        path = GradeReportGenerator(gradebook, tmp_path).generate_report(record_id)
        assert path.endswith(".pdf")
        assert (tmp_path / path.split("/")[-1]).read_bytes().startswith(b"%PDF")

    def test_report_for_missing_record(self, gradebook, tmp_path):
        assert GradeReportGenerator(gradebook, tmp_path).generate_report(999) is None

    def test_label_sheet(self, gradebook, tmp_path):
        path = LabelSheetGenerator(tmp_path).generate_labels(gradebook.list_students(), ["Q1", "Q2"])
        assert path.endswith(".pdf")

    def test_no_students_no_labels(self, tmp_path):
        assert LabelSheetGenerator(tmp_path).generate_labels([]) is None
