"""The roster and record store: who a scan belongs to and where grades go."""

import logging
from typing import Optional

from ..errors import InputError, PolicyViolation
from .db import get_session
from .models import GradeRecord, Student

logger = logging.getLogger("scangrade.database")


class Gradebook:
    """Roster lookups and grade persistence."""

    def add_student(self, code: str, name: str, class_id: Optional[str] = None) -> Student:
        code = (code or "").strip()
        name = (name or "").strip()
        if not code or not name:
            raise InputError("A student needs both a code and a name.")

        with get_session() as session:
            student = session.query(Student).filter(Student.code == code).first()
            if student:
                student.name = name
                student.class_id = class_id or student.class_id
            else:
                student = Student(code=code, name=name, class_id=class_id)
                session.add(student)
            session.commit()
            return student

    def find_student(self, code: str) -> Optional[Student]:
        if not code:
            return None
        with get_session() as session:
            return session.query(Student).filter(Student.code == code).first()

    def list_students(self, class_id: Optional[str] = None) -> list[Student]:
        with get_session() as session:
            query = session.query(Student)
            if class_id:
                query = query.filter(Student.class_id == class_id)
            return query.order_by(Student.name).all()

    def record(self, scan) -> int:
        """Persist a session's normalized grade. Returns the new record id."""
        grade = scan.normalized_grade
        if grade is None:
            raise PolicyViolation("There is no final grade to save yet.")

        outcome = scan.selected_outcome
        with get_session() as session:
            student = session.query(Student).filter(Student.code == scan.student_id).first()
            if not student:
                raise PolicyViolation(f"Student {scan.student_id} is not on the roster.")

            record = GradeRecord(
                student_id=student.id,
                session_key=scan.key,
                class_id=scan.class_id or student.class_id,
                question_id=scan.current_question_id,
                final_grade=grade.final_grade,
                has_work=grade.has_work,
                source_tag=grade.source_tag.value if grade.source_tag else None,
                overridden=grade.overridden,
                adjudication_method=scan.adjudication.method.value if scan.adjudication else None,
                strategy_delta=scan.adjudication.delta if scan.adjudication else None,
                proficiency_level=outcome.proficiency_level if outcome else None,
                raw_percentage=outcome.raw_percentage if outcome else None,
                justification=outcome.justification if outcome else "No student work detected",
                misconceptions_json=list(outcome.misconceptions) if outcome else [],
                rubric_json=[s.to_dict() for s in outcome.rubric_scores] if outcome else [],
            )
            session.add(record)
            session.commit()
            logger.info("Saved grade %d for %s (record %d)", grade.final_grade, student.code, record.id)
            return record.id

    def history(self, code: Optional[str] = None, limit: int = 20) -> list[GradeRecord]:
        with get_session() as session:
            query = session.query(GradeRecord).join(Student)
            if code:
                query = query.filter(Student.code == code)
            records = query.order_by(GradeRecord.created_at.desc(), GradeRecord.id.desc()).limit(limit).all()
            for r in records:
                _ = r.student  # load before the session closes
            return records

    def get_record(self, record_id: int) -> Optional[GradeRecord]:
        with get_session() as session:
            record = session.get(GradeRecord, record_id)
            if record:
                _ = record.student
            return record
