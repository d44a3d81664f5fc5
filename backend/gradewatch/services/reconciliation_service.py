"""Single writer for ``grades`` and ``grade_history``.

Every grade edit goes through :class:`ReconciliationService`: it decides
whether a submission is an insert, an update or a no-op, logs the transition in
the history table in the same transaction, and retries once when a concurrent
writer touched the same (student, course, quarter) key.
"""

import logging
import uuid
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from gradewatch.core.db import utcnow
from gradewatch.core.errors import (
    GradeConflictError,
    GradePermissionError,
    GradeValidationError,
    NotFoundError,
    QuarterLockedError,
)
from gradewatch.core.permissions import can_edit_grades
from gradewatch.models.course import Course
from gradewatch.models.grade import (
    FAILING_GRADE,
    GRADE_LETTERS,
    NATURAL_KEY_INDEX,
    ChangeType,
    Grade,
    GradeHistory,
    GradeType,
)
from gradewatch.models.quarter import Quarter
from gradewatch.models.school_class import SchoolClass
from gradewatch.models.student import Student
from gradewatch.models.user import User
from gradewatch.services.duplicate_service import canonical_order_key

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 2


def classify_change(from_grade: str | None, to_grade: str | None) -> ChangeType:
    was_failing = from_grade == FAILING_GRADE
    is_failing = to_grade == FAILING_GRADE
    if was_failing and not is_failing:
        return ChangeType.IMPROVEMENT
    if is_failing and not was_failing:
        return ChangeType.REGRESSION
    return ChangeType.CHANGE


def is_natural_key_violation(exc: IntegrityError) -> bool:
    """True when ``exc`` comes from the unique index on (student, course, quarter)."""
    diag = getattr(exc.orig, "diag", None)
    constraint = getattr(diag, "constraint_name", None)
    if constraint:
        return constraint == NATURAL_KEY_INDEX
    # SQLite reports the columns instead of the index name
    message = str(exc.orig)
    return NATURAL_KEY_INDEX in message or "UNIQUE constraint failed: grades.student_id" in message


def normalize_grade(grade: Any, grade_type: Any) -> tuple[str, GradeType]:
    letter = (grade or "").strip().upper() if isinstance(grade, str) else None
    if letter not in GRADE_LETTERS:
        raise GradeValidationError(f"Invalid grade {grade!r}, expected one of {', '.join(GRADE_LETTERS)}")

    try:
        kind = GradeType(grade_type)
    except ValueError as exc:
        raise GradeValidationError(f"Invalid grade_type {grade_type!r}") from exc

    if kind == GradeType.WARNING and letter != FAILING_GRADE:
        raise GradeValidationError("Only an F can be recorded as a warning")
    return letter, kind


def student_snapshot(db: Session, student: Student | None) -> dict[str, Any] | None:
    if student is None:
        return None
    school_class = db.get(SchoolClass, student.class_id) if student.class_id else None
    return {
        "name": student.name,
        "class_id": str(student.class_id) if student.class_id else None,
        "class_name": school_class.name if school_class else None,
    }


def course_snapshot(course: Course | None) -> dict[str, Any] | None:
    if course is None:
        return None
    return {"code": course.code, "name": course.name}


class ReconciliationService:
    def _require_editor(self, db: Session, actor: User | None) -> None:
        if not can_edit_grades(db, actor):
            raise GradePermissionError("Not allowed to edit grades")

    def _require_ids(self, **ids: uuid.UUID | None) -> None:
        missing = [name for name, value in ids.items() if value is None]
        if missing:
            raise GradeValidationError(f"Missing required identifiers: {', '.join(missing)}")

    def _require_open_quarter(self, db: Session, quarter_id: uuid.UUID) -> Quarter:
        quarter = db.get(Quarter, quarter_id)
        if not quarter:
            raise NotFoundError("Quarter not found")
        if quarter.locked:
            raise QuarterLockedError(f"Quarter {quarter.name} is locked")
        return quarter

    def _current_rows(
        self, db: Session, student_id: uuid.UUID, course_id: uuid.UUID, quarter_id: uuid.UUID
    ) -> list[Grade]:
        rows = (
            db.query(Grade)
            .filter(
                Grade.student_id == student_id,
                Grade.course_id == course_id,
                Grade.quarter_id == quarter_id,
            )
            .all()
        )
        if len(rows) > 1:
            logger.warning(
                "Found %d grade rows for student=%s course=%s quarter=%s; using the newest",
                len(rows),
                student_id,
                course_id,
                quarter_id,
            )
        return sorted(rows, key=canonical_order_key, reverse=True)

    def get_current_grade(
        self, db: Session, student_id: uuid.UUID, course_id: uuid.UUID, quarter_id: uuid.UUID
    ) -> Grade | None:
        rows = self._current_rows(db, student_id, course_id, quarter_id)
        return rows[0] if rows else None

    def _run_with_retry(self, db: Session, operation, description: str):
        last_conflict: Exception | None = None
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            try:
                return operation()
            except (IntegrityError, StaleDataError) as exc:
                db.rollback()
                if isinstance(exc, IntegrityError) and not is_natural_key_violation(exc):
                    raise
                last_conflict = exc
                logger.warning("Conflict while %s (attempt %d/%d)", description, attempt, MAX_WRITE_ATTEMPTS)
            except SQLAlchemyError:
                db.rollback()
                raise
        raise GradeConflictError(
            "The grade was changed by someone else at the same time, please retry"
        ) from last_conflict

    def _write_grade(
        self,
        db: Session,
        *,
        actor: User,
        student: Student,
        course: Course,
        quarter_id: uuid.UUID,
        letter: str,
        kind: GradeType,
    ) -> tuple[Grade, bool]:
        existing = self.get_current_grade(db, student.id, course.id, quarter_id)
        if existing and existing.grade == letter and existing.grade_type == kind:
            return existing, False

        from_grade = existing.grade if existing else None
        now = utcnow()
        if existing:
            record = existing
            record.grade = letter
            record.grade_type = kind
            record.teacher_id = actor.id
            record.updated_at = now
        else:
            record = Grade(
                student_id=student.id,
                course_id=course.id,
                quarter_id=quarter_id,
                grade=letter,
                grade_type=kind,
                teacher_id=actor.id,
                created_at=now,
                updated_at=now,
            )
            db.add(record)

        db.add(
            GradeHistory(
                student_id=student.id,
                course_id=course.id,
                quarter_id=quarter_id,
                from_grade=from_grade,
                to_grade=letter,
                grade_type=kind,
                change_type=classify_change(from_grade, letter),
                changed_by=actor.id,
                student_snapshot=student_snapshot(db, student),
                course_snapshot=course_snapshot(course),
                created_at=now,
            )
        )
        db.commit()
        db.refresh(record)
        return record, True

    def set_grade(
        self,
        db: Session,
        *,
        actor: User | None,
        student_id: uuid.UUID | None,
        course_id: uuid.UUID | None,
        quarter_id: uuid.UUID | None,
        grade: str,
        grade_type: GradeType | str = GradeType.GRADE,
    ) -> tuple[Grade, bool]:
        """Record ``grade`` for the natural key and log the transition.

        Returns the current record and whether anything was written; a
        submission identical to the stored (grade, grade_type) is a no-op.
        """
        self._require_editor(db, actor)
        self._require_ids(student_id=student_id, course_id=course_id, quarter_id=quarter_id)
        letter, kind = normalize_grade(grade, grade_type)
        quarter = self._require_open_quarter(db, quarter_id)

        student = db.get(Student, student_id)
        if not student:
            raise NotFoundError("Student not found")
        course = db.get(Course, course_id)
        if not course:
            raise NotFoundError("Course not found")

        return self._run_with_retry(
            db,
            lambda: self._write_grade(
                db,
                actor=actor,
                student=student,
                course=course,
                quarter_id=quarter.id,
                letter=letter,
                kind=kind,
            ),
            f"setting grade for student={student_id} course={course_id} quarter={quarter_id}",
        )

    def _delete_grade(
        self,
        db: Session,
        *,
        actor: User,
        student_id: uuid.UUID,
        course_id: uuid.UUID,
        quarter_id: uuid.UUID,
    ) -> bool:
        rows = self._current_rows(db, student_id, course_id, quarter_id)
        if not rows:
            return False

        current = rows[0]
        db.add(
            GradeHistory(
                student_id=student_id,
                course_id=course_id,
                quarter_id=quarter_id,
                from_grade=current.grade,
                to_grade=None,
                grade_type=current.grade_type,
                change_type=ChangeType.CHANGE,
                changed_by=actor.id,
                student_snapshot=student_snapshot(db, db.get(Student, student_id)),
                course_snapshot=course_snapshot(db.get(Course, course_id)),
                created_at=utcnow(),
            )
        )
        # Legacy duplicates of the same key go too
        for row in rows:
            db.delete(row)
        db.commit()
        return True

    def clear_grade(
        self,
        db: Session,
        *,
        actor: User | None,
        student_id: uuid.UUID | None,
        course_id: uuid.UUID | None,
        quarter_id: uuid.UUID | None,
    ) -> bool:
        """Delete the grade for the natural key. Returns False when there was none."""
        self._require_editor(db, actor)
        self._require_ids(student_id=student_id, course_id=course_id, quarter_id=quarter_id)
        self._require_open_quarter(db, quarter_id)

        return self._run_with_retry(
            db,
            lambda: self._delete_grade(
                db,
                actor=actor,
                student_id=student_id,
                course_id=course_id,
                quarter_id=quarter_id,
            ),
            f"clearing grade for student={student_id} course={course_id} quarter={quarter_id}",
        )

    def clear_grade_by_id(self, db: Session, *, actor: User | None, grade_id: uuid.UUID) -> bool:
        # Checked before the lookup as well, so a caller without rights gets a
        # permission error rather than learning whether the id exists.
        self._require_editor(db, actor)
        grade = db.get(Grade, grade_id)
        if not grade:
            raise NotFoundError("Grade not found")
        return self.clear_grade(
            db,
            actor=actor,
            student_id=grade.student_id,
            course_id=grade.course_id,
            quarter_id=grade.quarter_id,
        )


reconciliation_service = ReconciliationService()
