import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, Index, Integer, String, Uuid, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from gradewatch.core.db import Base, utcnow

GRADE_LETTERS = ("A", "B", "C", "D", "E", "F")
FAILING_GRADE = "F"
NATURAL_KEY_INDEX = "uq_grades_student_course_quarter"

# Numeric value of each letter, used for averages
GRADE_VALUES: dict[str, int] = {"A": 5, "B": 4, "C": 3, "D": 2, "E": 1, "F": 0}


class GradeType(str, enum.Enum):
    GRADE = "grade"
    WARNING = "warning"


class ChangeType(str, enum.Enum):
    IMPROVEMENT = "improvement"
    REGRESSION = "regression"
    CHANGE = "change"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class Grade(Base):
    """Current grade of one student in one course for one quarter."""

    __tablename__ = "grades"
    __table_args__ = (
        Index(
            NATURAL_KEY_INDEX,
            "student_id",
            "course_id",
            "quarter_id",
            unique=True,
        ),
        Index("idx_grades_quarter", "quarter_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("students.id", name="grades_student_id_fkey", ondelete="CASCADE"),
        nullable=False,
    )
    course_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("courses.id", name="grades_course_id_fkey", ondelete="CASCADE"),
        nullable=False,
    )
    quarter_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("quarters.id", name="grades_quarter_id_fkey", ondelete="CASCADE"),
        nullable=False,
    )
    grade: Mapped[str | None] = mapped_column(String(1), nullable=True)
    grade_type: Mapped[GradeType] = mapped_column(
        Enum(
            GradeType,
            name="grade_type",
            native_enum=False,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=GradeType.GRADE,
    )
    teacher_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", name="grades_teacher_id_fkey", ondelete="SET NULL"),
        nullable=True,
    )
    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime, server_default=text("CURRENT_TIMESTAMP"), default=utcnow, nullable=True
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime, server_default=text("CURRENT_TIMESTAMP"), default=utcnow, nullable=True
    )

    # Concurrent updates of the same row fail with StaleDataError instead of
    # overwriting each other.
    __mapper_args__ = {"version_id_col": version_id}


class GradeHistory(Base):
    """Append-only log of grade transitions.

    ``student_id`` and ``course_id`` are deliberately not foreign keys: history
    outlives archived or deleted students and courses, and the ``*_snapshot``
    columns keep the names needed to display those rows.
    """

    __tablename__ = "grade_history"
    __table_args__ = (
        Index(
            "idx_grade_history_natural_key",
            "student_id",
            "course_id",
            "quarter_id",
        ),
        Index("idx_grade_history_change_type", "change_type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    course_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    quarter_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("quarters.id", name="grade_history_quarter_id_fkey", ondelete="CASCADE"),
        nullable=False,
    )
    from_grade: Mapped[str | None] = mapped_column(String(1), nullable=True)
    to_grade: Mapped[str | None] = mapped_column(String(1), nullable=True)
    grade_type: Mapped[GradeType] = mapped_column(
        Enum(
            GradeType,
            name="grade_type",
            native_enum=False,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=GradeType.GRADE,
    )
    change_type: Mapped[ChangeType] = mapped_column(
        Enum(
            ChangeType,
            name="change_type",
            native_enum=False,
            values_callable=_enum_values,
        ),
        nullable=False,
    )
    changed_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    student_snapshot: Mapped[dict[str, Any] | None] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"), nullable=True
    )
    course_snapshot: Mapped[dict[str, Any] | None] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"), nullable=True
    )
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime, server_default=text("CURRENT_TIMESTAMP"), default=utcnow, nullable=True
    )
