import logging
import uuid
from datetime import date, datetime
from types import SimpleNamespace
from typing import Any

import openai
from sqlalchemy import update
from sqlalchemy.orm import Session

from gradewatch.core.db import utcnow
from gradewatch.core.errors import NarrativeError, NotFoundError
from gradewatch.models.course import Course
from gradewatch.models.grade import Grade, GradeHistory
from gradewatch.models.quarter import Quarter
from gradewatch.models.school_class import SchoolClass
from gradewatch.models.snapshot import Snapshot
from gradewatch.models.student import Student
from gradewatch.models.user import User
from gradewatch.services import aggregation
from gradewatch.services.llm_service import (
    ClassBreakdown,
    CourseBreakdown,
    LLMService,
    NarrativePayload,
    NarrativeStats,
    RiskBuckets,
)

logger = logging.getLogger(__name__)


def _json_value(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    enum_value = getattr(value, "value", None)
    if isinstance(enum_value, str):
        return enum_value
    return value


def _freeze(row: Any, fields: tuple[str, ...]) -> dict[str, Any]:
    return {name: _json_value(getattr(row, name)) for name in fields}


GRADE_FIELDS = ("id", "student_id", "course_id", "quarter_id", "grade", "grade_type", "created_at", "updated_at")
STUDENT_FIELDS = ("id", "name", "class_id")
COURSE_FIELDS = ("id", "name", "code", "points")
CLASS_FIELDS = ("id", "name")


def _thaw(items: list[dict[str, Any]] | None) -> list[SimpleNamespace]:
    return [SimpleNamespace(**item) for item in items or []]


def compute_snapshot_stats(
    grades: list[Any], students: list[Any], improvements: int
) -> dict[str, Any]:
    summary = aggregation.count_summary(grades)
    risk = aggregation.at_risk_buckets(grades)
    known_students = {s.id for s in students}
    return {
        "total_students": len({g.student_id for g in grades if g.student_id in known_students}),
        "total_grades": len(grades),
        "total_f_grades": summary["f_grade_count"],
        "total_f_warnings": summary["f_warning_count"],
        "pass_rate": summary["pass_rate"],
        "average_grade": aggregation.average_grade(grades),
        "total_improvements": improvements,
        "at_risk": {
            "with_1f": risk["with_1f"],
            "with_2f": risk["with_2f"],
            "with_3plus_f": risk["with_3plus_f"],
        },
    }


class SnapshotService:
    def create_snapshot(
        self,
        db: Session,
        *,
        actor: User,
        quarter: Quarter,
        name: str,
        notes: str | None = None,
    ) -> Snapshot:
        grades = db.query(Grade).filter(Grade.quarter_id == quarter.id).all()
        students = db.query(Student).filter(Student.archived.is_(False)).all()
        courses = db.query(Course).filter(Course.archived.is_(False)).all()
        classes = db.query(SchoolClass).filter(SchoolClass.archived.is_(False)).all()
        history = db.query(GradeHistory).filter(GradeHistory.quarter_id == quarter.id).all()

        improvements = aggregation.improvement_rollup(
            history, students, courses, classes, quarter_id=quarter.id
        )["total_improvements"]

        snapshot = Snapshot(
            quarter_id=quarter.id,
            name=name,
            notes=notes,
            data={
                "grades": [_freeze(g, GRADE_FIELDS) for g in grades],
                "students": [_freeze(s, STUDENT_FIELDS) for s in students],
                "courses": [_freeze(c, COURSE_FIELDS) for c in courses],
                "classes": [_freeze(c, CLASS_FIELDS) for c in classes],
            },
            stats=compute_snapshot_stats(grades, students, improvements),
            created_by=actor.id,
        )
        db.add(snapshot)
        db.commit()
        db.refresh(snapshot)
        logger.info("Created snapshot %s for quarter %s (%d grades)", snapshot.id, quarter.id, len(grades))
        return snapshot

    def get_snapshot(self, db: Session, snapshot_id: uuid.UUID) -> Snapshot:
        snapshot = db.get(Snapshot, snapshot_id)
        if not snapshot:
            raise NotFoundError("Snapshot not found")
        return snapshot

    def delete_snapshot(self, db: Session, snapshot_id: uuid.UUID) -> None:
        snapshot = self.get_snapshot(db, snapshot_id)
        db.delete(snapshot)
        db.commit()

    def build_narrative_payload(self, snapshot: Snapshot, quarter_name: str) -> NarrativePayload:
        data = snapshot.data or {}
        grades = _thaw(data.get("grades"))
        students = _thaw(data.get("students"))
        courses = _thaw(data.get("courses"))
        classes = _thaw(data.get("classes"))
        stats = snapshot.stats or {}
        risk = stats.get("at_risk") or aggregation.at_risk_buckets(grades)

        class_breakdown = [
            ClassBreakdown(
                class_name=row["name"],
                student_count=row["student_count"],
                f_count=row["f_grade_count"],
                f_warning_count=row["f_warning_count"],
            )
            for row in aggregation.class_rollups(grades, students, classes)
        ]
        course_breakdown = [
            CourseBreakdown(
                course_code=row["code"],
                course_name=row["name"],
                f_count=row["f_grade_count"],
                f_warning_count=row["f_warning_count"],
            )
            for row in aggregation.course_rollups(grades, courses)
        ]

        return NarrativePayload(
            name=snapshot.name,
            quarter_name=quarter_name,
            snapshot_date=snapshot.created_at.date().isoformat() if snapshot.created_at else "",
            stats=NarrativeStats(
                total_students=stats.get("total_students", 0),
                total_grades=stats.get("total_grades", len(grades)),
                total_f_grades=stats.get("total_f_grades", 0),
                total_f_warnings=stats.get("total_f_warnings", 0),
                pass_rate=stats.get("pass_rate"),
                total_improvements=stats.get("total_improvements"),
            ),
            class_breakdown=class_breakdown,
            course_breakdown=course_breakdown,
            students_at_risk=RiskBuckets(
                with_1f=risk["with_1f"],
                with_2f=risk["with_2f"],
                with_3plus_f=risk["with_3plus_f"],
            ),
        )

    def analyze_snapshot(
        self, db: Session, snapshot_id: uuid.UUID, llm: LLMService | None = None
    ) -> Snapshot:
        """Generate and store the narrative analysis once.

        A snapshot that already has an analysis is returned unchanged without
        calling the model. Model failures leave the snapshot untouched.
        """
        snapshot = self.get_snapshot(db, snapshot_id)
        if snapshot.analysis:
            return snapshot

        quarter = db.get(Quarter, snapshot.quarter_id)
        payload = self.build_narrative_payload(snapshot, quarter.name if quarter else "")

        try:
            analysis = (llm or LLMService()).generate_snapshot_analysis(payload)
        except (openai.OpenAIError, ValueError) as exc:
            logger.exception("Failed to generate analysis for snapshot %s", snapshot_id)
            raise NarrativeError(f"Failed to generate analysis: {exc}") from exc

        # Only the first successful generation is kept
        db.execute(
            update(Snapshot)
            .where(Snapshot.id == snapshot_id, Snapshot.analysis.is_(None))
            .values(analysis=analysis, analyzed_at=utcnow())
        )
        db.commit()
        db.refresh(snapshot)
        return snapshot


snapshot_service = SnapshotService()
