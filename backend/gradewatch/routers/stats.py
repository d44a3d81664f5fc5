import uuid
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from gradewatch.core.db import get_db
from gradewatch.core.deps import require_permission
from gradewatch.core.permissions import VIEW_DATA
from gradewatch.models.course import Course
from gradewatch.models.grade import Grade, GradeHistory
from gradewatch.models.quarter import Quarter
from gradewatch.models.school_class import SchoolClass
from gradewatch.models.student import Student
from gradewatch.models.user import User
from gradewatch.services import aggregation
from gradewatch.services.aggregation import GradeTypeFilter
from gradewatch.services.quarter_service import quarter_service

router = APIRouter(prefix="/stats", tags=["stats"])


def _reference_data(db: Session) -> tuple[list[Student], list[Course], list[SchoolClass]]:
    students = db.query(Student).filter(Student.archived.is_(False)).all()
    courses = db.query(Course).filter(Course.archived.is_(False)).all()
    classes = db.query(SchoolClass).filter(SchoolClass.archived.is_(False)).all()
    return students, courses, classes


def _scoped_grades(
    db: Session, students: list[Student], courses: list[Course], quarter_id: uuid.UUID | None
) -> list[Grade]:
    """Grades of active students in active courses, optionally for one quarter."""
    student_ids = {s.id for s in students}
    course_ids = {c.id for c in courses}
    query = db.query(Grade)
    if quarter_id is not None:
        query = query.filter(Grade.quarter_id == quarter_id)
    return [g for g in query.all() if g.student_id in student_ids and g.course_id in course_ids]


@router.get("/dashboard")
def dashboard(
    quarter_id: uuid.UUID | None = None,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(VIEW_DATA)),
) -> dict[str, Any]:
    quarter = quarter_service.resolve_quarter(db, quarter_id)
    students, courses, classes = _reference_data(db)
    grades = _scoped_grades(db, students, courses, quarter.id)
    return {"quarter_id": quarter.id, **aggregation.dashboard_stats(grades, students, courses, classes)}


@router.get("/students")
def student_stats(
    quarter_id: uuid.UUID | None = None,
    class_id: uuid.UUID | None = None,
    grade_type_filter: GradeTypeFilter = "both",
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(VIEW_DATA)),
) -> list[dict[str, Any]]:
    quarter = quarter_service.resolve_quarter(db, quarter_id)
    students, courses, classes = _reference_data(db)
    if class_id:
        students = [s for s in students if s.class_id == class_id]
    grades = _scoped_grades(db, students, courses, quarter.id)
    return aggregation.student_rollups(grades, students, classes, grade_type_filter)


@router.get("/classes")
def class_stats(
    quarter_id: uuid.UUID | None = None,
    grade_type_filter: GradeTypeFilter = "both",
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(VIEW_DATA)),
) -> list[dict[str, Any]]:
    quarter = quarter_service.resolve_quarter(db, quarter_id)
    students, courses, classes = _reference_data(db)
    grades = _scoped_grades(db, students, courses, quarter.id)
    return aggregation.class_rollups(grades, students, classes, grade_type_filter)


@router.get("/courses")
def course_stats(
    quarter_id: uuid.UUID | None = None,
    grade_type_filter: GradeTypeFilter = "both",
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(VIEW_DATA)),
) -> list[dict[str, Any]]:
    quarter = quarter_service.resolve_quarter(db, quarter_id)
    students, courses, _classes = _reference_data(db)
    grades = _scoped_grades(db, students, courses, quarter.id)
    return aggregation.course_rollups(grades, courses, grade_type_filter)


@router.get("/at-risk")
def at_risk(
    quarter_id: uuid.UUID | None = None,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(VIEW_DATA)),
) -> dict[str, Any]:
    quarter = quarter_service.resolve_quarter(db, quarter_id)
    students, courses, _classes = _reference_data(db)
    grades = _scoped_grades(db, students, courses, quarter.id)
    return aggregation.at_risk_buckets(grades)


@router.get("/improvements")
def improvements(
    scope: Literal["active", "all"] = "active",
    quarter_id: uuid.UUID | None = None,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(VIEW_DATA)),
) -> dict[str, Any]:
    students, courses, classes = _reference_data(db)
    query = db.query(GradeHistory)
    scoped_quarter = None
    if scope == "active":
        scoped_quarter = quarter_service.resolve_quarter(db, quarter_id).id
        query = query.filter(GradeHistory.quarter_id == scoped_quarter)
    return aggregation.improvement_rollup(
        query.all(), students, courses, classes, quarter_id=scoped_quarter
    )


@router.get("/compare")
def compare(
    kind: Literal["quarters", "classes", "courses"],
    left_id: uuid.UUID,
    right_id: uuid.UUID,
    quarter_id: uuid.UUID | None = None,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(VIEW_DATA)),
) -> dict[str, Any]:
    students, courses, _classes = _reference_data(db)

    if kind == "quarters":
        for side in (left_id, right_id):
            if not db.get(Quarter, side):
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Quarter not found")
        grades = _scoped_grades(db, students, courses, None)
        left, right = aggregation.compare_quarters(grades, left_id, right_id)
    else:
        quarter = quarter_service.resolve_quarter(db, quarter_id)
        grades = _scoped_grades(db, students, courses, quarter.id)
        if kind == "classes":
            left, right = aggregation.compare_classes(grades, students, left_id, right_id)
        else:
            left, right = aggregation.compare_courses(grades, left_id, right_id)

    return {"kind": kind, "left": {"id": left_id, **left}, "right": {"id": right_id, **right}}
