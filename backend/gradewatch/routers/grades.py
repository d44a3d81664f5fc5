import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from gradewatch.core.db import get_db
from gradewatch.core.deps import require_permission
from gradewatch.core.permissions import MANAGE_GRADES, VIEW_DATA
from gradewatch.models.grade import ChangeType, Grade, GradeHistory, GradeType
from gradewatch.models.user import User
from gradewatch.schemas.grade import GradeHistoryResponse, GradeResponse, GradeSet, GradeSetResponse
from gradewatch.services.quarter_service import quarter_service
from gradewatch.services.reconciliation_service import reconciliation_service

router = APIRouter(prefix="/grades", tags=["grades"])


def _database_error(exc: SQLAlchemyError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Database error: {exc.__class__.__name__}",
    )


@router.put("", response_model=GradeSetResponse)
def set_grade(
    payload: GradeSet,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(MANAGE_GRADES)),
):
    quarter = quarter_service.resolve_quarter(db, payload.quarter_id)
    try:
        grade, changed = reconciliation_service.set_grade(
            db,
            actor=current_user,
            student_id=payload.student_id,
            course_id=payload.course_id,
            quarter_id=quarter.id,
            grade=payload.grade,
            grade_type=payload.grade_type,
        )
    except SQLAlchemyError as exc:
        raise _database_error(exc) from exc
    return GradeSetResponse(grade=GradeResponse.model_validate(grade), changed=changed)


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
def clear_grade(
    student_id: uuid.UUID,
    course_id: uuid.UUID,
    quarter_id: uuid.UUID | None = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(MANAGE_GRADES)),
):
    quarter = quarter_service.resolve_quarter(db, quarter_id)
    try:
        reconciliation_service.clear_grade(
            db,
            actor=current_user,
            student_id=student_id,
            course_id=course_id,
            quarter_id=quarter.id,
        )
    except SQLAlchemyError as exc:
        raise _database_error(exc) from exc
    return None


@router.delete("/{grade_id}", status_code=status.HTTP_204_NO_CONTENT)
def clear_grade_by_id(
    grade_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(MANAGE_GRADES)),
):
    try:
        reconciliation_service.clear_grade_by_id(db, actor=current_user, grade_id=grade_id)
    except SQLAlchemyError as exc:
        raise _database_error(exc) from exc
    return None


@router.get("", response_model=list[GradeResponse])
def list_grades(
    student_id: uuid.UUID | None = None,
    course_id: uuid.UUID | None = None,
    quarter_id: uuid.UUID | None = None,
    grade_type: GradeType | None = None,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(VIEW_DATA)),
):
    query = db.query(Grade)
    if student_id:
        query = query.filter(Grade.student_id == student_id)
    if course_id:
        query = query.filter(Grade.course_id == course_id)
    if quarter_id:
        query = query.filter(Grade.quarter_id == quarter_id)
    if grade_type:
        query = query.filter(Grade.grade_type == grade_type)
    return query.order_by(Grade.updated_at.desc()).all()


@router.get("/history", response_model=list[GradeHistoryResponse])
def list_grade_history(
    student_id: uuid.UUID | None = None,
    course_id: uuid.UUID | None = None,
    quarter_id: uuid.UUID | None = None,
    change_type: ChangeType | None = None,
    limit: int = 200,
    offset: int = 0,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(VIEW_DATA)),
):
    query = db.query(GradeHistory)
    if student_id:
        query = query.filter(GradeHistory.student_id == student_id)
    if course_id:
        query = query.filter(GradeHistory.course_id == course_id)
    if quarter_id:
        query = query.filter(GradeHistory.quarter_id == quarter_id)
    if change_type:
        query = query.filter(GradeHistory.change_type == change_type)
    return query.order_by(GradeHistory.created_at.desc()).offset(offset).limit(limit).all()
