import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, constr

from gradewatch.models.grade import ChangeType, GradeType


class GradeSet(BaseModel):
    student_id: uuid.UUID
    course_id: uuid.UUID
    quarter_id: uuid.UUID | None = None
    # Letter validation (A-F, warnings only as F) happens in the reconciliation service
    grade: constr(strip_whitespace=True, to_upper=True, min_length=1, max_length=1)
    grade_type: GradeType = GradeType.GRADE


class GradeResponse(BaseModel):
    id: uuid.UUID
    student_id: uuid.UUID
    course_id: uuid.UUID
    quarter_id: uuid.UUID
    grade: str | None = None
    grade_type: GradeType
    teacher_id: uuid.UUID | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class GradeSetResponse(BaseModel):
    grade: GradeResponse
    changed: bool


class GradeHistoryResponse(BaseModel):
    id: uuid.UUID
    student_id: uuid.UUID
    course_id: uuid.UUID
    quarter_id: uuid.UUID
    from_grade: str | None = None
    to_grade: str | None = None
    grade_type: GradeType
    change_type: ChangeType
    changed_by: uuid.UUID | None = None
    student_snapshot: dict[str, Any] | None = None
    course_snapshot: dict[str, Any] | None = None
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)
