import uuid
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, constr


class SchoolClassSummary(BaseModel):
    id: uuid.UUID
    name: str
    archived: bool = False
    course_ids: list[uuid.UUID] = []
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class SchoolClassCreate(BaseModel):
    name: constr(strip_whitespace=True, min_length=1, max_length=255)
    course_ids: list[uuid.UUID] = []


class SchoolClassUpdate(BaseModel):
    name: constr(strip_whitespace=True, min_length=1, max_length=255) | None = None
    course_ids: list[uuid.UUID] | None = None


class CourseSummary(BaseModel):
    id: uuid.UUID
    name: str
    code: str
    points: int | None = None
    archived: bool = False
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class CourseCreate(BaseModel):
    name: constr(strip_whitespace=True, min_length=1, max_length=255)
    code: constr(strip_whitespace=True, min_length=1, max_length=50)
    points: int | None = None


class CourseUpdate(BaseModel):
    name: constr(strip_whitespace=True, min_length=1, max_length=255) | None = None
    code: constr(strip_whitespace=True, min_length=1, max_length=50) | None = None
    points: int | None = None


class StudentSummary(BaseModel):
    id: uuid.UUID
    name: str
    class_id: uuid.UUID | None = None
    archived: bool = False
    archived_reason: str | None = None
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class StudentCreate(BaseModel):
    name: constr(strip_whitespace=True, min_length=1, max_length=255)
    class_id: uuid.UUID | None = None


class StudentUpdate(BaseModel):
    name: constr(strip_whitespace=True, min_length=1, max_length=255) | None = None
    class_id: uuid.UUID | None = None


class ArchiveRequest(BaseModel):
    reason: str | None = None


class QuarterSummary(BaseModel):
    id: uuid.UUID
    name: str
    start_date: date | None = None
    end_date: date | None = None
    is_active: bool
    locked: bool
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class QuarterCreate(BaseModel):
    name: constr(strip_whitespace=True, min_length=1, max_length=255)
    start_date: date | None = None
    end_date: date | None = None
