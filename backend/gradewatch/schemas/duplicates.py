import uuid
from datetime import datetime

from pydantic import BaseModel


class DuplicateRow(BaseModel):
    id: uuid.UUID
    student_id: uuid.UUID
    course_id: uuid.UUID
    quarter_id: uuid.UUID
    grade: str | None = None
    grade_type: str | None = None
    from_grade: str | None = None
    to_grade: str | None = None
    created_at: datetime | None = None
    kept_id: uuid.UUID


class DuplicateTableReport(BaseModel):
    total_rows: int
    unique_keys: int
    duplicate_sets: int
    duplicates_found: int
    duplicates: list[DuplicateRow]


class DuplicateReport(BaseModel):
    grades: DuplicateTableReport
    grade_history: DuplicateTableReport


class CleanupTableResult(BaseModel):
    total_before: int
    duplicates_found: int
    deleted: int
    failed_batches: int
    total_after: int


class CleanupResult(BaseModel):
    message: str
    grades: CleanupTableResult
    grade_history: CleanupTableResult
    total_deleted: int
