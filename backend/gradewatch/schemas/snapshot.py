import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, constr


class SnapshotCreate(BaseModel):
    quarter_id: uuid.UUID | None = None
    name: constr(strip_whitespace=True, min_length=1, max_length=255)
    notes: str | None = None


class SnapshotSummary(BaseModel):
    id: uuid.UUID
    quarter_id: uuid.UUID
    name: str
    notes: str | None = None
    stats: dict[str, Any]
    has_analysis: bool = False
    created_by: uuid.UUID | None = None
    created_at: datetime
    analyzed_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class SnapshotDetail(SnapshotSummary):
    analysis: str | None = None
    data: dict[str, Any]


class SnapshotAnalysisQueued(BaseModel):
    snapshot_id: uuid.UUID
    job_id: str
    status: str = "queued"
