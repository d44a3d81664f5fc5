import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from sqlalchemy.orm import Session

from gradewatch.core.db import get_db
from gradewatch.core.deps import require_permission
from gradewatch.core.permissions import MANAGE_QUARTERS, VIEW_DATA
from gradewatch.core.queue import enqueue_snapshot_analysis, is_async_queue_enabled
from gradewatch.models.snapshot import Snapshot
from gradewatch.models.user import User
from gradewatch.schemas.snapshot import (
    SnapshotAnalysisQueued,
    SnapshotCreate,
    SnapshotDetail,
    SnapshotSummary,
)
from gradewatch.services.quarter_service import quarter_service
from gradewatch.services.snapshot_service import snapshot_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/snapshots", tags=["snapshots"])


@router.post("", response_model=SnapshotDetail, status_code=status.HTTP_201_CREATED)
def create_snapshot(
    payload: SnapshotCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(MANAGE_QUARTERS)),
):
    quarter = quarter_service.resolve_quarter(db, payload.quarter_id)
    return snapshot_service.create_snapshot(
        db, actor=current_user, quarter=quarter, name=payload.name, notes=payload.notes
    )


@router.get("", response_model=list[SnapshotSummary])
def list_snapshots(
    quarter_id: uuid.UUID | None = None,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(VIEW_DATA)),
):
    query = db.query(Snapshot)
    if quarter_id:
        query = query.filter(Snapshot.quarter_id == quarter_id)
    return query.order_by(Snapshot.created_at.desc()).all()


@router.get("/{snapshot_id}", response_model=SnapshotDetail)
def get_snapshot(
    snapshot_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(VIEW_DATA)),
):
    return snapshot_service.get_snapshot(db, snapshot_id)


@router.delete("/{snapshot_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_snapshot(
    snapshot_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(MANAGE_QUARTERS)),
):
    snapshot_service.delete_snapshot(db, snapshot_id)
    return None


@router.post(
    "/{snapshot_id}/analysis",
    response_model=SnapshotDetail,
    responses={status.HTTP_202_ACCEPTED: {"model": SnapshotAnalysisQueued}},
)
def analyze_snapshot(
    snapshot_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(MANAGE_QUARTERS)),
):
    snapshot = snapshot_service.get_snapshot(db, snapshot_id)
    if snapshot.analysis or not is_async_queue_enabled():
        return snapshot_service.analyze_snapshot(db, snapshot_id)

    try:
        job_id = enqueue_snapshot_analysis(snapshot_id=snapshot_id)
    except RedisError as exc:
        logger.error("Could not queue analysis of snapshot %s: %s", snapshot_id, exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"status": "error", "redis": "unavailable", "error": str(exc)},
        ) from exc
    logger.info("Queued analysis of snapshot %s as job %s", snapshot_id, job_id)
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=jsonable_encoder(SnapshotAnalysisQueued(snapshot_id=snapshot_id, job_id=job_id)),
    )
