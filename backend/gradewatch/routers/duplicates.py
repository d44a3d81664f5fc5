import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from gradewatch.core.db import get_db
from gradewatch.core.deps import get_current_admin
from gradewatch.models.user import User
from gradewatch.schemas.duplicates import CleanupResult, DuplicateReport
from gradewatch.services.duplicate_service import duplicate_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/duplicates", tags=["duplicates"])


@router.get("", response_model=DuplicateReport)
def find_duplicates(
    limit: int | None = Query(default=None, ge=0),
    db: Session = Depends(get_db),
    _admin: User = Depends(get_current_admin),
):
    """Read-only preview of rows that share a natural key with a newer row."""
    try:
        return duplicate_service.find_duplicates(db, preview_limit=limit)
    except SQLAlchemyError as exc:
        logger.exception("Failed to scan for duplicates")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Database error: {exc.__class__.__name__}",
        ) from exc


@router.delete("", response_model=CleanupResult)
def cleanup_duplicates(
    batch_size: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    logger.info("Duplicate cleanup requested by %s", admin.email)
    try:
        return duplicate_service.cleanup_duplicates(db, batch_size=batch_size)
    except SQLAlchemyError as exc:
        logger.exception("Duplicate cleanup failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Database error: {exc.__class__.__name__}",
        ) from exc
