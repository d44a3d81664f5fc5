from __future__ import annotations

import logging
import uuid

from gradewatch.core.db import SessionLocal
from gradewatch.services.snapshot_service import snapshot_service

logger = logging.getLogger(__name__)


def analyze_snapshot_job(snapshot_id: str) -> None:
    snapshot_uuid = uuid.UUID(snapshot_id)
    db = SessionLocal()
    try:
        snapshot = snapshot_service.analyze_snapshot(db, snapshot_uuid)
        logger.info("Snapshot %s analysed at %s", snapshot_uuid, snapshot.analyzed_at)
    except Exception:  # noqa: BLE001
        db.rollback()
        logger.exception("Failed to analyse snapshot %s", snapshot_uuid)
        raise
    finally:
        db.close()
