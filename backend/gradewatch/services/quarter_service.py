import logging
import uuid

from sqlalchemy.orm import Session

from gradewatch.core.errors import GradeValidationError, NotFoundError
from gradewatch.models.grade import Grade, GradeHistory
from gradewatch.models.quarter import Quarter
from gradewatch.models.snapshot import Snapshot

logger = logging.getLogger(__name__)


class QuarterService:
    def get_active_quarter(self, db: Session) -> Quarter | None:
        return (
            db.query(Quarter)
            .filter(Quarter.is_active.is_(True))
            .order_by(Quarter.created_at.desc())
            .first()
        )

    def resolve_quarter(self, db: Session, quarter_id: uuid.UUID | None) -> Quarter:
        """The requested quarter, or the active one when no id is given."""
        if quarter_id is None:
            quarter = self.get_active_quarter(db)
            if not quarter:
                raise GradeValidationError("No active quarter")
            return quarter

        quarter = db.get(Quarter, quarter_id)
        if not quarter:
            raise NotFoundError("Quarter not found")
        return quarter

    def activate_quarter(self, db: Session, quarter_id: uuid.UUID) -> Quarter:
        quarter = db.get(Quarter, quarter_id)
        if not quarter:
            raise NotFoundError("Quarter not found")

        db.query(Quarter).filter(Quarter.id != quarter_id).update(
            {Quarter.is_active: False}, synchronize_session=False
        )
        quarter.is_active = True
        db.add(quarter)
        db.commit()
        db.refresh(quarter)
        logger.info("Activated quarter %s (%s)", quarter.name, quarter.id)
        return quarter

    def set_locked(self, db: Session, quarter_id: uuid.UUID, locked: bool) -> Quarter:
        quarter = db.get(Quarter, quarter_id)
        if not quarter:
            raise NotFoundError("Quarter not found")
        quarter.locked = locked
        db.add(quarter)
        db.commit()
        db.refresh(quarter)
        return quarter

    def delete_quarter(self, db: Session, quarter_id: uuid.UUID) -> None:
        quarter = db.get(Quarter, quarter_id)
        if not quarter:
            raise NotFoundError("Quarter not found")

        # Explicit so that backends without ON DELETE CASCADE behave the same
        for model in (Snapshot, GradeHistory, Grade):
            db.query(model).filter(model.quarter_id == quarter_id).delete(synchronize_session=False)
        db.delete(quarter)
        db.commit()
        logger.info("Deleted quarter %s with its grades, history and snapshots", quarter_id)


quarter_service = QuarterService()
