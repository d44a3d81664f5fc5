import logging
from collections import defaultdict
from collections.abc import Callable, Hashable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from gradewatch.core.config import settings
from gradewatch.models.grade import Grade, GradeHistory

logger = logging.getLogger(__name__)


def canonical_order_key(row: Any) -> tuple[datetime, str]:
    """Sort key where the greatest row is the one to keep.

    Most recent ``created_at`` wins; rows without a timestamp lose against any
    timestamped row, and equal timestamps fall back to the highest id.
    """
    return (row.created_at or datetime.min, str(row.id))


def grade_natural_key(row: Any) -> tuple:
    return (row.student_id, row.course_id, row.quarter_id)


def history_natural_key(row: Any) -> tuple:
    return (row.student_id, row.course_id, row.quarter_id, row.from_grade, row.to_grade)


@dataclass
class DuplicateSet:
    key: Hashable
    kept: Any
    extras: list[Any] = field(default_factory=list)


def find_duplicate_sets(
    rows: Iterable[Any], key_fn: Callable[[Any], Hashable]
) -> list[DuplicateSet]:
    groups: dict[Hashable, list[Any]] = defaultdict(list)
    for row in rows:
        groups[key_fn(row)].append(row)

    duplicate_sets: list[DuplicateSet] = []
    for key, members in groups.items():
        if len(members) < 2:
            continue
        ordered = sorted(members, key=canonical_order_key, reverse=True)
        duplicate_sets.append(DuplicateSet(key=key, kept=ordered[0], extras=ordered[1:]))
    return duplicate_sets


def _chunks(items: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _preview_row(row: Any, kept: Any) -> dict[str, Any]:
    grade_type = getattr(row, "grade_type", None)
    return {
        "id": row.id,
        "student_id": row.student_id,
        "course_id": row.course_id,
        "quarter_id": row.quarter_id,
        "grade": getattr(row, "grade", None),
        "grade_type": getattr(grade_type, "value", grade_type),
        "from_grade": getattr(row, "from_grade", None),
        "to_grade": getattr(row, "to_grade", None),
        "created_at": row.created_at,
        "kept_id": kept.id,
    }


class DuplicateService:
    """Finds and removes rows that break the natural-key uniqueness of
    ``grades`` and ``grade_history``.

    New grade writes cannot create duplicates once the unique index exists; this
    service remains as the remediation tool for data written before it.
    """

    tables: tuple[tuple[str, type, Callable[[Any], Hashable]], ...] = (
        ("grades", Grade, grade_natural_key),
        ("grade_history", GradeHistory, history_natural_key),
    )

    def _table_report(
        self, rows: list[Any], key_fn: Callable[[Any], Hashable], preview_limit: int
    ) -> dict[str, Any]:
        duplicate_sets = find_duplicate_sets(rows, key_fn)
        unique_keys = len({key_fn(row) for row in rows})

        preview: list[dict[str, Any]] = []
        for duplicate_set in duplicate_sets:
            for extra in duplicate_set.extras:
                if len(preview) >= preview_limit:
                    break
                preview.append(_preview_row(extra, duplicate_set.kept))

        return {
            "total_rows": len(rows),
            "unique_keys": unique_keys,
            "duplicate_sets": len(duplicate_sets),
            "duplicates_found": len(rows) - unique_keys,
            "duplicates": preview,
        }

    def find_duplicates(self, db: Session, preview_limit: int | None = None) -> dict[str, Any]:
        limit = settings.DUPLICATE_PREVIEW_LIMIT if preview_limit is None else preview_limit
        report: dict[str, Any] = {}
        for table_name, model, key_fn in self.tables:
            rows = db.query(model).order_by(model.created_at.desc()).all()
            report[table_name] = self._table_report(rows, key_fn, limit)
        return report

    def _delete_batch(self, db: Session, model: type, ids: Sequence[Any]) -> int:
        deleted = (
            db.query(model).filter(model.id.in_(list(ids))).delete(synchronize_session=False)
        )
        db.commit()
        return deleted

    def _cleanup_table(
        self, db: Session, table_name: str, model: type, key_fn: Callable[[Any], Hashable], batch_size: int
    ) -> dict[str, Any]:
        rows = db.query(model).order_by(model.created_at.desc()).all()
        duplicate_ids = [
            extra.id for duplicate_set in find_duplicate_sets(rows, key_fn) for extra in duplicate_set.extras
        ]
        # Plain ids only, the session is committed per batch
        db.expunge_all()

        deleted = 0
        failed_batches = 0
        for batch in _chunks(duplicate_ids, batch_size):
            try:
                deleted += self._delete_batch(db, model, batch)
            except SQLAlchemyError:
                db.rollback()
                failed_batches += 1
                logger.exception(
                    "Failed deleting a batch of %d duplicate rows from %s", len(batch), table_name
                )

        return {
            "total_before": len(rows),
            "duplicates_found": len(duplicate_ids),
            "deleted": deleted,
            "failed_batches": failed_batches,
            "total_after": len(rows) - deleted,
        }

    def cleanup_duplicates(self, db: Session, batch_size: int | None = None) -> dict[str, Any]:
        size = settings.DUPLICATE_CLEANUP_BATCH_SIZE if batch_size is None else batch_size
        if size < 1:
            raise ValueError("batch_size must be positive")

        result: dict[str, Any] = {}
        for table_name, model, key_fn in self.tables:
            result[table_name] = self._cleanup_table(db, table_name, model, key_fn, size)

        total_found = sum(table["duplicates_found"] for table in result.values())
        total_deleted = sum(table["deleted"] for table in result.values())
        total_failed = sum(table["failed_batches"] for table in result.values())

        if total_found == 0:
            message = "No duplicates found"
        elif total_failed:
            message = f"Duplicates partially removed: {total_failed} batch(es) failed"
        else:
            message = "Duplicates removed successfully"

        logger.info(
            "Duplicate cleanup: found=%d deleted=%d failed_batches=%d",
            total_found,
            total_deleted,
            total_failed,
        )
        result["message"] = message
        result["total_deleted"] = total_deleted
        return result


duplicate_service = DuplicateService()
