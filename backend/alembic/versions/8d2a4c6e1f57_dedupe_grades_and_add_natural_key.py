"""dedupe grades and add natural key

Revision ID: 8d2a4c6e1f57
Revises: 3b7e1f9a2c40
Create Date: 2026-10-05 16:44:09.902115

"""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision: str = "8d2a4c6e1f57"
down_revision: str | None = "3b7e1f9a2c40"
branch_labels: str | None = None
depends_on: str | None = None

# Keep the newest row per key; rows without created_at lose, ties go to the highest id.
DEDUPE_GRADES = """
DELETE FROM grades
WHERE id IN (
    SELECT id FROM (
        SELECT id,
               ROW_NUMBER() OVER (
                   PARTITION BY student_id, course_id, quarter_id
                   ORDER BY created_at DESC NULLS LAST, CAST(id AS TEXT) DESC
               ) AS rn
        FROM grades
    ) ranked
    WHERE ranked.rn > 1
)
"""

DEDUPE_GRADE_HISTORY = """
DELETE FROM grade_history
WHERE id IN (
    SELECT id FROM (
        SELECT id,
               ROW_NUMBER() OVER (
                   PARTITION BY student_id, course_id, quarter_id, from_grade, to_grade
                   ORDER BY created_at DESC NULLS LAST, CAST(id AS TEXT) DESC
               ) AS rn
        FROM grade_history
    ) ranked
    WHERE ranked.rn > 1
)
"""


def upgrade() -> None:
    op.execute(sa.text(DEDUPE_GRADES))
    op.execute(sa.text(DEDUPE_GRADE_HISTORY))
    op.create_index(
        "uq_grades_student_course_quarter",
        "grades",
        ["student_id", "course_id", "quarter_id"],
        unique=True,
    )


def downgrade() -> None:
    # Deleted duplicates are not restored
    op.drop_index("uq_grades_student_course_quarter", table_name="grades")
