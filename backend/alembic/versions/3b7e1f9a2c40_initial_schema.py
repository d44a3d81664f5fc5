"""initial schema

Revision ID: 3b7e1f9a2c40
Revises:
Create Date: 2026-09-28 10:02:41.318204

"""

from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

revision: str = "3b7e1f9a2c40"
down_revision: str | None = None
branch_labels: str | None = None
depends_on: str | None = None

GRADE_TYPES = ("grade", "warning")
CHANGE_TYPES = ("improvement", "regression", "change")


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(),
        server_default=sa.text("CURRENT_TIMESTAMP"),
        nullable=True,
    )


def _archive_columns() -> list[sa.Column]:
    return [
        sa.Column("archived", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("archived_at", sa.DateTime(), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "roles",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="roles_pkey"),
        sa.UniqueConstraint("name", name="roles_name_key"),
    )
    op.create_table(
        "users",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=True),
        sa.Column("role_id", sa.UUID(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], name="users_role_id_fkey"),
        sa.PrimaryKeyConstraint("id", name="users_pkey"),
        sa.UniqueConstraint("email", name="users_email_key"),
    )
    op.create_index("idx_users_role", "users", ["role_id"], unique=False)

    op.create_table(
        "classes",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        *_archive_columns(),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="classes_pkey"),
    )
    op.create_table(
        "courses",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("points", sa.Integer(), nullable=True),
        *_archive_columns(),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="courses_pkey"),
    )
    op.create_table(
        "class_courses",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("class_id", sa.UUID(), nullable=False),
        sa.Column("course_id", sa.UUID(), nullable=False),
        sa.ForeignKeyConstraint(
            ["class_id"], ["classes.id"], name="class_courses_class_id_fkey", ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["course_id"], ["courses.id"], name="class_courses_course_id_fkey", ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id", name="class_courses_pkey"),
        sa.UniqueConstraint("class_id", "course_id", name="class_courses_class_course_key"),
    )
    op.create_table(
        "students",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("class_id", sa.UUID(), nullable=True),
        *_archive_columns(),
        sa.Column("archived_reason", sa.String(length=255), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(
            ["class_id"], ["classes.id"], name="students_class_id_fkey", ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id", name="students_pkey"),
    )
    op.create_index("idx_students_class", "students", ["class_id"], unique=False)

    op.create_table(
        "quarters",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("locked", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="quarters_pkey"),
    )

    # No natural-key constraint yet; it is added once existing duplicates are gone.
    op.create_table(
        "grades",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("student_id", sa.UUID(), nullable=False),
        sa.Column("course_id", sa.UUID(), nullable=False),
        sa.Column("quarter_id", sa.UUID(), nullable=False),
        sa.Column("grade", sa.String(length=1), nullable=True),
        sa.Column(
            "grade_type",
            sa.Enum(*GRADE_TYPES, name="grade_type", native_enum=False),
            server_default="grade",
            nullable=False,
        ),
        sa.Column("teacher_id", sa.UUID(), nullable=True),
        sa.Column("version_id", sa.Integer(), server_default=sa.text("1"), nullable=False),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=True,
        ),
        sa.ForeignKeyConstraint(
            ["student_id"], ["students.id"], name="grades_student_id_fkey", ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["course_id"], ["courses.id"], name="grades_course_id_fkey", ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["quarter_id"], ["quarters.id"], name="grades_quarter_id_fkey", ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["teacher_id"], ["users.id"], name="grades_teacher_id_fkey", ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id", name="grades_pkey"),
    )
    op.create_index("idx_grades_quarter", "grades", ["quarter_id"], unique=False)

    op.create_table(
        "grade_history",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("student_id", sa.UUID(), nullable=False),
        sa.Column("course_id", sa.UUID(), nullable=False),
        sa.Column("quarter_id", sa.UUID(), nullable=False),
        sa.Column("from_grade", sa.String(length=1), nullable=True),
        sa.Column("to_grade", sa.String(length=1), nullable=True),
        sa.Column(
            "grade_type",
            sa.Enum(*GRADE_TYPES, name="grade_type", native_enum=False),
            server_default="grade",
            nullable=False,
        ),
        sa.Column(
            "change_type",
            sa.Enum(*CHANGE_TYPES, name="change_type", native_enum=False),
            nullable=False,
        ),
        sa.Column("changed_by", sa.UUID(), nullable=True),
        sa.Column("student_snapshot", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("course_snapshot", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(
            ["quarter_id"], ["quarters.id"], name="grade_history_quarter_id_fkey", ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id", name="grade_history_pkey"),
    )
    op.create_index(
        "idx_grade_history_natural_key",
        "grade_history",
        ["student_id", "course_id", "quarter_id"],
        unique=False,
    )
    op.create_index("idx_grade_history_change_type", "grade_history", ["change_type"], unique=False)

    op.create_table(
        "quarter_snapshots",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("quarter_id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("analysis", sa.Text(), nullable=True),
        sa.Column("data", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("stats", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("created_by", sa.UUID(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column("analyzed_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(
            ["quarter_id"], ["quarters.id"], name="quarter_snapshots_quarter_id_fkey", ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["created_by"], ["users.id"], name="quarter_snapshots_created_by_fkey", ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id", name="quarter_snapshots_pkey"),
    )


def downgrade() -> None:
    op.drop_table("quarter_snapshots")
    op.drop_index("idx_grade_history_change_type", table_name="grade_history")
    op.drop_index("idx_grade_history_natural_key", table_name="grade_history")
    op.drop_table("grade_history")
    op.drop_index("idx_grades_quarter", table_name="grades")
    op.drop_table("grades")
    op.drop_table("quarters")
    op.drop_index("idx_students_class", table_name="students")
    op.drop_table("students")
    op.drop_table("class_courses")
    op.drop_table("courses")
    op.drop_table("classes")
    op.drop_index("idx_users_role", table_name="users")
    op.drop_table("users")
    op.drop_table("roles")
