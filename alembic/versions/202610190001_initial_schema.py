"""Initial schema for courses, certificates, and certification levels

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19 00:01:00
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "202610190001"
down_revision = None
branch_labels = None
depends_on = None

user_role_enum = postgresql.ENUM(
    "learner", "instructor", "admin", name="user_role", create_type=False
)
# Shared by courses and certification levels, so it is created once up front
expiry_type_enum = postgresql.ENUM(
    "never",
    "fixed_date",
    "period_days",
    "period_months",
    "period_years",
    name="certificate_expiry_type",
    create_type=False,
)
access_rule_type_enum = postgresql.ENUM(
    "all", "group", "user", name="access_rule_type", create_type=False
)


def _id() -> sa.Column:
    return sa.Column("id", sa.String(length=36), primary_key=True)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def _expiry_columns() -> list[sa.Column]:
    return [
        sa.Column(
            "certificate_expiry_type",
            expiry_type_enum,
            server_default="never",
            nullable=False,
        ),
        sa.Column("certificate_expiry_value", sa.Integer(), nullable=True),
        sa.Column("certificate_expiry_date", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    user_role_enum.create(bind, checkfirst=True)
    expiry_type_enum.create(bind, checkfirst=True)
    access_rule_type_enum.create(bind, checkfirst=True)

    op.create_table(
        "users",
        _id(),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=128), nullable=True),
        sa.Column("role", user_role_enum, nullable=False),
        _created_at(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "user_groups",
        _id(),
        sa.Column("name", sa.String(length=128), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        _created_at(),
    )

    op.create_table(
        "user_group_members",
        _id(),
        sa.Column(
            "group_id",
            sa.String(length=36),
            sa.ForeignKey("user_groups.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column(
            "user_id",
            sa.String(length=36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.UniqueConstraint("group_id", "user_id", name="uq_group_member"),
    )

    op.create_table(
        "courses",
        _id(),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "instructor_id",
            sa.String(length=36),
            sa.ForeignKey("users.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        *_expiry_columns(),
        _created_at(),
    )

    op.create_table(
        "course_modules",
        _id(),
        sa.Column(
            "course_id",
            sa.String(length=36),
            sa.ForeignKey("courses.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "lessons",
        _id(),
        sa.Column(
            "module_id",
            sa.String(length=36),
            sa.ForeignKey("course_modules.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "quizzes",
        _id(),
        sa.Column(
            "module_id",
            sa.String(length=36),
            sa.ForeignKey("course_modules.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("passing_score", sa.Integer(), nullable=False, server_default="80"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="3"),
    )

    op.create_table(
        "enrollments",
        _id(),
        sa.Column(
            "user_id",
            sa.String(length=36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column(
            "course_id",
            sa.String(length=36),
            sa.ForeignKey("courses.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column(
            "enrolled_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_id", "course_id", name="uq_enrollment_user_course"),
    )

    op.create_table(
        "lesson_progress",
        _id(),
        sa.Column(
            "user_id",
            sa.String(length=36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column(
            "lesson_id",
            sa.String(length=36),
            sa.ForeignKey("lessons.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("user_id", "lesson_id", name="uq_lesson_progress"),
    )

    op.create_table(
        "quiz_attempts",
        _id(),
        sa.Column(
            "quiz_id",
            sa.String(length=36),
            sa.ForeignKey("quizzes.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column(
            "user_id",
            sa.String(length=36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("percentage", sa.Float(), nullable=True),
        sa.Column("passed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "started_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "certificates",
        _id(),
        sa.Column("number", sa.String(length=64), nullable=False, unique=True),
        sa.Column(
            "user_id",
            sa.String(length=36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column(
            "course_id",
            sa.String(length=36),
            sa.ForeignKey("courses.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("course_title", sa.String(length=255), nullable=False),
        sa.Column("course_description", sa.Text(), nullable=True),
        sa.Column("instructor_name", sa.String(length=128), nullable=False),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pdf_data", sa.LargeBinary(), nullable=False),
        sa.UniqueConstraint("user_id", "course_id", name="uq_certificate_user_course"),
    )

    op.create_table(
        "certification_levels",
        _id(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("logo_url", sa.String(length=512), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        *_expiry_columns(),
        _created_at(),
    )

    op.create_table(
        "certification_level_courses",
        _id(),
        sa.Column(
            "level_id",
            sa.String(length=36),
            sa.ForeignKey("certification_levels.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column(
            "course_id",
            sa.String(length=36),
            sa.ForeignKey("courses.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("level_id", "course_id", name="uq_level_course"),
    )

    op.create_table(
        "level_access_rules",
        _id(),
        sa.Column(
            "level_id",
            sa.String(length=36),
            sa.ForeignKey("certification_levels.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("rule_type", access_rule_type_enum, nullable=False),
        sa.Column(
            "group_id",
            sa.String(length=36),
            sa.ForeignKey("user_groups.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column(
            "user_id",
            sa.String(length=36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=True,
        ),
    )

    op.create_table(
        "user_certification_levels",
        _id(),
        sa.Column(
            "user_id",
            sa.String(length=36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column(
            "level_id",
            sa.String(length=36),
            sa.ForeignKey("certification_levels.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("achieved_at", sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_valid", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("certificate_number", sa.String(length=64), nullable=True, unique=True),
        sa.Column("custom_text", sa.Text(), nullable=True),
        sa.Column("pdf_data", sa.LargeBinary(), nullable=True),
        sa.UniqueConstraint("user_id", "level_id", name="uq_user_level"),
    )


def downgrade() -> None:
    op.drop_table("user_certification_levels")
    op.drop_table("level_access_rules")
    op.drop_table("certification_level_courses")
    op.drop_table("certification_levels")
    op.drop_table("certificates")
    op.drop_table("quiz_attempts")
    op.drop_table("lesson_progress")
    op.drop_table("enrollments")
    op.drop_table("quizzes")
    op.drop_table("lessons")
    op.drop_table("course_modules")
    op.drop_table("courses")
    op.drop_table("user_group_members")
    op.drop_table("user_groups")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
    bind = op.get_bind()
    access_rule_type_enum.drop(bind, checkfirst=True)
    expiry_type_enum.drop(bind, checkfirst=True)
    user_role_enum.drop(bind, checkfirst=True)
