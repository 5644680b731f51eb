"""Scheduling schema: teachers, students, classes, enrollments, sessions"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_scheduling_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
    ]


def upgrade() -> None:
    op.create_table(
        "teacher",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("full_name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=255), unique=True),
        sa.Column("phone", sa.String(length=50)),
        sa.Column("buffer_time_preference", sa.Integer()),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
    )

    op.create_table(
        "student",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("full_name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=255), unique=True),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
    )

    op.create_table(
        "teacher_availability",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("teacher_id", sa.Integer(), sa.ForeignKey("teacher.id"), nullable=False, index=True),
        sa.Column("weekday", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("end_time > start_time", name="chk_teacher_availability_time_order"),
        sa.CheckConstraint("weekday >= 0 AND weekday <= 6", name="chk_teacher_availability_weekday"),
    )

    op.create_table(
        "student_availability",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("student.id"), nullable=False, index=True),
        sa.Column("weekday", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("end_time > start_time", name="chk_student_availability_time_order"),
        sa.CheckConstraint("weekday >= 0 AND weekday <= 6", name="chk_student_availability_weekday"),
    )

    op.create_table(
        "tutoring_class",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("teacher_id", sa.Integer(), sa.ForeignKey("teacher.id"), nullable=False, index=True),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date()),
        sa.Column("default_duration", sa.Integer(), nullable=False),
        sa.Column("schedule", sa.Text(), nullable=False),
        sa.Column("buffer_time", sa.Integer()),
        sa.Column("status", sa.String(length=20)),
        *_timestamps(),
        sa.CheckConstraint("default_duration > 0", name="chk_class_duration_positive"),
        sa.CheckConstraint("buffer_time IS NULL OR buffer_time >= 0", name="chk_class_buffer"),
        sa.CheckConstraint("end_date IS NULL OR end_date >= start_date", name="chk_class_date_range"),
    )

    op.create_table(
        "class_enrollment",
        sa.Column("class_id", sa.Integer(), sa.ForeignKey("tutoring_class.id"), primary_key=True),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("student.id"), primary_key=True),
        sa.Column("joined_at", sa.DateTime()),
        sa.Column("left_at", sa.DateTime()),
    )

    op.create_table(
        "session",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("class_id", sa.Integer(), sa.ForeignKey("tutoring_class.id"), nullable=False, index=True),
        sa.Column("session_number", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.DateTime(), nullable=False),
        sa.Column("end_time", sa.DateTime(), nullable=False),
        sa.Column("planned_duration", sa.Integer(), nullable=False),
        sa.Column("actual_duration", sa.Integer()),
        sa.Column("buffer_before", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("buffer_after", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("blocked_start", sa.DateTime(), nullable=False),
        sa.Column("blocked_end", sa.DateTime(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="scheduled"),
        sa.Column("rescheduled_from_id", sa.Integer(), sa.ForeignKey("session.id")),
        sa.Column("cancellation_reason", sa.Text()),
        sa.Column("is_makeup_session", sa.Boolean(), server_default=sa.text("0")),
        *_timestamps(),
        sa.CheckConstraint("planned_duration > 0", name="chk_session_duration_positive"),
        sa.CheckConstraint("end_time > start_time", name="chk_session_time_order"),
        sa.CheckConstraint("buffer_before >= 0 AND buffer_after >= 0", name="chk_session_buffers"),
        sa.CheckConstraint(
            "status IN ('scheduled', 'in_progress', 'completed', 'cancelled', 'rescheduled')",
            name="chk_session_status",
        ),
    )
    op.create_index("ix_session_blocked_span", "session", ["blocked_start", "blocked_end"])

    op.create_table(
        "generation_log",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("class_id", sa.Integer(), sa.ForeignKey("tutoring_class.id"), nullable=False, index=True),
        sa.Column("policy", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20)),
        sa.Column("summary", sa.Text()),
        sa.Column("messages", sa.Text()),
        sa.Column("window_start", sa.Date()),
        sa.Column("window_end", sa.Date()),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table("generation_log")
    op.drop_index("ix_session_blocked_span", table_name="session")
    op.drop_table("session")
    op.drop_table("class_enrollment")
    op.drop_table("tutoring_class")
    op.drop_table("student_availability")
    op.drop_table("teacher_availability")
    op.drop_table("student")
    op.drop_table("teacher")
