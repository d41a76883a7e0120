"""create course content

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "courses",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("institution", sa.String(length=200), nullable=True),
        sa.Column("name", sa.String(length=300), nullable=False),
        sa.Column("code", sa.String(length=50), nullable=True),
        sa.Column("department", sa.String(length=200), nullable=True),
        sa.Column("description", sa.String(length=5000), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("units", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("unit_ids", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("topic_ids", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("assessment_ids", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_courses_institution", "courses", ["institution"], unique=False)
    op.create_index("ix_courses_name", "courses", ["name"], unique=False)

    op.create_table(
        "units",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("course_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("courses.id"), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("semester", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("unit_code", sa.String(length=50), nullable=False),
        sa.Column("unit_name", sa.String(length=300), nullable=False),
        sa.Column("description", sa.String(length=5000), nullable=True),
        sa.Column("topic_ids", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("assessment_ids", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_units_course_id", "units", ["course_id"], unique=False)

    op.create_table(
        "topics",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("unit_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("units.id"), nullable=False),
        sa.Column("topic_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("description", sa.String(length=5000), nullable=True),
        sa.Column("lecture_video_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("notes_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_topics_unit_id", "topics", ["unit_id"], unique=False)

    op.create_table(
        "external_resources",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("topic_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("topics.id"), nullable=False),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("url", sa.String(length=2000), nullable=False),
        sa.Column("description", sa.String(length=2000), nullable=True),
        sa.Column("is_premium", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("uploaded_by", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("upload_date", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_external_resources_topic_id", "external_resources", ["topic_id"], unique=False)

    op.create_table(
        "content_assets",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("owner_type", sa.String(length=20), nullable=False, server_default="topic"),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("course_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("courses.id"), nullable=True),
        sa.Column("unit_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("units.id"), nullable=True),
        sa.Column("title", sa.String(length=300), nullable=True),
        sa.Column("description", sa.String(length=5000), nullable=True),
        sa.Column("filename", sa.String(length=400), nullable=True),
        sa.Column("file_path", sa.String(length=1000), nullable=True),
        sa.Column("blob_id", sa.String(length=1000), nullable=True),
        sa.Column("file_size", sa.Integer(), nullable=True),
        sa.Column("mime_type", sa.String(length=200), nullable=True),
        sa.Column("meta", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_premium", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("uploaded_by", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("upload_date", sa.DateTime(timezone=True), nullable=True, server_default=sa.text("now()")),
        sa.Column("reviewed_by", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("review_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_notes", sa.String(length=2000), nullable=True),
    )
    op.create_index("ix_content_assets_type", "content_assets", ["type"], unique=False)
    op.create_index("ix_content_assets_owner_id", "content_assets", ["owner_id"], unique=False)
    op.create_index("ix_content_assets_course_id", "content_assets", ["course_id"], unique=False)
    op.create_index("ix_content_assets_unit_id", "content_assets", ["unit_id"], unique=False)
    op.create_index("ix_content_assets_status", "content_assets", ["status"], unique=False)
    op.create_index("ix_content_assets_uploaded_by", "content_assets", ["uploaded_by"], unique=False)

    op.create_table(
        "assessments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("course_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("courses.id"), nullable=False),
        sa.Column("unit_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("units.id"), nullable=False),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("description", sa.String(length=5000), nullable=True),
        sa.Column("image_file", sa.JSON(), nullable=True),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_marks", sa.Integer(), nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_premium", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("approval_history", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("uploaded_by", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("upload_date", sa.DateTime(timezone=True), nullable=True, server_default=sa.text("now()")),
        sa.Column("reviewed_by", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("review_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_notes", sa.String(length=2000), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_assessments_type", "assessments", ["type"], unique=False)
    op.create_index("ix_assessments_course_id", "assessments", ["course_id"], unique=False)
    op.create_index("ix_assessments_unit_id", "assessments", ["unit_id"], unique=False)
    op.create_index("ix_assessments_status", "assessments", ["status"], unique=False)
    op.create_index("ix_assessments_uploaded_by", "assessments", ["uploaded_by"], unique=False)


def downgrade() -> None:
    op.drop_table("assessments")
    op.drop_table("content_assets")
    op.drop_table("external_resources")
    op.drop_table("topics")
    op.drop_table("units")
    op.drop_index("ix_courses_name", table_name="courses")
    op.drop_index("ix_courses_institution", table_name="courses")
    op.drop_table("courses")
