import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from eduvault.db.base import Base


class Course(Base):
    """Course aggregate.

    ``units`` holds the legacy embedded tree (units -> topics -> content, plus
    embedded assessments). It is read and written wholesale through
    ``LegacyRepository``; nothing else mutates it. The ``*_ids`` columns link the
    normalized rows back to the course.
    """

    __tablename__ = "courses"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    institution: Mapped[str | None] = mapped_column(String(200), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(300), index=True)
    code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    department: Mapped[str | None] = mapped_column(String(200), nullable=True)
    description: Mapped[str | None] = mapped_column(String(5000), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    units: Mapped[list] = mapped_column(JSON, default=list)

    unit_ids: Mapped[list] = mapped_column(JSON, default=list)
    topic_ids: Mapped[list] = mapped_column(JSON, default=list)
    assessment_ids: Mapped[list] = mapped_column(JSON, default=list)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    __mapper_args__ = {"version_id_col": version}
