import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String, UniqueConstraint, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gradewatch.core.db import Base


class SchoolClass(Base):
    __tablename__ = "classes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    archived: Mapped[bool] = mapped_column(
        Boolean, server_default=text("false"), default=False, nullable=False
    )
    archived_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime, server_default=text("CURRENT_TIMESTAMP"), nullable=True
    )

    course_links: Mapped[list["ClassCourse"]] = relationship(
        "ClassCourse",
        back_populates="school_class",
        cascade="all, delete-orphan",
    )

    @property
    def course_ids(self) -> list[uuid.UUID]:
        return [link.course_id for link in self.course_links]


class ClassCourse(Base):
    __tablename__ = "class_courses"
    __table_args__ = (
        UniqueConstraint("class_id", "course_id", name="class_courses_class_course_key"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    class_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("classes.id", name="class_courses_class_id_fkey", ondelete="CASCADE"),
        nullable=False,
    )
    course_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("courses.id", name="class_courses_course_id_fkey", ondelete="CASCADE"),
        nullable=False,
    )

    school_class: Mapped["SchoolClass"] = relationship("SchoolClass", back_populates="course_links")
