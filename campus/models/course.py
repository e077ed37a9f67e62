"""Course model for the institution's course catalog."""

from sqlalchemy import Column, Index, Integer, String, Text, UniqueConstraint

from .base import BaseModel


class Course(BaseModel):
    """Course offered by an institution."""

    __tablename__ = "courses"

    entity_type = "course"

    code = Column(
        String(30),
        nullable=False,
        comment="Course code, unique per tenant"
    )
    title = Column(
        String(255),
        nullable=False,
        comment="Course title"
    )
    description = Column(
        Text,
        comment="Course description"
    )
    credits = Column(
        Integer,
        comment="Credit hours"
    )
    capacity = Column(
        Integer,
        comment="Maximum enrollment"
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="unique_course_code_per_tenant"),
        Index("idx_courses_title", "title"),
    )

    def __repr__(self) -> str:
        return f"<Course(id={self.id}, code='{self.code}')>"
