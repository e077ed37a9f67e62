"""Student model for enrolled learners."""

from sqlalchemy import CheckConstraint, Column, Date, Index, String, UniqueConstraint

from .base import BaseModel, JSONType


class Student(BaseModel):
    """
    Student enrolled at an institution.
    Admission numbers are unique within a tenant, not globally.
    """

    __tablename__ = "students"

    entity_type = "student"

    admission_number = Column(
        String(50),
        nullable=False,
        comment="Institution-assigned admission number"
    )
    first_name = Column(
        String(100),
        nullable=False,
        comment="Student's first name"
    )
    last_name = Column(
        String(100),
        nullable=False,
        comment="Student's last name"
    )
    date_of_birth = Column(
        Date,
        comment="Date of birth"
    )
    grade_level = Column(
        String(20),
        comment="Current grade or class"
    )
    guardian_contact = Column(
        JSONType,
        default=dict,
        comment="Guardian name, email and phone"
    )
    status = Column(
        String(20),
        default="enrolled",
        nullable=False,
        comment="Student status: enrolled, graduated, withdrawn"
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('enrolled', 'graduated', 'withdrawn')",
            name="valid_student_status"
        ),
        UniqueConstraint(
            "tenant_id", "admission_number",
            name="unique_admission_number_per_tenant"
        ),
        Index("idx_students_last_name", "last_name"),
        Index("idx_students_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Student(id={self.id}, admission_number='{self.admission_number}')>"
