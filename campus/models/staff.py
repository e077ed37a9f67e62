"""Staff member model; each staff member is a platform user seat."""

from sqlalchemy import CheckConstraint, Column, Index, String, UniqueConstraint

from .base import BaseModel


class StaffMember(BaseModel):
    """
    Staff member (teacher, administrator, accountant) of an institution.
    Staff members count against the tenant's user quota.
    """

    __tablename__ = "staff_members"

    entity_type = "staff"

    email = Column(
        String(255),
        nullable=False,
        comment="Login email address"
    )
    full_name = Column(
        String(255),
        nullable=False,
        comment="Full name"
    )
    role = Column(
        String(30),
        default="teacher",
        nullable=False,
        comment="Role: teacher, administrator, accountant, support"
    )
    phone = Column(
        String(50),
        comment="Contact phone number"
    )

    __table_args__ = (
        CheckConstraint(
            "role IN ('teacher', 'administrator', 'accountant', 'support')",
            name="valid_staff_role"
        ),
        UniqueConstraint("tenant_id", "email", name="unique_staff_email_per_tenant"),
        Index("idx_staff_members_role", "role"),
    )

    def __repr__(self) -> str:
        return f"<StaffMember(id={self.id}, email='{self.email}')>"
