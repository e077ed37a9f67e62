"""Initial schema with tenant directory and tenant-owned tables

Revision ID: 001
Revises:
Create Date: 2024-01-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _tenant_owned_columns():
    return [
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "tenant_id",
            sa.String(36),
            sa.ForeignKey("tenants.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("custom_fields", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # Create application role for Row-Level Security
    op.execute("DO $$ BEGIN CREATE ROLE campus_service_role; EXCEPTION WHEN duplicate_object THEN NULL; END $$")

    # Create tenants table
    op.create_table(
        "tenants",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("subdomain", sa.String(63), nullable=False),
        sa.Column("custom_domain", sa.String(253), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="trial"),
        sa.Column("plan", sa.String(20), nullable=False, server_default="basic"),
        sa.Column("config", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("subdomain"),
        sa.UniqueConstraint("custom_domain"),
        sa.CheckConstraint("status IN ('trial', 'active', 'limited', 'inactive')", name="valid_tenant_status"),
        sa.CheckConstraint("plan IN ('basic', 'premium', 'enterprise')", name="valid_tenant_plan"),
    )

    op.create_index("idx_tenants_status", "tenants", ["status"])

    # Create students table
    op.create_table(
        "students",
        *_tenant_owned_columns(),
        sa.Column("admission_number", sa.String(50), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("date_of_birth", sa.Date),
        sa.Column("grade_level", sa.String(20)),
        sa.Column("guardian_contact", postgresql.JSONB, server_default=sa.text("'{}'::jsonb")),
        sa.Column("status", sa.String(20), nullable=False, server_default="enrolled"),
        sa.UniqueConstraint("tenant_id", "admission_number", name="unique_admission_number_per_tenant"),
        sa.CheckConstraint("status IN ('enrolled', 'graduated', 'withdrawn')", name="valid_student_status"),
    )

    op.create_index("ix_students_tenant_id", "students", ["tenant_id"])
    op.create_index("idx_students_last_name", "students", ["last_name"])
    op.create_index("idx_students_status", "students", ["status"])

    # Create courses table
    op.create_table(
        "courses",
        *_tenant_owned_columns(),
        sa.Column("code", sa.String(30), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("credits", sa.Integer),
        sa.Column("capacity", sa.Integer),
        sa.UniqueConstraint("tenant_id", "code", name="unique_course_code_per_tenant"),
    )

    op.create_index("ix_courses_tenant_id", "courses", ["tenant_id"])
    op.create_index("idx_courses_title", "courses", ["title"])

    # Create staff members table
    op.create_table(
        "staff_members",
        *_tenant_owned_columns(),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("role", sa.String(30), nullable=False, server_default="teacher"),
        sa.Column("phone", sa.String(50)),
        sa.UniqueConstraint("tenant_id", "email", name="unique_staff_email_per_tenant"),
        sa.CheckConstraint(
            "role IN ('teacher', 'administrator', 'accountant', 'support')",
            name="valid_staff_role",
        ),
    )

    op.create_index("ix_staff_members_tenant_id", "staff_members", ["tenant_id"])
    op.create_index("idx_staff_members_role", "staff_members", ["role"])

    # Keep updated_at current on every row change
    op.execute("""
        CREATE OR REPLACE FUNCTION update_updated_at_column()
        RETURNS TRIGGER AS $$
        BEGIN
            NEW.updated_at = now();
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
    """)

    for table in ["tenants", "students", "courses", "staff_members"]:
        op.execute(f"""
            CREATE TRIGGER {table}_updated_at
            BEFORE UPDATE ON {table}
            FOR EACH ROW EXECUTE FUNCTION update_updated_at_column();
        """)


def downgrade() -> None:
    for table in ["staff_members", "courses", "students", "tenants"]:
        op.execute(f"DROP TRIGGER IF EXISTS {table}_updated_at ON {table}")
    op.execute("DROP FUNCTION IF EXISTS update_updated_at_column()")

    op.drop_table("staff_members")
    op.drop_table("courses")
    op.drop_table("students")
    op.drop_table("tenants")

    op.execute("DROP ROLE IF EXISTS campus_service_role")
