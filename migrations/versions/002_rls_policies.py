"""Add Row-Level Security policies for multi-tenant isolation

Revision ID: 002
Revises: 001
Create Date: 2024-01-01 00:00:01.000000

"""
from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# The tenants table is read during tenant resolution, before any tenant is
# current, so it carries no policy.
TENANT_OWNED_TABLES = ["students", "courses", "staff_members"]


def upgrade() -> None:
    for table in TENANT_OWNED_TABLES:
        op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
        op.execute(f"ALTER TABLE {table} FORCE ROW LEVEL SECURITY")

        # An unset app.current_tenant_id yields NULL, which matches no rows
        op.execute(f"""
            CREATE POLICY {table}_tenant_isolation ON {table}
            FOR ALL TO campus_service_role
            USING (tenant_id = current_setting('app.current_tenant_id', true))
            WITH CHECK (tenant_id = current_setting('app.current_tenant_id', true))
        """)

        op.execute(f"GRANT SELECT, INSERT, UPDATE, DELETE ON {table} TO campus_service_role")

    op.execute("GRANT SELECT, INSERT, UPDATE ON tenants TO campus_service_role")


def downgrade() -> None:
    op.execute("REVOKE SELECT, INSERT, UPDATE ON tenants FROM campus_service_role")

    for table in TENANT_OWNED_TABLES:
        op.execute(f"REVOKE SELECT, INSERT, UPDATE, DELETE ON {table} FROM campus_service_role")
        op.execute(f"DROP POLICY IF EXISTS {table}_tenant_isolation ON {table}")
        op.execute(f"ALTER TABLE {table} NO FORCE ROW LEVEL SECURITY")
        op.execute(f"ALTER TABLE {table} DISABLE ROW LEVEL SECURITY")
