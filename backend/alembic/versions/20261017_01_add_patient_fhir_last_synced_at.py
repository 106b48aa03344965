"""Track the last background FHIR sync attempt per patient.

Revision ID: 20261017_01
Revises: 20261017_00
Create Date: 2026-10-17 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "20261017_01"
down_revision = "20261017_00"
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    columns = {col["name"] for col in inspector.get_columns("patients")}

    if "fhir_last_synced_at" not in columns:
        op.add_column(
            "patients",
            sa.Column("fhir_last_synced_at", sa.DateTime(timezone=True), nullable=True),
        )


def downgrade() -> None:
    op.drop_column("patients", "fhir_last_synced_at")
