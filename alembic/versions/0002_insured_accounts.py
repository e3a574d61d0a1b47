"""insured accounts
Revision ID: 0002_insured_accounts
Revises: 0001_init
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0002_insured_accounts"
down_revision = "0001_init"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "insured_accounts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("responsible", sa.String(length=200), nullable=False, server_default="System"),
        sa.Column("company_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("insured_name", sa.String(length=200), nullable=False),
        sa.Column("primary_contact_name", sa.String(length=200), nullable=False),
        sa.Column("contact_email", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=40), nullable=False),
        sa.Column("street", sa.String(length=200), nullable=False),
        sa.Column("city", sa.String(length=100), nullable=False),
        sa.Column("state", sa.String(length=100), nullable=False),
        sa.Column("zipcode", sa.String(length=20), nullable=False),
    )
    op.create_index("ix_insured_accounts_company_id", "insured_accounts", ["company_id"])
    op.create_index("ix_insured_accounts_insured_name", "insured_accounts", ["insured_name"])


def downgrade():
    op.drop_table("insured_accounts")
