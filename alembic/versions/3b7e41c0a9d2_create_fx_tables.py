"""create tenant and fx tables

Revision ID: 3b7e41c0a9d2
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b7e41c0a9d2"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "tenant",
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("base_currency", sa.String(length=3), nullable=False),
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "fx_rate_rule",
        sa.Column("tenant_id", sa.Uuid(), nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column(
            "source",
            sa.Enum("FIXED", "MANUAL", "API", name="rulesource", native_enum=False),
            nullable=False,
        ),
        sa.Column("currencies", sa.JSON(), nullable=False),
        sa.Column("fixed_rates", sa.JSON(), nullable=True),
        sa.Column("effective_from", sa.Date(), nullable=False),
        sa.Column("effective_to", sa.Date(), nullable=True),
        sa.Column("fallback_rule_id", sa.Uuid(), nullable=True),
        sa.Column(
            "status",
            sa.Enum("DRAFT", "ACTIVE", "ARCHIVED", name="rulestatus", native_enum=False),
            nullable=False,
        ),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("created_by", sa.String(length=200), nullable=True),
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "effective_to IS NULL OR effective_from <= effective_to",
            name="ck_fx_rate_rule_window",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_fx_rate_rule_tenant_id"), "fx_rate_rule", ["tenant_id"])
    op.create_index(op.f("ix_fx_rate_rule_effective_from"), "fx_rate_rule", ["effective_from"])
    op.create_index(op.f("ix_fx_rate_rule_status"), "fx_rate_rule", ["status"])

    op.create_table(
        "fx_monthly_rate",
        sa.Column("from_currency", sa.String(length=3), nullable=False),
        sa.Column("to_currency", sa.String(length=3), nullable=False),
        sa.Column("year_month", sa.String(length=7), nullable=False),
        sa.Column(
            "source",
            sa.Enum(
                "MANUAL",
                "API",
                "MANUAL_CALCULATED",
                name="ratesource",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column("rate", sa.Numeric(24, 12), nullable=False),
        sa.Column("rate_date", sa.Date(), nullable=True),
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "from_currency",
            "to_currency",
            "year_month",
            "source",
            name="uq_fx_monthly_rate_key",
        ),
    )
    op.create_index(op.f("ix_fx_monthly_rate_from_currency"), "fx_monthly_rate", ["from_currency"])
    op.create_index(op.f("ix_fx_monthly_rate_to_currency"), "fx_monthly_rate", ["to_currency"])
    op.create_index(op.f("ix_fx_monthly_rate_year_month"), "fx_monthly_rate", ["year_month"])


def downgrade() -> None:
    op.drop_index(op.f("ix_fx_monthly_rate_year_month"), table_name="fx_monthly_rate")
    op.drop_index(op.f("ix_fx_monthly_rate_to_currency"), table_name="fx_monthly_rate")
    op.drop_index(op.f("ix_fx_monthly_rate_from_currency"), table_name="fx_monthly_rate")
    op.drop_table("fx_monthly_rate")
    op.drop_index(op.f("ix_fx_rate_rule_status"), table_name="fx_rate_rule")
    op.drop_index(op.f("ix_fx_rate_rule_effective_from"), table_name="fx_rate_rule")
    op.drop_index(op.f("ix_fx_rate_rule_tenant_id"), table_name="fx_rate_rule")
    op.drop_table("fx_rate_rule")
    op.drop_table("tenant")
