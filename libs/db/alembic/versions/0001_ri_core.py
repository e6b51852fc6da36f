# ruff: noqa: I001
"""Receipt and rule core tables.

Revision ID: 0001_ri_core
Revises: None
Create Date: 2026-10-19
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_ri_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    # ri_receipts
    op.create_table(
        "ri_receipts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("merchant", sa.Text(), nullable=True),
        sa.Column("merchant_address", sa.Text(), nullable=True),
        sa.Column("receipt_number", sa.String(120), nullable=True),
        sa.Column("purchased_at", sa.Date(), nullable=True),
        sa.Column("purchased_time", sa.String(32), nullable=True),
        sa.Column("currency", sa.CHAR(3), nullable=True),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=True),
        sa.Column("tax", sa.Numeric(12, 2), nullable=True),
        sa.Column("tip", sa.Numeric(12, 2), nullable=True),
        sa.Column("total", sa.Numeric(12, 2), nullable=True),
        sa.Column("payment_method", sa.String(64), nullable=True),
        sa.Column("payment_last4", sa.String(4), nullable=True),
        sa.Column("category", sa.String(120), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("raw_text", sa.Text(), nullable=True),
        sa.Column("line_items", sa.JSON(), nullable=False),
        sa.Column("ai_confidence", sa.Numeric(5, 4), nullable=True),
        sa.Column("ai_model", sa.String(120), nullable=True),
        sa.Column("file_path", sa.Text(), nullable=True),
        sa.Column("processing_explanation", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_ri_receipts_user_id", "ri_receipts", ["user_id"])

    # ri_rules
    op.create_table(
        "ri_rules",
        sa.Column(
            "id",
            sa.BigInteger().with_variant(sa.Integer(), "sqlite"),
            primary_key=True,
            autoincrement=True,
        ),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("name", sa.String(160), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("priority", sa.Integer(), nullable=False, server_default=sa.text("100")),
        sa.Column("conditions", sa.JSON(), nullable=False),
        sa.Column("actions", sa.JSON(), nullable=False),
        *_timestamps(),
    )
    op.create_index(
        "ix_ri_rules_user_active_priority",
        "ri_rules",
        ["user_id", "is_active", "priority", "id"],
    )


def downgrade() -> None:
    op.drop_index("ix_ri_rules_user_active_priority", table_name="ri_rules")
    op.drop_table("ri_rules")
    op.drop_index("ix_ri_receipts_user_id", table_name="ri_receipts")
    op.drop_table("ri_receipts")
