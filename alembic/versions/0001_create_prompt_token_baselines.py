"""create prompt token baselines table

Revision ID: 0001_prompt_token_baselines
Revises:
Create Date: 2026-10-18

"""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_prompt_token_baselines"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "prompt_token_baselines",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("prompt_name", sa.String(length=255), nullable=False),
        sa.Column("current_max_tokens", sa.Integer(), nullable=False),
        sa.Column("original_max_tokens", sa.Integer(), nullable=True),
        sa.Column("adjusted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("adjustment_reason", sa.Text(), nullable=False),
        sa.Column("last_correlation_id", sa.String(length=128), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.CheckConstraint(
            "current_max_tokens > 0",
            name=op.f("ck_prompt_token_baselines_current_max_tokens_positive"),
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_prompt_token_baselines")),
        sa.UniqueConstraint("prompt_name", name=op.f("uq_prompt_token_baselines_prompt_name")),
    )


def downgrade() -> None:
    op.drop_table("prompt_token_baselines")
