"""create clients, job_metrics, recipe_lines

Revision ID: 4f1c2a9d7e10
Revises:
Create Date: 2026-10-16 10:12:31.504118

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "4f1c2a9d7e10"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "clients",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("api_key", sa.String(length=128), nullable=False),
        sa.Column("openai_key", sa.String(length=255), nullable=True),
        sa.Column("is_global", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_clients_api_key", "clients", ["api_key"], unique=True)

    op.create_table(
        "job_metrics",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("job_id", sa.String(length=64), nullable=False),
        sa.Column("client_id", sa.Integer(), nullable=False),
        sa.Column("file_type", sa.String(length=16), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("error_type", sa.String(length=200), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("uploaded", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_job_metrics_job_id", "job_metrics", ["job_id"], unique=True)
    op.create_index("ix_job_metrics_client_id", "job_metrics", ["client_id"])
    op.create_index("ix_job_metrics_status", "job_metrics", ["status"])

    op.create_table(
        "recipe_lines",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("job_id", sa.String(length=64), nullable=False),
        sa.Column("client_id", sa.Integer(), nullable=False),
        sa.Column("filename", sa.String(length=255), nullable=True),
        sa.Column("formula", sa.String(length=255), nullable=False),
        sa.Column("text_block", sa.Text(), nullable=False),
        sa.Column("classification", sa.String(length=32), nullable=False, server_default="formula"),
        sa.Column("form", sa.String(length=255), nullable=True),
        sa.Column("type", sa.String(length=255), nullable=True),
        sa.Column("posology", sa.Text(), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=True),
        sa.Column("active", sa.String(length=255), nullable=False),
        sa.Column("dose", sa.Float(), nullable=True),
        sa.Column("unity", sa.String(length=32), nullable=True),
        sa.Column("patient", sa.String(length=255), nullable=True),
        sa.Column("doctor", sa.String(length=255), nullable=True),
        sa.Column("processed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reviewed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_recipe_lines_job_id", "recipe_lines", ["job_id"])
    op.create_index("ix_recipe_lines_client_id", "recipe_lines", ["client_id"])
    op.create_index("idx_recipe_lines_job_client", "recipe_lines", ["job_id", "client_id"])
    op.create_index("idx_recipe_lines_dedup", "recipe_lines", ["job_id", "formula", "active", "dose", "unity"])


def downgrade() -> None:
    op.drop_index("idx_recipe_lines_dedup", table_name="recipe_lines")
    op.drop_index("idx_recipe_lines_job_client", table_name="recipe_lines")
    op.drop_index("ix_recipe_lines_client_id", table_name="recipe_lines")
    op.drop_index("ix_recipe_lines_job_id", table_name="recipe_lines")
    op.drop_table("recipe_lines")

    op.drop_index("ix_job_metrics_status", table_name="job_metrics")
    op.drop_index("ix_job_metrics_client_id", table_name="job_metrics")
    op.drop_index("ix_job_metrics_job_id", table_name="job_metrics")
    op.drop_table("job_metrics")

    op.drop_index("ix_clients_api_key", table_name="clients")
    op.drop_table("clients")
