"""bylaws + revision snapshots

Revision ID: 0002_bylaws
Revises: 0001_init
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa


revision = "0002_bylaws"
down_revision = "0001_init"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "bylaws",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("uuid", sa.String(length=36), nullable=False, unique=True),
        sa.Column("section_number", sa.String(length=60), nullable=False, unique=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("parent_section_id", sa.Integer(), sa.ForeignKey("bylaws.id", ondelete="SET NULL"), nullable=True),
        sa.Column("section_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("part_number", sa.String(length=40), nullable=True),
        sa.Column("part_title", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("effective_date", sa.Date(), nullable=True),
        sa.Column("created_by_id", sa.Integer(), sa.ForeignKey("app_users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("updated_by_id", sa.Integer(), sa.ForeignKey("app_users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_bylaws_section_number", "bylaws", ["section_number"])

    op.create_table(
        "bylaw_revisions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("bylaw_id", sa.Integer(), sa.ForeignKey("bylaws.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("revision_notes", sa.Text(), nullable=True),
        sa.Column("effective_date", sa.Date(), nullable=True),
        sa.Column("created_by_id", sa.Integer(), sa.ForeignKey("app_users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_bylaw_revisions_bylaw_id", "bylaw_revisions", ["bylaw_id"])


def downgrade():
    op.drop_table("bylaw_revisions")
    op.drop_table("bylaws")
