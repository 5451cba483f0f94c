"""create resume_drafts

Revision ID: 0001
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "resume_drafts",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column("owner_id", sa.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("template_id", sa.String(64), nullable=False, server_default="classic"),
        sa.Column("source_artifact_id", sa.String(255), nullable=True),
        sa.Column("content", sa.JSON(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("parent_draft_id", sa.UUID(as_uuid=True), nullable=True),
        sa.Column("root_draft_id", sa.UUID(as_uuid=True), nullable=False),
        sa.Column("origin_source", sa.String(32), nullable=False, server_default="manual"),
        sa.Column("content_hash", sa.String(64), nullable=False),
        sa.Column("last_accessed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_resume_drafts_owner_id", "resume_drafts", ["owner_id"])
    op.create_index("ix_resume_drafts_root_draft_id", "resume_drafts", ["root_draft_id"])
    op.create_index("ix_resume_drafts_owner_active", "resume_drafts", ["owner_id", "is_active", "archived"])


def downgrade():
    op.drop_index("ix_resume_drafts_owner_active", table_name="resume_drafts")
    op.drop_index("ix_resume_drafts_root_draft_id", table_name="resume_drafts")
    op.drop_index("ix_resume_drafts_owner_id", table_name="resume_drafts")
    op.drop_table("resume_drafts")
