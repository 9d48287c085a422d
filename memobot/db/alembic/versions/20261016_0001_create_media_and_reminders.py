"""Create users, memories, media and reminder tables.

Revision ID: 20261016_0001
Revises:
Create Date: 2026-10-16 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "20261016_0001"
down_revision = None
branch_labels = None
depends_on = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("now()"),
    )


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("phone_number", sa.String(length=32), nullable=False),
        sa.Column("timezone", sa.String(length=64), nullable=False, server_default="UTC"),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("phone_number", name="uq_users_phone_number"),
    )

    op.create_table(
        "memories",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("memory_type", sa.String(length=16), nullable=False, server_default="TEXT"),
        _created_at(),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            name="fk_memories_user_id_users",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_memories"),
    )
    op.create_index("ix_memories_user_id", "memories", ["user_id"])

    op.create_table(
        "media_blobs",
        sa.Column("fingerprint", sa.String(length=64), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("content_type", sa.String(length=255), nullable=False),
        sa.Column("storage_path", sa.Text(), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("fingerprint", name="pk_media_blobs"),
    )
    op.create_index("ix_media_blobs_content_type", "media_blobs", ["content_type"])

    op.create_table(
        "media_references",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("context_id", sa.Uuid(), nullable=True),
        sa.Column("original_name", sa.String(length=512), nullable=False),
        sa.Column("declared_content_type", sa.String(length=255), nullable=True),
        sa.Column("source_url", sa.Text(), nullable=True),
        sa.Column("blob_fingerprint", sa.String(length=64), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(
            ["blob_fingerprint"],
            ["media_blobs.fingerprint"],
            name="fk_media_references_blob_fingerprint_media_blobs",
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_media_references"),
    )
    op.create_index(
        "ix_media_references_owner_id_created_at",
        "media_references",
        ["owner_id", "created_at"],
    )
    op.create_index("ix_media_references_blob_fingerprint", "media_references", ["blob_fingerprint"])
    op.create_index("ix_media_references_context_id", "media_references", ["context_id"])

    op.create_table(
        "reminders",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("memory_id", sa.Uuid(), nullable=False),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="PENDING"),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.CheckConstraint(
            "status IN ('PENDING', 'SENT', 'CANCELLED')",
            name="ck_reminders_status_valid",
        ),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            name="fk_reminders_user_id_users",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["memory_id"],
            ["memories.id"],
            name="fk_reminders_memory_id_memories",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_reminders"),
    )
    op.create_index("ix_reminders_status_scheduled_for", "reminders", ["status", "scheduled_for"])
    op.create_index("ix_reminders_user_id_scheduled_for", "reminders", ["user_id", "scheduled_for"])


def downgrade() -> None:
    op.drop_index("ix_reminders_user_id_scheduled_for", table_name="reminders")
    op.drop_index("ix_reminders_status_scheduled_for", table_name="reminders")
    op.drop_table("reminders")

    op.drop_index("ix_media_references_context_id", table_name="media_references")
    op.drop_index("ix_media_references_blob_fingerprint", table_name="media_references")
    op.drop_index("ix_media_references_owner_id_created_at", table_name="media_references")
    op.drop_table("media_references")

    op.drop_index("ix_media_blobs_content_type", table_name="media_blobs")
    op.drop_table("media_blobs")

    op.drop_index("ix_memories_user_id", table_name="memories")
    op.drop_table("memories")
    op.drop_table("users")
