"""create_audio_cache_tables

Revision ID: 7a1c5e09b2d4
Revises:
Create Date: 2026-10-19 09:00:00.000000

Creates the two tables backing the audio cache:

- audio_files: one row per locally cached audio track (status machine,
  size, recency timestamps)
- audio_url_cache: one row per resolved remote media URL with its expiry
"""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "7a1c5e09b2d4"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create audio_files and audio_url_cache tables."""
    op.create_table(
        "audio_files",
        sa.Column("video_id", sa.String(length=11), nullable=False),
        sa.Column("file_path", sa.String(length=32), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("download_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "downloaded_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "last_played_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=True,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=True,
        ),
        sa.PrimaryKeyConstraint("video_id"),
    )
    # Eviction scans ready records by last_played_at
    op.create_index(
        "idx_audio_files_status_last_played",
        "audio_files",
        ["status", "last_played_at"],
        unique=False,
    )

    op.create_table(
        "audio_url_cache",
        sa.Column("video_id", sa.String(length=11), nullable=False),
        sa.Column("audio_url", sa.Text(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=True,
        ),
        sa.PrimaryKeyConstraint("video_id"),
    )
    op.create_index(
        "idx_audio_url_cache_expires_at",
        "audio_url_cache",
        ["expires_at"],
        unique=False,
    )


def downgrade() -> None:
    """Drop audio cache tables."""
    op.drop_index("idx_audio_url_cache_expires_at", table_name="audio_url_cache")
    op.drop_table("audio_url_cache")
    op.drop_index("idx_audio_files_status_last_played", table_name="audio_files")
    op.drop_table("audio_files")
