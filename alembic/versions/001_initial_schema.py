"""initial camera relay schema

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create devices table
    op.create_table(
        "devices",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("device_id", sa.String(255), nullable=False),
        sa.Column(
            "camera_enabled", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "streaming_active", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("device_timestamp", sa.Float(), nullable=True),
        sa.Column("source_address", sa.Text(), nullable=True),
        sa.Column("pending_command", sa.Text(), nullable=True),
        sa.Column("pending_command_set_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=True,
        ),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("device_id"),
    )
    op.create_index("ix_devices_id", "devices", ["id"])
    op.create_index("ix_devices_device_id", "devices", ["device_id"])

    # Create video_frames table
    op.create_table(
        "video_frames",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("device_id", sa.String(255), nullable=False),
        sa.Column("frame_data", sa.LargeBinary(), nullable=False),
        sa.Column("size", sa.Integer(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_video_frames_device_created", "video_frames", ["device_id", "created_at"]
    )

    # Create device_logs table for heartbeat history
    op.create_table(
        "device_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("device_id", sa.String(255), nullable=False),
        sa.Column(
            "camera_enabled", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "streaming_active", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("device_timestamp", sa.Float(), nullable=True),
        sa.Column("source_address", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_device_logs_device_created", "device_logs", ["device_id", "created_at"]
    )


def downgrade() -> None:
    op.drop_index("idx_device_logs_device_created", table_name="device_logs")
    op.drop_table("device_logs")
    op.drop_index("idx_video_frames_device_created", table_name="video_frames")
    op.drop_table("video_frames")
    op.drop_index("ix_devices_device_id", table_name="devices")
    op.drop_index("ix_devices_id", table_name="devices")
    op.drop_table("devices")
