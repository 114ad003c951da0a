"""
SQLAlchemy ORM models for the persistent storage backend.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
)

from camrelay.database import Base


class Device(Base):
    """Last reported status of a camera device and its pending command."""

    __tablename__ = "devices"

    id = Column(Integer, primary_key=True, index=True)
    device_id = Column(String(255), unique=True, nullable=False, index=True)

    # Reported status
    camera_enabled = Column(Boolean, nullable=False, default=False)
    streaming_active = Column(Boolean, nullable=False, default=False)
    device_timestamp = Column(Float, nullable=True)
    source_address = Column(Text, nullable=True)

    # Mailbox
    pending_command = Column(Text, nullable=True)
    pending_command_set_at = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    last_seen_at = Column(DateTime(timezone=True), nullable=False)


class VideoFrame(Base):
    """Uploaded frame bytes."""

    __tablename__ = "video_frames"
    __table_args__ = (
        Index("idx_video_frames_device_created", "device_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    device_id = Column(String(255), nullable=False)

    # Frame data
    frame_data = Column(LargeBinary, nullable=False)
    size = Column(Integer, nullable=False)
    metadata_ = Column("metadata", JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), nullable=False)


class DeviceLog(Base):
    """Heartbeat history."""

    __tablename__ = "device_logs"
    __table_args__ = (
        Index("idx_device_logs_device_created", "device_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    device_id = Column(String(255), nullable=False)
    camera_enabled = Column(Boolean, nullable=False, default=False)
    streaming_active = Column(Boolean, nullable=False, default=False)
    device_timestamp = Column(Float, nullable=True)
    source_address = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False)
