"""
camrelay - camera relay server
Pydantic request/response models.

Field names are snake_case in Python and camelCase on the wire, except for
the heartbeat request, which keeps the snake_case keys device firmware sends.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from camrelay.store import DeviceRecord, FrameSummary, HeartbeatLogEntry


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DeviceCommand(str, Enum):
    """Commands understood by the stock firmware. Others are relayed verbatim."""

    CAMERA_ON = "camera_on"
    CAMERA_OFF = "camera_off"
    START_STREAM = "start_stream"
    STOP_STREAM = "stop_stream"


# Heartbeat Models
class HeartbeatRequest(BaseModel):
    device_id: str = Field(min_length=1)
    camera_enabled: bool = False
    streaming_active: bool = False
    timestamp: Optional[float] = Field(
        default=None, description="Device clock, opaque to the server"
    )


class HeartbeatResponse(BaseModel):
    status: str = "ok"
    command: Optional[str] = Field(
        default=None, description="Present only when a command was drained"
    )


class HeartbeatLog(ApiModel):
    camera_enabled: bool
    streaming_active: bool
    device_timestamp: Optional[float] = None
    ip: Optional[str] = None
    timestamp: datetime

    @classmethod
    def from_entry(cls, entry: HeartbeatLogEntry) -> "HeartbeatLog":
        return cls(
            camera_enabled=entry.camera_enabled,
            streaming_active=entry.streaming_active,
            device_timestamp=entry.device_timestamp,
            ip=entry.source_address,
            timestamp=entry.created_at,
        )


class HeartbeatHistoryResponse(ApiModel):
    device_id: str
    heartbeats: List[HeartbeatLog] = Field(default_factory=list)


# Device Models
class DeviceStatus(ApiModel):
    """Public status of a device as shown in the device listing."""

    last_seen: datetime
    camera_enabled: bool
    streaming_active: bool
    device_timestamp: Optional[float] = None
    ip: Optional[str] = None
    pending_command: Optional[str] = None
    command_timestamp: Optional[datetime] = None
    online: bool

    @classmethod
    def from_record(
        cls,
        record: DeviceRecord,
        offline_after: float,
        now: Optional[datetime] = None,
    ) -> "DeviceStatus":
        return cls(
            last_seen=record.last_seen,
            camera_enabled=record.camera_enabled,
            streaming_active=record.streaming_active,
            device_timestamp=record.device_timestamp,
            ip=record.source_address,
            pending_command=record.pending_command,
            command_timestamp=record.pending_command_set_at,
            online=record.is_online(offline_after, now),
        )


class ServerStatus(ApiModel):
    status: str
    timestamp: datetime
    connected_devices: int


# Control Models
class ControlRequest(BaseModel):
    command: str = Field(min_length=1, description="Stored and relayed verbatim")


class ControlResponse(ApiModel):
    status: str = "command_queued"
    device_id: str
    command: str
    timestamp: datetime


# Frame Models
class FrameCreateResponse(ApiModel):
    status: str = "success"
    frame_id: int
    size: int
    timestamp: datetime


class FrameInfo(BaseModel):
    id: int
    size: int
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime

    @classmethod
    def from_summary(cls, summary: FrameSummary) -> "FrameInfo":
        return cls(
            id=summary.id,
            size=summary.size,
            metadata=summary.metadata,
            timestamp=summary.created_at,
        )


class FrameHistoryResponse(ApiModel):
    device_id: str
    total_frames: int
    frames: List[FrameInfo] = Field(default_factory=list)
