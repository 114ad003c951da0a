"""
Device routes - heartbeats, device status and control commands
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Query, Request

from camrelay.config import Settings
from camrelay.dependencies import get_device_registry, get_settings
from camrelay.models import (
    ControlRequest,
    ControlResponse,
    DeviceStatus,
    HeartbeatHistoryResponse,
    HeartbeatLog,
    HeartbeatRequest,
    HeartbeatResponse,
)
from camrelay.store import DeviceRegistry

router = APIRouter(tags=["Devices"])
logger = logging.getLogger(__name__)


def client_address(request: Request) -> Optional[str]:
    """Address of the caller, honouring the first X-Forwarded-For hop."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@router.post(
    "/heartbeat",
    response_model=HeartbeatResponse,
    response_model_exclude_none=True,
)
async def heartbeat(
    beat: HeartbeatRequest,
    request: Request,
    registry: DeviceRegistry = Depends(get_device_registry),
) -> HeartbeatResponse:
    """
    Device heartbeat and command polling.

    Records the reported status and hands back the pending command, if
    one was queued since the previous heartbeat.
    """
    command = registry.upsert_heartbeat(
        beat.device_id,
        camera_enabled=beat.camera_enabled,
        streaming_active=beat.streaming_active,
        device_timestamp=beat.timestamp,
        source_address=client_address(request),
    )

    logger.info(
        f"Heartbeat from {beat.device_id}: camera={beat.camera_enabled}, "
        f"streaming={beat.streaming_active}"
    )

    if command is not None:
        logger.info(f"Sending command to {beat.device_id}: {command}")

    return HeartbeatResponse(command=command)


@router.get("/devices", response_model=Dict[str, DeviceStatus])
async def list_devices(
    registry: DeviceRegistry = Depends(get_device_registry),
    settings: Settings = Depends(get_settings),
) -> Dict[str, DeviceStatus]:
    """Status of every device that has sent a heartbeat."""
    now = datetime.now(timezone.utc)
    return {
        device_id: DeviceStatus.from_record(
            record, settings.device_offline_after, now
        )
        for device_id, record in registry.list_devices().items()
    }


@router.get("/devices/{device_id}/heartbeats", response_model=HeartbeatHistoryResponse)
async def heartbeat_history(
    device_id: str,
    limit: int = Query(default=50, ge=1),
    registry: DeviceRegistry = Depends(get_device_registry),
) -> HeartbeatHistoryResponse:
    """Recent heartbeats of a device, newest first."""
    entries = registry.heartbeat_history(device_id, limit)
    return HeartbeatHistoryResponse(
        device_id=device_id,
        heartbeats=[HeartbeatLog.from_entry(entry) for entry in entries],
    )


@router.post("/control/{device_id}", response_model=ControlResponse)
async def send_command(
    device_id: str,
    control: ControlRequest,
    registry: DeviceRegistry = Depends(get_device_registry),
) -> ControlResponse:
    """
    Queue a control command for a device.

    The device picks the command up with its next heartbeat. A command
    that is still pending is replaced.
    """
    queued = registry.enqueue_command(device_id, control.command)

    logger.info(f"Control command for {device_id}: {control.command}")

    return ControlResponse(
        device_id=queued.device_id,
        command=queued.command,
        timestamp=queued.queued_at,
    )
