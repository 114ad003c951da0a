"""
Frame routes - image upload from devices and retrieval for operators
"""

import logging
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, Request, Response

from camrelay.config import Settings
from camrelay.dependencies import get_frame_store, get_settings
from camrelay.errors import NotFound
from camrelay.models import FrameCreateResponse, FrameHistoryResponse, FrameInfo
from camrelay.payloads import read_frame_payload
from camrelay.store import Frame, FrameStore

router = APIRouter(tags=["Frames"])
logger = logging.getLogger(__name__)

DEVICE_ID_HEADER = "x-device-id"
UNKNOWN_DEVICE = "unknown"
FRAME_MEDIA_TYPE = "image/jpeg"
# Largest id a signed 64-bit database column can hold
MAX_FRAME_ID = 2**63 - 1


def _timestamp_header(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _frame_response(frame: Frame) -> Response:
    return Response(
        content=frame.payload,
        media_type=FRAME_MEDIA_TYPE,
        headers={
            "X-Frame-ID": str(frame.id),
            "X-Timestamp": _timestamp_header(frame.created_at),
        },
    )


@router.post("/frames", response_model=FrameCreateResponse)
@router.post("/stream", response_model=FrameCreateResponse, include_in_schema=False)
async def upload_frame(
    request: Request,
    frames: FrameStore = Depends(get_frame_store),
    settings: Settings = Depends(get_settings),
) -> FrameCreateResponse:
    """
    Receive a frame from a device.

    The device is identified by the ``X-Device-ID`` header. The image may
    be sent as multipart form data, a raw body or a JSON byte array.
    """
    device_id = request.headers.get(DEVICE_ID_HEADER) or UNKNOWN_DEVICE
    payload = await read_frame_payload(request, settings.max_request_bytes)

    frame = frames.append(
        device_id,
        payload,
        {
            "userAgent": request.headers.get("user-agent"),
            "contentType": request.headers.get("content-type"),
            "timestamp": int(time.time() * 1000),
        },
    )

    logger.info(
        f"Received frame from {device_id}: {frame.size} bytes, saved as ID {frame.id}"
    )

    return FrameCreateResponse(
        frame_id=frame.id,
        size=frame.size,
        timestamp=frame.created_at,
    )


@router.get("/frames/{device_id}/latest")
async def get_latest_frame(
    device_id: str,
    frames: FrameStore = Depends(get_frame_store),
) -> Response:
    """Most recent frame of a device as an image."""
    frame = frames.get_latest(device_id)
    if frame is None:
        raise NotFound("No frames found for device")
    return _frame_response(frame)


@router.get("/frames/{device_id}", response_model=FrameHistoryResponse)
async def get_frame_history(
    device_id: str,
    limit: int = Query(default=50, ge=1),
    frames: FrameStore = Depends(get_frame_store),
) -> FrameHistoryResponse:
    """Summaries of recent frames, newest first. Payloads are not included."""
    summaries = frames.get_history(device_id, limit)
    return FrameHistoryResponse(
        device_id=device_id,
        total_frames=len(summaries),
        frames=[FrameInfo.from_summary(summary) for summary in summaries],
    )


@router.get("/frames/{device_id}/{frame_id}")
async def get_frame(
    device_id: str,
    frame_id: str,
    frames: FrameStore = Depends(get_frame_store),
) -> Response:
    """A specific frame as an image."""
    frame = None
    # Only plain ASCII digits within the 64-bit range can name a stored frame
    if frame_id.isascii() and frame_id.isdigit() and int(frame_id) <= MAX_FRAME_ID:
        frame = frames.get_by_id(device_id, int(frame_id))
    if frame is None:
        raise NotFound("Frame not found")
    return _frame_response(frame)
