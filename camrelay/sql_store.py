"""
SQLAlchemy-backed device registry and frame store.

Selected with ``STORAGE_BACKEND=database``. Each operation runs in its own
session and transaction; database errors are rolled back and surfaced as
``InternalError``.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from camrelay.db_models import Device, DeviceLog, VideoFrame
from camrelay.errors import InternalError, NotFound
from camrelay.store import (
    Clock,
    DeviceRecord,
    DeviceRegistry,
    Frame,
    FrameStore,
    FrameSummary,
    HeartbeatLogEntry,
    QueuedCommand,
    utcnow,
    validate_command,
    validate_device_id,
    validate_limit,
    validate_payload,
)

logger = logging.getLogger(__name__)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@contextmanager
def _transaction(session_factory: sessionmaker, action: str) -> Iterator[Session]:
    db = session_factory()
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception(f"Database error while trying to {action}")
        raise InternalError(f"Failed to {action}") from e
    finally:
        db.close()


def _device_record(device: Device) -> DeviceRecord:
    return DeviceRecord(
        device_id=str(device.device_id),
        last_seen=_as_utc(device.last_seen_at),
        camera_enabled=bool(device.camera_enabled),
        streaming_active=bool(device.streaming_active),
        device_timestamp=device.device_timestamp,
        source_address=device.source_address,
        pending_command=device.pending_command,
        pending_command_set_at=_as_utc(device.pending_command_set_at),
    )


def _frame(row: VideoFrame) -> Frame:
    return Frame(
        id=int(row.id),
        device_id=str(row.device_id),
        payload=bytes(row.frame_data),
        created_at=_as_utc(row.created_at),
        metadata=dict(row.metadata_ or {}),
    )


class SqlDeviceRegistry(DeviceRegistry):
    """
    Device registry persisted in the ``devices`` and ``device_logs`` tables.

    The drain in ``upsert_heartbeat`` locks the device row (``SELECT ...
    FOR UPDATE`` where the database supports it) and is additionally
    serialized within the process.
    """

    def __init__(self, session_factory: sessionmaker, clock: Clock = utcnow):
        self._session_factory = session_factory
        self._clock = clock
        self._lock = threading.Lock()

    def upsert_heartbeat(
        self,
        device_id: str,
        camera_enabled: bool,
        streaming_active: bool,
        device_timestamp: Optional[float] = None,
        source_address: Optional[str] = None,
    ) -> Optional[str]:
        validate_device_id(device_id)
        now = self._clock()

        with self._lock, _transaction(
            self._session_factory, "process heartbeat"
        ) as db:
            device = (
                db.query(Device)
                .filter(Device.device_id == device_id)
                .with_for_update()
                .first()
            )
            if device is None:
                device = Device(device_id=device_id, last_seen_at=now, created_at=now)
                db.add(device)
                logger.info(f"New device registered: {device_id}")

            device.last_seen_at = now
            device.camera_enabled = bool(camera_enabled)
            device.streaming_active = bool(streaming_active)
            device.device_timestamp = device_timestamp
            device.source_address = source_address

            command = device.pending_command
            device.pending_command = None
            device.pending_command_set_at = None

            db.add(
                DeviceLog(
                    device_id=device_id,
                    camera_enabled=bool(camera_enabled),
                    streaming_active=bool(streaming_active),
                    device_timestamp=device_timestamp,
                    source_address=source_address,
                    created_at=now,
                )
            )

        return command

    def enqueue_command(self, device_id: str, command: str) -> QueuedCommand:
        validate_command(command)
        now = self._clock()

        with self._lock, _transaction(self._session_factory, "queue command") as db:
            device = (
                db.query(Device)
                .filter(Device.device_id == device_id)
                .with_for_update()
                .first()
            )
            if device is None:
                raise NotFound("Device not found")
            if device.pending_command is not None:
                logger.info(
                    f"Replacing undelivered command '{device.pending_command}' "
                    f"for {device_id}"
                )
            device.pending_command = command
            device.pending_command_set_at = now

        return QueuedCommand(device_id=device_id, command=command, queued_at=now)

    def list_devices(self) -> Dict[str, DeviceRecord]:
        with _transaction(self._session_factory, "list devices") as db:
            devices = db.query(Device).order_by(Device.id).all()
            return {str(d.device_id): _device_record(d) for d in devices}

    def get_device(self, device_id: str) -> Optional[DeviceRecord]:
        with _transaction(self._session_factory, "load device") as db:
            device = db.query(Device).filter(Device.device_id == device_id).first()
            return _device_record(device) if device else None

    def heartbeat_history(self, device_id: str, limit: int) -> List[HeartbeatLogEntry]:
        validate_limit(limit)
        with _transaction(self._session_factory, "load heartbeat history") as db:
            exists = db.query(Device.id).filter(Device.device_id == device_id).first()
            if exists is None:
                raise NotFound("Device not found")

            rows = (
                db.query(DeviceLog)
                .filter(DeviceLog.device_id == device_id)
                .order_by(DeviceLog.created_at.desc(), DeviceLog.id.desc())
                .limit(limit)
                .all()
            )
            return [
                HeartbeatLogEntry(
                    device_id=str(row.device_id),
                    camera_enabled=bool(row.camera_enabled),
                    streaming_active=bool(row.streaming_active),
                    device_timestamp=row.device_timestamp,
                    source_address=row.source_address,
                    created_at=_as_utc(row.created_at),
                )
                for row in rows
            ]


class SqlFrameStore(FrameStore):
    """
    Frames persisted in the ``video_frames`` table.

    Frame ids are the table's autoincrement key. After each insert the
    device's frames beyond ``frames_per_device`` are deleted, oldest first.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        max_frame_bytes: int = 5 * 1024 * 1024,
        frames_per_device: int = 50,
        clock: Clock = utcnow,
    ):
        self._session_factory = session_factory
        self._max_frame_bytes = max_frame_bytes
        self._frames_per_device = frames_per_device
        self._clock = clock
        self._lock = threading.Lock()

    def append(
        self,
        device_id: str,
        payload: bytes,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Frame:
        validate_device_id(device_id)
        payload = validate_payload(payload, self._max_frame_bytes)

        with self._lock, _transaction(self._session_factory, "save frame") as db:
            row = VideoFrame(
                device_id=device_id,
                frame_data=payload,
                size=len(payload),
                metadata_=dict(metadata or {}),
                created_at=self._clock(),
            )
            db.add(row)
            db.flush()
            frame = _frame(row)

            stale_ids = [
                frame_id
                for (frame_id,) in db.query(VideoFrame.id)
                .filter(VideoFrame.device_id == device_id)
                .order_by(VideoFrame.created_at.desc(), VideoFrame.id.desc())
                .offset(self._frames_per_device)
                .all()
            ]
            if stale_ids:
                db.query(VideoFrame).filter(VideoFrame.id.in_(stale_ids)).delete(
                    synchronize_session=False
                )
                logger.debug(f"Evicted {len(stale_ids)} frame(s) for {device_id}")

        return frame

    def get_latest(self, device_id: str) -> Optional[Frame]:
        with _transaction(self._session_factory, "retrieve frame") as db:
            row = (
                db.query(VideoFrame)
                .filter(VideoFrame.device_id == device_id)
                .order_by(VideoFrame.id.desc())
                .first()
            )
            return _frame(row) if row else None

    def get_by_id(self, device_id: str, frame_id: int) -> Optional[Frame]:
        with _transaction(self._session_factory, "retrieve frame") as db:
            row = (
                db.query(VideoFrame)
                .filter(VideoFrame.device_id == device_id)
                .filter(VideoFrame.id == frame_id)
                .first()
            )
            return _frame(row) if row else None

    def get_history(self, device_id: str, limit: int) -> List[FrameSummary]:
        validate_limit(limit)
        with _transaction(self._session_factory, "retrieve frame history") as db:
            rows = (
                db.query(
                    VideoFrame.id,
                    VideoFrame.device_id,
                    VideoFrame.size,
                    VideoFrame.metadata_.label("frame_metadata"),
                    VideoFrame.created_at,
                )
                .filter(VideoFrame.device_id == device_id)
                .order_by(VideoFrame.created_at.desc(), VideoFrame.id.desc())
                .limit(limit)
                .all()
            )
            return [
                FrameSummary(
                    id=int(row.id),
                    device_id=str(row.device_id),
                    size=int(row.size),
                    metadata=dict(row.frame_metadata or {}),
                    created_at=_as_utc(row.created_at),
                )
                for row in rows
            ]
