"""
Device registry and frame store.

Both stores are process-wide singletons owned by the application and handed
to request handlers through FastAPI dependencies. Each has an abstract
interface and an in-memory implementation here; the SQLAlchemy-backed
implementations live in ``camrelay.sql_store``.

Command mailbox:
    A device record holds at most one pending command. ``enqueue_command``
    overwrites whatever is pending (last write wins). ``upsert_heartbeat``
    refreshes the device status and drains the pending command in the same
    critical section, so a command is handed out at most once, and a
    command enqueued after the heartbeat took the lock waits for the next
    heartbeat.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional

from camrelay.errors import NotFound, ValidationError

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

# Matches the width of the device_id columns
MAX_DEVICE_ID_LENGTH = 255


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================
# Records
# ============================================================


@dataclass
class DeviceRecord:
    """Last known status of a device plus its command mailbox."""

    device_id: str
    last_seen: datetime
    camera_enabled: bool = False
    streaming_active: bool = False
    device_timestamp: Optional[float] = None
    source_address: Optional[str] = None
    pending_command: Optional[str] = None
    pending_command_set_at: Optional[datetime] = None

    def is_online(self, offline_after: float, now: Optional[datetime] = None) -> bool:
        """Liveness is derived from ``last_seen``; nothing sweeps stale devices."""
        now = now or utcnow()
        return (now - self.last_seen).total_seconds() <= offline_after


@dataclass(frozen=True)
class QueuedCommand:
    device_id: str
    command: str
    queued_at: datetime


@dataclass(frozen=True)
class HeartbeatLogEntry:
    device_id: str
    camera_enabled: bool
    streaming_active: bool
    device_timestamp: Optional[float]
    source_address: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class FrameSummary:
    """A frame without its payload bytes."""

    id: int
    device_id: str
    size: int
    metadata: Dict[str, Any]
    created_at: datetime


@dataclass(frozen=True)
class Frame:
    """One uploaded image. The payload is opaque."""

    id: int
    device_id: str
    payload: bytes
    created_at: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def size(self) -> int:
        return len(self.payload)

    def summary(self) -> FrameSummary:
        return FrameSummary(
            id=self.id,
            device_id=self.device_id,
            size=self.size,
            metadata=dict(self.metadata),
            created_at=self.created_at,
        )


# ============================================================
# Interfaces
# ============================================================


class DeviceRegistry(ABC):
    """One status record per device id that has ever sent a heartbeat."""

    @abstractmethod
    def upsert_heartbeat(
        self,
        device_id: str,
        camera_enabled: bool,
        streaming_active: bool,
        device_timestamp: Optional[float] = None,
        source_address: Optional[str] = None,
    ) -> Optional[str]:
        """
        Record a heartbeat and drain the mailbox.

        Creates the record on first contact, overwrites the reported flags
        and returns the command that was pending, if any. The pending
        command is cleared before returning.
        """

    @abstractmethod
    def enqueue_command(self, device_id: str, command: str) -> QueuedCommand:
        """
        Set the pending command of a known device.

        Raises:
            NotFound: the device never sent a heartbeat.
        """

    @abstractmethod
    def list_devices(self) -> Dict[str, DeviceRecord]:
        """Snapshot of every known device."""

    @abstractmethod
    def get_device(self, device_id: str) -> Optional[DeviceRecord]:
        pass

    @abstractmethod
    def heartbeat_history(self, device_id: str, limit: int) -> List[HeartbeatLogEntry]:
        """Most recent heartbeats of a device, newest first."""


class FrameStore(ABC):
    """Recent frames per device."""

    @abstractmethod
    def append(
        self,
        device_id: str,
        payload: bytes,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Frame:
        """
        Store a frame and assign its id and creation time.

        Raises:
            ValidationError: the payload is empty or above the size limit.
        """

    @abstractmethod
    def get_latest(self, device_id: str) -> Optional[Frame]:
        pass

    @abstractmethod
    def get_by_id(self, device_id: str, frame_id: int) -> Optional[Frame]:
        pass

    @abstractmethod
    def get_history(self, device_id: str, limit: int) -> List[FrameSummary]:
        """Frame summaries, newest first, at most ``limit`` of them."""


def validate_device_id(device_id: Optional[str]) -> str:
    if not device_id or not device_id.strip():
        raise ValidationError("device_id is required")
    if len(device_id) > MAX_DEVICE_ID_LENGTH:
        raise ValidationError(
            f"device_id must be at most {MAX_DEVICE_ID_LENGTH} characters"
        )
    return device_id


def validate_command(command: Optional[str]) -> str:
    # Any non-empty string is stored verbatim; the device decides what it means.
    if not isinstance(command, str) or not command:
        raise ValidationError("command is required")
    return command


def validate_payload(payload: Optional[bytes], max_bytes: int) -> bytes:
    if not payload:
        raise ValidationError("No frame data received")
    payload = bytes(payload)
    if len(payload) > max_bytes:
        raise ValidationError(
            f"Frame of {len(payload)} bytes exceeds the {max_bytes} byte limit"
        )
    return payload


def validate_limit(limit: int) -> int:
    if limit < 1:
        raise ValidationError("limit must be a positive integer")
    return limit


# ============================================================
# In-memory implementations
# ============================================================


class FrameIdGenerator:
    """
    Time-derived frame ids that never repeat within the process.

    Ids are epoch milliseconds, bumped past the previous id when two frames
    land in the same millisecond (or the clock steps back).
    """

    def __init__(self, now_ms: Callable[[], int] = lambda: int(time.time() * 1000)):
        self._now_ms = now_ms
        self._last = 0
        self._lock = threading.Lock()

    def next_id(self) -> int:
        with self._lock:
            self._last = max(self._last + 1, self._now_ms())
            return self._last


class InMemoryDeviceRegistry(DeviceRegistry):
    """Volatile registry; records live as long as the process."""

    def __init__(self, heartbeat_log_size: int = 100, clock: Clock = utcnow):
        self._devices: Dict[str, DeviceRecord] = {}
        self._logs: Dict[str, Deque[HeartbeatLogEntry]] = {}
        self._heartbeat_log_size = heartbeat_log_size
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

        with self._lock:
            record = self._devices.get(device_id)
            if record is None:
                record = DeviceRecord(device_id=device_id, last_seen=now)
                self._devices[device_id] = record
                logger.info(f"New device registered: {device_id}")

            record.last_seen = now
            record.camera_enabled = bool(camera_enabled)
            record.streaming_active = bool(streaming_active)
            record.device_timestamp = device_timestamp
            record.source_address = source_address

            command = record.pending_command
            record.pending_command = None
            record.pending_command_set_at = None

            log = self._logs.setdefault(
                device_id, deque(maxlen=self._heartbeat_log_size)
            )
            log.append(
                HeartbeatLogEntry(
                    device_id=device_id,
                    camera_enabled=record.camera_enabled,
                    streaming_active=record.streaming_active,
                    device_timestamp=device_timestamp,
                    source_address=source_address,
                    created_at=now,
                )
            )

        return command

    def enqueue_command(self, device_id: str, command: str) -> QueuedCommand:
        validate_command(command)
        now = self._clock()

        with self._lock:
            record = self._devices.get(device_id)
            if record is None:
                raise NotFound("Device not found")
            if record.pending_command is not None:
                logger.info(
                    f"Replacing undelivered command '{record.pending_command}' "
                    f"for {device_id}"
                )
            record.pending_command = command
            record.pending_command_set_at = now

        return QueuedCommand(device_id=device_id, command=command, queued_at=now)

    def list_devices(self) -> Dict[str, DeviceRecord]:
        with self._lock:
            return {
                device_id: DeviceRecord(**vars(record))
                for device_id, record in self._devices.items()
            }

    def get_device(self, device_id: str) -> Optional[DeviceRecord]:
        with self._lock:
            record = self._devices.get(device_id)
            return DeviceRecord(**vars(record)) if record else None

    def heartbeat_history(self, device_id: str, limit: int) -> List[HeartbeatLogEntry]:
        validate_limit(limit)
        with self._lock:
            if device_id not in self._devices:
                raise NotFound("Device not found")
            entries = list(self._logs.get(device_id, ()))
        entries.reverse()
        return entries[:limit]


def _detached(frame: Frame) -> Frame:
    # Callers get their own metadata dict, never the stored one
    return replace(frame, metadata=dict(frame.metadata))


class InMemoryFrameStore(FrameStore):
    """Bounded ring of recent frames per device; oldest frames are evicted first."""

    def __init__(
        self,
        max_frame_bytes: int = 5 * 1024 * 1024,
        frames_per_device: int = 50,
        clock: Clock = utcnow,
        id_generator: Optional[FrameIdGenerator] = None,
    ):
        self._frames: Dict[str, Deque[Frame]] = {}
        self._max_frame_bytes = max_frame_bytes
        self._frames_per_device = frames_per_device
        self._clock = clock
        self._ids = id_generator or FrameIdGenerator()
        self._lock = threading.Lock()

    def append(
        self,
        device_id: str,
        payload: bytes,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Frame:
        validate_device_id(device_id)
        payload = validate_payload(payload, self._max_frame_bytes)

        with self._lock:
            frame = Frame(
                id=self._ids.next_id(),
                device_id=device_id,
                payload=payload,
                created_at=self._clock(),
                metadata=dict(metadata or {}),
            )
            frames = self._frames.setdefault(device_id, deque())
            frames.append(frame)
            while len(frames) > self._frames_per_device:
                evicted = frames.popleft()
                logger.debug(f"Evicted frame {evicted.id} for {device_id}")

        return _detached(frame)

    def get_latest(self, device_id: str) -> Optional[Frame]:
        with self._lock:
            frames = self._frames.get(device_id)
            return _detached(frames[-1]) if frames else None

    def get_by_id(self, device_id: str, frame_id: int) -> Optional[Frame]:
        with self._lock:
            for frame in self._frames.get(device_id, ()):
                if frame.id == frame_id:
                    return _detached(frame)
        return None

    def get_history(self, device_id: str, limit: int) -> List[FrameSummary]:
        validate_limit(limit)
        with self._lock:
            frames = list(self._frames.get(device_id, ()))
        # Ids grow with insertion order, so they break timestamp ties.
        frames.sort(key=lambda f: (f.created_at, f.id), reverse=True)
        return [frame.summary() for frame in frames[:limit]]
