"""
Tests for the device registry and frame store (both storage backends)
"""

import threading
from datetime import timedelta

import pytest

from camrelay.errors import NotFound, ValidationError
from camrelay.store import (
    DeviceRecord,
    FrameIdGenerator,
    FrameSummary,
    InMemoryDeviceRegistry,
    InMemoryFrameStore,
)


def heartbeat(registry, device_id="cam1", camera=False, stream=False):
    return registry.upsert_heartbeat(
        device_id,
        camera_enabled=camera,
        streaming_active=stream,
        device_timestamp=12345.0,
        source_address="10.0.0.7",
    )


# ============================================================
# Device registry
# ============================================================


def test_enqueue_for_unknown_device_fails(registry):
    with pytest.raises(NotFound):
        registry.enqueue_command("never-seen", "camera_on")


def test_first_heartbeat_creates_device(registry, clock):
    assert heartbeat(registry, camera=True) is None

    record = registry.get_device("cam1")
    assert record is not None
    assert record.camera_enabled is True
    assert record.streaming_active is False
    assert record.device_timestamp == 12345.0
    assert record.source_address == "10.0.0.7"
    assert record.last_seen == clock.now
    assert record.pending_command is None


def test_heartbeat_requires_device_id(registry):
    with pytest.raises(ValidationError):
        registry.upsert_heartbeat("", camera_enabled=False, streaming_active=False)


def test_command_delivered_once_on_next_heartbeat(registry):
    heartbeat(registry)
    queued = registry.enqueue_command("cam1", "camera_on")
    assert queued.command == "camera_on"

    assert heartbeat(registry) == "camera_on"
    assert heartbeat(registry) is None


def test_last_enqueued_command_wins(registry):
    heartbeat(registry)
    registry.enqueue_command("cam1", "camera_on")
    registry.enqueue_command("cam1", "start_stream")

    assert heartbeat(registry) == "start_stream"
    assert heartbeat(registry) is None


def test_pending_command_visible_until_drained(registry, clock):
    heartbeat(registry)
    clock.advance(3)
    registry.enqueue_command("cam1", "camera_off")

    record = registry.list_devices()["cam1"]
    assert record.pending_command == "camera_off"
    assert record.pending_command_set_at == clock.now

    heartbeat(registry)
    record = registry.get_device("cam1")
    assert record.pending_command is None
    assert record.pending_command_set_at is None


def test_unrecognized_command_is_stored_verbatim(registry):
    heartbeat(registry)
    registry.enqueue_command("cam1", "reboot --now")
    assert heartbeat(registry) == "reboot --now"


def test_long_command_is_stored_verbatim(registry):
    heartbeat(registry)
    command = "x" * 1000
    registry.enqueue_command("cam1", command)
    assert registry.get_device("cam1").pending_command == command
    assert heartbeat(registry) == command


def test_overlong_device_id_rejected(registry):
    with pytest.raises(ValidationError):
        heartbeat(registry, device_id="c" * 256)
    assert registry.list_devices() == {}


def test_empty_command_rejected(registry):
    heartbeat(registry)
    with pytest.raises(ValidationError):
        registry.enqueue_command("cam1", "")


def test_heartbeat_overwrites_flags(registry, clock):
    heartbeat(registry, camera=True, stream=True)
    clock.advance(5)
    heartbeat(registry, camera=False, stream=False)

    record = registry.get_device("cam1")
    assert record.camera_enabled is False
    assert record.streaming_active is False
    assert record.last_seen == clock.now


def test_list_devices(registry):
    heartbeat(registry, "cam1")
    heartbeat(registry, "cam2")
    assert set(registry.list_devices()) == {"cam1", "cam2"}
    assert registry.get_device("cam3") is None


def test_heartbeat_history_newest_first(registry, clock):
    for camera in (False, True, False):
        heartbeat(registry, camera=camera)
        clock.advance(1)

    entries = registry.heartbeat_history("cam1", 2)
    assert len(entries) == 2
    assert entries[0].created_at > entries[1].created_at
    assert entries[0].camera_enabled is False
    assert entries[1].camera_enabled is True


def test_heartbeat_history_unknown_device(registry):
    with pytest.raises(NotFound):
        registry.heartbeat_history("ghost", 10)


def test_in_memory_heartbeat_history_is_bounded(clock):
    registry = InMemoryDeviceRegistry(heartbeat_log_size=3, clock=clock)
    for _ in range(10):
        heartbeat(registry)
    assert len(registry.heartbeat_history("cam1", 100)) == 3


def test_in_memory_listing_is_a_snapshot(clock):
    registry = InMemoryDeviceRegistry(clock=clock)
    heartbeat(registry)
    snapshot = registry.list_devices()
    snapshot["cam1"].pending_command = "tampered"
    assert registry.get_device("cam1").pending_command is None


def test_concurrent_enqueue_and_heartbeat_never_duplicates():
    registry = InMemoryDeviceRegistry()
    heartbeat(registry)
    commands = [f"cmd-{i}" for i in range(500)]
    delivered = []

    def enqueue_all():
        for command in commands:
            registry.enqueue_command("cam1", command)

    def poll():
        for _ in range(500):
            command = heartbeat(registry)
            if command is not None:
                delivered.append(command)

    threads = [threading.Thread(target=enqueue_all), threading.Thread(target=poll)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    final = heartbeat(registry)
    if final is not None:
        delivered.append(final)

    assert len(delivered) == len(set(delivered))
    assert set(delivered) <= set(commands)
    # The last command is either already delivered or drained by the final poll
    assert "cmd-499" in delivered


def test_device_online_is_computed_from_last_seen(clock):
    record = DeviceRecord(device_id="cam1", last_seen=clock.now)
    assert record.is_online(30, now=clock.now + timedelta(seconds=30))
    assert not record.is_online(30, now=clock.now + timedelta(seconds=31))


# ============================================================
# Frame store
# ============================================================


def test_append_and_get_by_id_round_trip(frame_store, jpeg_bytes, clock):
    frame = frame_store.append("cam1", jpeg_bytes, {"contentType": "image/jpeg"})

    assert frame.size == len(jpeg_bytes)
    assert frame.created_at == clock.now

    stored = frame_store.get_by_id("cam1", frame.id)
    assert stored.payload == jpeg_bytes
    assert stored.size == len(jpeg_bytes)
    assert stored.metadata == {"contentType": "image/jpeg"}


def test_get_by_id_is_scoped_to_device(frame_store, jpeg_bytes):
    frame = frame_store.append("cam1", jpeg_bytes)
    assert frame_store.get_by_id("cam2", frame.id) is None
    assert frame_store.get_by_id("cam1", frame.id + 1000) is None


def test_empty_payload_rejected(frame_store):
    with pytest.raises(ValidationError):
        frame_store.append("cam1", b"")
    assert frame_store.get_latest("cam1") is None
    assert frame_store.get_history("cam1", 10) == []


def test_oversized_payload_rejected(frame_store):
    with pytest.raises(ValidationError):
        frame_store.append("cam1", b"x" * 1025)
    assert frame_store.get_latest("cam1") is None


def test_payload_at_limit_accepted(frame_store):
    assert frame_store.append("cam1", b"x" * 1024).size == 1024


def test_overlong_device_id_rejected_for_frames(frame_store):
    with pytest.raises(ValidationError):
        frame_store.append("c" * 256, b"abc")


def test_returned_frame_metadata_is_a_copy(frame_store):
    frame_store.append("cam1", b"abc", {"userAgent": "esp32"})

    frame_store.get_latest("cam1").metadata["userAgent"] = "tampered"
    latest = frame_store.get_latest("cam1")
    assert latest.metadata == {"userAgent": "esp32"}

    frame_store.get_by_id("cam1", latest.id).metadata.clear()
    assert frame_store.get_by_id("cam1", latest.id).metadata == {"userAgent": "esp32"}


def test_get_latest_missing_device(frame_store):
    assert frame_store.get_latest("nobody") is None


def test_oldest_frame_evicted_beyond_cap(frame_store, clock):
    frames = []
    for i in range(51):
        frames.append(frame_store.append("cam1", bytes([i + 1]) * 10))
        clock.advance(1)

    history = frame_store.get_history("cam1", 100)
    assert len(history) == 50
    assert frame_store.get_latest("cam1").id == frames[-1].id
    assert frame_store.get_latest("cam1").payload == bytes([51]) * 10
    assert frame_store.get_by_id("cam1", frames[0].id) is None
    assert frame_store.get_by_id("cam1", frames[1].id) is not None


def test_eviction_is_per_device(frame_store):
    for i in range(51):
        frame_store.append("cam1", b"a")
    frame_store.append("cam2", b"b")
    assert len(frame_store.get_history("cam2", 100)) == 1


def test_history_is_newest_first_and_limited(frame_store, clock):
    ids = []
    for i in range(15):
        ids.append(frame_store.append("cam1", b"frame%d" % i).id)
        clock.advance(0.5)

    history = frame_store.get_history("cam1", 10)
    assert len(history) == 10
    assert [summary.id for summary in history] == list(reversed(ids))[:10]
    timestamps = [summary.created_at for summary in history]
    assert timestamps == sorted(timestamps, reverse=True)


def test_history_summaries_omit_payload(frame_store):
    frame_store.append("cam1", b"abc", {"userAgent": "esp32"})
    (summary,) = frame_store.get_history("cam1", 10)
    assert isinstance(summary, FrameSummary)
    assert not hasattr(summary, "payload")
    assert summary.size == 3
    assert summary.metadata == {"userAgent": "esp32"}


def test_history_ties_broken_by_insertion_order(frame_store):
    # The clock does not move, so every frame has the same timestamp
    first = frame_store.append("cam1", b"1")
    second = frame_store.append("cam1", b"2")
    third = frame_store.append("cam1", b"3")

    history = frame_store.get_history("cam1", 10)
    assert [summary.id for summary in history] == [third.id, second.id, first.id]
    assert frame_store.get_latest("cam1").id == third.id


def test_history_limit_must_be_positive(frame_store):
    with pytest.raises(ValidationError):
        frame_store.get_history("cam1", 0)


def test_in_memory_cap_is_configurable(clock):
    store = InMemoryFrameStore(frames_per_device=3, clock=clock)
    for i in range(5):
        store.append("cam1", b"x")
    assert len(store.get_history("cam1", 10)) == 3


def test_frame_ids_are_unique_within_one_millisecond():
    generator = FrameIdGenerator(now_ms=lambda: 1_700_000_000_000)
    ids = [generator.next_id() for _ in range(5)]
    assert ids == list(range(1_700_000_000_000, 1_700_000_000_005))


def test_frame_ids_survive_clock_going_backwards():
    readings = iter([2_000, 1_000, 1_500])
    generator = FrameIdGenerator(now_ms=lambda: next(readings))
    assert [generator.next_id() for _ in range(3)] == [2_000, 2_001, 2_002]
