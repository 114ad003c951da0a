#!/usr/bin/env python3
"""
Camera device simulator
=======================

Behaves like a camera device against a running relay:

    1. Sends a heartbeat every few seconds and applies any command in the
       response (camera_on, camera_off, start_stream, stop_stream)
    2. Uploads a tiny JPEG once per second while the camera is enabled and
       streaming

Usage:
    python -m camrelay.simulator --url http://localhost:3000
    python -m camrelay.simulator --device-id test_cam_001 --duration 60
"""

import argparse
import logging
import time
from typing import Callable, Optional

import httpx

from camrelay.models import DeviceCommand

logger = logging.getLogger(__name__)

DEFAULT_URL = "http://localhost:3000"
DEFAULT_DEVICE_ID = "test_esp32_cam_001"

# Minimal JPEG for a 1x1 pixel image
TEST_JPEG = bytes.fromhex(
    "FF D8 FF E0 00 10 4A 46 49 46 00 01 01 01 00 48 00 48 00 00 FF DB 00 43"
    " 00 08 06 06 07 06 05 08 07 07 07 09 09 08 0A 0C 14 0D 0C 0B 0B 0C 19 12"
    " 13 0F 14 1D 1A 1F 1E 1D 1A 1C 1C 20 24 2E 27 20 22 2C 23 1C 1C 28 37 29"
    " 2C 30 31 34 34 34 1F 27 39 3D 38 32 3C 2E 33 34 32 FF C0 00 11 08 00 01"
    " 00 01 01 01 11 00 02 11 01 03 11 01 FF C4 00 14 00 01 00 00 00 00 00 00"
    " 00 00 00 00 00 00 00 00 00 08 FF C4 00 14 10 01 00 00 00 00 00 00 00 00"
    " 00 00 00 00 00 00 00 00 FF DA 00 0C 03 01 00 02 11 03 11 00 3F 00 8A 00"
    " FF D9"
)


class DeviceSimulator:
    """A simulated camera device talking to the relay over HTTP."""

    def __init__(
        self,
        client: httpx.Client,
        device_id: str = DEFAULT_DEVICE_ID,
        api_prefix: str = "/api",
    ):
        self.client = client
        self.device_id = device_id
        self.api_prefix = api_prefix.rstrip("/")
        self.camera_enabled = False
        self.streaming_active = False
        self.frames_sent = 0

    def send_heartbeat(self) -> Optional[str]:
        """Report status; returns the command carried by the response, if any."""
        response = self.client.post(
            f"{self.api_prefix}/heartbeat",
            json={
                "device_id": self.device_id,
                "camera_enabled": self.camera_enabled,
                "streaming_active": self.streaming_active,
                "timestamp": int(time.time() * 1000),
            },
        )
        response.raise_for_status()
        command = response.json().get("command")
        if command:
            logger.info(f"Received command: {command}")
            self.handle_command(command)
        return command

    def send_frame(self, payload: bytes = TEST_JPEG) -> Optional[dict]:
        """Upload one frame if the camera is on and streaming."""
        if not (self.camera_enabled and self.streaming_active):
            return None
        response = self.client.post(
            f"{self.api_prefix}/frames",
            content=payload,
            headers={"Content-Type": "image/jpeg", "X-Device-ID": self.device_id},
        )
        response.raise_for_status()
        self.frames_sent += 1
        data = response.json()
        logger.info(f"Frame sent - Size: {len(payload)} bytes, ID: {data['frameId']}")
        return data

    def handle_command(self, command: str) -> bool:
        """Apply a command; returns False for commands the device does not know."""
        if command == DeviceCommand.CAMERA_ON.value:
            self.camera_enabled = True
            logger.info("Camera turned ON")
        elif command == DeviceCommand.CAMERA_OFF.value:
            self.camera_enabled = False
            self.streaming_active = False
            logger.info("Camera turned OFF")
        elif command == DeviceCommand.START_STREAM.value:
            if self.camera_enabled:
                self.streaming_active = True
                logger.info("Streaming started")
            else:
                logger.info("Ignoring start_stream while the camera is off")
        elif command == DeviceCommand.STOP_STREAM.value:
            self.streaming_active = False
            logger.info("Streaming stopped")
        else:
            logger.warning(f"Unknown command: {command}")
            return False
        return True

    def run(
        self,
        duration: float,
        heartbeat_interval: float = 5.0,
        frame_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Heartbeat and stream until ``duration`` seconds have passed."""
        start = clock()
        next_heartbeat = start
        next_frame = start

        while clock() - start < duration:
            now = clock()
            try:
                if now >= next_heartbeat:
                    self.send_heartbeat()
                    next_heartbeat = now + heartbeat_interval
                if now >= next_frame:
                    self.send_frame()
                    next_frame = now + frame_interval
            except httpx.HTTPError as e:
                logger.error(f"Request to relay failed: {e}")
            sleep(max(0.0, min(next_heartbeat, next_frame) - clock()))


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Simulate a camera device")
    parser.add_argument("--url", default=DEFAULT_URL, help="Relay base URL")
    parser.add_argument("--device-id", default=DEFAULT_DEVICE_ID)
    parser.add_argument("--api-prefix", default="/api")
    parser.add_argument(
        "--duration", type=float, default=300.0, help="Seconds to run"
    )
    parser.add_argument("--heartbeat-interval", type=float, default=5.0)
    parser.add_argument("--frame-interval", type=float, default=1.0)
    parser.add_argument(
        "--camera-on",
        action="store_true",
        help="Start with the camera enabled and streaming",
    )
    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

    logger.info(f"Server URL: {args.url}")
    logger.info(f"Device ID: {args.device_id}")

    with httpx.Client(base_url=args.url, timeout=10.0) as client:
        simulator = DeviceSimulator(client, args.device_id, args.api_prefix)
        if args.camera_on:
            simulator.camera_enabled = True
            simulator.streaming_active = True
        try:
            simulator.run(
                args.duration,
                heartbeat_interval=args.heartbeat_interval,
                frame_interval=args.frame_interval,
            )
        except KeyboardInterrupt:
            logger.info("Shutting down simulator...")

    logger.info(f"Simulator stopped after sending {simulator.frames_sent} frames")


if __name__ == "__main__":
    main()
