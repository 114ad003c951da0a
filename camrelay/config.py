"""
Runtime configuration for the camera relay.

Values come from the environment (a local ``.env`` file is honoured) with
defaults suitable for running a single development instance.
"""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

STORAGE_BACKENDS = ("memory", "database")


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() == "true"


@dataclass
class Settings:
    """Service settings, one instance per process."""

    host: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: _env_int("PORT", 3000))
    debug: bool = field(default_factory=lambda: _env_bool("DEBUG", False))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    storage_backend: str = field(
        default_factory=lambda: os.getenv("STORAGE_BACKEND", "memory")
    )
    database_url: str = field(
        default_factory=lambda: os.getenv("DATABASE_URL", "sqlite:///./camrelay.db")
    )

    # 5MB per frame, 10MB per request body
    max_frame_bytes: int = field(
        default_factory=lambda: _env_int("MAX_FRAME_BYTES", 5 * 1024 * 1024)
    )
    max_request_bytes: int = field(
        default_factory=lambda: _env_int("MAX_REQUEST_BYTES", 10 * 1024 * 1024)
    )

    frames_per_device: int = field(
        default_factory=lambda: _env_int("FRAMES_PER_DEVICE", 50)
    )
    heartbeat_log_size: int = field(
        default_factory=lambda: _env_int("HEARTBEAT_LOG_SIZE", 100)
    )
    device_offline_after: int = field(
        default_factory=lambda: _env_int("DEVICE_OFFLINE_AFTER", 30)
    )

    api_prefix: str = field(default_factory=lambda: os.getenv("API_PREFIX", "/api"))

    def __post_init__(self) -> None:
        self.storage_backend = self.storage_backend.lower()
        if self.storage_backend not in STORAGE_BACKENDS:
            raise ValueError(
                f"STORAGE_BACKEND must be one of {STORAGE_BACKENDS}, "
                f"got '{self.storage_backend}'"
            )
        if self.frames_per_device < 1:
            raise ValueError("FRAMES_PER_DEVICE must be at least 1")
