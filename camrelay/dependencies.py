"""
Store construction and FastAPI dependencies.

The stores are built once per application from ``Settings`` and kept on
``app.state``; request handlers receive them through ``Depends``.
"""

import logging
from typing import NamedTuple, Optional

from fastapi import Request
from sqlalchemy.engine import Engine

from camrelay.config import Settings
from camrelay.database import create_db_engine, create_session_factory
from camrelay.sql_store import SqlDeviceRegistry, SqlFrameStore
from camrelay.store import (
    DeviceRegistry,
    FrameStore,
    InMemoryDeviceRegistry,
    InMemoryFrameStore,
)

logger = logging.getLogger(__name__)


class Stores(NamedTuple):
    device_registry: DeviceRegistry
    frame_store: FrameStore
    engine: Optional[Engine] = None


def create_stores(settings: Settings, engine: Optional[Engine] = None) -> Stores:
    """Build the registry and frame store for the configured backend."""
    if settings.storage_backend == "database":
        if engine is None:
            engine = create_db_engine(settings.database_url, echo=settings.debug)
        session_factory = create_session_factory(engine)
        logger.info("Using database storage backend")
        return Stores(
            device_registry=SqlDeviceRegistry(session_factory),
            frame_store=SqlFrameStore(
                session_factory,
                max_frame_bytes=settings.max_frame_bytes,
                frames_per_device=settings.frames_per_device,
            ),
            engine=engine,
        )

    logger.info("No database configured - running in memory-only mode")
    return Stores(
        device_registry=InMemoryDeviceRegistry(
            heartbeat_log_size=settings.heartbeat_log_size
        ),
        frame_store=InMemoryFrameStore(
            max_frame_bytes=settings.max_frame_bytes,
            frames_per_device=settings.frames_per_device,
        ),
    )


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_device_registry(request: Request) -> DeviceRegistry:
    return request.app.state.device_registry


def get_frame_store(request: Request) -> FrameStore:
    return request.app.state.frame_store
