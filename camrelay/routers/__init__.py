"""
Routers Package
"""

from camrelay.routers.devices import router as devices_router
from camrelay.routers.frames import router as frames_router

__all__ = [
    "devices_router",
    "frames_router",
]
