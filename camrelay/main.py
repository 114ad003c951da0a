"""
camrelay - camera relay server

Battery-powered camera devices push still frames and heartbeats to the
relay; operators read the frames back and queue control commands, which
each device collects with its next heartbeat.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from camrelay.config import Settings
from camrelay.database import init_db
from camrelay.dependencies import create_stores
from camrelay.errors import RelayError
from camrelay.models import ServerStatus
from camrelay.routers import devices_router, frames_router

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    engine = app.state.engine
    # Startup: create tables for the database backend
    if engine is not None:
        init_db(engine)
    logger.info(
        f"Camera relay started (storage backend: {app.state.settings.storage_backend})"
    )
    yield
    # Shutdown: release pooled connections
    if engine is not None:
        engine.dispose()


def _format_validation_error(exc: RequestValidationError) -> str:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"] if part != "body")
        messages.append(f"{location}: {error['msg']}" if location else error["msg"])
    return "; ".join(messages) or "Invalid request"


def register_exception_handlers(app: FastAPI) -> None:
    """Render every error as ``{"error": message}``."""

    @app.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"Error processing {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=400, content={"error": _format_validation_error(exc)}
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        message = exc.detail
        if exc.status_code == 404 and message == "Not Found":
            message = "Endpoint not found"
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": message},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings()

    logging.basicConfig(level=settings.log_level.upper(), format=LOG_FORMAT)

    app = FastAPI(
        title="Camera Relay API",
        version="0.1.0",
        description="""
Relay between battery-powered camera devices and their operators.
Devices push frames and heartbeats; operators fetch frames and queue
commands that are delivered on the device's next heartbeat.
        """,
        lifespan=lifespan,
    )

    stores = create_stores(settings)
    app.state.settings = settings
    app.state.device_registry = stores.device_registry
    app.state.frame_store = stores.frame_store
    app.state.engine = stores.engine

    register_exception_handlers(app)

    # Include routers
    app.include_router(devices_router, prefix=settings.api_prefix)
    app.include_router(frames_router, prefix=settings.api_prefix)

    @app.get("/", response_model=ServerStatus, tags=["Health"])
    async def server_status() -> ServerStatus:
        """Relay status and the number of devices seen so far."""
        return ServerStatus(
            status="Camera relay running",
            timestamp=datetime.now(timezone.utc),
            connected_devices=len(app.state.device_registry.list_devices()),
        )

    @app.get("/health", tags=["Health"])
    async def health_check() -> dict:
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = app.state.settings
    uvicorn.run(
        "camrelay.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
