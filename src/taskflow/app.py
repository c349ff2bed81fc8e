"""Application factory for the FastAPI service."""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .config import Settings, get_settings
from .context import AppContext
from .logging_handlers import DateStampedFileHandler, cleanup_old_logs
from .routers.focus import router as focus_router
from .routers.tasks import router as tasks_router
from .routers.tracking import router as tracking_router

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _configure_logging() -> None:
    """Configure logging based on LOG_LEVEL / LOG_DIR environment variables."""
    # Load .env file first to ensure LOG_DIR is available
    load_dotenv()

    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    formatter = logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATE_FORMAT)

    handlers: list[logging.Handler] = []
    log_dir = os.getenv("LOG_DIR")
    if log_dir:
        try:
            retention_hours = int(os.getenv("LOG_RETENTION_HOURS", "48"))
        except ValueError:
            retention_hours = 48
        cleanup_old_logs([log_dir], retention_hours, logging.getLogger(__name__))
        file_handler = DateStampedFileHandler(log_dir)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    # Always add console handler
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
        force=True,  # Override any existing configuration
    )

    logging.getLogger("taskflow").setLevel(log_level)
    logging.getLogger("uvicorn").setLevel(log_level)
    logging.getLogger("uvicorn.access").setLevel(log_level)
    logging.getLogger("uvicorn.error").setLevel(log_level)

    # Quiet down noisy third-party libraries
    if log_level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
        logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def create_app(
    settings: Settings | None = None,
    *,
    context: AppContext | None = None,
    configure_logging: bool = True,
) -> FastAPI:
    if configure_logging:
        _configure_logging()

    settings = settings or (context.settings if context else get_settings())
    context = context or AppContext.build(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await context.start()
        try:
            yield
        finally:
            # Add timeout to prevent hanging during shutdown (especially in tests)
            try:
                await asyncio.wait_for(context.shutdown(), timeout=10.0)
            except asyncio.TimeoutError:
                logging.warning("Context shutdown timed out after 10s")

    app = FastAPI(
        title="Taskflow Backend",
        version=__version__,
        description="Task management with time tracking, focus mode and offline sync.",
        lifespan=lifespan,
    )

    app.state.context = context

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(tasks_router)
    app.include_router(tracking_router)
    app.include_router(focus_router)

    @app.get("/health", tags=["health"])
    async def healthcheck() -> dict[str, object]:
        return {
            "status": "ok",
            "remote_backend": settings.remote_backend,
            "sync": context.sync.status.state.value,
            "online": context.sync.is_online,
        }

    return app


__all__ = ["create_app"]
