"""Application factory for the reader relay service."""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import PROJECT_ROOT, get_settings
from .orchestrator import ReaderOrchestrator
from .routers.reader import router as reader_router
from .services.delivery import build_backend
from .services.reader_settings import ReaderSettingsService
from .services.status_broadcaster import StatusBroadcaster

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _configure_logging() -> None:
    """Configure logging based on LOG_LEVEL environment variable."""
    # Load .env file first to ensure LOG_FILE is available
    load_dotenv()

    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    handlers: list[logging.Handler] = []
    log_file = os.getenv("LOG_FILE")
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATEFMT))
        handlers.append(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATEFMT))
    handlers.append(console_handler)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    logging.getLogger("narrator").setLevel(log_level)
    logging.getLogger("uvicorn").setLevel(log_level)
    logging.getLogger("uvicorn.access").setLevel(log_level)
    logging.getLogger("uvicorn.error").setLevel(log_level)

    # Frame-level chatter from the channel and CDP clients
    if log_level > logging.DEBUG:
        logging.getLogger("websockets").setLevel(logging.WARNING)
        logging.getLogger("playwright").setLevel(logging.WARNING)
        logging.getLogger("asyncio").setLevel(logging.WARNING)


def _resolve_under(base: Path, p: Path) -> Path:
    # Absolute paths are taken as-is (tests, external mounts)
    if p.is_absolute():
        return p.resolve()
    resolved = (base / p).resolve()
    if not resolved.is_relative_to(base):
        raise ValueError(f"Configured path {resolved} escapes project root {base}")
    return resolved


def create_app() -> FastAPI:
    _configure_logging()

    settings = get_settings()

    settings_path = _resolve_under(PROJECT_ROOT, settings.reader_settings_path)
    settings_service = ReaderSettingsService(settings_path)
    backend = build_backend(settings)
    broadcaster = StatusBroadcaster()
    orchestrator = ReaderOrchestrator.from_settings(
        settings, settings_service, backend, broadcaster=broadcaster
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.info(f"Starting reader relay with {backend.name} delivery")
        await orchestrator.start()
        try:
            yield
        finally:
            try:
                await asyncio.wait_for(orchestrator.shutdown(), timeout=10.0)
            except asyncio.TimeoutError:
                logging.warning("Reader shutdown timed out after 10s")
            except Exception as exc:
                logging.warning("Error during reader shutdown: %s", exc)

    app = FastAPI(
        title="Narrator Reader Relay",
        version="0.1.0",
        description="Relays speak commands from a local message channel to a speech backend.",
        lifespan=lifespan,
    )

    app.state.reader_settings_service = settings_service
    app.state.reader_orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(reader_router)

    @app.get("/health", tags=["health"])
    async def healthcheck() -> dict[str, object]:
        return {
            "status": "ok",
            "connection": orchestrator.channel.state.value,
            "backend": backend.describe(),
        }

    return app


__all__ = ["create_app"]
