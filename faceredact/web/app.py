"""FastAPI web application for interactive face redaction."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from faceredact.config import AppConfig
from faceredact.session.manager import RegistryFactory, SessionManager
from faceredact.web.routers.sessions import router as sessions_router

logger = logging.getLogger(__name__)

SERVICE_NAME = "face-redaction"
VERSION = "1.0.0"


def create_app(
    config: AppConfig | None = None,
    registry_factory: RegistryFactory | None = None,
) -> FastAPI:
    """Create the FastAPI app with its own session manager."""
    manager = SessionManager(config, registry_factory)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        logger.info("Shutting down, closing %d sessions", len(manager))
        await manager.close_all()

    app = FastAPI(
        title="Face Redaction Tool",
        description="Local face detection and irreversible redaction of still images",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.sessions = manager

    # CORS middleware for browser access - restrictive for security
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            "http://localhost:8000",
            "http://127.0.0.1:8000",
        ],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    app.include_router(sessions_router, prefix="/api", tags=["sessions"])

    @app.get("/health")
    async def health_check() -> dict[str, str | int]:
        """Health check endpoint."""
        return {
            "status": "healthy",
            "service": SERVICE_NAME,
            "version": VERSION,
            "sessions": len(manager),
        }

    return app


def run_dev_server(
    host: str = "127.0.0.1", port: int = 8000, config_path: Path | None = None
) -> None:
    """Run development server."""
    config = AppConfig.from_file(config_path) if config_path else AppConfig()
    logger.info("Starting redaction app server at http://%s:%d", host, port)
    uvicorn.run(create_app(config), host=host, port=port, log_level="info")
