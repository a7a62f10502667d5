"""
FastAPI entrypoint for the SceneCast status API.

Rendering runs through the CLI (scenecast-render); this API lets a front
end poll job progress.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from scenecast.api.routes_jobs import router as jobs_router
from scenecast.core.config import Settings, settings
from scenecast.core.logging_config import get_logger, setup_logging
from scenecast.services.ffmpeg_runner import FFmpegRunner
from scenecast.storage.repository import JobRepository

logger = get_logger(__name__)


def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        app_settings: Settings to use (defaults to the global settings)

    Returns:
        Configured FastAPI app with the job repository on app.state
    """
    app_settings = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events."""
        logger.info("=" * 60)
        logger.info(f"Starting {app_settings.app_name} v{app_settings.app_version}")
        logger.info(f"Job records: {app_settings.storage_path}")
        logger.info("=" * 60)
        yield
        logger.info("Shutting down application")

    app = FastAPI(
        title=app_settings.app_name,
        version=app_settings.app_version,
        description="SceneCast - render job status API",
        lifespan=lifespan,
    )
    app.state.settings = app_settings
    app.state.repository = JobRepository(app_settings, logger)
    app.state.runner = FFmpegRunner(app_settings, logger)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(jobs_router)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": app_settings.app_name,
            "version": app_settings.app_version,
            "status": "running",
            "endpoints": {
                "list_jobs": "/jobs",
                "job_status": "/jobs/{job_id}",
                "health": "/health",
                "docs": "/docs",
            },
        }

    @app.get("/health")
    async def health():
        """Health check endpoint; reports whether the encoder can run."""
        encoder_available = app.state.runner.is_available()
        return {
            "status": "healthy" if encoder_available else "degraded",
            "encoder_available": encoder_available,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    setup_logging(log_level=settings.log_level, log_file=settings.log_file, serialize=settings.log_json)
    uvicorn.run(
        "scenecast.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
