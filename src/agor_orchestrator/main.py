"""Main application entry point."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from agor_orchestrator import __version__
from agor_orchestrator.api.errors import register_error_handlers
from agor_orchestrator.api.router import api_router
from agor_orchestrator.config import settings
from agor_orchestrator.core.orchestrator import AgorOrchestrator

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    The recovery sweep runs to completion before the first request is
    served.
    """
    logger.info(f"Starting Agor orchestrator v{__version__}")
    logger.info(f"Data directory: {settings.data_dir}")
    logger.info(f"Executor launch mode: {settings.executor_launch_mode}")

    orchestrator = AgorOrchestrator()
    report = await orchestrator.start()
    logger.info(f"Recovery sweep: {report.to_summary()}")
    app.state.orchestrator = orchestrator

    yield

    logger.info("Shutting down...")
    await orchestrator.shutdown()
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Agor Orchestrator",
        description="Session lifecycle orchestration for agentic coding executors",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    app.include_router(api_router)
    register_error_handlers(app)

    return app


app = create_app()


def main() -> None:
    """Run the server."""
    uvicorn.run(
        "agor_orchestrator.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
