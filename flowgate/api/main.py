"""
FlowGate - FastAPI Main Application
Analysis job orchestration web service.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI

from flowgate.api import websocket
from flowgate.api.middleware import (
    flowgate_exception_handler,
    general_exception_handler,
    setup_middleware,
)
from flowgate.api.routes import analyses, health, results, task_status
from flowgate.config.settings import get_settings
from flowgate.core.exceptions import FlowgateError
from flowgate.core.orchestrator import Orchestrator
from flowgate.utils.logger import get_logger
from flowgate.version import __version__

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    logger.info("Starting FlowGate orchestration service...")

    orchestrator: Orchestrator = app.state.orchestrator
    app.state.broadcaster.bind_loop(asyncio.get_running_loop())
    orchestrator.sweeper.start()

    logger.info("FlowGate orchestration service started")

    yield

    logger.info("Shutting down FlowGate orchestration service...")
    orchestrator.sweeper.stop()
    app.state.broadcaster.bind_loop(None)
    logger.info("FlowGate orchestration service shut down complete")


def create_app(orchestrator: Optional[Orchestrator] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="FlowGate Orchestration API",
        description="Submits analyses to GenePattern and Galaxy servers and tracks their jobs",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.state.orchestrator = orchestrator or Orchestrator.from_settings(settings)
    app.state.broadcaster = websocket.TaskChangeBroadcaster()
    app.state.orchestrator.notifier.subscribe(app.state.broadcaster)

    setup_middleware(app, settings)

    app.include_router(health.router, prefix="/api/v1", tags=["health"])
    app.include_router(task_status.router, prefix="/api/v1", tags=["callbacks"])
    app.include_router(analyses.router, prefix="/api/v1", tags=["analyses"])
    app.include_router(results.router, prefix="/api/v1", tags=["results"])
    app.include_router(websocket.router, prefix="/api/v1", tags=["websocket"])

    app.add_exception_handler(FlowgateError, flowgate_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    return app


if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "flowgate.api.main:create_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_config=None,  # Use our custom logging
    )
