"""imageforge service - FastAPI application."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from imageforge.api.v1.health import router as health_root_router
from imageforge.api.v1.router import v1_router
from imageforge.batch.orchestrator import BatchOrchestrator
from imageforge.config import Settings, get_settings
from imageforge.jobs.ledger import JobLedger
from imageforge.models.catalog import ModelCatalog
from imageforge.predictions.base import PredictionClient
from imageforge.predictions.replicate import ReplicateClient
from imageforge.storage.activity import ActivityLog
from imageforge.storage.assets import AssetStore

logger = logging.getLogger(__name__)


def build_ledger(settings: Settings, client: Optional[PredictionClient] = None) -> JobLedger:
    """Wire client, orchestrator, store and activity log for one project folder."""
    if client is None:
        client = ReplicateClient.from_settings(settings)
    orchestrator = BatchOrchestrator(
        client,
        catalog=ModelCatalog(),
        throttle_seconds=settings.batch_throttle_seconds,
    )
    store = AssetStore(settings.project_dir, thumbnail_max_size=settings.thumbnail_max_size)
    return JobLedger(orchestrator, store, ActivityLog(settings.project_dir))


def create_app(
    settings: Optional[Settings] = None,
    client: Optional[PredictionClient] = None,
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown logic."""
        logging.basicConfig(
            level=settings.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        logger.info("Starting imageforge on %s:%d", settings.host, settings.port)
        logger.info("Project dir: %s", settings.project_dir)
        if not settings.replicate_api_token.get_secret_value() and client is None:
            logger.warning("No Replicate API token configured; jobs will fail until one is set")

        settings.project_dir.mkdir(parents=True, exist_ok=True)
        ledger = build_ledger(settings, client)
        await ledger.start()
        app.state.ledger = ledger
        app.state.store = ledger.store

        yield

        logger.info("Shutting down imageforge")
        await ledger.stop()
        app.state.ledger = None
        app.state.store = None

    app = FastAPI(
        title="imageforge",
        description="Asynchronous image generation pipeline over a remote prediction service",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_allow_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_root_router, tags=["health"])  # GET /health at root
    app.include_router(v1_router)  # All /api/v1/* endpoints
    return app


app = create_app()
