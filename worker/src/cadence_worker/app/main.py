from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI
from loguru import logger

from ..services.orchestrator import PromptOrchestrator
from ..services.registry import ALL_GENRE_KEYS, REGISTRY
from .config_store import ConfigStore
from .history import HISTORY_FILENAME, HistoryStore
from .jobs import JobManager
from .routes import router
from .settings import Settings, get_settings


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure FastAPI instance."""
    settings = settings or get_settings()
    config_store = ConfigStore(settings)
    history_path = settings.config_dir / HISTORY_FILENAME if settings.persist_history else None
    history = HistoryStore(history_path)
    orchestrator = PromptOrchestrator()
    manager = JobManager(orchestrator, config_store, history)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        config = await config_store.engine_config()
        status = orchestrator.provider_status(config)
        logger.info(
            "Worker ready: registry {} ({} genres), provider {} ready={}",
            REGISTRY.version,
            len(ALL_GENRE_KEYS),
            status.name,
            status.ready,
        )
        try:
            yield
        finally:
            await orchestrator.aclose()

    app = FastAPI(title="Cadence Worker", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.config_store = config_store
    app.state.history = history
    app.state.orchestrator = orchestrator
    app.state.job_manager = manager

    app.include_router(router)
    return app


app = create_app()
