from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import Dict, Optional
from uuid import uuid4

from loguru import logger

from ..services.exceptions import GenerationFailure, StorageFailure, ValidationFailure
from ..services.orchestrator import PromptOrchestrator
from ..services.types import EngineConfig
from .config_store import ConfigStore
from .history import HistoryStore
from .models import GenerationRequest, GenerationResult, GenerationStatus, JobState


class JobManager:
    """Runs queued generation requests as background tasks and exposes their status."""

    def __init__(
        self,
        orchestrator: PromptOrchestrator,
        config_store: ConfigStore,
        history: Optional[HistoryStore] = None,
    ):
        self._orchestrator = orchestrator
        self._config_store = config_store
        self._history = history
        self._statuses: Dict[str, GenerationStatus] = {}
        self._results: Dict[str, GenerationResult] = {}
        self._lock = asyncio.Lock()
        self._tasks: Dict[str, asyncio.Task[None]] = {}

    async def enqueue(self, request: GenerationRequest) -> GenerationStatus:
        job_id = str(uuid4())
        status = GenerationStatus(job_id=job_id, state=JobState.QUEUED, message="queued")
        config = await self._config_store.engine_config()

        async with self._lock:
            self._statuses[job_id] = status
        task = asyncio.create_task(self._execute_job(job_id, request, config))
        async with self._lock:
            self._tasks[job_id] = task
        return status.model_copy(deep=True)

    async def get_status(self, job_id: str) -> Optional[GenerationStatus]:
        async with self._lock:
            status = self._statuses.get(job_id)
            if status is None:
                return None
            return status.model_copy(deep=True)

    async def get_result(self, job_id: str) -> Optional[GenerationResult]:
        async with self._lock:
            return self._results.get(job_id)

    async def _execute_job(
        self,
        job_id: str,
        request: GenerationRequest,
        config: EngineConfig,
    ) -> None:
        await self._set_status(
            job_id,
            state=JobState.RUNNING,
            progress=0.05,
            message="resolving genre",
        )
        try:
            async def progress_cb(progress: float, message: str) -> None:
                await self._set_status(
                    job_id,
                    state=JobState.RUNNING,
                    progress=progress,
                    message=message,
                )

            result = await self._orchestrator.generate(request, config, progress_cb=progress_cb)
        except (GenerationFailure, ValidationFailure) as exc:
            await self._set_status(
                job_id,
                state=JobState.FAILED,
                progress=1.0,
                message=str(exc),
            )
            logger.error("job {job_id} failed: {exc}", job_id=job_id, exc=exc)
            self._forget_task(job_id)
            return
        except Exception:  # noqa: BLE001
            await self._set_status(
                job_id,
                state=JobState.FAILED,
                progress=1.0,
                message="unexpected error during generation",
            )
            logger.exception("unexpected error during job {}", job_id)
            self._forget_task(job_id)
            return

        async with self._lock:
            self._results[job_id] = result
        if self._history is not None:
            try:
                await self._history.record(request, result)
            except StorageFailure as exc:
                logger.warning("job {} result not saved to history: {}", job_id, exc)
        await self._set_status(
            job_id,
            state=JobState.SUCCEEDED,
            progress=1.0,
            message="generation complete",
        )
        self._forget_task(job_id)

    def _forget_task(self, job_id: str) -> None:
        self._tasks.pop(job_id, None)

    async def _set_status(
        self,
        job_id: str,
        *,
        state: JobState,
        progress: Optional[float] = None,
        message: Optional[str] = None,
    ) -> None:
        async with self._lock:
            status = self._statuses[job_id]
            status.state = state
            if progress is not None:
                status.progress = max(0.0, min(progress, 1.0))
            status.message = message
            status.updated_at = datetime.now(tz=UTC)
