from __future__ import annotations

from typing import cast

from fastapi import APIRouter, HTTPException, Request

from ..services.exceptions import GenerationFailure, StorageFailure, ValidationFailure
from ..services.moods import mood_category_keys
from ..services.orchestrator import PromptOrchestrator
from ..services.random_source import create_rng, new_seed
from ..services.registry import ALL_GENRE_KEYS, REGISTRY
from ..services.remix import remix_prompt
from .config_store import ConfigStore
from .history import HistoryStore, UnknownHistoryEntryError
from .jobs import JobManager
from .models import (
    ConfigUpdate,
    ConfigView,
    GenerationRequest,
    GenerationResult,
    GenerationStatus,
    HistoryEntry,
    JobState,
    RemixRequest,
    RemixResult,
)

router = APIRouter()


def get_job_manager(request: Request) -> JobManager:
    return cast(JobManager, request.app.state.job_manager)


def get_orchestrator(request: Request) -> PromptOrchestrator:
    return cast(PromptOrchestrator, request.app.state.orchestrator)


def get_config_store(request: Request) -> ConfigStore:
    return cast(ConfigStore, request.app.state.config_store)


def get_history_store(request: Request) -> HistoryStore:
    return cast(HistoryStore, request.app.state.history)


@router.get("/health")
async def health(request: Request) -> dict[str, object]:
    config = await get_config_store(request).engine_config()
    provider_status = get_orchestrator(request).provider_status(config)
    return {
        "status": "ok",
        "registry_version": REGISTRY.version,
        "genre_count": len(ALL_GENRE_KEYS),
        "provider": provider_status.as_dict(),
        "generation_path": "llm" if provider_status.ready else "deterministic",
    }


@router.get("/genres")
async def genres() -> dict[str, object]:
    return {
        "genres": [
            {"id": genre_id, "name": REGISTRY.genres[genre_id].name}
            for genre_id in ALL_GENRE_KEYS
        ],
        "mood_categories": mood_category_keys(),
    }


@router.post("/generate", response_model=GenerationResult)
async def generate(payload: GenerationRequest, request: Request) -> GenerationResult:
    config = await get_config_store(request).engine_config()
    try:
        result = await get_orchestrator(request).generate(payload, config)
    except ValidationFailure as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except GenerationFailure as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    try:
        await get_history_store(request).record(payload, result)
    except StorageFailure as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return result


@router.post("/remix", response_model=RemixResult)
async def remix(payload: RemixRequest) -> RemixResult:
    seed = payload.seed if payload.seed is not None else new_seed()
    try:
        text = remix_prompt(
            payload.prompt,
            payload.target,
            create_rng(seed),
            description=payload.description,
            mood_category=payload.mood_category,
        )
    except ValidationFailure as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return RemixResult(text=text, target=payload.target, seed=seed)


@router.post("/jobs", response_model=GenerationStatus)
async def enqueue_job(payload: GenerationRequest, request: Request) -> GenerationStatus:
    manager = get_job_manager(request)
    return await manager.enqueue(payload)


@router.get("/jobs/{job_id}", response_model=GenerationStatus)
async def job_status(job_id: str, request: Request) -> GenerationStatus:
    manager = get_job_manager(request)
    status = await manager.get_status(job_id)
    if status is None:
        raise HTTPException(status_code=404, detail="job not found")
    return status


@router.get("/jobs/{job_id}/result", response_model=GenerationResult)
async def job_result(job_id: str, request: Request) -> GenerationResult:
    manager = get_job_manager(request)
    status = await manager.get_status(job_id)
    if status is None or status.state != JobState.SUCCEEDED:
        raise HTTPException(status_code=404, detail="result not available")
    result = await manager.get_result(job_id)
    if result is None:
        raise HTTPException(status_code=404, detail="result not available")
    return result


@router.get("/history", response_model=list[HistoryEntry])
async def history(request: Request) -> list[HistoryEntry]:
    return await get_history_store(request).get_history()


@router.delete("/history/{session_id}", status_code=204)
async def delete_history_entry(session_id: str, request: Request) -> None:
    try:
        await get_history_store(request).delete_session(session_id)
    except UnknownHistoryEntryError as exc:
        raise HTTPException(
            status_code=404, detail=f"history entry {exc.session_id} not found"
        ) from exc
    except StorageFailure as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@router.get("/config", response_model=ConfigView)
async def read_config(request: Request) -> ConfigView:
    return await get_config_store(request).get_config()


@router.patch("/config", response_model=ConfigView)
async def update_config(payload: ConfigUpdate, request: Request) -> ConfigView:
    try:
        return await get_config_store(request).save_config(payload)
    except ValidationFailure as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except StorageFailure as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
