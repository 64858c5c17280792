from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Dict, List, Optional
from uuid import uuid4

from loguru import logger
from pydantic import TypeAdapter, ValidationError

from ..services.exceptions import StorageFailure
from .models import GenerationRequest, GenerationResult, HistoryEntry

HISTORY_FILENAME = "history.json"
MAX_HISTORY_ENTRIES = 50

_ENTRIES = TypeAdapter(List[HistoryEntry])


class UnknownHistoryEntryError(Exception):
    """Raised when a history lookup fails."""

    def __init__(self, session_id: str) -> None:
        super().__init__(session_id)
        self.session_id = session_id


class HistoryStore:
    """Recent generation sessions, newest first, optionally persisted as JSON."""

    def __init__(self, path: Optional[Path] = None, *, limit: int = MAX_HISTORY_ENTRIES) -> None:
        self._path = path
        self._limit = limit
        self._lock = asyncio.Lock()
        self._entries: Dict[str, HistoryEntry] = {}
        for entry in self._load():
            self._entries[entry.session_id] = entry

    def _load(self) -> List[HistoryEntry]:
        if self._path is None or not self._path.exists():
            return []
        try:
            return _ENTRIES.validate_json(self._path.read_bytes())
        except (OSError, ValidationError) as exc:
            logger.warning("ignoring unreadable history at {}: {}", self._path, exc)
            return []

    def _persist(self) -> None:
        if self._path is None:
            return
        payload = [entry.model_dump(mode="json") for entry in self._ordered()]
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as exc:
            raise StorageFailure(f"could not write history to {self._path}: {exc}") from exc

    def _ordered(self) -> List[HistoryEntry]:
        return sorted(self._entries.values(), key=lambda entry: entry.created_at, reverse=True)

    async def save_session(self, entry: HistoryEntry) -> HistoryEntry:
        async with self._lock:
            self._entries[entry.session_id] = entry
            for stale in self._ordered()[self._limit :]:
                self._entries.pop(stale.session_id, None)
            self._persist()
        return entry

    async def record(self, request: GenerationRequest, result: GenerationResult) -> HistoryEntry:
        entry = HistoryEntry(
            session_id=str(uuid4()),
            description=request.description,
            genre=result.genre,
            mode=result.mode,
            seed=result.seed,
            text=result.text,
            title=result.title,
            lyrics=result.lyrics,
        )
        return await self.save_session(entry)

    async def get_history(self) -> List[HistoryEntry]:
        async with self._lock:
            return [entry.model_copy(deep=True) for entry in self._ordered()]

    async def delete_session(self, session_id: str) -> None:
        async with self._lock:
            if session_id not in self._entries:
                raise UnknownHistoryEntryError(session_id)
            del self._entries[session_id]
            self._persist()
