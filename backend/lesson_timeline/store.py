"""
In-memory lesson store (TTL) for the playback service.

Scope:
- Holds each loaded lesson together with its precomputed move index, so the
  index is built once per document load rather than once per seek.
- Entries expire after `ttl_s` seconds without access.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from .config import config
from .errors import LessonNotFoundError
from .models import MoveGraph
from .move_index import build_move_index
from .timeline_types import MoveIndexEntry

logger = logging.getLogger(__name__)


@dataclass
class StoredLesson:
    lesson_id: str
    graph: MoveGraph
    move_index: List[MoveIndexEntry] = field(default_factory=list)
    created_ts: float = field(default_factory=lambda: time.time())


class LessonStore:
    def __init__(self, ttl_s: Optional[float] = None, time_source: Callable[[], float] = time.time):
        self.ttl_s = float(config.STORE_TTL_SECONDS if ttl_s is None else ttl_s)
        self._now = time_source
        self._store: Dict[str, Tuple[float, StoredLesson]] = {}
        self._lock = asyncio.Lock()

    async def put(self, graph: MoveGraph, lesson_id: Optional[str] = None) -> StoredLesson:
        """
        Build the move index and store the lesson under `lesson_id`, or a fresh
        id. `meta.id` is never the key.

        Raises DocumentCorruptError (from the index build) before anything is
        stored, so a corrupt lesson never becomes visible.
        """
        move_index = build_move_index(graph)
        lesson_id = lesson_id or new_lesson_id()
        lesson = StoredLesson(lesson_id=lesson_id, graph=graph, move_index=move_index, created_ts=self._now())
        async with self._lock:
            self._evict_expired_locked()
            self._store[lesson_id] = (self._now(), lesson)
        logger.info(f"Stored lesson {lesson_id}: {len(graph.nodes)} nodes, {len(move_index)} index entries")
        return lesson

    async def get(self, lesson_id: str) -> StoredLesson:
        async with self._lock:
            self._evict_expired_locked()
            item = self._store.get(lesson_id)
            if not item:
                raise LessonNotFoundError(f"Lesson {lesson_id} not found")
            _ts, lesson = item
            # touch
            self._store[lesson_id] = (self._now(), lesson)
            return lesson

    async def delete(self, lesson_id: str) -> bool:
        async with self._lock:
            return self._store.pop(lesson_id, None) is not None

    async def count(self) -> int:
        async with self._lock:
            self._evict_expired_locked()
            return len(self._store)

    def _evict_expired_locked(self) -> None:
        if self.ttl_s <= 0:
            return
        now = self._now()
        for key in list(self._store.keys()):
            last_ts, _lesson = self._store[key]
            if now - float(last_ts) > self.ttl_s:
                self._store.pop(key, None)
                logger.debug(f"Evicted expired lesson {key}")


def new_lesson_id(prefix: str = "lesson") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"
