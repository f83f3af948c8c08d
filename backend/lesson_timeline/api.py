"""
Playback service: load a lesson once, then query state and navigation views.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from .config import config
from .errors import (
    NODE_NOT_FOUND,
    LessonError,
    LessonNotFoundError,
    MissingRootNodeError,
    format_error,
)
from .graph_traversal import analyze_graph, analyze_node, compute_state_at_node, get_all_paths, path_to_node, search_nodes
from .mainline import calculate_dynamic_mainline_path, calculate_mainline_path
from .models import load_move_graph
from .store import LessonStore, StoredLesson
from .timeline import compute_state_at_time

logger = logging.getLogger(__name__)


def _http_error(e: LessonError) -> HTTPException:
    # invalid documents, illegal mainlines and bad requests are all 400
    status = 400
    if isinstance(e, LessonNotFoundError):
        status = 404
    elif isinstance(e, MissingRootNodeError):
        status = 409
    return HTTPException(status_code=status, detail=e.to_dict())


def create_app(store: Optional[LessonStore] = None) -> FastAPI:
    lessons = store if store is not None else LessonStore()

    app = FastAPI(title="Lesson Timeline", version="0.1.0")
    app.state.lessons = lessons

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    async def _lesson(lesson_id: str) -> StoredLesson:
        try:
            return await lessons.get(lesson_id)
        except LessonNotFoundError as e:
            raise _http_error(e)

    # ========================================================================
    # Endpoints
    # ========================================================================

    @app.get("/")
    async def root():
        return {"message": "Lesson Timeline API", "status": "running", "lessons": await lessons.count()}

    @app.post("/lessons")
    async def create_lesson(payload: Dict[str, Any] = Body(...)):
        """Validate a CMF document, build its move index and keep it for playback."""
        try:
            graph = load_move_graph(payload)
            lesson = await lessons.put(graph)
        except LessonError as e:
            logger.warning(f"Rejected lesson upload: {e}")
            raise _http_error(e)
        return {"lesson_id": lesson.lesson_id, "stats": analyze_graph(lesson.graph).to_dict()}

    @app.delete("/lessons/{lesson_id}")
    async def delete_lesson(lesson_id: str):
        if not await lessons.delete(lesson_id):
            raise _http_error(LessonNotFoundError(f"Lesson {lesson_id} not found"))
        return {"deleted": lesson_id}

    @app.get("/lessons/{lesson_id}/state")
    async def lesson_state(
        lesson_id: str,
        t: int = Query(..., ge=0, description="Playback position in ms"),
        pause_window_ms: Optional[int] = Query(None, ge=0),
    ):
        lesson = await _lesson(lesson_id)
        return compute_state_at_time(lesson.graph, lesson.move_index, t, pause_window_ms).to_dict()

    @app.get("/lessons/{lesson_id}/move_index")
    async def lesson_move_index(lesson_id: str):
        lesson = await _lesson(lesson_id)
        return [entry.to_dict() for entry in lesson.move_index]

    @app.get("/lessons/{lesson_id}/mainline")
    async def lesson_mainline(lesson_id: str, t: Optional[int] = Query(None, ge=0)):
        """Time-weighted mainline; dynamic when `t` is given."""
        lesson = await _lesson(lesson_id)
        if t is None:
            path = calculate_mainline_path(lesson.graph)
        else:
            path = calculate_dynamic_mainline_path(lesson.graph, t)
        return path.to_dict()

    @app.get("/lessons/{lesson_id}/paths")
    async def lesson_paths(
        lesson_id: str,
        max_depth: Optional[int] = Query(None, ge=1),
        include_variations: bool = Query(True),
    ):
        lesson = await _lesson(lesson_id)
        paths = get_all_paths(lesson.graph, max_depth=max_depth, include_variations=include_variations)
        return [p.to_dict() for p in paths]

    @app.get("/lessons/{lesson_id}/search")
    async def lesson_search(lesson_id: str, q: str = Query(..., min_length=1)):
        lesson = await _lesson(lesson_id)
        return [r.to_dict() for r in search_nodes(lesson.graph, q)]

    @app.get("/lessons/{lesson_id}/stats")
    async def lesson_stats(lesson_id: str):
        lesson = await _lesson(lesson_id)
        return analyze_graph(lesson.graph).to_dict()

    @app.get("/lessons/{lesson_id}/nodes")
    async def lesson_node(lesson_id: str, fen: str = Query(...)):
        lesson = await _lesson(lesson_id)
        analysis = analyze_node(lesson.graph, fen)
        if analysis is None:
            raise HTTPException(status_code=404, detail=format_error(NODE_NOT_FOUND, detail=fen))
        return analysis.to_dict()

    @app.get("/lessons/{lesson_id}/nodes/state")
    async def lesson_node_state(lesson_id: str, fen: str = Query(...), t: int = Query(..., ge=0)):
        """Explore mode: overlays attached to one node, up to `t`."""
        lesson = await _lesson(lesson_id)
        node = lesson.graph.get_node(fen)
        path = path_to_node(lesson.graph, fen) if node is not None else None
        if path is None:
            raise HTTPException(status_code=404, detail=format_error(NODE_NOT_FOUND, detail=fen))
        return compute_state_at_node(lesson.graph, node, path, t).to_dict()

    return app


app = create_app()
