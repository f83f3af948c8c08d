"""
Mainline detection weighted by narration time.

Authoring records variations in whatever order the narrator explored them,
so `children[0]` is only a default. These functions pick the line the lesson
actually dwelt on:

- `calculate_mainline_path`: score every root-to-leaf path
- `calculate_dynamic_mainline_path`: path to the position reached at the
  playback cursor, then greedily extended through the most-dwelt child
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Set, Tuple

from .config import config
from .graph_traversal import path_to_node
from .models import MoveEvent, MoveGraph, move_events_by_fen, sorted_events
from .timeline_types import GraphPath

logger = logging.getLogger(__name__)


def _enumerate_leaf_paths(graph: MoveGraph, max_depth: int) -> List[GraphPath]:
    """
    Every root-to-leaf path. A node whose children all sit on the current path
    (a cycle) or that reaches `max_depth` ends its path.
    """
    paths: List[GraphPath] = []
    stack: List[GraphPath] = [GraphPath.at(graph.root_node_id)]

    while stack:
        path = stack.pop()
        node = graph.nodes.get(path.last)
        on_path = set(path.node_ids)
        children = [] if node is None else [c for c in node.children if c.fen not in on_path]

        if not children or path.half_moves >= max_depth:
            paths.append(path)
            continue
        stack.extend(reversed([path.extend(c.fen, c.move) for c in children]))

    return paths


def _score_path(graph: MoveGraph, path: GraphPath, moves_by_fen: Dict[str, List[MoveEvent]]) -> Dict[str, int]:
    audio_time = 0
    event_count = 0

    for i, fen in enumerate(path.node_ids):
        here = moves_by_fen.get(fen, [])
        event_count += len(here)
        if not here:
            continue
        last_t = here[-1].t
        if i + 1 < len(path.node_ids):
            following = moves_by_fen.get(path.node_ids[i + 1], [])
            if following:
                audio_time += max(0, following[0].t - last_t)
        else:
            audio_time += max(0, graph.duration_ms - last_t)

    return {
        "audio_time": audio_time,
        "event_count": event_count,
        "path_length": len(path.node_ids),
    }


def calculate_mainline_path(
    graph: MoveGraph,
    tiebreak: Optional[Sequence[str]] = None,
    max_depth: Optional[int] = None,
) -> GraphPath:
    """
    Root-to-leaf path with the highest score, compared key by key in
    `tiebreak` order (default: audio time, event count, path length).
    The first path in authoring order wins a full tie.
    """
    keys = config.get_tiebreak(tiebreak)
    limit = config.MAX_TRAVERSAL_DEPTH if max_depth is None else max_depth
    moves_by_fen = move_events_by_fen(graph)

    best: Optional[GraphPath] = None
    best_score: Optional[Tuple[int, ...]] = None
    for path in _enumerate_leaf_paths(graph, limit):
        scores = _score_path(graph, path, moves_by_fen)
        score = tuple(scores[k] for k in keys)
        if best_score is None or score > best_score:
            best, best_score = path, score

    return best if best is not None else GraphPath.at(graph.root_node_id)


def _node_dwell(graph: MoveGraph) -> Dict[str, int]:
    """
    Time spent at each position: for every move event reaching it, the gap to
    the next later move at a different position, or to the end of the lesson.
    """
    moves = [e for e in sorted_events(graph.events) if e.type == "move" and e.fen]
    dwell: Dict[str, int] = {}
    for i, event in enumerate(moves):
        nxt = next((m for m in moves[i + 1:] if m.fen != event.fen and m.t > event.t), None)
        end = nxt.t if nxt is not None else graph.duration_ms
        dwell[event.fen] = dwell.get(event.fen, 0) + max(0, end - event.t)
    return dwell


def _subtree_dwell(graph: MoveGraph, fen: str, dwell: Dict[str, int], exclude: Set[str]) -> int:
    total = 0
    seen: Set[str] = set(exclude)
    stack = [fen]
    while stack:
        current = stack.pop()
        if current in seen:
            continue
        seen.add(current)
        total += dwell.get(current, 0)
        node = graph.nodes.get(current)
        if node is not None:
            stack.extend(c.fen for c in node.children)
    return total


def calculate_dynamic_mainline_path(graph: MoveGraph, current_time_ms: int) -> GraphPath:
    """
    Mainline as of `current_time_ms`.

    The last move at or before the cursor fixes where playback is; the path
    to it is extended one branch point at a time through the child whose
    subtree holds the most narration time. Falls back to
    `calculate_mainline_path` when no move has played yet or the position
    is not reachable from the root.
    """
    played = [e for e in sorted_events(graph.events) if e.type == "move" and e.t <= current_time_ms]
    if not played or not played[-1].fen:
        return calculate_mainline_path(graph)

    current_fen = played[-1].fen
    path = path_to_node(graph, current_fen)
    if path is None:
        logger.warning(f"Position {current_fen} at t={played[-1].t} is not reachable from the root")
        return calculate_mainline_path(graph)

    dwell = _node_dwell(graph)
    while True:
        node = graph.nodes.get(path.last)
        if node is None:
            break
        on_path = set(path.node_ids)
        best = None
        best_time = -1
        for child in node.children:
            if child.fen in on_path:
                continue
            child_time = _subtree_dwell(graph, child.fen, dwell, on_path)
            if child_time > best_time:
                best, best_time = child, child_time
        if best is None:
            break
        path = path.extend(best.fen, best.move)

    return path
