"""
Caller-owned recording state for building a lesson.

A `LessonSession` holds one graph snapshot and the cursor (current node and
path). Mutations never edit the snapshot in place: each builds a new graph
and swaps graph, node and path together, so readers holding the old graph
keep a consistent view.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

from .config import SCHEMA_VERSION, STARTING_FEN
from .errors import AuthoringError
from .graph_traversal import find_latest_leaf, path_to_node
from .models import (
    AnnotateEvent,
    BranchEndEvent,
    BranchStartEvent,
    ChildReference,
    ClearEvent,
    LessonMeta,
    MoveEvent,
    MoveGraph,
    NavigateEvent,
    ParentReference,
    PausePointEvent,
    PositionNode,
    TextEvent,
    sorted_events,
)
from .rules import full_move_number, load_board, move_details, move_from_san
from .store import new_lesson_id
from .timeline_types import GraphPath

logger = logging.getLogger(__name__)


def new_event_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


class RecordingClock:
    """Elapsed recording time in ms; time spent paused does not count."""

    def __init__(self, time_source: Callable[[], float] = time.monotonic):
        self._now = time_source
        self._accumulated = 0.0
        self._started_at: Optional[float] = None
        self.state = "idle"  # idle | recording | paused | stopped

    @property
    def is_recording(self) -> bool:
        return self.state == "recording"

    def start(self) -> None:
        self._accumulated = 0.0
        self._started_at = self._now()
        self.state = "recording"

    def pause(self) -> None:
        if self.state != "recording":
            return
        self._accumulated += self._now() - self._started_at
        self._started_at = None
        self.state = "paused"

    def resume(self) -> None:
        if self.state != "paused":
            return
        self._started_at = self._now()
        self.state = "recording"

    def stop(self) -> None:
        if self.state == "recording":
            self._accumulated += self._now() - self._started_at
        self._started_at = None
        self.state = "stopped"

    def reset(self) -> None:
        self._accumulated = 0.0
        self._started_at = None
        self.state = "idle"

    def elapsed_ms(self) -> int:
        elapsed = self._accumulated
        if self.state == "recording" and self._started_at is not None:
            elapsed += self._now() - self._started_at
        return int(elapsed * 1000)


@dataclass
class LessonSession:
    graph: MoveGraph
    current_node_id: str
    current_path: GraphPath
    legal_policy: str = "strict"
    clock: Optional[RecordingClock] = field(default=None, repr=False)

    @classmethod
    def new(
        cls,
        starting_fen: str = STARTING_FEN,
        lesson_id: Optional[str] = None,
        title: Optional[str] = None,
        author: Optional[str] = None,
        clock: Optional[RecordingClock] = None,
    ) -> "LessonSession":
        try:
            root_fen = load_board(starting_fen).fen()
        except ValueError as e:
            raise AuthoringError(f"Invalid starting FEN {starting_fen}: {e}") from e

        graph = MoveGraph(
            schema_version=SCHEMA_VERSION,
            meta=LessonMeta(
                starting_fen=root_fen,
                duration_ms=0,
                id=lesson_id or new_lesson_id(),
                title=title,
                author=author,
                created_at=datetime.now(timezone.utc).isoformat(),
            ),
            root_node_id=root_fen,
            nodes={root_fen: PositionNode(fen=root_fen)},
            events=[],
        )
        return cls(graph=graph, current_node_id=root_fen, current_path=GraphPath.at(root_fen), clock=clock)

    @classmethod
    def from_graph(cls, graph: MoveGraph, clock: Optional[RecordingClock] = None) -> "LessonSession":
        if graph.root_node_id not in graph.nodes:
            raise AuthoringError(f"Root node {graph.root_node_id} not found")
        root = graph.root_node_id
        return cls(graph=graph, current_node_id=root, current_path=GraphPath.at(root), clock=clock)

    @property
    def current_node(self) -> PositionNode:
        return self.graph.nodes[self.current_node_id]

    # --- internals ---

    def _timestamp(self, t: Optional[int]) -> int:
        if t is not None:
            return int(t)
        return self.clock.elapsed_ms() if self.clock is not None else 0

    def _records_navigation(self, t: Optional[int]) -> bool:
        return t is not None or (self.clock is not None and self.clock.is_recording)

    def _updated(self, nodes: Optional[Dict[str, PositionNode]] = None, new_events: Optional[List[Any]] = None) -> MoveGraph:
        update: Dict[str, Any] = {}
        if nodes is not None:
            update["nodes"] = nodes
        if new_events:
            update["events"] = [*self.graph.events, *new_events]
        return self.graph.model_copy(update=update)

    def _commit(self, graph: MoveGraph, node_id: Optional[str] = None, path: Optional[GraphPath] = None) -> None:
        self.graph, self.current_node_id, self.current_path = (
            graph,
            node_id if node_id is not None else self.current_node_id,
            path if path is not None else self.current_path,
        )

    def _append(self, event: Any) -> Any:
        self._commit(self._updated(new_events=[event]))
        return event

    def _move_cursor(
        self,
        fen: str,
        path: GraphPath,
        t: Optional[int],
        navigation_type: str,
        target_move_index: Optional[int] = None,
    ) -> PositionNode:
        events = []
        if self._records_navigation(t):
            label = f"move index {target_move_index}" if target_move_index is not None else navigation_type
            events.append(
                NavigateEvent(
                    t=self._timestamp(t),
                    fen=fen,
                    navigation_type=navigation_type,
                    target_move_index=target_move_index,
                    comment=f"Navigate to {label}",
                )
            )
        self._commit(self._updated(new_events=events), fen, path)
        return self.graph.nodes[fen]

    # --- moves ---

    def add_move(self, san: str, t: Optional[int] = None, comment: Optional[str] = None) -> PositionNode:
        """
        Play `san` from the current node and advance the cursor to the result.

        Replaying an edge that already exists only moves the cursor (a `forward`
        navigate when timed). Reaching a position already in the graph links to
        that node (DAG merge) instead of replacing it. Raises IllegalMoveError for an illegal move.
        """
        parent_fen = self.current_node_id
        parent = self.graph.nodes[parent_fen]
        try:
            board = load_board(parent_fen)
        except ValueError as e:
            raise AuthoringError(f"Node {parent_fen} is not a playable position: {e}") from e

        move = move_from_san(board, san)
        details = move_details(board, move)
        board.push(move)
        child_fen = board.fen()
        move_san = details["san"]

        edge = next((c for c in parent.children if c.fen == child_fen), None)
        if edge is not None:
            # replaying an existing edge is navigation, not a new move
            return self._move_cursor(child_fen, self.current_path.extend(child_fen, edge.move), t, "forward")

        nodes = dict(self.graph.nodes)
        existing = nodes.get(child_fen)
        if existing is None:
            nodes[child_fen] = PositionNode(
                fen=child_fen,
                parents=[ParentReference(move=move_san, fen=parent_fen, comment=comment)],
                move_number=parent.move_number + 1,
            )
        elif not any(p.fen == parent_fen and p.move == move_san for p in existing.parents):
            logger.debug(f"Merging {move_san} from {parent_fen} into existing node {child_fen}")
            nodes[child_fen] = existing.model_copy(
                update={"parents": [*existing.parents, ParentReference(move=move_san, fen=parent_fen, comment=comment)]}
            )

        nodes[parent_fen] = parent.model_copy(
            update={"children": [*parent.children, ChildReference(move=move_san, fen=child_fen, comment=comment)]}
        )

        event = MoveEvent(
            t=self._timestamp(t),
            fen=child_fen,
            san=move_san,
            from_square=details["from"],
            to_square=details["to"],
            promo=details["promo"],
            color=details["color"],
            move_number=full_move_number(nodes[child_fen].move_number),
            legal_policy=self.legal_policy,
            comment=comment,
        )

        self._commit(
            self._updated(nodes=nodes, new_events=[event]),
            child_fen,
            self.current_path.extend(child_fen, move_san),
        )
        return self.graph.nodes[child_fen]

    def add_variation(
        self,
        san: str,
        parent_fen: Optional[str] = None,
        t: Optional[int] = None,
        comment: Optional[str] = None,
    ) -> PositionNode:
        """Branch from `parent_fen` (default: the current node)."""
        if parent_fen is not None and parent_fen != self.current_node_id:
            self.navigate_to_node(parent_fen, t=t)
        return self.add_move(san, t=t, comment=comment)

    # --- navigation ---

    def navigate_to_node(self, fen: str, t: Optional[int] = None, navigation_type: str = "to_node") -> PositionNode:
        if fen not in self.graph.nodes:
            raise AuthoringError(f"Node {fen} not found")
        path = path_to_node(self.graph, fen)
        if path is None:
            raise AuthoringError(f"Node {fen} is not reachable from the root")
        return self._move_cursor(fen, path, t, navigation_type)

    def navigate_to_move_index(self, index: int, t: Optional[int] = None) -> PositionNode:
        """Jump within the current path; `index` is clamped and the path truncated there."""
        clamped = max(0, min(int(index), len(self.current_path.node_ids) - 1))
        target = self.current_path.node_ids[clamped]
        if target not in self.graph.nodes:
            raise AuthoringError(f"Node {target} not found")
        return self._move_cursor(target, self.current_path.truncate(clamped), t, "to_move_index", clamped)

    def go_back(self, t: Optional[int] = None) -> Optional[PositionNode]:
        if len(self.current_path.node_ids) > 1:
            index = len(self.current_path.node_ids) - 2
            return self._move_cursor(self.current_path.node_ids[index], self.current_path.truncate(index), t, "back")
        parents = self.current_node.parents
        if not parents:
            return None
        return self.navigate_to_node(parents[0].fen, t=t, navigation_type="back")

    def go_forward(self, t: Optional[int] = None) -> Optional[PositionNode]:
        children = self.current_node.children
        if not children:
            return None
        first = children[0]
        return self._move_cursor(first.fen, self.current_path.extend(first.fen, first.move), t, "forward")

    def go_to_start(self, t: Optional[int] = None) -> PositionNode:
        root = self.graph.root_node_id
        return self._move_cursor(root, GraphPath.at(root), t, "start")

    def go_to_latest(self, t: Optional[int] = None) -> Optional[PositionNode]:
        leaf = find_latest_leaf(self.graph)
        if leaf is None:
            return None
        return self.navigate_to_node(leaf.fen, t=t, navigation_type="latest")

    # --- narration and overlays ---

    def add_text(self, text: str, t: Optional[int] = None) -> TextEvent:
        return self._append(TextEvent(t=self._timestamp(t), fen=self.current_node_id, text=text))

    def annotate(
        self,
        t: Optional[int] = None,
        arrows: Optional[List[Any]] = None,
        circles: Optional[List[Any]] = None,
        highlights: Optional[List[Any]] = None,
        note: Optional[str] = None,
    ) -> AnnotateEvent:
        return self._append(
            AnnotateEvent(
                t=self._timestamp(t),
                fen=self.current_node_id,
                arrows=arrows,
                circles=circles,
                highlights=highlights,
                note=note,
            )
        )

    def clear_annotations(self, t: Optional[int] = None) -> ClearEvent:
        return self._append(ClearEvent(t=self._timestamp(t), fen=self.current_node_id))

    def add_pause_point(self, t: Optional[int] = None, prompt: Optional[str] = None, id: Optional[str] = None) -> PausePointEvent:
        return self._append(
            PausePointEvent(t=self._timestamp(t), id=id or new_event_id("pause"), fen=self.current_node_id, prompt=prompt)
        )

    def start_branch(self, t: Optional[int] = None, label: Optional[str] = None, id: Optional[str] = None) -> BranchStartEvent:
        return self._append(
            BranchStartEvent(t=self._timestamp(t), id=id or new_event_id("branch"), fen=self.current_node_id, label=label)
        )

    def end_branch(self, id: str, t: Optional[int] = None) -> BranchEndEvent:
        return self._append(BranchEndEvent(t=self._timestamp(t), id=id, fen=self.current_node_id))

    # --- graph edits ---

    def update_node(self, fen: str, comment: Optional[str] = None) -> PositionNode:
        """Set the comment on every edge leading into `fen`."""
        if fen not in self.graph.nodes:
            raise AuthoringError(f"Node {fen} not found")

        nodes = dict(self.graph.nodes)
        for key, node in self.graph.nodes.items():
            if any(c.fen == fen for c in node.children):
                children = [c.model_copy(update={"comment": comment}) if c.fen == fen else c for c in node.children]
                nodes[key] = node.model_copy(update={"children": children})
        target = nodes[fen]
        nodes[fen] = target.model_copy(
            update={"parents": [p.model_copy(update={"comment": comment}) for p in target.parents]}
        )

        self._commit(self._updated(nodes=nodes))
        return nodes[fen]

    def remove_node(self, fen: str) -> Set[str]:
        """
        Remove `fen` and everything below it. References from surviving nodes
        are dropped; the event log is history and stays as recorded.
        """
        if fen == self.graph.root_node_id:
            raise AuthoringError("Cannot remove the root node")
        if fen not in self.graph.nodes:
            raise AuthoringError(f"Node {fen} not found")

        removed: Set[str] = set()
        stack = [fen]
        while stack:
            current = stack.pop()
            if current in removed:
                continue
            removed.add(current)
            node = self.graph.nodes.get(current)
            if node is not None:
                stack.extend(c.fen for c in node.children)

        nodes: Dict[str, PositionNode] = {}
        for key, node in self.graph.nodes.items():
            if key in removed:
                continue
            nodes[key] = node.model_copy(
                update={
                    "children": [c for c in node.children if c.fen not in removed],
                    "parents": [p for p in node.parents if p.fen not in removed],
                }
            )

        graph = self._updated(nodes=nodes)
        if self.current_node_id in removed:
            root = graph.root_node_id
            self._commit(graph, root, GraphPath.at(root))
        else:
            self._commit(graph)

        logger.info(f"Removed {len(removed)} node(s) starting at {fen}")
        return removed

    # --- output ---

    def export(self, duration_ms: Optional[int] = None) -> MoveGraph:
        """Snapshot as a CMF document; events are ordered by `t`."""
        if duration_ms is None:
            elapsed = self.clock.elapsed_ms() if self.clock is not None else 0
            duration_ms = max(elapsed, self.graph.duration_ms, max((e.t for e in self.graph.events), default=0))
        meta = self.graph.meta.model_copy(update={"duration_ms": int(duration_ms)})
        return self.graph.model_copy(update={"meta": meta, "events": sorted_events(self.graph.events)})
