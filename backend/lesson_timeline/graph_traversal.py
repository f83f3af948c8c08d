"""
Stateless queries over a lesson's position graph.

Every traversal is iterative with an explicit visited set keyed by FEN, so
DAG merges and malformed cyclic documents terminate. "Node not found" is a
soft failure (None / empty result plus a warning), never an exception, with
the single exception of a missing root in `build_graph_move_index`.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Dict, List, Optional, Set, Tuple

from .annotations import OVERLAY_EVENT_TYPES, OverlayReplay
from .config import config
from .errors import MissingRootNodeError
from .models import ChildReference, MoveGraph, PositionNode, node_events
from .rules import full_move_number, load_board, move_from_san
from .timeline_types import (
    GraphIndexEntry,
    GraphPath,
    GraphSearchResult,
    GraphState,
    GraphStats,
    NodeAnalysis,
    PreviousMove,
)

logger = logging.getLogger(__name__)


def build_graph_move_index(graph: MoveGraph) -> Dict[str, GraphIndexEntry]:
    """
    Index every position reachable from the root by replaying each edge's SAN.

    Keys are the FENs the rules engine produces. Already-visited nodes are
    skipped; an illegal edge or a missing node ends that branch with a warning.
    """
    root_id = graph.root_node_id
    if root_id not in graph.nodes:
        raise MissingRootNodeError(root_id)

    index: Dict[str, GraphIndexEntry] = {}
    visited: Set[str] = set()
    stack: List[Tuple[str, GraphPath, str]] = [(root_id, GraphPath.at(root_id), graph.starting_fen)]

    while stack:
        fen, path, position_fen = stack.pop()
        if fen in visited:
            continue
        visited.add(fen)

        node = graph.nodes.get(fen)
        if node is None:
            logger.warning(f"Node {fen} not found in graph")
            continue

        index[position_fen] = GraphIndexEntry(
            fen=position_fen,
            move_number=full_move_number(path.half_moves),
            path=path,
        )

        pending = []
        for child in node.children:
            try:
                board = load_board(position_fen)
                board.push(move_from_san(board, child.move))
            except ValueError as e:
                logger.warning(f"Invalid move {child.move} at node {fen}: {e}")
                continue
            pending.append((child.fen, path.extend(child.fen, child.move), board.fen()))
        # reversed so children are expanded in authoring order
        stack.extend(reversed(pending))

    return index


def get_node_by_id(graph: MoveGraph, fen: str) -> Optional[PositionNode]:
    return graph.nodes.get(fen)


def find_node_by_path(graph: MoveGraph, moves: List[str]) -> Optional[PositionNode]:
    """Follow SAN moves from the root; None on the first move that does not match."""
    current = graph.root_node_id
    for move in moves:
        node = graph.nodes.get(current)
        if node is None:
            return None
        child = next((c for c in node.children if c.move == move), None)
        if child is None:
            return None
        current = child.fen
    return graph.nodes.get(current)


def get_all_paths(
    graph: MoveGraph, max_depth: Optional[int] = None, include_variations: bool = True
) -> List[GraphPath]:
    """
    Root-to-node paths for navigation UI.

    A path is recorded at a leaf, or at every node when `include_variations`
    is set; without it only `children[0]` is followed.
    """
    limit = config.MAX_TRAVERSAL_DEPTH if max_depth is None else max_depth
    paths: List[GraphPath] = []
    visited: Set[str] = set()
    stack: List[Tuple[str, GraphPath, int]] = [(graph.root_node_id, GraphPath.at(graph.root_node_id), 0)]

    while stack:
        fen, path, depth = stack.pop()
        if depth >= limit or fen in visited:
            continue
        visited.add(fen)

        node = graph.nodes.get(fen)
        if node is None:
            continue

        if not node.children or include_variations:
            paths.append(path)

        children = node.children if include_variations else node.children[:1]
        stack.extend(reversed([(c.fen, path.extend(c.fen, c.move), depth + 1) for c in children]))

    return paths


def compute_state_at_node(
    graph: MoveGraph,
    node: PositionNode,
    path: GraphPath,
    time_ms: int,
    pause_window_ms: Optional[int] = None,
) -> GraphState:
    """Explore-mode snapshot: overlay events attached to this node only, replayed up to `time_ms`."""
    overlay = OverlayReplay(time_ms, pause_window_ms)
    for event in node_events(graph, node.fen, OVERLAY_EVENT_TYPES):
        if event.t > time_ms:
            break
        overlay.apply(event)

    return GraphState(
        current_node=node,
        path=path,
        fen=node.fen,
        move_number=full_move_number(path.half_moves),
        active_annotations=overlay.annotations,
        last_text_event=overlay.text,
        is_paused=overlay.is_paused,
        pause_prompt=overlay.pause_prompt,
    )


def get_mainline_path(graph: MoveGraph) -> GraphPath:
    """Static mainline: `children[0]` at every node until a leaf (or a cycle)."""
    path = GraphPath.at(graph.root_node_id)
    seen = {graph.root_node_id}
    current = graph.root_node_id

    while True:
        node = graph.nodes.get(current)
        if node is None or not node.children:
            break
        first = node.children[0]
        if first.fen in seen:
            logger.warning(f"Mainline cycles back to {first.fen}; stopping")
            break
        path = path.extend(first.fen, first.move)
        seen.add(first.fen)
        current = first.fen

    return path


def get_variations_at_node(graph: MoveGraph, fen: str) -> List[ChildReference]:
    node = graph.nodes.get(fen)
    return list(node.children) if node else []


def get_next_mainline_move(graph: MoveGraph, fen: str) -> Optional[ChildReference]:
    node = graph.nodes.get(fen)
    if node is None or not node.children:
        return None
    return node.children[0]


def get_previous_move(graph: MoveGraph, fen: str) -> Optional[PreviousMove]:
    """First parent of a node (DAG merges have more than one)."""
    node = graph.nodes.get(fen)
    if node is None or not node.parents:
        return None
    parent = node.parents[0]
    parent_node = graph.nodes.get(parent.fen)
    if parent_node is None:
        return None
    return PreviousMove(node=parent_node, move=parent.move)


def path_to_node(graph: MoveGraph, fen: str) -> Optional[GraphPath]:
    """First path found by depth-first search from the root; None if unreachable."""
    visited: Set[str] = set()
    stack: List[Tuple[str, GraphPath]] = [(graph.root_node_id, GraphPath.at(graph.root_node_id))]

    while stack:
        current, path = stack.pop()
        if current in visited:
            continue
        visited.add(current)
        if current == fen:
            return path
        node = graph.nodes.get(current)
        if node is None:
            continue
        stack.extend(reversed([(c.fen, path.extend(c.fen, c.move)) for c in node.children]))

    return None


def search_nodes(graph: MoveGraph, text: str, max_depth: Optional[int] = None) -> List[GraphSearchResult]:
    """Nodes whose narration contains `text` (case-insensitive); each node at most once."""
    limit = config.MAX_TRAVERSAL_DEPTH if max_depth is None else max_depth
    needle = (text or "").lower()

    texts_by_fen: Dict[str, List[str]] = {}
    for event in graph.events:
        if event.type == "text" and event.fen:
            texts_by_fen.setdefault(event.fen, []).append(event.text)

    results: List[GraphSearchResult] = []
    visited: Set[str] = set()
    stack: List[Tuple[str, GraphPath, int]] = [(graph.root_node_id, GraphPath.at(graph.root_node_id), 0)]

    while stack:
        fen, path, depth = stack.pop()
        if depth >= limit or fen in visited:
            continue
        visited.add(fen)

        node = graph.nodes.get(fen)
        if node is None:
            continue

        if any(needle in t.lower() for t in texts_by_fen.get(fen, [])):
            results.append(GraphSearchResult(node=node, path=path, depth=depth))

        stack.extend(reversed([(c.fen, path.extend(c.fen, c.move), depth + 1) for c in node.children]))

    return results


def _shortest_depths(graph: MoveGraph) -> Dict[str, int]:
    """Breadth-first root distance of every reachable node."""
    depths: Dict[str, int] = {}
    queue = deque([(graph.root_node_id, 0)])
    while queue:
        fen, depth = queue.popleft()
        if fen in depths:
            continue
        depths[fen] = depth
        node = graph.nodes.get(fen)
        if node is None:
            continue
        for child in node.children:
            if child.fen not in depths:
                queue.append((child.fen, depth + 1))
    return depths


def analyze_graph(graph: MoveGraph) -> GraphStats:
    total_nodes = len(graph.nodes)
    depths = _shortest_depths(graph)

    total_moves = 0
    total_branches = 0
    for fen in depths:
        node = graph.nodes.get(fen)
        if node is None:
            continue
        total_moves += len(node.children)
        total_branches += max(0, len(node.children) - 1)

    return GraphStats(
        total_nodes=total_nodes,
        total_moves=total_moves,
        max_depth=max(depths.values(), default=0),
        branching_factor=total_branches / total_nodes if total_nodes > 0 else 0.0,
        mainline_length=get_mainline_path(graph).half_moves,
    )


def analyze_node(graph: MoveGraph, fen: str) -> Optional[NodeAnalysis]:
    node = graph.nodes.get(fen)
    if node is None:
        return None

    # Nodes reachable from the root that have an edge into this node
    reachable_from: List[str] = []
    visited: Set[str] = set()
    stack = [graph.root_node_id]
    while stack:
        current = stack.pop()
        if current in visited:
            continue
        visited.add(current)
        current_node = graph.nodes.get(current)
        if current_node is None:
            continue
        pending = []
        for child in current_node.children:
            if child.fen == fen:
                if current not in reachable_from:
                    reachable_from.append(current)
            else:
                pending.append(child.fen)
        stack.extend(reversed(pending))

    # Everything reachable below this node, in discovery order
    reachable_to: List[str] = []
    seen: Set[str] = {fen}
    stack = [fen]
    while stack:
        current = stack.pop()
        current_node = graph.nodes.get(current)
        if current_node is None:
            continue
        pending = []
        for child in current_node.children:
            if child.fen not in reachable_to:
                reachable_to.append(child.fen)
            if child.fen not in seen:
                seen.add(child.fen)
                pending.append(child.fen)
        stack.extend(reversed(pending))

    return NodeAnalysis(
        node=node,
        reachable_from=reachable_from,
        reachable_to=reachable_to,
        depth=_shortest_depths(graph).get(fen, -1),
        is_leaf=not node.children,
        is_branch_point=len(node.children) > 1,
        variation_count=len(node.children),
    )


def find_move_timestamp(graph: MoveGraph, fen: str) -> Optional[int]:
    """`t` of the first move event (log order) that reaches `fen`."""
    for event in graph.events:
        if event.type == "move" and event.fen == fen:
            return event.t
    return None


def find_latest_leaf(graph: MoveGraph) -> Optional[PositionNode]:
    """Childless node whose latest move event is the latest; nodes without move events are skipped."""
    latest_t = -1
    latest: Optional[PositionNode] = None
    for node in graph.nodes.values():
        if node.children:
            continue
        times = [e.t for e in graph.events if e.type == "move" and e.fen == node.fen]
        if not times:
            continue
        if max(times) > latest_t:
            latest_t = max(times)
            latest = node
    return latest
