"""
Coarse (time -> position) lookup over the static mainline.

Built once per document load; seek bars use it to jump without replaying
the whole event log.
"""

from __future__ import annotations

import bisect
import logging
from typing import List, Optional

from .errors import DocumentCorruptError, IllegalMainlineMoveError, IllegalMoveError, MissingRootNodeError
from .graph_traversal import get_mainline_path
from .models import MoveGraph, node_events
from .rules import apply_move_event, describe_move, full_move_number, load_board
from .timeline_types import MoveIndexEntry

logger = logging.getLogger(__name__)


def build_move_index(graph: MoveGraph) -> List[MoveIndexEntry]:
    """
    Walk the static mainline and apply each node's move events in time order.

    Returns:
        Entries sorted by `t`; the first is the starting position at t=0 with
        move number 0.

    Raises:
        MissingRootNodeError: `rootNodeId` is not in `nodes`
        IllegalMainlineMoveError: a mainline move cannot be played
        DocumentCorruptError: bad starting FEN or a mainline node is missing
    """
    if graph.root_node_id not in graph.nodes:
        raise MissingRootNodeError(graph.root_node_id)

    try:
        board = load_board(graph.starting_fen)
    except ValueError as e:
        raise DocumentCorruptError(f"Invalid starting FEN {graph.starting_fen}: {e}") from e

    index: List[MoveIndexEntry] = [MoveIndexEntry(t=0, fen=board.fen(), move_number=0)]
    half_moves = 0

    mainline = get_mainline_path(graph)
    for fen in mainline.node_ids[1:]:
        if fen not in graph.nodes:
            raise DocumentCorruptError(f"Node {fen} not found in graph")

        for event in node_events(graph, fen, ("move",)):
            if board.fen() == fen:
                # reached already; later events here arrived by transposition or a replay
                logger.debug(f"Skipping move {describe_move(event)} at t={event.t}: board already at {fen}")
                continue
            try:
                move = apply_move_event(board, event)
            except IllegalMoveError as e:
                raise IllegalMainlineMoveError(fen, describe_move(event), str(e)) from e
            if move is None:
                continue
            half_moves += 1
            index.append(MoveIndexEntry(t=event.t, fen=board.fen(), move_number=full_move_number(half_moves)))

    index.sort(key=lambda entry: entry.t)
    logger.debug(f"Built move index with {len(index)} entries over {mainline.half_moves} mainline moves")
    return index


def fen_at_time(index: List[MoveIndexEntry], t: int) -> Optional[MoveIndexEntry]:
    """Latest entry with `entry.t <= t`; None for an empty index."""
    if not index:
        return None
    times = [entry.t for entry in index]
    pos = bisect.bisect_right(times, t)
    return index[max(0, pos - 1)]
