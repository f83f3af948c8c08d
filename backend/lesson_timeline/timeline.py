"""
Timeline reconciler: elapsed audio time -> everything the player renders.

Replays the full event log from t=0 on every call. Nothing carries over
between calls, so seeking backwards and scrubbing cannot drift.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from .annotations import OVERLAY_EVENT_TYPES, OverlayReplay
from .errors import IllegalMoveError
from .models import MoveGraph, sorted_events
from .rules import apply_move_event, describe_move, load_board
from .timeline_types import MoveIndexEntry, TimelineState

logger = logging.getLogger(__name__)

# branch markers only bracket narration; they do not change board state
BRANCH_EVENT_TYPES = frozenset({"branch.start", "branch.end"})

HANDLED_EVENT_TYPES = frozenset({"navigate", "move"}) | OVERLAY_EVENT_TYPES | BRANCH_EVENT_TYPES


def compute_state_at_time(
    graph: MoveGraph,
    move_index: Optional[List[MoveIndexEntry]],
    time_ms: int,
    pause_window_ms: Optional[int] = None,
) -> TimelineState:
    """
    Reconstruct board, annotations, narration and pause state at `time_ms`.

    Args:
        graph: Lesson document
        move_index: Cached coarse index for the lesson; the full replay does
            not need it, callers holding one may pass it through
        time_ms: Playback cursor; events with `t == time_ms` are included
        pause_window_ms: Override for the pause-point trailing window

    Bad move events and unparseable navigate FENs are skipped with a warning.
    """
    current_fen = graph.starting_fen
    try:
        board = load_board(current_fen)
    except ValueError:
        logger.warning(f"Invalid starting FEN {current_fen}; moves before the first navigate are ignored")
        board = None

    overlay = OverlayReplay(time_ms, pause_window_ms)

    for event in sorted_events(graph.events):
        if event.t > time_ms:
            break

        kind = event.type
        if kind == "navigate":
            try:
                board = load_board(event.fen)
            except ValueError as e:
                logger.warning(f"Ignoring navigate to invalid FEN {event.fen} at t={event.t}: {e}")
                continue
            current_fen = event.fen
        elif kind == "move":
            if board is None:
                continue
            try:
                if apply_move_event(board, event) is not None:
                    current_fen = board.fen()
            except IllegalMoveError as e:
                logger.warning(f"Invalid move {describe_move(event)} at time {event.t}: {e}")
        elif kind in OVERLAY_EVENT_TYPES:
            overlay.apply(event)
        elif kind in BRANCH_EVENT_TYPES:
            continue
        else:
            logger.warning(f"Unhandled event type {kind} at t={event.t}")

    return TimelineState(
        fen=current_fen,
        active_annotations=overlay.annotations,
        active_text=overlay.text,
        is_paused=overlay.is_paused,
        pause_prompt=overlay.pause_prompt,
    )
