"""
Chess-rules adapter over python-chess.

All legality checking and SAN/coordinate conversion goes through here so the
rest of the package never touches board internals.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import chess

from .errors import IllegalMoveError
from .models import MoveEvent

PROMOTION_PIECES = {
    "q": chess.QUEEN,
    "r": chess.ROOK,
    "b": chess.BISHOP,
    "n": chess.KNIGHT,
}


def full_move_number(half_moves: int) -> int:
    """Full chess move number after `half_moves` plies."""
    return half_moves // 2 + 1


def load_board(fen: str) -> chess.Board:
    """Board for a FEN; raises ValueError for an unparseable FEN."""
    return chess.Board(fen)


def move_from_san(board: chess.Board, san: str) -> chess.Move:
    token = (san or "").strip()
    if not token:
        raise IllegalMoveError("empty move")
    try:
        move = board.parse_san(token)
    except ValueError as e:
        raise IllegalMoveError(f"Illegal SAN {token} in {board.fen()}: {e}") from e
    if not move:
        # parse_san accepts "--" and friends as a null move
        raise IllegalMoveError(f"Null move {token} in {board.fen()}")
    return move


def move_from_coordinates(
    board: chess.Board, from_square: str, to_square: str, promo: Optional[str] = None
) -> chess.Move:
    """
    Build a legal move from squares. Pawns reaching the last rank promote to a
    queen unless `promo` names another piece; `promo` is ignored for other moves.
    """
    try:
        src = chess.parse_square(from_square)
        dst = chess.parse_square(to_square)
    except ValueError as e:
        raise IllegalMoveError(f"Invalid squares {from_square}-{to_square}") from e

    promotion = None
    piece = board.piece_at(src)
    if piece is not None and piece.piece_type == chess.PAWN and chess.square_rank(dst) in (0, 7):
        promotion = PROMOTION_PIECES.get((promo or "q").lower())
        if promotion is None:
            raise IllegalMoveError(f"Invalid promotion piece: {promo}")

    move = chess.Move(src, dst, promotion=promotion)
    if not board.is_legal(move):
        raise IllegalMoveError(f"Illegal move {from_square}-{to_square} in {board.fen()}")
    return move


def describe_move(event: MoveEvent) -> str:
    if event.has_coordinates:
        return f"{event.from_square}-{event.to_square}"
    return event.san or "?"


def resolve_move_event(board: chess.Board, event: MoveEvent) -> Optional[chess.Move]:
    """
    Explicit from/to (plus promotion) wins; SAN is the fallback for legacy
    documents. Returns None when the event carries no move data at all.
    """
    if event.has_coordinates:
        return move_from_coordinates(board, event.from_square, event.to_square, event.promo)
    if event.san:
        return move_from_san(board, event.san)
    return None


def apply_move_event(board: chess.Board, event: MoveEvent) -> Optional[chess.Move]:
    """Push the event's move onto `board`. Raises IllegalMoveError, board untouched."""
    move = resolve_move_event(board, event)
    if move is not None:
        board.push(move)
    return move


def move_details(board: chess.Board, move: chess.Move) -> Dict[str, Any]:
    """SAN and coordinates of a legal move, taken before it is pushed."""
    return {
        "san": board.san(move),
        "from": chess.square_name(move.from_square),
        "to": chess.square_name(move.to_square),
        "promo": chess.piece_symbol(move.promotion) if move.promotion else None,
        "color": "w" if board.turn == chess.WHITE else "b",
    }
