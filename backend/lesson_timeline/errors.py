from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class ErrorCode:
    code: str
    message: str


INVALID_DOCUMENT = ErrorCode("invalid_document", "Lesson document failed validation.")
MISSING_ROOT = ErrorCode("missing_root", "Lesson document has no root node.")
ILLEGAL_MAINLINE_MOVE = ErrorCode("illegal_mainline_move", "Mainline contains a move that cannot be played.")
ILLEGAL_MOVE = ErrorCode("illegal_move", "Move is illegal for the given position.")
LESSON_NOT_FOUND = ErrorCode("lesson_not_found", "No lesson is stored under this id.")
NODE_NOT_FOUND = ErrorCode("node_not_found", "Position is not part of the lesson graph.")
BAD_REQUEST = ErrorCode("bad_request", "Request payload is invalid.")


def format_error(code: ErrorCode, *, detail: Optional[str] = None) -> dict:
    return {"code": code.code, "message": code.message, "detail": detail}


class LessonError(Exception):
    """Base class for lesson timeline errors."""

    error_code: ErrorCode = BAD_REQUEST

    def to_dict(self) -> dict:
        return format_error(self.error_code, detail=str(self))


class InvalidDocumentError(LessonError):
    error_code = INVALID_DOCUMENT

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "invalid document")


class DocumentCorruptError(LessonError):
    """The document cannot be played back safely."""

    error_code = INVALID_DOCUMENT


class MissingRootNodeError(DocumentCorruptError):
    error_code = MISSING_ROOT

    def __init__(self, root_node_id: str):
        self.root_node_id = root_node_id
        super().__init__(f"Root node {root_node_id} not found")


class IllegalMainlineMoveError(DocumentCorruptError):
    error_code = ILLEGAL_MAINLINE_MOVE

    def __init__(self, node_fen: str, move: str, reason: str = ""):
        self.node_fen = node_fen
        self.move = move
        msg = f"Failed to apply move in node {node_fen}: {move}"
        if reason:
            msg = f"{msg}. {reason}"
        super().__init__(msg)


class IllegalMoveError(LessonError, ValueError):
    error_code = ILLEGAL_MOVE


class LessonNotFoundError(LessonError, KeyError):
    error_code = LESSON_NOT_FOUND

    def __str__(self) -> str:
        return Exception.__str__(self)


class AuthoringError(LessonError):
    error_code = NODE_NOT_FOUND
