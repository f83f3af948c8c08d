"""
Pydantic models for the CMF lesson document.

The document keeps two loosely-synchronized collections:
- `nodes`: positions keyed by FEN, linked by child/parent move references
- `events`: a flat, time-ordered log (moves, annotations, narration, navigation)

The graph owns structural identity, the event log owns temporal identity.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Annotated, Any, Dict, Iterable, List, Literal, Optional, Tuple, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

from .config import SCHEMA_VERSION
from .errors import InvalidDocumentError, MissingRootNodeError

logger = logging.getLogger(__name__)

LegalPolicy = Literal["strict", "pieceLegal", "none"]
NavigationType = Literal["to_node", "to_move_index", "back", "forward", "start", "latest"]

EVENT_TYPES = (
    "move",
    "annotate",
    "text",
    "pausepoint",
    "clear",
    "navigate",
    "branch.start",
    "branch.end",
)


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# --- Graph ---


class ChildReference(_CamelModel):
    move: str  # SAN; the edge carries the notation, not the node
    fen: str
    comment: Optional[str] = None


class ParentReference(_CamelModel):
    move: str
    fen: str
    comment: Optional[str] = None


class PositionNode(_CamelModel):
    fen: str
    children: List[ChildReference] = Field(default_factory=list)  # ordered; children[0] is the default mainline
    parents: List[ParentReference] = Field(default_factory=list)
    move_number: int = Field(0, alias="moveNumber")  # half-moves from game start

    @field_validator("children", "parents", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def is_leaf(self) -> bool:
        return not self.children


# --- Events ---


class EventBase(_CamelModel):
    t: int = Field(ge=0)


class MoveEvent(EventBase):
    type: Literal["move"] = "move"
    fen: Optional[str] = None  # position the move leads to
    san: Optional[str] = None
    from_square: Optional[str] = Field(None, alias="from")
    to_square: Optional[str] = Field(None, alias="to")
    promo: Optional[str] = None
    color: Optional[str] = None
    move_number: Optional[int] = Field(None, alias="moveNumber")
    legal_policy: LegalPolicy = Field("strict", alias="legalPolicy")
    comment: Optional[str] = None

    @property
    def has_coordinates(self) -> bool:
        return bool(self.from_square and self.to_square)


class AnnotateEvent(EventBase):
    type: Literal["annotate"] = "annotate"
    fen: Optional[str] = None
    # Raw payloads; two historical shapes are normalized at replay time
    arrows: Optional[List[Any]] = None
    circles: Optional[List[Any]] = None
    highlights: Optional[List[Any]] = None
    note: Optional[str] = None


class TextEvent(EventBase):
    type: Literal["text"] = "text"
    fen: Optional[str] = None
    text: str = Field(min_length=1)


class PausePointEvent(EventBase):
    type: Literal["pausepoint"] = "pausepoint"
    id: str = Field(min_length=1)
    fen: Optional[str] = None
    prompt: Optional[str] = None


class ClearEvent(EventBase):
    type: Literal["clear"] = "clear"
    fen: Optional[str] = None


class NavigateEvent(EventBase):
    type: Literal["navigate"] = "navigate"
    fen: str
    navigation_type: NavigationType = Field("to_node", alias="navigationType")
    target_move_index: Optional[int] = Field(None, alias="targetMoveIndex")
    comment: Optional[str] = None


class BranchStartEvent(EventBase):
    type: Literal["branch.start"] = "branch.start"
    id: str = Field(min_length=1)
    fen: Optional[str] = None
    label: Optional[str] = None


class BranchEndEvent(EventBase):
    type: Literal["branch.end"] = "branch.end"
    id: str = Field(min_length=1)
    fen: Optional[str] = None


Event = Annotated[
    Union[
        MoveEvent,
        AnnotateEvent,
        TextEvent,
        PausePointEvent,
        ClearEvent,
        NavigateEvent,
        BranchStartEvent,
        BranchEndEvent,
    ],
    Field(discriminator="type"),
]

EVENT_ADAPTER: TypeAdapter = TypeAdapter(Event)


# --- Document ---


class LessonMeta(_CamelModel):
    starting_fen: str = Field(alias="startingFen", min_length=1)
    duration_ms: int = Field(0, ge=0, alias="durationMs")
    id: Optional[str] = None
    title: Optional[str] = None
    author: Optional[str] = None
    created_at: Optional[str] = Field(None, alias="createdAt")
    audio_url: Optional[str] = Field(None, alias="audioUrl")
    transcript_url: Optional[str] = Field(None, alias="transcriptUrl")
    tags: Optional[List[str]] = None
    engine_hints: Optional[bool] = Field(None, alias="engineHints")


class PrecomputedEval(_CamelModel):
    fen: str = Field(min_length=1)
    depth: int = Field(ge=1)
    cp: Optional[int] = None
    mate: Optional[int] = None
    best: Optional[Annotated[List[str], Field(max_length=5)]] = None

    @model_validator(mode="after")
    def _score_required(self) -> "PrecomputedEval":
        if self.cp is None and self.mate is None:
            raise ValueError("Precomputed eval requires cp or mate.")
        return self


class MoveGraph(_CamelModel):
    schema_version: Literal["cmf.v0.0.1"] = Field(SCHEMA_VERSION, alias="schema")
    meta: LessonMeta
    root_node_id: str = Field(alias="rootNodeId")
    nodes: Dict[str, PositionNode]
    events: List[Event] = Field(default_factory=list)
    overlays: Optional[Dict[str, Any]] = None
    precomputed: Optional[List[PrecomputedEval]] = None

    @field_validator("events", mode="before")
    @classmethod
    def _drop_invalid_events(cls, value: Any) -> Any:
        """Drop events that fail validation; one bad event must not reject the lesson."""
        if value is None:
            return []
        if not isinstance(value, list):
            return value
        kept: List[Any] = []
        for i, raw in enumerate(value):
            if isinstance(raw, EventBase):
                kept.append(raw)
                continue
            try:
                kept.append(EVENT_ADAPTER.validate_python(raw))
            except ValidationError as e:
                kind = raw.get("type") if isinstance(raw, dict) else type(raw).__name__
                logger.warning(f"Dropping invalid event #{i} (type={kind}): {_format_errors(e)}")
        return kept

    @property
    def starting_fen(self) -> str:
        return self.meta.starting_fen

    @property
    def duration_ms(self) -> int:
        return self.meta.duration_ms

    def get_node(self, fen: str) -> Optional[PositionNode]:
        return self.nodes.get(fen)

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)


# --- Event log helpers ---


def is_chronological(events: Iterable[EventBase]) -> bool:
    last = -1
    for event in events:
        if event.t < last:
            return False
        last = event.t
    return True


def sorted_events(events: Iterable[EventBase]) -> List[Any]:
    """Stable sort by `t`: simultaneous events keep their log order."""
    return sorted(events, key=lambda e: e.t)


def node_events(
    graph: MoveGraph, fen: str, types: Optional[Iterable[str]] = None
) -> List[Any]:
    """Events attached to one position, sorted by `t`."""
    wanted = set(types) if types is not None else None
    return sorted_events(
        e for e in graph.events
        if getattr(e, "fen", None) == fen and (wanted is None or e.type in wanted)
    )


def move_events_by_fen(graph: MoveGraph) -> Dict[str, List[MoveEvent]]:
    """Group `move` events by the position they lead to, each group sorted by `t`."""
    grouped: Dict[str, List[MoveEvent]] = {}
    for event in sorted_events(graph.events):
        if event.type == "move" and event.fen:
            grouped.setdefault(event.fen, []).append(event)
    return grouped


# --- Loading ---


def _format_errors(err: ValidationError) -> str:
    return "; ".join(_error_lines(err))


def _error_lines(err: ValidationError) -> List[str]:
    return [f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in err.errors()]


def parse_move_graph(data: Any) -> Tuple[Optional[MoveGraph], List[str]]:
    """
    Validate a decoded document without raising.

    Returns:
        (graph, []) on success, (None, ["path: message", ...]) on failure
    """
    try:
        return MoveGraph.model_validate(data), []
    except ValidationError as e:
        return None, _error_lines(e)


def load_move_graph(data: Union[Dict[str, Any], str, bytes]) -> MoveGraph:
    """
    Load a lesson document for playback.

    Raises InvalidDocumentError for unparseable JSON or a schema-invalid document,
    and MissingRootNodeError if `rootNodeId` is not one of the nodes.
    """
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except ValueError as e:
            raise InvalidDocumentError([f"invalid JSON: {e}"]) from e

    graph, errors = parse_move_graph(data)
    if graph is None:
        raise InvalidDocumentError(errors)
    if graph.root_node_id not in graph.nodes:
        raise MissingRootNodeError(graph.root_node_id)
    if not is_chronological(graph.events):
        logger.warning(f"Event log for lesson {graph.meta.id or '?'} is out of order; replay sorts by t")

    logger.debug(f"Loaded lesson {graph.meta.id or '?'}: {len(graph.nodes)} nodes, {len(graph.events)} events")
    return graph


def read_move_graph(path: Union[str, Path]) -> MoveGraph:
    with open(path, "r", encoding="utf-8") as f:
        return load_move_graph(f.read())
