"""
Derived views over a lesson document.

These are recomputed, never stored: snapshots for the board renderer,
paths for move-history panels, statistics for variation pickers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .models import PositionNode


@dataclass(frozen=True)
class GraphPath:
    """Root-to-node walk: `node_ids` are FENs, `moves` the SAN edges between them."""
    node_ids: List[str]
    moves: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if len(self.node_ids) != len(self.moves) + 1:
            raise ValueError(
                f"GraphPath needs one more node than moves "
                f"(got {len(self.node_ids)} nodes, {len(self.moves)} moves)"
            )

    @classmethod
    def at(cls, fen: str) -> "GraphPath":
        return cls(node_ids=[fen], moves=[])

    @property
    def last(self) -> str:
        return self.node_ids[-1]

    @property
    def half_moves(self) -> int:
        return len(self.moves)

    def extend(self, fen: str, move: str) -> "GraphPath":
        return GraphPath(node_ids=[*self.node_ids, fen], moves=[*self.moves, move])

    def truncate(self, index: int) -> "GraphPath":
        """Keep nodes up to and including `index`."""
        return GraphPath(node_ids=self.node_ids[: index + 1], moves=self.moves[:index])

    def to_dict(self) -> Dict[str, Any]:
        return {"nodeIds": list(self.node_ids), "moves": list(self.moves)}


@dataclass(frozen=True)
class ActiveAnnotation:
    type: str  # arrow | circle | highlight
    color: str
    from_square: Optional[str] = None  # arrows
    to_square: Optional[str] = None
    square: Optional[str] = None  # circles and highlights

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"type": self.type, "color": self.color}
        if self.type == "arrow":
            out["from"] = self.from_square
            out["to"] = self.to_square
        else:
            out["square"] = self.square
        return out


@dataclass
class TimelineState:
    fen: str
    active_annotations: List[ActiveAnnotation] = field(default_factory=list)
    active_text: Optional[str] = None
    is_paused: bool = False
    pause_prompt: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fen": self.fen,
            "activeAnnotations": [a.to_dict() for a in self.active_annotations],
            "activeText": self.active_text,
            "isPaused": self.is_paused,
            "pausePrompt": self.pause_prompt,
        }


@dataclass
class GraphState:
    current_node: PositionNode
    path: GraphPath
    fen: str
    move_number: int
    active_annotations: List[ActiveAnnotation] = field(default_factory=list)
    last_text_event: Optional[str] = None
    is_paused: bool = False
    pause_prompt: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currentNode": self.current_node.to_dict(),
            "path": self.path.to_dict(),
            "fen": self.fen,
            "moveNumber": self.move_number,
            "activeAnnotations": [a.to_dict() for a in self.active_annotations],
            "lastTextEvent": self.last_text_event,
            "isPaused": self.is_paused,
            "pausePrompt": self.pause_prompt,
        }


@dataclass(frozen=True)
class MoveIndexEntry:
    t: int
    fen: str
    move_number: int

    def to_dict(self) -> Dict[str, Any]:
        return {"t": self.t, "fen": self.fen, "moveNumber": self.move_number}


@dataclass(frozen=True)
class GraphIndexEntry:
    fen: str
    move_number: int
    path: GraphPath

    def to_dict(self) -> Dict[str, Any]:
        return {"fen": self.fen, "moveNumber": self.move_number, "path": self.path.to_dict()}


@dataclass
class GraphSearchResult:
    node: PositionNode
    path: GraphPath
    depth: int

    def to_dict(self) -> Dict[str, Any]:
        return {"node": self.node.to_dict(), "path": self.path.to_dict(), "depth": self.depth}


@dataclass
class GraphStats:
    total_nodes: int
    total_moves: int
    max_depth: int
    branching_factor: float
    mainline_length: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalNodes": self.total_nodes,
            "totalMoves": self.total_moves,
            "maxDepth": self.max_depth,
            "branchingFactor": self.branching_factor,
            "mainlineLength": self.mainline_length,
        }


@dataclass
class NodeAnalysis:
    node: PositionNode
    reachable_from: List[str]  # FENs with an edge into this node
    reachable_to: List[str]  # FENs reachable from this node
    depth: int  # shortest root distance, -1 if unreachable
    is_leaf: bool
    is_branch_point: bool
    variation_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node": self.node.to_dict(),
            "reachableFrom": list(self.reachable_from),
            "reachableTo": list(self.reachable_to),
            "depth": self.depth,
            "isLeaf": self.is_leaf,
            "isBranchPoint": self.is_branch_point,
            "variationCount": self.variation_count,
        }


@dataclass
class PreviousMove:
    node: PositionNode
    move: str
