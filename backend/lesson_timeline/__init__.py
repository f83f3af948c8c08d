from .models import MoveGraph, PositionNode, load_move_graph, parse_move_graph, read_move_graph
from .errors import (
    LessonError,
    InvalidDocumentError,
    DocumentCorruptError,
    MissingRootNodeError,
    IllegalMainlineMoveError,
    IllegalMoveError,
    LessonNotFoundError,
    AuthoringError,
)
from .graph_traversal import (
    build_graph_move_index,
    find_node_by_path,
    get_all_paths,
    compute_state_at_node,
    get_mainline_path,
    search_nodes,
    analyze_graph,
    analyze_node,
    path_to_node,
)
from .move_index import build_move_index, fen_at_time
from .timeline import compute_state_at_time
from .mainline import calculate_mainline_path, calculate_dynamic_mainline_path
from .authoring import LessonSession, RecordingClock
from .store import LessonStore

__all__ = [
    'MoveGraph',
    'PositionNode',
    'load_move_graph',
    'parse_move_graph',
    'read_move_graph',
    'LessonError',
    'InvalidDocumentError',
    'DocumentCorruptError',
    'MissingRootNodeError',
    'IllegalMainlineMoveError',
    'IllegalMoveError',
    'LessonNotFoundError',
    'AuthoringError',
    'build_graph_move_index',
    'find_node_by_path',
    'get_all_paths',
    'compute_state_at_node',
    'get_mainline_path',
    'search_nodes',
    'analyze_graph',
    'analyze_node',
    'path_to_node',
    'build_move_index',
    'fen_at_time',
    'compute_state_at_time',
    'calculate_mainline_path',
    'calculate_dynamic_mainline_path',
    'LessonSession',
    'RecordingClock',
    'LessonStore',
]
