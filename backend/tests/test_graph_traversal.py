import logging

import pytest

from lesson_timeline.errors import MissingRootNodeError
from lesson_timeline.graph_traversal import (
    analyze_graph,
    analyze_node,
    build_graph_move_index,
    compute_state_at_node,
    find_latest_leaf,
    find_move_timestamp,
    find_node_by_path,
    get_all_paths,
    get_mainline_path,
    get_next_mainline_move,
    get_node_by_id,
    get_previous_move,
    get_variations_at_node,
    path_to_node,
    search_nodes,
)
from lesson_timeline.models import MoveGraph
from lesson_timeline.timeline_types import GraphPath

from lesson_helpers import LessonDoc, assert_path_invariant, fen_after


def transposition_lesson() -> LessonDoc:
    """1.Nf3 Nf6 2.Nc3 and 1.Nc3 Nf6 2.Nf3 reach the same position."""
    doc = LessonDoc()
    doc.line("Nf3", "Nf6", "Nc3")
    doc.line("Nc3", "Nf6", "Nf3")
    return doc


def cyclic_lesson() -> LessonDoc:
    """Root -> e4 node, whose child points back at the root."""
    doc = LessonDoc()
    (x,) = doc.line("e4")
    doc.link(x, "e5", doc.root)
    return doc


# --- move index over the whole graph ---


def test_graph_index_covers_every_reachable_position(branching_doc):
    graph = branching_doc.graph()
    index = build_graph_move_index(graph)

    assert set(index) == {
        graph.root_node_id,
        fen_after("e4"),
        fen_after("e4", "e5"),
        fen_after("e4", "e5", "Nf3"),
        fen_after("e4", "c5"),
    }
    entry = index[fen_after("e4", "e5")]
    assert entry.move_number == 2
    assert entry.path.moves == ["e4", "e5"]
    for entry in index.values():
        assert_path_invariant(entry.path)


def test_graph_index_skips_illegal_edges(caplog):
    doc = LessonDoc()
    doc.line("e4")
    doc.link(doc.root, "Qh5", "bogus-node")
    with caplog.at_level(logging.WARNING):
        index = build_graph_move_index(doc.graph())
    assert len(index) == 2
    assert "Invalid move Qh5" in caplog.text


def test_graph_index_skips_null_move_edges(caplog):
    doc = LessonDoc()
    doc.line("e4")
    doc.link(doc.root, "--", "passed-node")
    with caplog.at_level(logging.WARNING):
        index = build_graph_move_index(doc.graph())
    assert set(index) == {doc.root, fen_after("e4")}
    assert "Invalid move --" in caplog.text


def test_graph_index_indexes_merged_position_once():
    graph = transposition_lesson().graph()
    index = build_graph_move_index(graph)
    merged = fen_after("Nf3", "Nf6", "Nc3")
    assert merged in index
    # first path found wins
    assert index[merged].path.moves == ["Nf3", "Nf6", "Nc3"]
    assert len(index) == 6


def test_graph_index_requires_root():
    doc = LessonDoc()
    doc.root = "missing"
    graph = MoveGraph.model_validate(doc.to_dict())
    with pytest.raises(MissingRootNodeError):
        build_graph_move_index(graph)


# --- lookups ---


def test_find_node_by_path(branching_doc):
    graph = branching_doc.graph()
    assert find_node_by_path(graph, []).fen == graph.root_node_id
    assert find_node_by_path(graph, ["e4", "c5"]).fen == fen_after("e4", "c5")
    assert find_node_by_path(graph, ["e4", "d5"]) is None
    assert find_node_by_path(graph, ["d4"]) is None


def test_node_lookups_are_soft(branching_doc):
    graph = branching_doc.graph()
    x = fen_after("e4")

    assert get_node_by_id(graph, x).fen == x
    assert get_node_by_id(graph, "nope") is None

    assert [c.move for c in get_variations_at_node(graph, x)] == ["e5", "c5"]
    assert get_variations_at_node(graph, "nope") == []

    assert get_next_mainline_move(graph, x).move == "e5"
    assert get_next_mainline_move(graph, fen_after("e4", "c5")) is None

    prev = get_previous_move(graph, fen_after("e4", "e5"))
    assert prev.node.fen == x
    assert prev.move == "e5"
    assert get_previous_move(graph, graph.root_node_id) is None
    assert get_previous_move(graph, "nope") is None


def test_path_to_node(branching_doc):
    branching_doc.nodes["orphan"] = {"fen": "orphan", "children": [], "parents": []}
    graph = branching_doc.graph()

    path = path_to_node(graph, fen_after("e4", "c5"))
    assert path.moves == ["e4", "c5"]
    assert_path_invariant(path)
    assert path_to_node(graph, graph.root_node_id) == GraphPath.at(graph.root_node_id)
    assert path_to_node(graph, "orphan") is None


# --- paths ---


def test_get_all_paths_with_variations(branching_doc):
    graph = branching_doc.graph()
    paths = get_all_paths(graph)
    assert [p.moves for p in paths] == [[], ["e4"], ["e4", "e5"], ["e4", "e5", "Nf3"], ["e4", "c5"]]
    for path in paths:
        assert_path_invariant(path)


def test_get_all_paths_mainline_only(branching_doc):
    paths = get_all_paths(branching_doc.graph(), include_variations=False)
    assert [p.moves for p in paths] == [["e4", "e5", "Nf3"]]


def test_get_all_paths_depth_cap(branching_doc):
    paths = get_all_paths(branching_doc.graph(), max_depth=2)
    assert [p.moves for p in paths] == [[], ["e4"]]


def test_get_mainline_path(branching_doc):
    path = get_mainline_path(branching_doc.graph())
    assert path.moves == ["e4", "e5", "Nf3"]
    assert_path_invariant(path)


def test_mainline_of_missing_root_is_just_the_root():
    doc = LessonDoc()
    doc.root = "missing"
    graph = MoveGraph.model_validate(doc.to_dict())
    assert get_mainline_path(graph) == GraphPath.at("missing")


# --- node-local state ---


def test_compute_state_at_node_replays_only_that_node():
    doc = LessonDoc()
    (x,) = doc.line("e4", times=[100])
    other = doc.root
    doc.event("annotate", 200, fen=x, arrows=[{"from": "e2", "to": "e4", "color": "green"}])
    doc.event("text", 250, fen=x, text="here")
    doc.event("text", 260, fen=other, text="elsewhere")
    doc.event("clear", 300, fen=x)
    doc.event("annotate", 400, fen=x, circles=["d5"])
    doc.event("annotate", 410, fen=other, circles=["a1"])
    doc.event("pausepoint", 1000, fen=x, id="p1", prompt="Find the plan")
    graph = doc.graph()
    node = graph.nodes[x]
    path = path_to_node(graph, x)

    at_250 = compute_state_at_node(graph, node, path, 250)
    assert [(a.type, a.color) for a in at_250.active_annotations] == [("arrow", "green")]
    assert at_250.last_text_event == "here"
    assert at_250.move_number == 1
    assert at_250.fen == x

    at_350 = compute_state_at_node(graph, node, path, 350)
    assert at_350.active_annotations == []

    at_500 = compute_state_at_node(graph, node, path, 500)
    assert [(a.type, a.square, a.color) for a in at_500.active_annotations] == [("circle", "d5", "yellow")]
    assert at_500.last_text_event == "here"

    assert compute_state_at_node(graph, node, path, 1200).is_paused
    assert compute_state_at_node(graph, node, path, 1200).pause_prompt == "Find the plan"
    assert not compute_state_at_node(graph, node, path, 1600).is_paused


# --- search ---


def test_search_nodes_matches_each_node_once(branching_doc):
    results = search_nodes(branching_doc.graph(), "center")
    assert len(results) == 1
    assert results[0].node.fen == fen_after("e4")
    assert results[0].depth == 1
    assert_path_invariant(results[0].path)


def test_search_nodes_no_match(branching_doc):
    assert search_nodes(branching_doc.graph(), "sicilian") == []


# --- statistics ---


def test_analyze_graph(branching_doc):
    stats = analyze_graph(branching_doc.graph())
    assert stats.total_nodes == 5
    assert stats.total_moves == 4
    assert stats.max_depth == 3
    assert stats.branching_factor == pytest.approx(0.2)
    assert stats.mainline_length == 3


def test_unreachable_node_has_no_depth():
    doc = LessonDoc()
    doc.line("e4")
    doc.nodes["orphan"] = {"fen": "orphan", "children": [], "parents": []}
    graph = doc.graph()

    assert analyze_node(graph, "orphan").depth == -1
    assert analyze_node(graph, fen_after("e4")).depth == 1


def test_depth_is_shortest_root_distance():
    doc = LessonDoc()
    # long route found first by depth-first search, short route second
    doc.link(doc.root, "a", "A")
    doc.link("A", "b", "B")
    doc.link("B", "c", "C")
    doc.link(doc.root, "x", "C")
    doc.link("C", "d", "D")
    graph = doc.graph()

    assert path_to_node(graph, "D").moves == ["a", "b", "c", "d"]
    assert analyze_node(graph, "D").depth == 2
    assert analyze_node(graph, "C").reachable_from == [graph.root_node_id, "B"]
    stats = analyze_graph(graph)
    assert stats.max_depth == 2
    assert stats.total_nodes == 5


def test_analyze_node_on_merged_position():
    graph = transposition_lesson().graph()
    merged = fen_after("Nf3", "Nf6", "Nc3")
    analysis = analyze_node(graph, merged)

    assert analysis.reachable_from == [fen_after("Nf3", "Nf6"), fen_after("Nc3", "Nf6")]
    assert analysis.reachable_to == []
    assert analysis.depth == 3
    assert analysis.is_leaf
    assert not analysis.is_branch_point


def test_analyze_node_on_root():
    graph = transposition_lesson().graph()
    analysis = analyze_node(graph, graph.root_node_id)

    assert analysis.depth == 0
    assert analysis.reachable_from == []
    assert analysis.is_branch_point
    assert analysis.variation_count == 2
    # the merged position appears once even though two routes reach it
    assert len(analysis.reachable_to) == 5
    assert len(set(analysis.reachable_to)) == 5


def test_analyze_node_soft_failures():
    doc = LessonDoc()
    doc.nodes["orphan"] = {"fen": "orphan", "children": [], "parents": []}
    graph = doc.graph()
    assert analyze_node(graph, "nope") is None
    assert analyze_node(graph, "orphan").depth == -1


# --- timestamps ---


def test_find_move_timestamp(branching_doc):
    graph = branching_doc.graph()
    assert find_move_timestamp(graph, fen_after("e4", "c5")) == 5000
    assert find_move_timestamp(graph, graph.root_node_id) is None


def test_find_latest_leaf(branching_doc):
    graph = branching_doc.graph()
    assert find_latest_leaf(graph).fen == fen_after("e4", "c5")
    assert find_latest_leaf(LessonDoc().graph()) is None


# --- cycles ---


def test_traversals_terminate_on_cycles():
    graph = cyclic_lesson().graph()
    x = fen_after("e4")

    paths = get_all_paths(graph)
    assert [p.moves for p in paths] == [[], ["e4"]]
    assert get_all_paths(graph, include_variations=False) == []

    index = build_graph_move_index(graph)
    assert set(index) == {graph.root_node_id, x}

    stats = analyze_graph(graph)
    assert stats.total_nodes == 2
    assert stats.total_moves == 2
    assert stats.max_depth == 1
    assert stats.mainline_length == 1

    analysis = analyze_node(graph, x)
    assert analysis.reachable_from == [graph.root_node_id]
    assert analysis.reachable_to == [graph.root_node_id, x]

    assert get_mainline_path(graph).moves == ["e4"]
    assert path_to_node(graph, x).moves == ["e4"]
    assert search_nodes(graph, "anything") == []
