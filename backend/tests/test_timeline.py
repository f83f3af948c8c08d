"""
Timeline reconciler: board, overlays and pause state at a playback position.
"""

import logging

import pytest

from lesson_timeline.graph_traversal import compute_state_at_node, path_to_node
from lesson_timeline.models import EVENT_TYPES
from lesson_timeline.move_index import build_move_index
from lesson_timeline.timeline import HANDLED_EVENT_TYPES, compute_state_at_time

from lesson_helpers import LessonDoc, fen_after, opening_scenario


def state_at(doc: LessonDoc, t: int, **kwargs):
    graph = doc.graph()
    return compute_state_at_time(graph, build_move_index(graph), t, **kwargs)


def test_open_center_scenario():
    state = state_at(opening_scenario(), 3500)

    assert state.fen == fen_after("e4", "e5")
    assert len(state.active_annotations) == 1
    arrow = state.active_annotations[0]
    assert (arrow.type, arrow.from_square, arrow.to_square, arrow.color) == ("arrow", "e2", "e4", "yellow")
    assert state.active_text == "Open center"
    assert not state.is_paused


def test_start_position_before_first_event(opening_doc):
    state = state_at(opening_doc, 0)
    assert state.fen == opening_doc.root
    assert state.active_annotations == []
    assert state.active_text is None


def test_events_at_cursor_are_included(opening_doc):
    assert state_at(opening_doc, 999).fen == opening_doc.root
    assert state_at(opening_doc, 1000).fen == fen_after("e4")


def test_same_time_gives_equal_state(opening_doc):
    graph = opening_doc.graph()
    index = build_move_index(graph)
    assert compute_state_at_time(graph, index, 2750) == compute_state_at_time(graph, index, 2750)


def test_index_is_optional(opening_doc):
    graph = opening_doc.graph()
    assert compute_state_at_time(graph, None, 3500) == compute_state_at_time(graph, build_move_index(graph), 3500)


def test_annotations_only_grow_without_clear():
    doc = LessonDoc()
    doc.event("annotate", 100, arrows=[{"from": "e2", "to": "e4"}])
    doc.event("annotate", 200, circles=[{"square": "d5", "color": "red"}])
    doc.event("text", 250, text="still growing")
    doc.event("annotate", 300, highlights=[{"square": "f7"}])
    graph = doc.graph()

    times = [0, 100, 150, 200, 300, 1000]
    states = [compute_state_at_time(graph, None, t) for t in times]
    for earlier, later in zip(states, states[1:]):
        assert set(earlier.active_annotations) <= set(later.active_annotations)
    assert len(states[-1].active_annotations) == 3


def test_clear_resets_annotations():
    doc = LessonDoc()
    doc.event("annotate", 100, arrows=[{"from": "e2", "to": "e4"}], circles=["e4"])
    doc.event("clear", 100)
    graph = doc.graph()
    for t in (100, 500, 5000):
        assert compute_state_at_time(graph, None, t).active_annotations == []


def test_annotations_after_clear_start_fresh():
    doc = LessonDoc()
    doc.event("annotate", 100, circles=["e4"])
    doc.event("clear", 200)
    doc.event("annotate", 300, circles=["d4"])
    state = state_at(doc, 400)
    assert [a.square for a in state.active_annotations] == ["d4"]


def test_navigate_is_a_hard_reset():
    x = fen_after("d4", "d5")
    doc = LessonDoc()
    doc.event("navigate", 100, fen=x, navigationType="to_node")
    doc.event("move", 200, fen=fen_after("d4", "d5", "e4"), **{"from": "e2", "to": "e4"})

    assert state_at(doc, 150).fen == x
    assert state_at(doc, 250).fen == fen_after("d4", "d5", "e4")


def test_moves_after_navigate_build_on_the_new_position():
    doc = LessonDoc()
    x, _ = doc.line("e4", "e5", times=[1000, 2000])
    doc.line("c5", start=x)
    doc.event("navigate", 3000, fen=x, navigationType="back")
    doc.event("move", 3000, fen=fen_after("e4", "c5"), san="c5")

    assert state_at(doc, 2999).fen == fen_after("e4", "e5")
    assert state_at(doc, 3000).fen == fen_after("e4", "c5")


def test_navigate_to_invalid_fen_is_ignored(caplog, opening_doc):
    opening_doc.event("navigate", 2200, fen="definitely not a fen")
    with caplog.at_level(logging.WARNING):
        state = state_at(opening_doc, 2300)
    assert state.fen == fen_after("e4", "e5")
    assert "invalid FEN" in caplog.text


def test_illegal_move_is_skipped_and_playback_continues(caplog):
    doc = LessonDoc()
    doc.event("move", 500, **{"from": "e2", "to": "e5"})
    doc.event("move", 600, san="Qxf7")
    doc.event("move", 1000, san="e4")
    with caplog.at_level(logging.WARNING):
        state = state_at(doc, 2000)
    assert state.fen == fen_after("e4")
    assert "Invalid move e2-e5" in caplog.text
    assert "Invalid move Qxf7" in caplog.text


def test_null_move_event_is_skipped(caplog):
    doc = LessonDoc()
    doc.event("move", 100, san="--")
    with caplog.at_level(logging.WARNING):
        state = state_at(doc, 200)
    assert state.fen == doc.root
    assert "Invalid move --" in caplog.text


@pytest.mark.parametrize("t,paused", [(999, False), (1000, True), (1250, True), (1500, True), (1501, False), (1600, False)])
def test_pause_window(t, paused):
    doc = LessonDoc()
    doc.event("pausepoint", 1000, id="p1", prompt="What would you play?")
    state = state_at(doc, t)
    assert state.is_paused is paused
    assert state.pause_prompt == ("What would you play?" if paused else None)


def test_pause_window_override():
    doc = LessonDoc()
    doc.event("pausepoint", 1000, id="p1")
    assert not state_at(doc, 1600).is_paused
    assert state_at(doc, 1600, pause_window_ms=1000).is_paused


def test_latest_text_wins():
    doc = LessonDoc()
    doc.event("text", 100, text="first")
    doc.event("text", 200, text="second")
    assert state_at(doc, 150).active_text == "first"
    assert state_at(doc, 250).active_text == "second"


def test_simultaneous_events_keep_log_order():
    doc = LessonDoc()
    doc.event("text", 100, text="first")
    doc.event("text", 100, text="second")
    assert state_at(doc, 100).active_text == "second"


def test_out_of_order_log_replays_by_time():
    ordered = opening_scenario()
    shuffled = opening_scenario()
    shuffled.events.reverse()
    assert state_at(shuffled, 3500) == state_at(ordered, 3500)


def test_both_annotation_shapes_are_normalized():
    doc = LessonDoc()
    doc.event(
        "annotate",
        100,
        arrows=[["g1", "f3"], {"from": "e2", "to": "e4", "color": "green"}],
        circles=["d4", {"square": "d5", "color": "blue"}],
        highlights=[{"square": "e5", "color": "red"}, {"square": "c4"}],
    )
    state = state_at(doc, 100)
    assert [a.to_dict() for a in state.active_annotations] == [
        {"type": "arrow", "color": "yellow", "from": "g1", "to": "f3"},
        {"type": "arrow", "color": "green", "from": "e2", "to": "e4"},
        {"type": "circle", "color": "yellow", "square": "d4"},
        {"type": "circle", "color": "blue", "square": "d5"},
        {"type": "highlight", "color": "red", "square": "e5"},
        {"type": "highlight", "color": "yellow", "square": "c4"},
    ]


def test_malformed_annotation_entries_are_skipped(caplog):
    doc = LessonDoc()
    doc.event("annotate", 100, arrows=[{"from": "e2"}, ["e2", "e4"]], circles=[42])
    with caplog.at_level(logging.WARNING):
        state = state_at(doc, 100)
    assert [(a.from_square, a.to_square) for a in state.active_annotations] == [("e2", "e4")]
    assert "malformed arrow" in caplog.text
    assert "malformed circle" in caplog.text


def test_branch_markers_do_not_change_state(opening_doc):
    before = state_at(opening_doc, 3500)
    opening_doc.event("branch.start", 1500, id="b1", label="Sideline")
    opening_doc.event("branch.end", 1800, id="b1")
    assert state_at(opening_doc, 3500) == before


def test_every_event_type_is_handled():
    assert HANDLED_EVENT_TYPES == frozenset(EVENT_TYPES)


def test_node_and_timeline_views_agree_on_overlays():
    doc = LessonDoc()
    (x,) = doc.line("e4", times=[100])
    doc.event("annotate", 200, fen=x, arrows=[["e2", "e4"]])
    doc.event("annotate", 300, fen=x, circles=[{"square": "e4", "color": "red"}])
    doc.event("clear", 400, fen=x)
    doc.event("annotate", 500, fen=x, highlights=[{"square": "d5"}])
    doc.event("text", 600, fen=x, text="Central tension")
    graph = doc.graph()
    node = graph.nodes[x]
    path = path_to_node(graph, x)

    for t in (150, 250, 350, 450, 550, 650):
        playback = compute_state_at_time(graph, None, t)
        explore = compute_state_at_node(graph, node, path, t)
        assert playback.active_annotations == explore.active_annotations
        assert playback.active_text == explore.last_text_event
