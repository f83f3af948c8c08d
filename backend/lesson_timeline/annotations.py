"""
Annotation normalization and overlay replay.

Playback (timeline scrubbing) and explore mode (single node) both replay
annotate/clear/text/pausepoint events through `OverlayReplay`, so the two
modes cannot drift apart visually.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from .config import config
from .models import AnnotateEvent, EventBase
from .timeline_types import ActiveAnnotation

logger = logging.getLogger(__name__)

OVERLAY_EVENT_TYPES = frozenset({"annotate", "clear", "text", "pausepoint"})


def _square_entry(kind: str, raw: Any, default_color: str) -> Optional[ActiveAnnotation]:
    # Old shape: "e4"; new shape: {"square": "e4", "color": "red"}
    if isinstance(raw, str) and raw:
        return ActiveAnnotation(type=kind, square=raw, color=default_color)
    if isinstance(raw, dict) and raw.get("square"):
        return ActiveAnnotation(type=kind, square=raw["square"], color=raw.get("color") or default_color)
    return None


def _arrow_entry(raw: Any, default_color: str) -> Optional[ActiveAnnotation]:
    # Old shape: ["e2", "e4"]; new shape: {"from": "e2", "to": "e4", "color": "green"}
    if isinstance(raw, (list, tuple)) and len(raw) >= 2 and raw[0] and raw[1]:
        return ActiveAnnotation(type="arrow", from_square=raw[0], to_square=raw[1], color=default_color)
    if isinstance(raw, dict) and raw.get("from") and raw.get("to"):
        return ActiveAnnotation(
            type="arrow", from_square=raw["from"], to_square=raw["to"], color=raw.get("color") or default_color
        )
    return None


def normalize_annotations(event: AnnotateEvent, default_color: Optional[str] = None) -> List[ActiveAnnotation]:
    """Flatten one annotate event into arrows, circles, then highlights; malformed entries are skipped."""
    color = default_color or config.DEFAULT_ANNOTATION_COLOR
    out: List[ActiveAnnotation] = []

    for raw in event.arrows or []:
        entry = _arrow_entry(raw, color)
        if entry is None:
            logger.warning(f"Skipping malformed arrow {raw!r} at t={event.t}")
            continue
        out.append(entry)

    for kind, items in (("circle", event.circles), ("highlight", event.highlights)):
        for raw in items or []:
            entry = _square_entry(kind, raw, color)
            if entry is None:
                logger.warning(f"Skipping malformed {kind} {raw!r} at t={event.t}")
                continue
            out.append(entry)

    return out


class OverlayReplay:
    """
    Running overlay state for one replay pass.

    - annotations accumulate until a `clear` event truncates them
    - only the most recent `text` is active
    - a pause point is active only within its trailing window
    """

    def __init__(self, time_ms: int, pause_window_ms: Optional[int] = None, default_color: Optional[str] = None):
        self.time_ms = time_ms
        self.pause_window_ms = config.get_pause_window(pause_window_ms)
        self.default_color = default_color or config.DEFAULT_ANNOTATION_COLOR
        self.annotations: List[ActiveAnnotation] = []
        self.text: Optional[str] = None
        self.is_paused = False
        self.pause_prompt: Optional[str] = None

    def apply(self, event: EventBase) -> None:
        kind = event.type
        if kind == "annotate":
            self.annotations.extend(normalize_annotations(event, self.default_color))
        elif kind == "clear":
            self.annotations = []
        elif kind == "text":
            self.text = event.text
        elif kind == "pausepoint":
            if event.t <= self.time_ms <= event.t + self.pause_window_ms:
                self.is_paused = True
                self.pause_prompt = event.prompt
        else:
            raise ValueError(f"Not an overlay event: {kind}")
