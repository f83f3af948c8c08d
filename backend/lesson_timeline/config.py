"""
Configuration for lesson timeline playback.
Centralized configuration with environment variable support.
"""

import os
from typing import List, Optional, Sequence

from dotenv import load_dotenv

load_dotenv()

SCHEMA_VERSION = "cmf.v0.0.1"

STARTING_FEN = "rnbqkbnr/pppppppp/8/8/8/8/PPPPPPPP/RNBQKBNR w KQkq - 0 1"

# Keys accepted in the mainline tie-break chain
TIEBREAK_KEYS = ("audio_time", "event_count", "path_length")


def parse_tiebreak(raw: str) -> List[str]:
    """Parse a comma-separated tie-break chain, rejecting unknown keys."""
    keys = [k.strip() for k in (raw or "").split(",") if k.strip()]
    unknown = [k for k in keys if k not in TIEBREAK_KEYS]
    if unknown:
        raise ValueError(f"Unknown mainline tie-break keys: {unknown}")
    if len(set(keys)) != len(keys):
        raise ValueError(f"Duplicate mainline tie-break keys: {keys}")
    return keys or list(TIEBREAK_KEYS)


class TimelineConfig:
    """Configuration for timeline reconciliation and graph traversal"""

    # How long a pause point keeps the player paused after its own timestamp
    PAUSE_WINDOW_MS: int = int(os.getenv("LESSON_PAUSE_WINDOW_MS", "500"))

    # Recursion bound for path enumeration on malformed (cyclic) documents
    MAX_TRAVERSAL_DEPTH: int = int(os.getenv("LESSON_MAX_TRAVERSAL_DEPTH", "100"))

    DEFAULT_ANNOTATION_COLOR: str = os.getenv("LESSON_DEFAULT_ANNOTATION_COLOR", "yellow")

    # Static mainline scoring: audio time, then event count, then path length
    MAINLINE_TIEBREAK: List[str] = parse_tiebreak(
        os.getenv("LESSON_MAINLINE_TIEBREAK", ",".join(TIEBREAK_KEYS))
    )

    # In-memory lesson store (30 minutes)
    STORE_TTL_SECONDS: float = float(os.getenv("LESSON_STORE_TTL_SECONDS", str(30 * 60)))

    LOG_LEVEL: str = os.getenv("LESSON_LOG_LEVEL", "INFO").upper()

    # Comma-separated origins allowed by the playback service
    CORS_ORIGINS: List[str] = [
        o.strip() for o in os.getenv("LESSON_CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()
    ]

    @classmethod
    def get_pause_window(cls, override: Optional[int] = None) -> int:
        """Pause window with priority: caller override > env/default"""
        if override is not None:
            return max(0, int(override))
        return cls.PAUSE_WINDOW_MS

    @classmethod
    def get_tiebreak(cls, override: Optional[Sequence[str]] = None) -> List[str]:
        if override is not None:
            return parse_tiebreak(",".join(override))
        return list(cls.MAINLINE_TIEBREAK)


# Global config instance
config = TimelineConfig()
