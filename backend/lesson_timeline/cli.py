import argparse
import json
import logging
import sys
from typing import List, Optional

from .config import config
from .errors import LessonError
from .graph_traversal import analyze_graph, get_mainline_path
from .mainline import calculate_dynamic_mainline_path, calculate_mainline_path
from .models import read_move_graph
from .move_index import build_move_index
from .timeline import compute_state_at_time

logger = logging.getLogger(__name__)


def _print(data) -> None:
    print(json.dumps(data, indent=2))


def cmd_inspect(args) -> int:
    graph = read_move_graph(args.file)
    _print({
        "lesson_id": graph.meta.id,
        "title": graph.meta.title,
        "stats": analyze_graph(graph).to_dict(),
        "mainline": get_mainline_path(graph).to_dict(),
    })
    return 0


def cmd_index(args) -> int:
    graph = read_move_graph(args.file)
    _print([entry.to_dict() for entry in build_move_index(graph)])
    return 0


def cmd_state(args) -> int:
    graph = read_move_graph(args.file)
    state = compute_state_at_time(graph, None, args.t, args.pause_window_ms)
    _print(state.to_dict())
    return 0


def cmd_mainline(args) -> int:
    graph = read_move_graph(args.file)
    if args.t is None:
        path = calculate_mainline_path(graph)
    else:
        path = calculate_dynamic_mainline_path(graph, args.t)
    _print(path.to_dict())
    return 0


def cmd_serve(args) -> int:
    import uvicorn

    uvicorn.run("lesson_timeline.api:app", host=args.host, port=args.port, log_level=config.LOG_LEVEL.lower())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lesson-timeline", description="Chess lesson timeline tools")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("inspect", help="Graph statistics and static mainline")
    p.add_argument("file", help="CMF lesson JSON")
    p.set_defaults(func=cmd_inspect)

    p = sub.add_parser("index", help="Mainline move index")
    p.add_argument("file", help="CMF lesson JSON")
    p.set_defaults(func=cmd_index)

    p = sub.add_parser("state", help="Timeline state at a playback position")
    p.add_argument("file", help="CMF lesson JSON")
    p.add_argument("--t", type=int, required=True, help="Playback position in ms")
    p.add_argument("--pause-window-ms", type=int, default=None, help="Pause indicator window")
    p.set_defaults(func=cmd_state)

    p = sub.add_parser("mainline", help="Time-weighted mainline (dynamic with --t)")
    p.add_argument("file", help="CMF lesson JSON")
    p.add_argument("--t", type=int, default=None, help="Playback position in ms")
    p.set_defaults(func=cmd_mainline)

    p = sub.add_parser("serve", help="Run the playback service")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8000)
    p.set_defaults(func=cmd_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format='%(asctime)s - %(levelname)s - %(message)s',
    )
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except OSError as e:
        logger.error(f"Cannot read {getattr(args, 'file', '?')}: {e}")
        return 2
    except LessonError as e:
        logger.error(f"{e.error_code.code}: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
