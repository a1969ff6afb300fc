from __future__ import annotations

import argparse
import logging
import sys

from mediaoffload.core.config import get_settings
from mediaoffload.core.logging import configure_logging
from mediaoffload.db.init_db import initialize_database

logger = logging.getLogger("mediaoffload.worker")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="mediaoffload.worker", description="Bulk media offload worker")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Process queued offload runs until stopped")
    run_parser.add_argument("--once", action="store_true", help="Drain the current run once and exit")
    run_parser.add_argument("--max-ticks", type=int, default=None, help="Stop after this many ticks (with --once)")

    subparsers.add_parser("check-stalled", help="Recover a stalled run once and exit")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP control surface")
    serve_parser.add_argument("--host", default=None, help="Host to bind to (default: settings.api_host)")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to bind to (default: settings.api_port)")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = get_settings()
    configure_logging(settings.log_level)

    if args.command == "serve":
        import uvicorn

        uvicorn.run(
            "mediaoffload.api.app:create_app",
            factory=True,
            host=args.host or settings.api_host,
            port=args.port or settings.api_port,
        )
        return 0

    initialize_database()
    from mediaoffload.worker.pipeline import run_stall_check, run_worker_loop, run_worker_once

    if args.command == "check-stalled":
        result = run_stall_check(settings)
        print("recovered" if result.recovered else "ok")
        return 0

    if args.once:
        results = run_worker_once(settings=settings, max_ticks=args.max_ticks)
        outcome = results[-1].outcome.value if results else "idle"
        print(f"ticks={len(results)} outcome={outcome}")
        return 0

    try:
        run_worker_loop(settings=settings)
    except KeyboardInterrupt:
        logger.info("Worker interrupted, exiting")
    return 0


if __name__ == "__main__":
    sys.exit(main())
