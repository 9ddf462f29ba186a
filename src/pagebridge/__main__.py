"""
=============================================================================
PAGEBRIDGE CLI ENTRY POINT
=============================================================================

    python -m pagebridge serve
    python -m pagebridge serve --port 3000 --doc-root /srv/www
    python -m pagebridge stop /srv/www/blog/index.gosp
    python -m pagebridge socket /srv/www/blog/index.gosp

Configuration comes from PAGEBRIDGE_* environment variables first (see
BridgeConfig.from_env), then command-line flags override them.

    serve    Run the HTTP front end.
    stop     Ask one page's worker to exit, SIGKILL it if it won't.
             Exit status 0 if the worker is gone, 1 otherwise.
    socket   Print the Unix-domain socket path a page's worker listens on.

=============================================================================
"""

import argparse
import logging
import os
import sys
from typing import Optional

from . import __version__
from .config import BridgeConfig
from .lifecycle import WorkerLifecycle
from .locking import GlobalLock
from .paths import socket_path_for
from .server import BridgeServer
from .status import BridgeError, StatusOutcome


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pagebridge",
        description="HTTP front end that serves pages through per-page worker processes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m pagebridge serve                          # Run with defaults
  python -m pagebridge serve --port 3000              # Custom port
  python -m pagebridge stop /srv/www/index.gosp       # Stop one worker
  python -m pagebridge socket /srv/www/index.gosp     # Where it listens
        """
    )
    parser.add_argument(
        "--work-dir",
        default=None,
        help="Directory for sockets, lock and cleanup script (default: $PAGEBRIDGE_WORK_DIR or /tmp/pagebridge)"
    )
    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Logging level (default: INFO)"
    )
    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"pagebridge {__version__}"
    )

    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the HTTP front end")
    serve.add_argument("--host", "-H", default=None, help="Host to bind to (default: 127.0.0.1)")
    serve.add_argument("--port", "-p", type=int, default=None, help="Port to listen on (default: 8080)")
    serve.add_argument("--workers", "-w", type=int, default=None, help="Request-handling threads (default: 16)")
    serve.add_argument("--doc-root", "-d", default=None, help="Directory URL paths map onto")

    stop = commands.add_parser("stop", help="Terminate the worker serving a page")
    stop.add_argument("page", help="Path of the page file")

    socket_cmd = commands.add_parser("socket", help="Print the socket path for a page")
    socket_cmd.add_argument("page", help="Path of the page file")

    return parser


def _config_from_args(args: argparse.Namespace) -> BridgeConfig:
    config = BridgeConfig.from_env()
    if args.work_dir:
        config.work_dir = os.path.abspath(args.work_dir)
    if args.log_level:
        config.log_level = args.log_level
    if args.command == "serve":
        if args.host:
            config.host = args.host
        if args.port is not None:
            config.port = args.port
        if args.workers:
            config.max_workers = args.workers
        if args.doc_root:
            config.doc_root = args.doc_root
    config.validate()
    return config


def _stop(config: BridgeConfig, page: str) -> int:
    lifecycle = WorkerLifecycle(config)
    handle = lifecycle.handle_for(os.path.realpath(page))
    lock = GlobalLock(config.work_dir, timeout=config.lock_wait)
    with lock:
        outcome = lifecycle.terminate(handle)
    if outcome != StatusOutcome.OK:
        print(f"Failed to stop the worker for {handle.page_path}", file=sys.stderr)
        return 1
    if handle.pid is None:
        print(f"No worker running for {handle.page_path}")
    else:
        print(f"Stopped worker {handle.pid} for {handle.page_path}")
    return 0


def main(argv: Optional[list] = None) -> int:
    args = _build_parser().parse_args(argv)

    try:
        config = _config_from_args(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        if args.command == "socket":
            print(socket_path_for(config.work_dir, os.path.realpath(args.page)))
            return 0
        if args.command == "stop":
            return _stop(config, args.page)
        BridgeServer(config).run()
        return 0
    except BridgeError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
