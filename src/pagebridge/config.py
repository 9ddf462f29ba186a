"""
=============================================================================
BRIDGE CONFIGURATION
=============================================================================

Centralized configuration for the bridge and its front end.

One BridgeConfig is built at startup and handed to every component that
needs it (orchestrator, lock, lifecycle controller, launcher, server).
Nothing reads configuration from a module-level global.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m pagebridge serve --work-dir /run/pagebridge      │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── PAGEBRIDGE_WORK_DIR=/run/pagebridge python -m pagebridge   │
    │                                                                      │
    │   3. Default values (in this dataclass)                             │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
WORK ROOT LAYOUT
=============================================================================

    <work_dir>/
        sockets/<page-path>.sock    One Unix-domain socket per page worker
        cache/<page-path>.bin       Worker executables (built by build_command)
        global.lock                 Cross-process launch lock
        cleanup.sh                  Lines to run when the host server stops

=============================================================================
"""

import os
import shlex
from dataclasses import dataclass, field
from typing import List, Optional


DEFAULT_WORK_DIR = "/tmp/pagebridge"


@dataclass
class BridgeConfig:
    """
    Configuration for the page-worker bridge.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    LOCATIONS
    - work_dir, doc_root, page_suffix

    WORKER PROTOCOL
    - response_timeout, chunk_size, default_content_type

    LIFECYCLE
    - exit_wait, exit_poll_interval, lock_wait, launch_wait

    LAUNCHING
    - worker_command, build_command, user_id, group_id

    FRONT END
    - host, port, backlog, buffer_size, timeout, max_request_size,
      max_workers, log_level, server_name

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # LOCATIONS
    # ─────────────────────────────────────────────────────────────────────

    work_dir: str = DEFAULT_WORK_DIR
    """
    Root for every file the bridge creates. Must be absolute.
    Keep it short: Unix-domain socket paths are limited to ~107 bytes.
    """

    doc_root: str = "/var/www/html"
    """Directory the front end maps URL paths onto."""

    page_suffix: str = ".gosp"
    """Only files with this suffix are dispatched to workers."""

    # ─────────────────────────────────────────────────────────────────────
    # WORKER PROTOCOL
    # ─────────────────────────────────────────────────────────────────────

    response_timeout: float = 30.0
    """
    Seconds a single read from a worker may wait with no data.
    Workers that need longer send "keep-alive" heartbeat lines.
    """

    chunk_size: int = 1_000_000
    """Bytes requested per recv() while collecting a worker response."""

    default_content_type: str = "text/html"
    """Content type used when a worker does not send a mime-type line."""

    # ─────────────────────────────────────────────────────────────────────
    # LIFECYCLE
    # ─────────────────────────────────────────────────────────────────────

    exit_wait: float = 1.0
    """Seconds to wait for a worker to exit on its own before SIGKILL."""

    exit_poll_interval: float = 0.001
    """Sleep between liveness probes while waiting for a worker to exit."""

    lock_wait: Optional[float] = 5.0
    """
    Seconds to wait for the global lock.
    None = single non-blocking attempt.
    """

    launch_wait: float = 5.0
    """Seconds to wait for a freshly launched worker to create its socket."""

    # ─────────────────────────────────────────────────────────────────────
    # LAUNCHING
    # ─────────────────────────────────────────────────────────────────────

    worker_command: List[str] = field(
        default_factory=lambda: ["{executable}", "-socket", "{socket}"]
    )
    """
    argv template for starting a worker.
    Placeholders: {executable}, {socket}, {page}.
    """

    build_command: Optional[List[str]] = None
    """
    argv template that produces {executable} from {page}, or None if
    executables are provided some other way.
    """

    user_id: Optional[int] = None
    group_id: Optional[int] = None
    """Identity the collaborator should give to files it creates."""

    # ─────────────────────────────────────────────────────────────────────
    # FRONT END
    # ─────────────────────────────────────────────────────────────────────

    host: str = "127.0.0.1"
    port: int = 8080
    backlog: int = 128
    buffer_size: int = 8192
    timeout: Optional[float] = 30.0
    keep_alive: bool = True
    keep_alive_timeout: float = 5.0
    max_request_size: int = 10 * 1024 * 1024  # 10 MB
    max_workers: int = 16
    log_level: str = "INFO"
    server_name: str = "PageBridge/1.0"

    @classmethod
    def from_env(cls) -> "BridgeConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        PAGEBRIDGE_WORK_DIR          Work root (default: /tmp/pagebridge)
        PAGEBRIDGE_DOC_ROOT          Document root (default: /var/www/html)
        PAGEBRIDGE_HOST              Front-end host (default: 127.0.0.1)
        PAGEBRIDGE_PORT              Front-end port (default: 8080)
        PAGEBRIDGE_WORKERS           Front-end threads (default: 16)
        PAGEBRIDGE_RESPONSE_TIMEOUT  Worker read timeout (default: 30)
        PAGEBRIDGE_LOCK_WAIT         Lock wait in seconds, "none" to try once
        PAGEBRIDGE_WORKER_COMMAND    Shell-quoted worker argv template
        PAGEBRIDGE_BUILD_COMMAND     Shell-quoted build argv template
        PAGEBRIDGE_LOG_LEVEL         Logging level (default: INFO)

        =====================================================================
        """
        lock_wait_env = os.getenv("PAGEBRIDGE_LOCK_WAIT", "5")
        worker_command = os.getenv("PAGEBRIDGE_WORKER_COMMAND")
        build_command = os.getenv("PAGEBRIDGE_BUILD_COMMAND")

        config = cls(
            work_dir=os.getenv("PAGEBRIDGE_WORK_DIR", DEFAULT_WORK_DIR),
            doc_root=os.getenv("PAGEBRIDGE_DOC_ROOT", "/var/www/html"),
            host=os.getenv("PAGEBRIDGE_HOST", "127.0.0.1"),
            port=int(os.getenv("PAGEBRIDGE_PORT", "8080")),
            max_workers=int(os.getenv("PAGEBRIDGE_WORKERS", "16")),
            response_timeout=float(os.getenv("PAGEBRIDGE_RESPONSE_TIMEOUT", "30")),
            lock_wait=None if lock_wait_env.lower() == "none" else float(lock_wait_env),
            build_command=shlex.split(build_command) if build_command else None,
            log_level=os.getenv("PAGEBRIDGE_LOG_LEVEL", "INFO"),
        )
        if worker_command:
            config.worker_command = shlex.split(worker_command)
        return config

    def validate(self) -> None:
        """
        Validate configuration values.

        Called once at startup so a bad value fails immediately rather
        than on the first request that happens to need it.
        """
        if not os.path.isabs(self.work_dir):
            raise ValueError(f"work_dir must be an absolute path, not {self.work_dir!r}")

        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.response_timeout <= 0:
            raise ValueError("response_timeout must be > 0")

        if self.lock_wait is not None and self.lock_wait < 0:
            raise ValueError("lock_wait must be >= 0 or None")

        if self.exit_wait < 0 or self.exit_poll_interval <= 0:
            raise ValueError("exit_wait must be >= 0 and exit_poll_interval > 0")

        if self.chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")

        if self.max_workers < 1:
            raise ValueError("max_workers must be >= 1")

        if not self.worker_command:
            raise ValueError("worker_command must not be empty")
