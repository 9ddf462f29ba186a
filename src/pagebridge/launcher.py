"""
=============================================================================
WORKER LAUNCHER
=============================================================================

Makes sure a page has a running worker. The orchestrator calls this, with
the global lock held, when connecting to a page's socket found nobody home.

=============================================================================
LAUNCH STEPS
=============================================================================

    ensure_page_worker_built("/srv/www/blog.gosp")
        │
        ├── 1. executable = <work>/cache/srv/www/blog.gosp.bin
        │
        ├── 2. build_command set and executable missing or stale?
        │         └── stop the old worker, run build_command
        │
        ├── 3. worker already answering?  ──► OK
        │
        ├── 4. remove stale socket file, spawn worker_command
        │       (new session, stdin/stdout/stderr detached)
        │
        ├── 5. append "rm -f <socket>" to the cleanup script
        │
        └── 6. wait up to launch_wait:
                  socket accepts connections ──► OK
                  child exited              ──► FAIL
                  time ran out              ──► FAIL

=============================================================================
COMMAND TEMPLATES
=============================================================================

worker_command and build_command are argv lists. Each element may use the
placeholders {executable}, {socket} and {page}:

    worker_command = ["{executable}", "-socket", "{socket}"]
    build_command  = ["gosp-build", "--output", "{executable}", "{page}"]

No shell is involved, so page paths never need quoting.

=============================================================================
"""

import logging
import os
import shlex
import subprocess
import threading
import time
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from .config import BridgeConfig
from .lifecycle import WorkerLifecycle
from .paths import (
    cleanup_path_for,
    executable_path_for,
    is_newer_than,
    prepare_directory,
    socket_path_for,
)
from .status import BridgeError, StatusOutcome, WorkerUnavailable
from .worker.connector import connect_socket


logger = logging.getLogger(__name__)

LAUNCH_POLL_INTERVAL = 0.01


class PageWorkerBuilder(ABC):
    """Collaborator that brings a page's worker into existence."""

    @abstractmethod
    def ensure_page_worker_built(self, page_path: str) -> StatusOutcome:
        """
        Make sure a worker for page_path is running.

        Called with the global lock held.

        Returns:
            OK if a worker should now be answering, FAIL otherwise.
        """
        ...


class CleanupScript:
    """
    Shell script of commands to run when the host server shuts down.

    Callers must hold the global lock: appends from several processes are
    not otherwise ordered.
    """

    def __init__(self, path: str):
        self.path = path

    def append(self, text: str) -> None:
        """
        Append text (already formatted, newline included) to the script.

        Raises:
            BridgeError: The script could not be written.
        """
        try:
            prepare_directory(self.path)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(text)
        except OSError as e:
            logger.critical(f"Failed to write {len(text)} bytes to the cleanup script {self.path}: {e}")
            raise BridgeError(f"Cannot append to {self.path}: {e}", self.path) from e

    def read(self) -> str:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return f.read()
        except FileNotFoundError:
            return ""


def _expand(template: List[str], values: Dict[str, str]) -> List[str]:
    try:
        return [arg.format_map(values) for arg in template]
    except (KeyError, ValueError, IndexError) as e:
        raise BridgeError(f"Bad command template {template!r}: {e}") from e


def _worker_answers(socket_path: str) -> bool:
    try:
        connection = connect_socket(socket_path)
    except WorkerUnavailable:
        return False
    connection.close()
    return True


class WorkerLauncher(PageWorkerBuilder):
    """
    Default PageWorkerBuilder: optional build step, then spawn a process.

    Args:
        config: Work root, command templates and launch_wait.
        lifecycle: Used to stop a worker whose executable is being rebuilt.
    """

    def __init__(self, config: BridgeConfig, lifecycle: Optional[WorkerLifecycle] = None):
        self.config = config
        self.lifecycle = lifecycle or WorkerLifecycle(config)
        self.cleanup = CleanupScript(cleanup_path_for(config.work_dir))

    def ensure_page_worker_built(self, page_path: str) -> StatusOutcome:
        try:
            return self._ensure(page_path)
        except BridgeError as e:
            logger.error(f"Failed to launch a worker for {page_path}: {e}")
            return StatusOutcome.FAIL

    def _ensure(self, page_path: str) -> StatusOutcome:
        socket_path = socket_path_for(self.config.work_dir, page_path)
        executable = executable_path_for(self.config.work_dir, page_path)
        values = {"executable": executable, "socket": socket_path, "page": page_path}

        # ─────────────────────────────────────────────────────────────────
        # STEP 1-2: Rebuild if the page changed
        # ─────────────────────────────────────────────────────────────────
        if self.config.build_command and self._needs_build(page_path, executable):
            if self.lifecycle.terminate_page(page_path) != StatusOutcome.OK:
                logger.error(f"Failed to stop the old worker for {page_path} before rebuilding")
                return StatusOutcome.FAIL
            self._build(_expand(self.config.build_command, values), executable)

        # ─────────────────────────────────────────────────────────────────
        # STEP 3: Someone else may have launched it already
        # ─────────────────────────────────────────────────────────────────
        if _worker_answers(socket_path):
            logger.debug(f"Worker for {page_path} is already running")
            return StatusOutcome.OK

        # ─────────────────────────────────────────────────────────────────
        # STEP 4-5: Spawn and register for cleanup
        # ─────────────────────────────────────────────────────────────────
        prepare_directory(socket_path)
        self._remove_stale_socket(socket_path)
        process = self._spawn(_expand(self.config.worker_command, values), page_path)
        self.cleanup.append(f"rm -f {shlex.quote(socket_path)}\n")

        # ─────────────────────────────────────────────────────────────────
        # STEP 6: Wait for it to start listening
        # ─────────────────────────────────────────────────────────────────
        return self._wait_for_socket(process, socket_path, page_path)

    def _needs_build(self, page_path: str, executable: str) -> bool:
        if not os.path.exists(executable):
            return True
        return is_newer_than(page_path, executable)

    def _build(self, argv: List[str], executable: str) -> None:
        prepare_directory(executable)
        logger.info(f"Building {executable}: {' '.join(shlex.quote(a) for a in argv)}")
        try:
            result = subprocess.run(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            )
        except OSError as e:
            raise BridgeError(f"Failed to run {argv[0]}: {e}", executable) from e
        if result.returncode != 0:
            output = result.stdout.decode("utf-8", errors="replace").strip()
            raise BridgeError(
                f"{argv[0]} exited with code {result.returncode}: {output[-500:]}", executable
            )

    def _remove_stale_socket(self, socket_path: str) -> None:
        try:
            os.unlink(socket_path)
        except FileNotFoundError:
            return
        except OSError as e:
            raise BridgeError(f"Failed to remove stale socket {socket_path}: {e}", socket_path) from e
        logger.debug(f"Removed stale socket {socket_path}")

    def _spawn(self, argv: List[str], page_path: str) -> subprocess.Popen:
        try:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            raise BridgeError(f"Failed to start {argv[0]}: {e}", page_path) from e

        # Reap the child whenever it exits so it never lingers as a zombie.
        threading.Thread(target=process.wait, daemon=True).start()
        logger.info(f"Launched worker {process.pid} for {page_path}")
        return process

    def _wait_for_socket(self, process: subprocess.Popen, socket_path: str, page_path: str) -> StatusOutcome:
        deadline = time.monotonic() + self.config.launch_wait
        while True:
            if os.path.exists(socket_path) and _worker_answers(socket_path):
                return StatusOutcome.OK
            if process.returncode is not None:
                logger.error(
                    f"Worker {process.pid} for {page_path} exited with code "
                    f"{process.returncode} before listening on {socket_path}"
                )
                return StatusOutcome.FAIL
            if time.monotonic() >= deadline:
                logger.error(
                    f"Worker {process.pid} for {page_path} did not listen on "
                    f"{socket_path} within {self.config.launch_wait}s"
                )
                return StatusOutcome.FAIL
            time.sleep(LAUNCH_POLL_INTERVAL)
