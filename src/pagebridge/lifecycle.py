"""
=============================================================================
WORKER LIFECYCLE CONTROLLER
=============================================================================

Graceful-then-forced shutdown of one page worker.

=============================================================================
TERMINATION SEQUENCE
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   1. connect(socket) ──── fails ──► OK (nothing to stop)            │
    │          │                                                           │
    │   2. send {"ExitNow": "true"}                                       │
    │          │                                                           │
    │   3. read reply ──► must be "gosp-pid <N>", N > 0, else FAIL        │
    │          │                                                           │
    │   4. close connection                                               │
    │          │                                                           │
    │   5. poll pid every exit_poll_interval, up to exit_wait             │
    │          ├── gone ──► OK                                            │
    │          │                                                           │
    │   6. SIGKILL ──── delivered (or already gone) ──► OK                │
    │                   refused ──► FAIL                                  │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

At most one SIGKILL is ever sent per call. The caller is expected to hold
the global lock so a concurrent launch cannot race the shutdown.

=============================================================================
"""

import errno
import logging
import os
import re
import signal
import time
from abc import ABC, abstractmethod

from .config import BridgeConfig
from .paths import socket_path_for
from .status import BridgeError, ProtocolError, StatusOutcome, WorkerUnavailable
from .worker.connector import WorkerHandle, connect_socket
from .worker.messages import encode_termination


logger = logging.getLogger(__name__)

PID_REPLY = re.compile(r"gosp-pid (\d{1,10})\n?")


class ProcessProbe(ABC):
    """Liveness check and forced kill, kept apart so tests can fake them."""

    @abstractmethod
    def exists(self, pid: int) -> bool:
        """Return True while a process with this PID exists."""
        ...

    @abstractmethod
    def kill(self, pid: int) -> None:
        """
        Forcibly terminate pid.

        Raises:
            OSError: The signal could not be delivered.
        """
        ...


class PosixProcessProbe(ProcessProbe):
    """Probe backed by kill(2)."""

    def exists(self, pid: int) -> bool:
        return process_exists(pid)

    def kill(self, pid: int) -> None:
        os.kill(pid, signal.SIGKILL)


def process_exists(pid: int) -> bool:
    """Check for a process by sending it signal 0."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, but belongs to someone else.
        return True
    return True


def parse_pid_reply(data: bytes) -> int:
    """
    Extract the PID from a worker's reply to a termination request.

    Raises:
        ProtocolError: The reply is not "gosp-pid <N>" with N > 0.
    """
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ProtocolError(f"PID reply is not valid UTF-8: {data[:80]!r}") from e
    match = PID_REPLY.fullmatch(text)
    if match is None:
        raise ProtocolError(f"Unexpected reply to termination request: {text[:80]!r}")
    pid = int(match.group(1))
    if pid <= 0:
        raise ProtocolError(f"Worker reported an invalid PID {pid}")
    return pid


class WorkerLifecycle:
    """
    Stops page workers.

    Args:
        config: Supplies response_timeout, exit_wait and exit_poll_interval.
        probe: How to look for and kill processes (PosixProcessProbe by default).
    """

    def __init__(self, config: BridgeConfig, probe: ProcessProbe = None):
        self.config = config
        self.probe = probe or PosixProcessProbe()

    def handle_for(self, page_path: str) -> WorkerHandle:
        return WorkerHandle(
            socket_path=socket_path_for(self.config.work_dir, page_path),
            page_path=page_path,
        )

    def terminate_page(self, page_path: str) -> StatusOutcome:
        """Stop the worker serving page_path."""
        try:
            handle = self.handle_for(page_path)
        except BridgeError as e:
            return e.outcome
        return self.terminate(handle)

    def terminate(self, handle: WorkerHandle) -> StatusOutcome:
        """
        Ask the worker behind handle to exit, and kill it if it doesn't.

        Returns:
            OK if the worker is gone (or was never running), FAIL otherwise.
            On success handle.pid holds the PID the worker reported.
        """
        # ─────────────────────────────────────────────────────────────────
        # STEP 1: Connect. No listener means nothing to stop.
        # ─────────────────────────────────────────────────────────────────
        try:
            connection = connect_socket(handle.socket_path, self.config.chunk_size)
        except WorkerUnavailable:
            logger.debug(f"No worker on {handle.socket_path}; nothing to terminate")
            return StatusOutcome.OK
        except BridgeError as e:
            return e.outcome

        # ─────────────────────────────────────────────────────────────────
        # STEP 2-4: Ask it to exit and learn its PID
        # ─────────────────────────────────────────────────────────────────
        with connection:
            try:
                connection.send(encode_termination())
                logger.info(f"Sent termination request to {handle.socket_path}")
                reply = connection.read_until_eof(self.config.response_timeout)
                pid = parse_pid_reply(reply)
            except BridgeError as e:
                # Timeouts included: a worker that won't report its PID can't be stopped.
                logger.error(f"Failed to terminate the worker on {handle.socket_path}: {e}")
                return StatusOutcome.FAIL

        handle.pid = pid

        # ─────────────────────────────────────────────────────────────────
        # STEP 5: Give it exit_wait seconds to leave on its own
        # ─────────────────────────────────────────────────────────────────
        if self._wait_for_exit(pid):
            logger.debug(f"Worker {pid} on {handle.socket_path} exited")
            return StatusOutcome.OK

        # ─────────────────────────────────────────────────────────────────
        # STEP 6: Force it
        # ─────────────────────────────────────────────────────────────────
        logger.info(f"Worker {pid} did not exit within {self.config.exit_wait}s; sending SIGKILL")
        try:
            self.probe.kill(pid)
        except ProcessLookupError:
            return StatusOutcome.OK
        except OSError as e:
            logger.critical(
                f"Failed to kill process {pid} ({handle.socket_path}): "
                f"{e.strerror or errno.errorcode.get(e.errno, e)}"
            )
            return StatusOutcome.FAIL
        return StatusOutcome.OK

    def _wait_for_exit(self, pid: int) -> bool:
        deadline = time.monotonic() + self.config.exit_wait
        while True:
            if not self.probe.exists(pid):
                return True
            if time.monotonic() >= deadline:
                return False
            time.sleep(self.config.exit_poll_interval)
