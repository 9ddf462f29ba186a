"""
=============================================================================
GLOBAL LOCK
=============================================================================

One mutex, shared by every thread of every front-end process on the host,
that serializes the "is the worker running? no, launch it" decision.

=============================================================================
TWO LAYERS
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   Thread 1 ─┐                                                        │
    │   Thread 2 ─┼──► threading.Lock ──┐                                 │
    │   Thread 3 ─┘    (this process)   │                                 │
    │                                   ├──► flock(<work>/global.lock)    │
    │   Process B ──► threading.Lock ───┘    (every process)              │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The in-process lock keeps threads of one process from sharing the file
descriptor of a held lock. The flock() layer does the cross-process part.

The lock file is opened on each acquire and closed on release. A
descriptor opened in a parent is therefore never carried into a forked
front-end process, and O_CLOEXEC keeps it out of launched workers.

=============================================================================
WAITING
=============================================================================

    lock_wait = None   one non-blocking attempt
    lock_wait = 2.5    retry LOCK_EX | LOCK_NB until 2.5 seconds have passed

Failing to get the lock is an error (LockError), never a silent proceed.

=============================================================================
"""

import fcntl
import logging
import os
import threading
import time
from typing import Optional

from .paths import lock_path_for, prepare_directory
from .status import LockError


logger = logging.getLogger(__name__)

RETRY_INTERVAL = 0.005


class GlobalLock:
    """
    Host-wide lock guarding worker launch and relaunch.

    Usage:
        lock = GlobalLock(config.work_dir, timeout=config.lock_wait)
        with lock:
            ...  # only one holder on the whole host

    Not reentrant.
    """

    def __init__(self, work_dir: str, timeout: Optional[float] = 5.0):
        self.path = lock_path_for(work_dir)
        self.timeout = timeout
        self._thread_lock = threading.Lock()
        self._fd: Optional[int] = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def _open(self) -> int:
        prepare_directory(self.path)
        try:
            return os.open(self.path, os.O_RDWR | os.O_CREAT | os.O_CLOEXEC, 0o644)
        except OSError as e:
            raise LockError(f"Failed to open lock file {self.path}: {e.strerror}", self.path) from e

    def acquire(self, timeout: Optional[float] = None) -> None:
        """
        Take the lock.

        Args:
            timeout: Seconds to keep trying. Defaults to the value given at
                     construction; None there means try exactly once.

        Raises:
            LockError: The lock could not be obtained in time, or the lock
                       file could not be opened.
        """
        wait = self.timeout if timeout is None else timeout
        deadline = None if wait is None else time.monotonic() + wait

        if wait is None:
            got_thread_lock = self._thread_lock.acquire(blocking=False)
        else:
            got_thread_lock = self._thread_lock.acquire(timeout=wait)
        if not got_thread_lock:
            logger.error(f"Failed to acquire global lock {self.path}: held by another thread")
            raise LockError(f"Timed out waiting for {self.path}", self.path)

        try:
            fd = self._open()
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if deadline is None or time.monotonic() >= deadline:
                        os.close(fd)
                        logger.error(f"Failed to acquire global lock {self.path}: held by another process")
                        raise LockError(f"Timed out waiting for {self.path}", self.path)
                    time.sleep(RETRY_INTERVAL)
                except OSError as e:
                    os.close(fd)
                    logger.error(f"Failed to acquire global lock {self.path}: {e.strerror}")
                    raise LockError(f"flock failed on {self.path}: {e.strerror}", self.path) from e
        except BaseException:
            self._thread_lock.release()
            raise

        self._fd = fd
        logger.debug(f"Acquired global lock {self.path}")

    def release(self) -> None:
        """
        Drop the lock.

        Raises:
            LockError: The lock was not held, or unlocking failed.
        """
        fd = self._fd
        if fd is None:
            raise LockError(f"Release of {self.path}, which is not held", self.path)
        self._fd = None
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        except OSError as e:
            logger.error(f"Failed to release global lock {self.path}: {e.strerror}")
            raise LockError(f"Unlock failed on {self.path}: {e.strerror}", self.path) from e
        finally:
            os.close(fd)
            self._thread_lock.release()
        logger.debug(f"Released global lock {self.path}")

    def __enter__(self) -> "GlobalLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False
