"""
=============================================================================
PATH SECURITY HELPER
=============================================================================

Every file the bridge names (worker sockets, the global lock, cached worker
executables, the cleanup script) lives under one work root. Page paths come
from client-visible URIs, so they are never glued onto the root with plain
string concatenation.

=============================================================================
SECURITY: PATH TRAVERSAL
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │  root     = /var/run/pagebridge                                     │
    │  segment  = ../../etc/passwd                                        │
    │                                                                      │
    │  Naive join:  /var/run/pagebridge/../../etc/passwd → /etc/passwd    │
    │                                                                      │
    │  concatenate_paths():                                               │
    │  1. Strip ONE leading "/" so an absolute page path nests under root │
    │  2. Walk the components, tracking depth below the current root     │
    │  3. Depth below zero at ANY point → PathError                       │
    └─────────────────────────────────────────────────────────────────────┘

Note that the check is done while walking, not after normalizing: the
segment "a/../../root/x" climbs above the root before coming back, and is
rejected even though os.path.normpath() would land back inside it.

The walk is purely lexical. Sockets do not exist yet when we name them, so
there is nothing to resolve() against.

=============================================================================
"""

import logging
import os
from typing import List, Optional

from .status import PathError


logger = logging.getLogger(__name__)


SOCKET_DIR = "sockets"
CACHE_DIR = "cache"
LOCK_NAME = "global.lock"
CLEANUP_NAME = "cleanup.sh"
SOCKET_SUFFIX = ".sock"
EXECUTABLE_SUFFIX = ".bin"


def _merge(root: str, segment: str) -> str:
    """Securely merge one segment onto an already-validated root."""
    if "\0" in segment:
        raise PathError(f"Path segment contains a NUL byte: {segment!r}", root)

    # A page's canonical path is absolute; nest it under the root.
    if segment.startswith("/"):
        segment = segment[1:]
    if os.path.isabs(segment):
        raise PathError(f"Refusing to merge absolute path {segment} onto {root}", root)

    parts: List[str] = []
    for component in segment.split("/"):
        if component in ("", "."):
            continue
        if component == "..":
            if not parts:
                raise PathError(f"Path {segment} escapes {root}", root)
            parts.pop()
            continue
        parts.append(component)

    if not parts:
        return root
    return os.path.join(root, *parts)


def concatenate_paths(root: str, *segments: str) -> str:
    """
    Join segments onto root, guaranteeing the result stays inside root.

    Each segment is merged onto the result of the previous merge, so later
    segments are confined to everything before them, not just to root.

    Args:
        root: Absolute directory everything must stay inside.
        *segments: Additional path segments, possibly client-influenced.

    Returns:
        The merged path.

    Raises:
        PathError: If root is not absolute or any segment escapes.
    """
    if not root or not os.path.isabs(root):
        raise PathError(f"Root directory must be an absolute path, not {root!r}", root)
    merged = os.path.normpath(root)
    for segment in segments:
        try:
            merged = _merge(merged, segment)
        except PathError:
            logger.error(f"Failed to securely merge {merged} and {segment}")
            raise
    return merged


class PathBuilder:
    """
    Ordered list of path segments that builds a single confined path.

        sock = (PathBuilder(config.work_dir)
            .append("sockets")
            .append(page_path)
            .build(suffix=".sock"))
    """

    def __init__(self, root: str):
        self.root = root
        self._segments: List[str] = []

    def append(self, segment: str) -> "PathBuilder":
        self._segments.append(segment)
        return self

    def build(self, suffix: str = "") -> str:
        return concatenate_paths(self.root, *self._segments) + suffix


# =============================================================================
# WELL-KNOWN LOCATIONS UNDER THE WORK ROOT
# =============================================================================

def socket_path_for(work_dir: str, page_path: str) -> str:
    """
    Name the Unix-domain socket of the worker that serves page_path.

    Pure function of (work_dir, page_path): every front-end thread or process
    asking about the same page computes the same socket, which is how
    concurrent requests converge on one worker.
    """
    if not page_path:
        raise PathError("Cannot derive a socket name from an empty page path", work_dir)
    return PathBuilder(work_dir).append(SOCKET_DIR).append(page_path).build(SOCKET_SUFFIX)


def executable_path_for(work_dir: str, page_path: str) -> str:
    """Name the cached worker executable built from page_path."""
    return PathBuilder(work_dir).append(CACHE_DIR).append(page_path).build(EXECUTABLE_SUFFIX)


def lock_path_for(work_dir: str) -> str:
    """Name the global lock file."""
    return concatenate_paths(work_dir, LOCK_NAME)


def cleanup_path_for(work_dir: str) -> str:
    """Name the cleanup script."""
    return concatenate_paths(work_dir, CLEANUP_NAME)


# =============================================================================
# FILESYSTEM HELPERS
# =============================================================================

def prepare_directory(path: str, is_dir: bool = False, mode: int = 0o755) -> str:
    """
    Create the directory hierarchy needed to hold path.

    Args:
        path: A file name, or a directory name if is_dir is True.
        is_dir: Whether the last component of path is itself a directory.
        mode: Permissions for newly created directories.

    Returns:
        The directory that now exists.

    Raises:
        PathError: If the directory cannot be created, or the name is
                   already taken by something that is not a directory.
    """
    dir_name = path if is_dir else os.path.dirname(path)
    if not os.path.exists(dir_name):
        logger.debug(f"Directory {dir_name} does not exist; creating it")
        try:
            os.makedirs(dir_name, mode=mode, exist_ok=True)
        except OSError as e:
            raise PathError(f"Failed to create directory {dir_name}: {e.strerror}", dir_name) from e
    if not os.path.isdir(dir_name):
        raise PathError(
            f"Failed to create directory {dir_name} because it already exists as a non-directory",
            dir_name,
        )
    return dir_name


def _mtime(path: str) -> Optional[float]:
    """Return path's modification time, or None if it does not exist."""
    try:
        return os.stat(path).st_mtime
    except FileNotFoundError:
        return None


def is_newer_than(first: str, second: str) -> bool:
    """
    Report whether first was modified more recently than second.

    Returns False if second does not exist (nothing to be newer than).

    Raises:
        PathError: If either file cannot be stat'ed for any other reason,
                   or if first does not exist.
    """
    try:
        second_mtime = _mtime(second)
    except OSError as e:
        raise PathError(f"Failed to stat {second}: {e.strerror}", second) from e
    if second_mtime is None:
        return False

    try:
        first_mtime = os.stat(first).st_mtime
    except OSError as e:
        raise PathError(f"Failed to stat {first}: {e.strerror}", first) from e
    return first_mtime > second_mtime
