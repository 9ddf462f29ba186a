"""
Unit tests for confined path building and filesystem helpers.
"""

import os
import time

import pytest

from pagebridge.paths import (
    PathBuilder,
    cleanup_path_for,
    concatenate_paths,
    executable_path_for,
    is_newer_than,
    lock_path_for,
    prepare_directory,
    socket_path_for,
)
from pagebridge.status import PathError, StatusOutcome


class TestConcatenatePaths:
    """Tests for concatenate_paths()."""

    def test_nests_absolute_page_path_under_root(self):
        """A leading slash on the segment is stripped, not honored."""
        assert concatenate_paths("/work", "/srv/www/a.gosp") == "/work/srv/www/a.gosp"

    def test_joins_multiple_segments(self):
        """Segments are merged one after another."""
        assert concatenate_paths("/work", "sockets", "/srv/a.gosp") == "/work/sockets/srv/a.gosp"

    def test_dotdot_that_stays_inside_is_allowed(self):
        """Climbing back within the root is fine."""
        assert concatenate_paths("/work", "a/b/../c") == "/work/a/c"

    def test_escape_is_rejected(self):
        """A segment that climbs above the root fails."""
        with pytest.raises(PathError):
            concatenate_paths("/work", "../etc/passwd")

    def test_transient_escape_is_rejected(self):
        """Leaving the root and coming back still fails."""
        with pytest.raises(PathError):
            concatenate_paths("/work", "a/../../work/x")

    def test_later_segment_confined_to_earlier_result(self):
        """Each segment is confined to everything merged before it."""
        with pytest.raises(PathError):
            concatenate_paths("/work", "sockets", "../global.lock")

    def test_relative_root_is_rejected(self):
        """The root must be absolute."""
        with pytest.raises(PathError):
            concatenate_paths("work", "a")

    def test_double_slash_segment_is_rejected(self):
        """Only one leading slash is stripped."""
        with pytest.raises(PathError):
            concatenate_paths("/work", "//etc/passwd")

    def test_nul_byte_is_rejected(self):
        """NUL bytes can't appear in a filesystem path."""
        with pytest.raises(PathError):
            concatenate_paths("/work", "a\0b")

    def test_error_outcome_is_fail(self):
        """Path errors are unrecoverable."""
        with pytest.raises(PathError) as excinfo:
            concatenate_paths("/work", "..")
        assert excinfo.value.outcome == StatusOutcome.FAIL


class TestPathBuilder:
    """Tests for PathBuilder."""

    def test_build_with_suffix(self):
        """The suffix is appended after confinement."""
        path = PathBuilder("/work").append("sockets").append("/a/b.gosp").build(".sock")
        assert path == "/work/sockets/a/b.gosp.sock"


class TestWellKnownPaths:
    """Tests for the socket, executable, lock and cleanup locations."""

    def test_socket_path(self):
        """Sockets live under sockets/ and end in .sock."""
        assert socket_path_for("/w", "/srv/p.gosp") == "/w/sockets/srv/p.gosp.sock"

    def test_socket_path_is_deterministic(self):
        """The same page always maps to the same socket."""
        assert socket_path_for("/w", "/srv/p.gosp") == socket_path_for("/w", "/srv/p.gosp")

    def test_socket_path_requires_page(self):
        """An empty page path has no socket."""
        with pytest.raises(PathError):
            socket_path_for("/w", "")

    def test_executable_path(self):
        """Executables live under cache/ and end in .bin."""
        assert executable_path_for("/w", "/srv/p.gosp") == "/w/cache/srv/p.gosp.bin"

    def test_lock_and_cleanup(self):
        """The lock and cleanup script sit at the top of the work root."""
        assert lock_path_for("/w") == "/w/global.lock"
        assert cleanup_path_for("/w") == "/w/cleanup.sh"


class TestPrepareDirectory:
    """Tests for prepare_directory()."""

    def test_creates_parent_of_file(self, work_dir):
        """The directory holding a file name is created."""
        target = os.path.join(work_dir, "a", "b", "file.sock")
        assert prepare_directory(target) == os.path.join(work_dir, "a", "b")
        assert os.path.isdir(os.path.join(work_dir, "a", "b"))

    def test_creates_directory_itself(self, work_dir):
        """With is_dir the last component is a directory too."""
        target = os.path.join(work_dir, "x", "y")
        prepare_directory(target, is_dir=True)
        assert os.path.isdir(target)

    def test_existing_directory_is_fine(self, work_dir):
        """Preparing twice is harmless."""
        target = os.path.join(work_dir, "f")
        prepare_directory(target)
        prepare_directory(target)

    def test_non_directory_in_the_way(self, work_dir):
        """A regular file where a directory should be fails."""
        blocker = os.path.join(work_dir, "blocker")
        open(blocker, "w").close()
        with pytest.raises(PathError):
            prepare_directory(os.path.join(blocker, "file"))


class TestIsNewerThan:
    """Tests for is_newer_than()."""

    def _touch(self, path, mtime):
        open(path, "w").close()
        os.utime(path, (mtime, mtime))

    def test_newer(self, work_dir):
        """A later mtime is newer."""
        a, b = os.path.join(work_dir, "a"), os.path.join(work_dir, "b")
        now = time.time()
        self._touch(a, now)
        self._touch(b, now - 100)
        assert is_newer_than(a, b) is True
        assert is_newer_than(b, a) is False

    def test_missing_second_is_not_newer(self, work_dir):
        """Nothing to be newer than."""
        a = os.path.join(work_dir, "a")
        self._touch(a, time.time())
        assert is_newer_than(a, os.path.join(work_dir, "missing")) is False

    def test_missing_first_fails(self, work_dir):
        """The first file must exist when the second does."""
        b = os.path.join(work_dir, "b")
        self._touch(b, time.time())
        with pytest.raises(PathError):
            is_newer_than(os.path.join(work_dir, "missing"), b)
