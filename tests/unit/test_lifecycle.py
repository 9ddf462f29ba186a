"""
Unit tests for stopping page workers.
"""

import os

import pytest

from pagebridge.lifecycle import (
    PosixProcessProbe,
    WorkerLifecycle,
    parse_pid_reply,
    process_exists,
)
from pagebridge.status import ProtocolError, StatusOutcome


PAGE = "/srv/www/index.gosp"


class TestParsePidReply:
    """Tests for parse_pid_reply()."""

    @pytest.mark.parametrize("data, pid", [
        (b"gosp-pid 1234\n", 1234),
        (b"gosp-pid 1234", 1234),
        (b"gosp-pid 1", 1),
    ])
    def test_valid(self, data, pid):
        """The PID follows "gosp-pid "; the newline is optional."""
        assert parse_pid_reply(data) == pid

    @pytest.mark.parametrize("data", [
        b"",
        b"gosp-pid\n",
        b"gosp-pid 0\n",
        b"gosp-pid -5\n",
        b"gosp-pid 12 extra\n",
        b"pid 12\n",
        b"gosp-pid 12\n\n",
        b"gosp-pid \xff\n",
        b"gosp-pid " + b"1" * 5000 + b"\n",
    ])
    def test_invalid(self, data):
        """Anything else is a protocol error."""
        with pytest.raises(ProtocolError):
            parse_pid_reply(data)


class TestProcessProbe:
    """Tests for the kill(2)-backed probe."""

    def test_own_process_exists(self):
        """The test process is alive."""
        assert process_exists(os.getpid()) is True
        assert PosixProcessProbe().exists(os.getpid()) is True


class TestTerminate:
    """Tests for WorkerLifecycle.terminate()."""

    def test_no_worker_is_ok(self, config, make_probe):
        """Nothing listening means nothing to stop."""
        probe = make_probe()
        lifecycle = WorkerLifecycle(config, probe)
        handle = lifecycle.handle_for(PAGE)

        assert lifecycle.terminate(handle) == StatusOutcome.OK
        assert handle.pid is None
        assert probe.killed == []

    def test_worker_exits_on_request(self, config, make_probe, fake_worker_factory):
        """A worker that leaves in time is not killed."""
        worker = fake_worker_factory(PAGE, pid=5151)
        probe = make_probe(alive_for=0.05)
        lifecycle = WorkerLifecycle(config, probe)
        handle = lifecycle.handle_for(PAGE)

        assert lifecycle.terminate(handle) == StatusOutcome.OK
        assert handle.pid == 5151
        assert worker.requests == [{"ExitNow": "true"}]
        assert probe.killed == []
        assert 5151 in probe.checked

    def test_stubborn_worker_is_killed_once(self, config, make_probe, fake_worker_factory):
        """After exit_wait the worker gets exactly one SIGKILL."""
        fake_worker_factory(PAGE, pid=5151)
        probe = make_probe(alive_for=60.0)
        lifecycle = WorkerLifecycle(config, probe)

        assert lifecycle.terminate_page(PAGE) == StatusOutcome.OK
        assert probe.killed == [5151]

    def test_kill_refused(self, config, make_probe, fake_worker_factory):
        """A kill that can't be delivered fails."""
        fake_worker_factory(PAGE)
        probe = make_probe(alive_for=60.0, kill_error=PermissionError(1, "Operation not permitted"))
        lifecycle = WorkerLifecycle(config, probe)

        assert lifecycle.terminate_page(PAGE) == StatusOutcome.FAIL

    def test_kill_after_exit_is_ok(self, config, make_probe, fake_worker_factory):
        """The worker vanishing just before the kill is success."""
        fake_worker_factory(PAGE)
        probe = make_probe(alive_for=60.0, kill_error=ProcessLookupError(3, "No such process"))
        lifecycle = WorkerLifecycle(config, probe)

        assert lifecycle.terminate_page(PAGE) == StatusOutcome.OK

    @pytest.mark.parametrize("reply", [b"bye\n", b"gosp-pid 0\n", b""])
    def test_bad_pid_reply(self, config, make_probe, fake_worker_factory, reply):
        """Without a valid PID the worker can't be stopped."""
        fake_worker_factory(PAGE, exit_reply=reply)
        probe = make_probe()
        lifecycle = WorkerLifecycle(config, probe)
        handle = lifecycle.handle_for(PAGE)

        assert lifecycle.terminate(handle) == StatusOutcome.FAIL
        assert handle.pid is None
        assert probe.killed == []

    def test_empty_page_path(self, config, make_probe):
        """A page with no socket location fails."""
        lifecycle = WorkerLifecycle(config, make_probe())
        assert lifecycle.terminate_page("") == StatusOutcome.FAIL
