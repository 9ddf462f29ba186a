"""
Unit tests for the worker socket connector.
"""

import os

import pytest

from pagebridge.status import BridgeError, StatusOutcome, WorkerNotRunning, WorkerTimeout
from pagebridge.worker.connector import (
    UNIX_PATH_MAX,
    WorkerConnectionState,
    connect_socket,
)
from pagebridge.worker.decoder import receive_response
from pagebridge.worker.messages import RequestContext, encode_request


def context_for(page: str) -> RequestContext:
    return RequestContext(
        local_hostname="localhost",
        query_args="a=1",
        path_info="",
        uri="/p.gosp",
        remote_hostname="127.0.0.1",
        page_path=page,
    )


class TestConnectSocket:
    """Tests for connect_socket()."""

    def test_no_socket_file(self, work_dir):
        """A missing socket means the worker needs launching."""
        with pytest.raises(WorkerNotRunning) as excinfo:
            connect_socket(os.path.join(work_dir, "nobody.sock"))
        assert excinfo.value.outcome == StatusOutcome.NEED_ACTION

    def test_stale_socket_file(self, work_dir, make_worker):
        """A socket file nobody listens on is the same as no worker."""
        path = os.path.join(work_dir, "stale.sock")
        worker = make_worker(path)
        worker._running = False
        worker._thread.join(timeout=2.0)
        assert os.path.exists(path)

        with pytest.raises(WorkerNotRunning):
            connect_socket(path)

    def test_path_too_long(self, work_dir):
        """Paths that don't fit in sun_path are a hard failure."""
        path = os.path.join(work_dir, "x" * UNIX_PATH_MAX + ".sock")
        with pytest.raises(BridgeError) as excinfo:
            connect_socket(path)
        assert not isinstance(excinfo.value, WorkerNotRunning)
        assert excinfo.value.outcome == StatusOutcome.FAIL

    def test_connects_to_listener(self, work_dir, make_worker):
        """A listening worker yields an open connection."""
        path = os.path.join(work_dir, "w.sock")
        make_worker(path)

        connection = connect_socket(path)
        assert connection.state == WorkerConnectionState.CONNECTED
        connection.close()
        assert connection.state == WorkerConnectionState.CLOSED


class TestWorkerConnection:
    """Tests for one request/response exchange."""

    def test_round_trip(self, work_dir, make_worker):
        """The worker sees the message and the reply is read to EOF."""
        path = os.path.join(work_dir, "w.sock")
        reply = b"http-status 200\nend-header\n" + b"x" * 50_000
        worker = make_worker(path, reply=reply)

        with connect_socket(path, chunk_size=4096) as connection:
            connection.send(encode_request(context_for("/srv/p.gosp")))
            assert connection.state == WorkerConnectionState.SENT
            data = receive_response(connection, timeout=2.0)
            assert connection.state == WorkerConnectionState.RECEIVED

        assert data == reply
        assert worker.requests[0]["QueryArgs"] == "a=1"
        assert worker.requests[0]["Uri"] == "/p.gosp"

    def test_silent_worker_times_out(self, work_dir, make_worker):
        """A worker that goes quiet raises WorkerTimeout (NEED_ACTION)."""
        path = os.path.join(work_dir, "w.sock")
        make_worker(path, hang=True)

        with connect_socket(path) as connection:
            connection.send(encode_request(context_for("/srv/p.gosp")))
            with pytest.raises(WorkerTimeout) as excinfo:
                connection.read_until_eof(timeout=0.1)

        assert excinfo.value.outcome == StatusOutcome.NEED_ACTION

    def test_close_is_idempotent(self, work_dir, make_worker):
        """Closing twice is harmless."""
        path = os.path.join(work_dir, "w.sock")
        make_worker(path)

        connection = connect_socket(path)
        connection.close()
        connection.close()
        assert connection.state == WorkerConnectionState.CLOSED
