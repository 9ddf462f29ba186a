"""
pytest configuration and fixtures.
"""

import json
import os
import shutil
import socket
import sys
import tempfile
import threading
import time
from typing import Generator, List, Optional

import pytest

from pagebridge import BridgeConfig
from pagebridge.paths import prepare_directory, socket_path_for
from pagebridge.status import StatusOutcome


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request for a page with path info."""
    return (
        b"GET /blog/index.gosp/2024/05?page=2&tag=a%20b HTTP/1.1\r\n"
        b"Host: www.example.com:8080\r\n"
        b"User-Agent: pytest\r\n"
        b"Connection: keep-alive\r\n"
        b"\r\n"
    )


@pytest.fixture
def sample_post_request() -> bytes:
    """Sample HTTP POST request with a form body."""
    body = b"name=John&email=john%40example.com"
    return (
        b"POST /form.gosp HTTP/1.1\r\n"
        b"Host: localhost\r\n"
        b"Content-Type: application/x-www-form-urlencoded\r\n"
        + f"Content-Length: {len(body)}\r\n".encode()
        + b"Connection: close\r\n"
        b"\r\n"
        + body
    )


@pytest.fixture
def work_dir() -> Generator[str, None, None]:
    """
    A short-named temporary work root.

    Unix-domain socket paths are limited to ~107 bytes, so pytest's
    tmp_path (deeply nested) is too long to hold sockets.
    """
    path = tempfile.mkdtemp(prefix="pb", dir="/tmp")
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def doc_root(work_dir: str) -> str:
    """A document root holding a couple of pages."""
    root = os.path.join(work_dir, "www")
    os.makedirs(os.path.join(root, "blog"))
    for name in ("index.gosp", "blog/post.gosp", "style.css"):
        with open(os.path.join(root, name), "w") as f:
            f.write("<html></html>\n")
    return root


@pytest.fixture
def config(work_dir: str, doc_root: str) -> BridgeConfig:
    """Test configuration with small timeouts."""
    return BridgeConfig(
        work_dir=work_dir,
        doc_root=doc_root,
        host="127.0.0.1",
        port=0,
        response_timeout=0.5,
        exit_wait=0.2,
        exit_poll_interval=0.001,
        lock_wait=2.0,
        launch_wait=2.0,
        max_workers=4,
        timeout=5.0,
        log_level="WARNING",
    )


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


# =============================================================================
# FAKE PAGE WORKER
# =============================================================================

class FakeWorker:
    """
    Stands in for a page worker: listens on a Unix-domain socket in a
    background thread and answers every request with canned bytes.

    Each connection gets its own thread, so a worker told to hang on page
    requests still answers termination requests.

    Attributes:
        requests: Every decoded message received, in order.
        connections: Number of connections accepted.
    """

    def __init__(
        self,
        socket_path: str,
        reply: bytes = b"end-header\n",
        pid: int = 4242,
        hang: bool = False,
        exit_reply: Optional[bytes] = None,
    ):
        self.socket_path = socket_path
        self.reply = reply
        self.pid = pid
        self.hang = hang
        self.exit_reply = exit_reply
        self.requests: List[dict] = []
        self.connections = 0
        self._sock: Optional[socket.socket] = None
        self._running = False
        self._release = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> "FakeWorker":
        prepare_directory(self.socket_path)
        if os.path.exists(self.socket_path):
            os.unlink(self.socket_path)
        self._sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        self._sock.bind(self.socket_path)
        self._sock.listen(16)
        self._sock.settimeout(0.05)
        self._running = True
        self._thread = threading.Thread(target=self._accept_loop, daemon=True)
        self._thread.start()
        return self

    def stop(self):
        self._running = False
        self._release.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)
        if self._sock is not None:
            self._sock.close()
            self._sock = None
        if os.path.exists(self.socket_path):
            os.unlink(self.socket_path)

    def _accept_loop(self):
        while self._running:
            try:
                conn, _ = self._sock.accept()
            except socket.timeout:
                continue
            except OSError:
                break
            self.connections += 1
            threading.Thread(target=self._handle, args=(conn,), daemon=True).start()
        # Like a process that exited: the socket file stays, nobody listens.
        sock, self._sock = self._sock, None
        if sock is not None:
            sock.close()

    def _read_message(self, conn: socket.socket) -> Optional[dict]:
        conn.settimeout(2.0)
        buffer = b""
        while not buffer.endswith(b"}\n"):
            try:
                chunk = conn.recv(4096)
            except OSError:
                return None
            if not chunk:
                return None
            buffer += chunk
        return json.loads(buffer.decode("utf-8"))

    def _handle(self, conn: socket.socket):
        with conn:
            message = self._read_message(conn)
            if message is None:
                return  # Liveness probe: connect and close
            self.requests.append(message)

            if message.get("ExitNow") == "true":
                reply = self.exit_reply
                if reply is None:
                    reply = f"gosp-pid {self.pid}\n".encode()
                conn.sendall(reply)
                self._running = False
                return

            if self.hang:
                self._release.wait(5.0)
                return
            conn.sendall(self.reply)

    def __enter__(self) -> "FakeWorker":
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False


@pytest.fixture
def make_worker():
    """Create FakeWorkers on any socket path; all are stopped after the test."""
    workers: List[FakeWorker] = []

    def factory(socket_path: str, start: bool = True, **kwargs) -> FakeWorker:
        worker = FakeWorker(socket_path, **kwargs)
        workers.append(worker)
        return worker.start() if start else worker

    yield factory

    for worker in workers:
        worker.stop()


@pytest.fixture
def fake_worker_factory(config: BridgeConfig):
    """Create FakeWorkers on a page's socket; all are stopped after the test."""
    workers: List[FakeWorker] = []

    def factory(page_path: str, **kwargs) -> FakeWorker:
        worker = FakeWorker(socket_path_for(config.work_dir, page_path), **kwargs)
        workers.append(worker)
        return worker.start()

    yield factory

    for worker in workers:
        worker.stop()


class FakeBuilder:
    """
    PageWorkerBuilder that starts a FakeWorker instead of a real process.

    Attributes:
        calls: Page paths ensure_page_worker_built() was called with.
    """

    def __init__(self, factory, outcome: StatusOutcome = StatusOutcome.OK, **worker_kwargs):
        self.factory = factory
        self.outcome = outcome
        self.worker_kwargs = worker_kwargs
        self.calls: List[str] = []
        self.workers: List[FakeWorker] = []

    def ensure_page_worker_built(self, page_path: str) -> StatusOutcome:
        self.calls.append(page_path)
        if self.outcome == StatusOutcome.OK:
            self.workers.append(self.factory(page_path, **self.worker_kwargs))
        return self.outcome


class FakeProbe:
    """ProcessProbe that reports a process alive for a fixed time."""

    def __init__(self, alive_for: float = 0.0, kill_error: Optional[OSError] = None):
        self.alive_until = time.monotonic() + alive_for
        self.kill_error = kill_error
        self.killed: List[int] = []
        self.checked: List[int] = []

    def exists(self, pid: int) -> bool:
        self.checked.append(pid)
        if self.killed:
            return False
        return time.monotonic() < self.alive_until

    def kill(self, pid: int) -> None:
        if self.kill_error is not None:
            raise self.kill_error
        self.killed.append(pid)


# A real worker process for launcher tests. Passed through str.format_map
# by the launcher, so it must not contain braces.
WORKER_SCRIPT = """
import os, socket, sys
path = sys.argv[1]
server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
server.bind(path)
server.listen(8)
while True:
    conn, _ = server.accept()
    data = b""
    while not data.endswith(b"\\x7d\\n"):
        chunk = conn.recv(4096)
        if not chunk:
            break
        data += chunk
    if b"ExitNow" in data:
        conn.sendall(b"gosp-pid %d\\n" % os.getpid())
        conn.close()
        sys.exit(0)
    if data:
        conn.sendall(b"http-status 200\\nmime-type text/plain\\nend-header\\nhello from worker")
    conn.close()
"""


@pytest.fixture
def process_config(config: BridgeConfig) -> Generator[BridgeConfig, None, None]:
    """
    Config whose worker_command starts a real Python worker process.

    Every worker still answering when the test ends is terminated.
    """
    from pagebridge.lifecycle import WorkerLifecycle

    config.worker_command = [sys.executable, "-c", WORKER_SCRIPT, "{socket}"]
    config.launch_wait = 10.0
    yield config

    lifecycle = WorkerLifecycle(config)
    sockets_root = os.path.join(config.work_dir, "sockets")
    for dirpath, _, filenames in os.walk(sockets_root):
        for name in filenames:
            page = os.path.join(dirpath, name)[len(sockets_root):-len(".sock")]
            lifecycle.terminate_page(page)


@pytest.fixture
def make_builder(fake_worker_factory):
    """Build a FakeBuilder whose workers are cleaned up after the test."""
    def factory(**kwargs) -> FakeBuilder:
        return FakeBuilder(fake_worker_factory, **kwargs)
    return factory


@pytest.fixture
def make_probe():
    """The FakeProbe class, for tests that need a fake process table."""
    return FakeProbe
