"""
=============================================================================
WORKER SOCKET CONNECTOR
=============================================================================

Opens and drives the client side of a connection to one page worker.

=============================================================================
THREE WAYS A CONNECT CAN END
=============================================================================

    ┌──────────────────────────────┬──────────────┬──────────────────────┐
    │  What happened               │  Outcome     │  Caller should...    │
    ├──────────────────────────────┼──────────────┼──────────────────────┤
    │  Socket path can't be an     │  FAIL        │  give up (500)       │
    │  AF_UNIX address, or         │  BridgeError │                      │
    │  socket() itself failed      │              │                      │
    ├──────────────────────────────┼──────────────┼──────────────────────┤
    │  connect() failed: no file,  │  NEED_ACTION │  launch the worker,  │
    │  nobody listening, ...       │  WorkerNot-  │  retry ONCE          │
    │                              │  Running     │                      │
    ├──────────────────────────────┼──────────────┼──────────────────────┤
    │  connect() succeeded         │  OK          │  send the request    │
    └──────────────────────────────┴──────────────┴──────────────────────┘

No retries happen here. Retry policy belongs to the orchestrator.

=============================================================================
A WORKER CONNECTION IS ONE EXCHANGE
=============================================================================

    CONNECTED ──send()──► SENT ──read_until_eof()──► RECEIVED ──► CLOSED

The worker answers one message per connection and then closes its end.
End-of-file is the only message delimiter in the response direction, so
we keep reading until recv() returns b"".

=============================================================================
"""

import logging
import os
import socket
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..status import BridgeError, WorkerNotRunning, WorkerTimeout
from .messages import WireRequestMessage


logger = logging.getLogger(__name__)

# sizeof(sockaddr_un.sun_path) on Linux, including the trailing NUL.
UNIX_PATH_MAX = 108


@dataclass
class WorkerHandle:
    """
    Identifies one page worker.

    The socket path is derived from the page path (see paths.socket_path_for),
    so any front-end process can rediscover the worker. The PID is only
    known once the worker has reported it during termination.
    """

    socket_path: str
    page_path: str = ""
    pid: Optional[int] = None


class WorkerConnectionState(Enum):
    CONNECTED = "connected"
    SENT = "sent"
    RECEIVED = "received"
    CLOSED = "closed"


@dataclass
class WorkerConnection:
    """
    Client connection to a worker's Unix-domain socket.

    Attributes:
        socket: The connected stream socket.
        socket_path: Path the socket is connected to (for logging).
        chunk_size: Bytes requested per recv() call.
    """

    socket: socket.socket
    socket_path: str
    chunk_size: int = 1_000_000
    state: WorkerConnectionState = WorkerConnectionState.CONNECTED

    def send(self, message: WireRequestMessage) -> None:
        """
        Write a whole message to the worker.

        Raises:
            BridgeError: If the bytes could not all be sent.
        """
        data = message.to_bytes()
        try:
            self.socket.sendall(data)
        except OSError as e:
            logger.critical(
                f"Failed to send {len(data)} bytes to the worker on {self.socket_path}: {e}"
            )
            raise BridgeError(f"Send to {self.socket_path} failed: {e}", self.socket_path) from e
        self.state = WorkerConnectionState.SENT

    def read_until_eof(self, timeout: float) -> bytes:
        """
        Collect everything the worker sends until it closes the connection.

        The timeout applies to each individual read, so a worker that keeps
        trickling data (heartbeats included) is never cut off.

        Raises:
            WorkerTimeout: A read waited longer than timeout with no data.
            BridgeError: Any other socket error.
        """
        try:
            self.socket.settimeout(timeout)
        except OSError as e:
            logger.critical(f"Failed to set a socket timeout on {self.socket_path}: {e}")
            raise BridgeError(f"settimeout failed: {e}", self.socket_path) from e

        buffer = bytearray()
        while True:
            try:
                chunk = self.socket.recv(self.chunk_size)
            except socket.timeout as e:
                logger.warning(
                    f"Worker on {self.socket_path} sent nothing for {timeout} seconds "
                    f"({len(buffer)} bytes so far)"
                )
                raise WorkerTimeout(
                    f"Timed out reading from {self.socket_path}", self.socket_path
                ) from e
            except OSError as e:
                logger.critical(f"Failed to receive data from the worker on {self.socket_path}: {e}")
                raise BridgeError(f"Receive from {self.socket_path} failed: {e}", self.socket_path) from e
            if not chunk:
                break
            buffer += chunk

        self.state = WorkerConnectionState.RECEIVED
        return bytes(buffer)

    def close(self) -> None:
        if self.state == WorkerConnectionState.CLOSED:
            return
        try:
            self.socket.close()
        except OSError as e:
            logger.debug(f"Closing {self.socket_path} failed: {e}")
        self.state = WorkerConnectionState.CLOSED

    def __enter__(self) -> "WorkerConnection":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def connect_socket(socket_path: str, chunk_size: int = 1_000_000) -> WorkerConnection:
    """
    Connect to the worker listening on socket_path.

    Args:
        socket_path: Filesystem path of the worker's Unix-domain socket.
        chunk_size: Read size for the returned connection.

    Returns:
        An open WorkerConnection.

    Raises:
        BridgeError: The address or the local socket could not be created.
        WorkerNotRunning: connect() failed; the worker is presumed absent.
    """
    # ─────────────────────────────────────────────────────────────────
    # STEP 1: Construct the address
    # ─────────────────────────────────────────────────────────────────
    try:
        address = os.fsencode(socket_path)
    except (TypeError, UnicodeError) as e:
        logger.critical(f"Failed to construct a Unix-domain socket address from {socket_path!r}: {e}")
        raise BridgeError(f"Bad socket path {socket_path!r}", str(socket_path)) from e
    if not address or b"\0" in address or len(address) >= UNIX_PATH_MAX:
        logger.critical(
            f"Failed to construct a Unix-domain socket address from {socket_path} "
            f"({len(address)} bytes, limit {UNIX_PATH_MAX - 1})"
        )
        raise BridgeError(f"Socket path {socket_path} is not a valid AF_UNIX address", socket_path)

    # ─────────────────────────────────────────────────────────────────
    # STEP 2: Create the local socket
    # ─────────────────────────────────────────────────────────────────
    try:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    except OSError as e:
        logger.critical(f"Failed to create socket {socket_path}: {e}")
        raise BridgeError(f"socket() failed for {socket_path}: {e}", socket_path) from e

    # ─────────────────────────────────────────────────────────────────
    # STEP 3: Connect. Failure means nobody is listening.
    # ─────────────────────────────────────────────────────────────────
    try:
        sock.connect(address)
    except OSError as e:
        sock.close()
        logger.info(f"Failed to connect to socket {socket_path}: {e.strerror or e}")
        raise WorkerNotRunning(f"No worker listening on {socket_path}", socket_path) from e

    return WorkerConnection(socket=sock, socket_path=socket_path, chunk_size=chunk_size)
