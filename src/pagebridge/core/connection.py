"""
=============================================================================
CLIENT CONNECTION
=============================================================================

One browser connection to the front end, read as a sequence of HTTP
requests.

=============================================================================
FRAMING
=============================================================================

A recv() hands back whatever bytes have arrived. One request can span
several reads, and on a kept-alive connection a single read can hold the
end of one request and the start of the next. Bytes therefore collect in
a pending buffer:

    pending: [ headers \\r\\n\\r\\n body | next request ... ]
              └──── Content-Length ───┘
                    cut and returned    kept for the next call

=============================================================================
STATES
=============================================================================

    OPEN ──► READING ──► HANDLING ──► WRITING ──► IDLE ──► READING ...
                                                    │
                             any error / close() ───┴──► CLOSED

The first request has `timeout` seconds to arrive. An IDLE connection
waits only `keep_alive_timeout` for the next one.

=============================================================================
"""

import socket
import logging
import uuid
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional


logger = logging.getLogger(__name__)

HEADER_TERMINATOR = b"\r\n\r\n"


class ConnectionState(Enum):
    OPEN = "open"
    READING = "reading"
    HANDLING = "handling"
    WRITING = "writing"
    IDLE = "idle"
    CLOSED = "closed"


class RequestTooLarge(ValueError):
    """The client sent more than max_request_size bytes."""


def declared_body_length(head: bytes) -> int:
    """Content-Length from a raw header block; 0 when missing or unreadable."""
    for line in head.split(b"\r\n")[1:]:
        name, sep, value = line.partition(b":")
        if sep and name.strip().lower() == b"content-length":
            try:
                return max(0, int(value.strip()))
            except ValueError:
                return 0
    return 0


@dataclass
class Connection:
    """
    An accepted front-end client.

    Attributes:
        socket: The client socket.
        address: Peer (ip, port).
        id: Short tag for log lines.
        served: Requests read so far.
    """

    socket: socket.socket
    address: tuple
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    state: ConnectionState = ConnectionState.OPEN
    served: int = 0

    buffer_size: int = 8192
    timeout: Optional[float] = 30.0
    keep_alive_timeout: float = 5.0
    max_request_size: int = 10 * 1024 * 1024

    _pending: bytearray = field(default_factory=bytearray, repr=False)

    def __post_init__(self):
        self.socket.settimeout(self.timeout)

    def read_request(self) -> Optional[bytes]:
        """
        Return the next complete request.

        Returns:
            Raw request bytes, or None once the client hangs up or an idle
            kept-alive connection times out.

        Raises:
            TimeoutError: The first request did not arrive in time.
            RequestTooLarge: The request grew past max_request_size.
        """
        self.state = ConnectionState.READING
        if self.served:
            self.socket.settimeout(self.keep_alive_timeout)

        try:
            head_end = self._fill_until_headers()
            if head_end < 0:
                return None

            body_start = head_end + len(HEADER_TERMINATOR)
            end = body_start + declared_body_length(bytes(self._pending[:head_end]))
            # A short body is left to the parser to reject.
            self._fill_until(end)

            request = bytes(self._pending[:end])
            del self._pending[:end]
        except socket.timeout:
            if not self.served:
                raise TimeoutError("Request read timeout")
            logger.debug(f"[{self.id}] Idle keep-alive connection timed out")
            return None
        finally:
            if self.state != ConnectionState.CLOSED:
                try:
                    self.socket.settimeout(self.timeout)
                except OSError:
                    pass

        self.served += 1
        self.state = ConnectionState.HANDLING
        return request

    def _fill_until_headers(self) -> int:
        """Read until the header block is complete; its offset, or -1 on EOF."""
        while True:
            head_end = self._pending.find(HEADER_TERMINATOR)
            if head_end >= 0:
                return head_end
            if not self._receive_more():
                return -1

    def _fill_until(self, size: int):
        while len(self._pending) < size:
            if not self._receive_more():
                return

    def _receive_more(self) -> bool:
        try:
            chunk = self.socket.recv(self.buffer_size)
        except (ConnectionResetError, BrokenPipeError):
            return False
        if not chunk:
            return False
        self._pending += chunk
        if len(self._pending) > self.max_request_size:
            raise RequestTooLarge(f"Request too large: {len(self._pending)} bytes")
        return True

    def send_response(self, data: bytes) -> bool:
        """Write a full response. False means the client is gone."""
        self.state = ConnectionState.WRITING
        try:
            self.socket.sendall(data)
        except OSError as e:
            logger.warning(f"[{self.id}] Could not write response: {e}")
            return False
        self.state = ConnectionState.IDLE
        return True

    def close(self):
        """Shut down our side, drain briefly, close. Safe to repeat."""
        if self.state == ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSED

        try:
            self.socket.shutdown(socket.SHUT_WR)
            self.socket.settimeout(0.5)
            while self.socket.recv(1024):
                pass
        except OSError:
            pass
        finally:
            self.socket.close()

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
