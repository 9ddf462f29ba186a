"""
=============================================================================
WORKER RESPONSE DECODER
=============================================================================

Reads a worker's reply off the socket and turns it into status, content
type and body for the outgoing HTTP response.

=============================================================================
WIRE RESPONSE FORMAT
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   keep-alive\n                    ← heartbeat, ignored               │
    │   http-status 404\n               ← status directive                 │
    │   mime-type text/plain\n          ← content-type directive           │
    │   end-header\n                    ← sentinel                         │
    │   <opaque body bytes ...>         ← only used when status is 200     │
    │                                                                      │
    │   (connection closed by the worker = end of message)                │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Header lines are UTF-8 text. The body is NOT text: it may contain NUL
bytes or invalid UTF-8, so it is sliced out of the original bytes by
offset and never round-tripped through str.

=============================================================================
DECODING RULES
=============================================================================

    keep-alive           no effect
    http-status <int>    status code; non-numeric or < 100 → FAIL
    mime-type <value>    content type, taken verbatim
    (empty line)         skipped
    anything else        FAIL (directives are not forward-compatible)

No sentinel at all is NOT an error: the response is built from whatever
headers were seen, with no body.

=============================================================================
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional, Tuple

from ..http.response import HTTPResponse
from ..http.status_codes import HTTPStatus
from ..status import ProtocolError
from .connector import WorkerConnection


logger = logging.getLogger(__name__)

SENTINEL = "end-header"
HEARTBEAT = "keep-alive"
STATUS_PREFIX = "http-status "
MIME_PREFIX = "mime-type "

# Leading zeros are tolerated; the number itself is at most four digits.
STATUS_PATTERN = re.compile(r"0*([0-9]{1,4})")


@dataclass
class ResponseHeaders:
    """Directives collected from the header section of a worker response."""

    status: int = HTTPStatus.OK
    content_type: Optional[str] = None
    heartbeats: int = 0


@dataclass
class DecodedResponse:
    """
    A fully validated worker response.

    Nothing reaches the client until decoding has succeeded, so a protocol
    violation halfway through the headers never leaks a partial response.
    """

    status: int
    content_type: Optional[str]
    body: bytes
    complete: bool  # False when no sentinel line was found

    def apply_to(self, response: HTTPResponse, default_content_type: Optional[str] = None) -> HTTPResponse:
        """Copy status, content type and body onto the outgoing response."""
        response.status = self.status
        content_type = self.content_type if self.content_type is not None else default_content_type
        if content_type is not None:
            response.set_content_type(content_type)
        response.set_body(self.body)
        return response


def receive_response(connection: WorkerConnection, timeout: float) -> bytes:
    """
    Read a complete worker response.

    Raises:
        WorkerTimeout: NEED_ACTION, the worker looks hung.
        BridgeError: FAIL, any other I/O problem.
    """
    return connection.read_until_eof(timeout)


def _decode_line(raw: bytes) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ProtocolError(f"Header line is not valid UTF-8: {raw[:80]!r}") from e


def parse_response(data: bytes) -> Tuple[ResponseHeaders, Optional[int]]:
    """
    Split a raw worker response into header directives and a body offset.

    Args:
        data: Everything the worker sent.

    Returns:
        (headers, body_offset). body_offset is the index of the first body
        byte in data, or None if no sentinel line was found.

    Raises:
        ProtocolError: On an unrecognized directive or a bad status code.
    """
    headers = ResponseHeaders()
    pos = 0
    end = len(data)

    while pos < end:
        newline = data.find(b"\n", pos)
        line_end = end if newline == -1 else newline
        next_pos = end if newline == -1 else newline + 1
        line = _decode_line(data[pos:line_end])
        pos = next_pos

        if line == SENTINEL:
            return headers, pos

        if not line:
            continue

        if line == HEARTBEAT:
            headers.heartbeats += 1
            continue

        if line.startswith(STATUS_PREFIX):
            value = line[len(STATUS_PREFIX):]
            match = STATUS_PATTERN.fullmatch(value)
            if match is None:
                raise ProtocolError(f"Malformed status directive: {line[:80]!r}")
            code = int(match.group(1))
            if code < 100 or code > 999:
                raise ProtocolError(f"Invalid HTTP status {code}")
            headers.status = code
            continue

        if line.startswith(MIME_PREFIX):
            headers.content_type = line[len(MIME_PREFIX):]
            continue

        raise ProtocolError(f"Unrecognized header directive: {line[:80]!r}")

    return headers, None


def decode_response(data: bytes) -> DecodedResponse:
    """
    Parse a worker response and pick out the body to emit.

    The body is only kept for a 200 response; for any other status the
    headers alone describe the reply.
    """
    headers, body_offset = parse_response(data)
    if body_offset is None:
        logger.debug(f"Worker response had no {SENTINEL} line; emitting headers only")
    emit_body = body_offset is not None and headers.status == HTTPStatus.OK
    return DecodedResponse(
        status=headers.status,
        content_type=headers.content_type,
        body=data[body_offset:] if emit_body else b"",
        complete=body_offset is not None,
    )
