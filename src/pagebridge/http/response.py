"""
=============================================================================
HTTP RESPONSES
=============================================================================

What the front end writes back to a browser.

Most responses are filled in from a page worker's reply: the decoder sets
the status, the Content-Type and (for 200 only) the body. The rest are
small JSON error documents produced here when the bridge itself answers:

    400  bad_request()     request line or headers unparseable
    403  forbidden()       URL climbs out of the document root
    404  not_found()       no page file at that path
    500  internal_error()  the page could not be served

Workers are free to answer any status from 100 to 999, which is why
`status` is an int and not an HTTPStatus member.

=============================================================================
WIRE LAYOUT
=============================================================================

    HTTP/1.1 200 OK
    Content-Type: text/plain         from the worker, or a default
    Content-Length: 5                filled in when missing
    Date: Thu, 15 Jan 2026 ... GMT   filled in when missing
    Server: PageBridge/1.0           filled in when missing
    <blank line>
    hello                            body bytes, sent untouched

=============================================================================
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Any, Dict, Union

from .status_codes import HTTPStatus, reason_phrase


def _as_bytes(body: Union[str, bytes]) -> bytes:
    return body.encode("utf-8") if isinstance(body, str) else body


def format_http_date(moment: datetime) -> str:
    """RFC 7231 IMF-fixdate, e.g. "Thu, 15 Jan 2026 12:30:45 GMT"."""
    return format_datetime(moment.astimezone(timezone.utc), usegmt=True)


@dataclass
class HTTPResponse:
    """A status, a header map and body bytes."""

    status: int = HTTPStatus.OK
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    version: str = "HTTP/1.1"

    @property
    def status_line(self) -> str:
        code = int(self.status)
        return f"{self.version} {code} {reason_phrase(code)}"

    def set_header(self, name: str, value: str) -> "HTTPResponse":
        self.headers[name] = value
        return self

    def set_content_type(self, content_type: str) -> "HTTPResponse":
        return self.set_header("Content-Type", content_type)

    def set_body(self, body: Union[str, bytes]) -> "HTTPResponse":
        """Replace the body. Text is stored as UTF-8."""
        self.body = _as_bytes(body)
        return self

    def to_bytes(self, server_name: str = "PageBridge/1.0", include_body: bool = True) -> bytes:
        """
        Render status line, headers and (unless include_body is False) body.

        A HEAD response still carries the Content-Length of the body it
        leaves out.
        """
        defaults = {
            "Content-Length": str(len(self.body)),
            "Date": format_http_date(datetime.now(timezone.utc)),
            "Server": server_name,
        }
        headers = dict(self.headers)
        for name, value in defaults.items():
            headers.setdefault(name, value)

        head = self.status_line + "\r\n"
        head += "".join(f"{name}: {value}\r\n" for name, value in headers.items())
        head += "\r\n"

        payload = head.encode("utf-8")
        if include_body:
            payload += self.body
        return payload


class ResponseBuilder:
    """
    Chained construction of an HTTPResponse.

        (ResponseBuilder()
            .status(HTTPStatus.NOT_FOUND)
            .json({"error": "No such page"})
            .close_connection()
            .build())
    """

    def __init__(self):
        self._response = HTTPResponse()

    def status(self, status: int) -> "ResponseBuilder":
        self._response.status = status
        return self

    def header(self, name: str, value: str) -> "ResponseBuilder":
        self._response.set_header(name, value)
        return self

    def content_type(self, content_type: str) -> "ResponseBuilder":
        return self.header("Content-Type", content_type)

    def body(self, body: Union[str, bytes]) -> "ResponseBuilder":
        self._response.set_body(body)
        return self

    def text(self, text: str, content_type: str = "text/plain; charset=utf-8") -> "ResponseBuilder":
        return self.content_type(content_type).body(text)

    def json(self, document: Any, pretty: bool = False) -> "ResponseBuilder":
        encoded = json.dumps(document, indent=2 if pretty else None, ensure_ascii=False)
        return self.content_type("application/json; charset=utf-8").body(encoded)

    def close_connection(self) -> "ResponseBuilder":
        return self.header("Connection", "close")

    def build(self) -> HTTPResponse:
        return self._response


# =============================================================================
# ERRORS ANSWERED BY THE BRIDGE ITSELF
# =============================================================================

def error_response(status: int, message: str = "") -> HTTPResponse:
    """A JSON body of the form {"error": message}; the reason phrase if empty."""
    return ResponseBuilder().status(status).json({"error": message or reason_phrase(status)}).build()


def bad_request(message: str = "Bad Request") -> HTTPResponse:
    return error_response(HTTPStatus.BAD_REQUEST, message)


def forbidden(message: str = "Forbidden") -> HTTPResponse:
    return error_response(HTTPStatus.FORBIDDEN, message)


def not_found(message: str = "Not Found") -> HTTPResponse:
    return error_response(HTTPStatus.NOT_FOUND, message)


def internal_error(message: str = "Internal Server Error") -> HTTPResponse:
    # Causes go to the log; the client only learns that it failed.
    return error_response(HTTPStatus.INTERNAL_SERVER_ERROR, message)
