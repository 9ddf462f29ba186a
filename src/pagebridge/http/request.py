"""
=============================================================================
HTTP REQUEST PARSING
=============================================================================

Turns the bytes a browser sent into an HTTPRequest.

=============================================================================
WHAT A PAGE REQUEST CARRIES
=============================================================================

    GET /blog/index.gosp/2024/05?page=2 HTTP/1.1
        ────────────┬─────────── ───┬──
                    │               └── query_string, passed on undecoded
                    ├── uri:  the target as sent, query removed (access log)
                    └── path: uri with %XX escapes decoded

    Host: www.example.com:8080   →  host == "www.example.com"

The worker gets the query string verbatim and parses it itself. The
decoded path locates the page file, and it is also what the worker
receives as its Uri, in the same form as its PathInfo.

=============================================================================
ERRORS
=============================================================================

HTTPParseError carries the status the front end answers with:

    400  request line, header block or body malformed
    405  method not recognised
    413  request larger than allowed
    505  HTTP version other than 1.0 / 1.1

=============================================================================
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Tuple
from urllib.parse import unquote, urlsplit


class HTTPParseError(Exception):
    """A request the front end refuses; status_code says how."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class HTTPRequest:
    """
    One parsed request.

    Header names are stored lowercased. `raw` keeps the exact bytes read
    off the socket.
    """

    method: str
    path: str
    uri: str = ""
    query_string: str = ""
    version: str = "HTTP/1.1"

    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    client_address: Tuple[str, int] = ("", 0)
    raw: bytes = field(default=b"", repr=False)

    def get_header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)

    @property
    def host(self) -> str:
        """The Host header without its port."""
        value = self.get_header("host")
        if value.startswith("["):
            # [::1]:8080
            close = value.find("]")
            return value if close < 0 else value[:close + 1]
        return value.partition(":")[0]

    @property
    def is_keep_alive(self) -> bool:
        """Persistent by default on 1.1, opt-in on 1.0."""
        token = self.get_header("connection").lower()
        if self.version == "HTTP/1.0":
            return token == "keep-alive"
        return token != "close"


_REQUEST_LINE = re.compile(r"([A-Z]+) (\S+) (HTTP/\d\.\d)")
_SUPPORTED_VERSIONS = ("HTTP/1.0", "HTTP/1.1")


class RequestParser:
    """Parses one complete request, as framed by Connection.read_request()."""

    METHODS = frozenset({"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"})

    def __init__(self, max_request_size: int = 10 * 1024 * 1024):
        self.max_request_size = max_request_size

    def parse(self, data: bytes, client_address: Tuple[str, int] = ("", 0)) -> HTTPRequest:
        """
        Raises:
            HTTPParseError: The request can't be served as sent.
        """
        if len(data) > self.max_request_size:
            raise HTTPParseError(f"Request too large: {len(data)} bytes", status_code=413)

        head, sep, rest = data.partition(b"\r\n\r\n")
        if not sep:
            raise HTTPParseError("Incomplete request: headers never ended")

        request_line, *field_lines = head.decode("utf-8", errors="replace").split("\r\n")
        method, target, version = self._request_line(request_line)
        uri, path, query_string = self._split_target(target)
        headers = self._header_fields(field_lines)

        return HTTPRequest(
            method=method,
            path=path,
            uri=uri,
            query_string=query_string,
            version=version,
            headers=headers,
            body=self._body(headers, rest),
            client_address=client_address,
            raw=data,
        )

    def _request_line(self, line: str) -> Tuple[str, str, str]:
        match = _REQUEST_LINE.fullmatch(line)
        if match is None:
            raise HTTPParseError(f"Invalid request line: {line!r}")

        method, target, version = match.groups()
        if method not in self.METHODS:
            raise HTTPParseError(f"Invalid method: {method}", status_code=405)
        if version not in _SUPPORTED_VERSIONS:
            raise HTTPParseError(f"Unsupported HTTP version: {version}", status_code=505)
        return method, target, version

    @staticmethod
    def _split_target(target: str) -> Tuple[str, str, str]:
        """(uri, decoded path, query) of an origin-form target."""
        if not target.startswith("/"):
            raise HTTPParseError(f"Unsupported request target: {target}")

        pieces = urlsplit(target)
        uri = pieces.path or "/"
        path = unquote(uri)
        if "\x00" in path:
            raise HTTPParseError("Invalid path: contains NUL")
        return uri, path, pieces.query

    @staticmethod
    def _header_fields(lines: List[str]) -> Dict[str, str]:
        """
        Lowercased name → value. A folded line (leading whitespace) extends
        the field before it; a repeated field is comma-joined. Lines without
        a colon are dropped.
        """
        fields: Dict[str, str] = {}
        last = None

        for line in lines:
            if not line:
                continue
            if line[0] in " \t":
                if last is not None:
                    fields[last] = f"{fields[last]} {line.strip()}"
                continue

            name, colon, value = line.partition(":")
            name = name.strip().lower()
            if not colon or not name:
                continue

            value = value.strip()
            fields[name] = f"{fields[name]}, {value}" if name in fields else value
            last = name

        return fields

    @staticmethod
    def _body(headers: Dict[str, str], rest: bytes) -> bytes:
        declared = headers.get("content-length", "0")
        try:
            length = int(declared)
        except ValueError:
            raise HTTPParseError(f"Invalid Content-Length: {declared!r}")
        if length < 0:
            raise HTTPParseError(f"Invalid Content-Length: {length}")
        if len(rest) < length:
            raise HTTPParseError(f"Incomplete body: expected {length} bytes, got {len(rest)}")
        return rest[:length]
