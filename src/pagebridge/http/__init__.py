"""
=============================================================================
HTTP PROTOCOL PACKAGE
=============================================================================

The front end's side of HTTP/1.1: parsing client requests and serializing
responses. Page content itself comes from the workers; this package only
frames it.

    GET /blog/index.gosp?page=2 HTTP/1.1\\r\\n     ← request line
    Host: www.example.com\\r\\n                    ← headers
    \\r\\n                                         ← end of headers

=============================================================================
"""

from .request import HTTPRequest, RequestParser, HTTPParseError
from .response import (
    HTTPResponse,
    ResponseBuilder,
    error_response,
    bad_request,    # 400 Bad Request
    forbidden,      # 403 Forbidden
    not_found,      # 404 Not Found
    internal_error, # 500 Internal Server Error
)
from .status_codes import HTTPStatus, reason_phrase

__all__ = [
    # Request parsing
    "HTTPRequest",
    "RequestParser",
    "HTTPParseError",

    # Response building
    "HTTPResponse",
    "ResponseBuilder",
    "error_response",
    "bad_request",
    "forbidden",
    "not_found",
    "internal_error",

    # Status codes
    "HTTPStatus",
    "reason_phrase",
]
