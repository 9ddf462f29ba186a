"""
=============================================================================
HTTP STATUS CODES
=============================================================================

The statuses the front end names, each with its RFC 7231 reason phrase.

A page worker sets its status with an "http-status N" line and may pick
any N from 100 to 999, known here or not. reason_phrase() covers those:
an unlisted code gets the name of its class ("Success", "Client Error"),
and a code outside 1xx-5xx gets "Unknown".

=============================================================================
"""

from enum import IntEnum


class HTTPStatus(IntEnum):
    """Status codes as ints (HTTPStatus.OK == 200) carrying their phrase."""

    def __new__(cls, code: int, phrase: str):
        member = int.__new__(cls, code)
        member._value_ = code
        member.phrase = phrase
        return member

    CONTINUE = 100, "Continue"

    OK = 200, "OK"
    CREATED = 201, "Created"
    ACCEPTED = 202, "Accepted"
    NO_CONTENT = 204, "No Content"

    MOVED_PERMANENTLY = 301, "Moved Permanently"
    FOUND = 302, "Found"
    SEE_OTHER = 303, "See Other"
    NOT_MODIFIED = 304, "Not Modified"
    TEMPORARY_REDIRECT = 307, "Temporary Redirect"
    PERMANENT_REDIRECT = 308, "Permanent Redirect"

    BAD_REQUEST = 400, "Bad Request"
    UNAUTHORIZED = 401, "Unauthorized"
    FORBIDDEN = 403, "Forbidden"
    NOT_FOUND = 404, "Not Found"
    METHOD_NOT_ALLOWED = 405, "Method Not Allowed"
    REQUEST_TIMEOUT = 408, "Request Timeout"
    GONE = 410, "Gone"
    PAYLOAD_TOO_LARGE = 413, "Payload Too Large"
    URI_TOO_LONG = 414, "URI Too Long"

    # 500 is also what a request gets when the bridge can't serve the page.
    INTERNAL_SERVER_ERROR = 500, "Internal Server Error"
    NOT_IMPLEMENTED = 501, "Not Implemented"
    BAD_GATEWAY = 502, "Bad Gateway"
    SERVICE_UNAVAILABLE = 503, "Service Unavailable"
    GATEWAY_TIMEOUT = 504, "Gateway Timeout"
    HTTP_VERSION_NOT_SUPPORTED = 505, "HTTP Version Not Supported"

    @property
    def is_success(self) -> bool:
        return 200 <= self < 300

    @property
    def is_error(self) -> bool:
        return self >= 400


_CLASS_NAMES = ("Informational", "Success", "Redirection", "Client Error", "Server Error")


def reason_phrase(code: int) -> str:
    """Phrase for any code, listed in HTTPStatus or not."""
    try:
        return HTTPStatus(code).phrase
    except ValueError:
        pass
    status_class = code // 100
    if 1 <= status_class <= len(_CLASS_NAMES):
        return _CLASS_NAMES[status_class - 1]
    return "Unknown"
