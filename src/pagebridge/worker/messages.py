r"""
=============================================================================
WIRE REQUEST MESSAGES
=============================================================================

What the bridge sends to a page worker over its Unix-domain socket.

There are exactly two shapes. A page request:

    {
      "LocalHostname": "www.example.com",
      "QueryArgs": "page=2",
      "PathInfo": "/extra",
      "Uri": "/blog/index.gosp/extra",
      "RemoteHostname": "192.0.2.7"
    }

and a termination directive:

    {
      "ExitNow": "true"
    }

The worker decodes these into its own request struct, so field names,
order, indentation and the trailing newline are a cross-process contract.
They are written out by hand rather than with json.dumps(): the worker
expects exactly this escaping and nothing more.

=============================================================================
ESCAPING
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │   Input character     Written as                                    │
    │   ───────────────     ──────────                                    │
    │   \                   \\                                            │
    │   "                   \"                                            │
    │   anything else       unchanged                                     │
    │                                                                      │
    │   None / missing      ""   (the field is never omitted)             │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from dataclasses import dataclass
from typing import Optional, Tuple


REQUEST_FIELDS = ("LocalHostname", "QueryArgs", "PathInfo", "Uri", "RemoteHostname")


def escape_for_json(value: Optional[str]) -> str:
    """Escape backslashes and double quotes; None becomes the empty string."""
    if value is None:
        return ""
    return value.replace("\\", "\\\\").replace('"', '\\"')


def unescape_from_json(value: str) -> str:
    """Inverse of escape_for_json()."""
    out = []
    chars = iter(value)
    for ch in chars:
        if ch == "\\":
            ch = next(chars, "\\")
        out.append(ch)
    return "".join(out)


@dataclass(frozen=True)
class RequestContext:
    """
    Snapshot of the parts of one HTTP request a worker needs.

    Built by the front end for a single request and owned by the
    orchestrator call serving it. Never shared between requests.

    Attributes:
        local_hostname:  Host the client asked for (no port).
        query_args:      Raw query string, without the "?".
        path_info:       Trailing URL path after the page file name.
        uri:             Path portion of the requested URI.
        remote_hostname: Client host name or address.
        page_path:       Canonical on-disk path of the requested page.
    """

    local_hostname: Optional[str]
    query_args: Optional[str]
    path_info: Optional[str]
    uri: Optional[str]
    remote_hostname: Optional[str]
    page_path: str


@dataclass(frozen=True)
class WireRequestMessage:
    """An encoded message, ready to be written to a worker socket."""

    fields: Tuple[Tuple[str, str], ...]

    @property
    def is_termination(self) -> bool:
        return self.fields == (("ExitNow", "true"),)

    def to_text(self) -> str:
        lines = ["{"]
        last = len(self.fields) - 1
        for i, (name, value) in enumerate(self.fields):
            comma = "," if i < last else ""
            lines.append(f'  "{name}": "{escape_for_json(value)}"{comma}')
        lines.append("}")
        return "\n".join(lines) + "\n"

    def to_bytes(self) -> bytes:
        return self.to_text().encode("utf-8")


def encode_request(context: RequestContext) -> WireRequestMessage:
    """Serialize a request context into the page-request message."""
    values = (
        context.local_hostname,
        context.query_args,
        context.path_info,
        context.uri,
        context.remote_hostname,
    )
    return WireRequestMessage(
        fields=tuple((name, value or "") for name, value in zip(REQUEST_FIELDS, values))
    )


def encode_termination() -> WireRequestMessage:
    """Build the message asking a worker to exit."""
    return WireRequestMessage(fields=(("ExitNow", "true"),))
