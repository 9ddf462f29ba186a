"""
Worker-side plumbing: wire messages, socket connector and response decoder.
"""

from .connector import WorkerConnection, WorkerHandle, connect_socket
from .decoder import DecodedResponse, decode_response, parse_response, receive_response
from .messages import (
    RequestContext,
    WireRequestMessage,
    encode_request,
    encode_termination,
    escape_for_json,
)

__all__ = [
    "WorkerConnection",
    "WorkerHandle",
    "connect_socket",
    "DecodedResponse",
    "decode_response",
    "parse_response",
    "receive_response",
    "RequestContext",
    "WireRequestMessage",
    "encode_request",
    "encode_termination",
    "escape_for_json",
]
