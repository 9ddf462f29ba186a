"""
=============================================================================
REQUEST ORCHESTRATOR
=============================================================================

Serves one page request through its worker, launching or relaunching the
worker at most once along the way.

=============================================================================
REQUEST FLOW
=============================================================================

    serve(context, response)
        │
        ├── socket = <work>/sockets/<page>.sock
        │
        ├── connect ── NEED_ACTION ──┐
        │                            ▼
        │                  ┌─── global lock ─────────────────────┐
        │                  │ connect again (someone may have     │
        │                  │ launched it while we waited)        │
        │                  │ still absent → builder.ensure(page) │
        │                  └─────────────────────────────────────┘
        │                            │
        │              connect again ── NEED_ACTION ──► FAIL
        │
        ├── send page request
        │
        ├── read until EOF ── timeout ──┐
        │                               ▼
        │                  ┌─── global lock ─────────────────────┐
        │                  │ terminate the hung worker           │
        │                  │ builder.ensure(page)                │
        │                  └─────────────────────────────────────┘
        │                               │
        │                   start over once; a second timeout ──► FAIL
        │
        └── decode ── ProtocolError ──► FAIL
                 └── OK: copy status, type and body onto response

Every corrective action happens at most once per request, so the flow
always terminates. Decoding completes before anything is written to the
response, so a FAIL never follows partial output.

=============================================================================
"""

import logging
from typing import Optional

from .config import BridgeConfig
from .http.response import HTTPResponse, internal_error
from .http.status_codes import HTTPStatus
from .launcher import PageWorkerBuilder, WorkerLauncher
from .lifecycle import WorkerLifecycle
from .locking import GlobalLock
from .paths import socket_path_for
from .status import BridgeError, StatusOutcome, WorkerTimeout, WorkerUnavailable
from .worker.connector import WorkerConnection, WorkerHandle, connect_socket
from .worker.decoder import DecodedResponse, decode_response, receive_response
from .worker.messages import RequestContext, encode_request


logger = logging.getLogger(__name__)


class RequestOrchestrator:
    """
    Ties the connector, decoder, lock, lifecycle controller and launcher
    together for one request at a time. Safe to share between threads.

    Args:
        config: Bridge configuration.
        builder: Launches workers. Defaults to a WorkerLauncher.
        lock: Host-wide launch lock. Defaults to <work>/global.lock.
        lifecycle: Stops hung workers. Defaults to a WorkerLifecycle.
    """

    def __init__(
        self,
        config: BridgeConfig,
        builder: Optional[PageWorkerBuilder] = None,
        lock: Optional[GlobalLock] = None,
        lifecycle: Optional[WorkerLifecycle] = None,
    ):
        self.config = config
        self.lifecycle = lifecycle or WorkerLifecycle(config)
        self.builder = builder or WorkerLauncher(config, self.lifecycle)
        self.lock = lock or GlobalLock(config.work_dir, timeout=config.lock_wait)

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def serve(self, context: RequestContext, response: HTTPResponse) -> StatusOutcome:
        """
        Run context through its page's worker and fill in response.

        Returns:
            OK if response now holds the worker's answer, FAIL otherwise.
            response is left untouched on FAIL.
        """
        try:
            handle = WorkerHandle(
                socket_path=socket_path_for(self.config.work_dir, context.page_path),
                page_path=context.page_path,
            )
        except BridgeError as e:
            logger.error(f"Failed to locate the worker socket for {context.page_path}: {e}")
            return e.outcome
        logger.debug(f"Page {context.page_path} is served on {handle.socket_path}")

        decoded = None
        for attempt in range(2):
            try:
                decoded = self._exchange(handle, context, allow_launch=(attempt == 0))
                break
            except WorkerTimeout:
                if attempt == 1:
                    logger.error(f"Worker for {context.page_path} on {handle.socket_path} timed out again after a relaunch")
                    return StatusOutcome.FAIL
                if self._relaunch(handle) != StatusOutcome.OK:
                    return StatusOutcome.FAIL
            except WorkerUnavailable:
                logger.error(f"Worker for {context.page_path} is still not answering on {handle.socket_path}")
                return StatusOutcome.FAIL
            except BridgeError as e:
                logger.error(
                    f"Failed to serve {context.page_path} through {handle.socket_path}: {e}"
                )
                return e.outcome

        decoded.apply_to(response, self.config.default_content_type)
        return StatusOutcome.OK

    def handle(self, context: RequestContext) -> HTTPResponse:
        """Serve context and return a ready response, 500 on failure."""
        response = HTTPResponse(status=HTTPStatus.OK)
        if self.serve(context, response) != StatusOutcome.OK:
            logger.error(f"Failed to serve {context.page_path}; answering 500")
            return internal_error()
        return response

    # =========================================================================
    # STEPS
    # =========================================================================

    def _exchange(self, handle: WorkerHandle, context: RequestContext, allow_launch: bool = True) -> DecodedResponse:
        """
        One connect/send/receive/decode round trip.

        Raises:
            WorkerTimeout: The worker went quiet; it may be relaunched.
            BridgeError: Anything else. NEED_ACTION here means the launch
                         did not produce a listening worker.
        """
        if allow_launch:
            connection = self._connect(handle)
        else:
            connection = connect_socket(handle.socket_path, self.config.chunk_size)
        with connection:
            connection.send(encode_request(context))
            data = receive_response(connection, self.config.response_timeout)
        return decode_response(data)

    def _connect(self, handle: WorkerHandle) -> WorkerConnection:
        try:
            return connect_socket(handle.socket_path, self.config.chunk_size)
        except WorkerUnavailable:
            pass

        # Absent. Launch it under the lock, then try exactly once more.
        connection = self._launch(handle)
        if connection is not None:
            return connection
        return connect_socket(handle.socket_path, self.config.chunk_size)

    def _launch(self, handle: WorkerHandle) -> Optional[WorkerConnection]:
        """
        Launch the worker unless another thread or process beat us to it.

        Returns:
            A connection if the worker turned out to be running already,
            None if it was launched and the caller should connect.
        """
        with self.lock:
            try:
                return connect_socket(handle.socket_path, self.config.chunk_size)
            except WorkerUnavailable:
                pass
            outcome = self.builder.ensure_page_worker_built(handle.page_path)
        if outcome != StatusOutcome.OK:
            raise BridgeError(f"Could not launch a worker for {handle.page_path}", handle.page_path)
        return None

    def _relaunch(self, handle: WorkerHandle) -> StatusOutcome:
        """Stop a hung worker and start a fresh one."""
        try:
            with self.lock:
                outcome = self.lifecycle.terminate(handle)
                if outcome != StatusOutcome.OK:
                    logger.error(f"Failed to stop the hung worker for {handle.page_path}")
                    return outcome
                return self.builder.ensure_page_worker_built(handle.page_path)
        except BridgeError as e:
            return e.outcome
