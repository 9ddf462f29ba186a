"""
=============================================================================
BRIDGE SERVER
=============================================================================

The HTTP/1.1 front end: accepts client connections, maps each URL onto a
page file under doc_root, and serves it through that page's worker.

=============================================================================
REQUEST FLOW
=============================================================================

    1. CLIENT CONNECTS
       └── SocketServer accepts, Connection wraps the socket

    2. QUEUE FOR PROCESSING
       └── ThreadPoolExecutor runs the connection's keep-alive loop

    3. PARSE REQUEST
       └── RequestParser: method, uri, path, query string, headers

    4. RESOLVE THE PAGE
       └── /blog/index.gosp/2024/05  →  page      = <doc_root>/blog/index.gosp
                                         path_info = /2024/05

    5. SERVE THROUGH THE WORKER
       └── RequestOrchestrator.serve(context, response)
           OK   → worker's status, type and body
           FAIL → 500

    6. SEND, LOG, KEEP-ALIVE OR CLOSE

=============================================================================
PAGE RESOLUTION
=============================================================================

    ┌──────────────────────────────────────┬──────────────────────────────┐
    │  URL path                            │  Result                      │
    ├──────────────────────────────────────┼──────────────────────────────┤
    │  /index.gosp                         │  page, path_info ""          │
    │  /index.gosp/a/b                     │  page, path_info "/a/b"      │
    │  /style.css                          │  404 (not a page)            │
    │  /missing.gosp                       │  404                         │
    │  /../../etc/passwd                   │  403 (escapes doc_root)      │
    │  /link.gosp → symlink out of root    │  403                         │
    └──────────────────────────────────────┴──────────────────────────────┘

The first component that names a regular file is the page; a file cannot
have children, so it is also the longest existing file prefix.

=============================================================================
"""

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from .config import BridgeConfig
from .core import Connection, RequestTooLarge, SocketServer
from .http import (
    HTTPParseError,
    HTTPRequest,
    HTTPResponse,
    HTTPStatus,
    RequestParser,
    ResponseBuilder,
    forbidden,
    not_found,
)
from .orchestrator import RequestOrchestrator
from .paths import concatenate_paths
from .status import PathError
from .worker.messages import RequestContext


logger = logging.getLogger(__name__)
access_logger = logging.getLogger("pagebridge.access")


class PageResolutionError(Exception):
    """The URL does not name a servable page. Carries the HTTP status."""

    def __init__(self, message: str, status_code: int = HTTPStatus.NOT_FOUND):
        super().__init__(message)
        self.status_code = status_code


def resolve_page(doc_root: str, url_path: str, page_suffix: str = ".gosp") -> tuple[str, str]:
    """
    Split a decoded URL path into (page file, path info).

    Args:
        doc_root: Directory the URL space is mapped onto.
        url_path: Decoded request path, e.g. "/blog/index.gosp/2024".
        page_suffix: Only files ending in this are pages.

    Returns:
        (canonical page path, path info). Path info is "" or starts with "/".

    Raises:
        PageResolutionError: 403 if the path leaves doc_root, 404 if no page.
    """
    root = os.path.realpath(doc_root)
    try:
        target = concatenate_paths(root, url_path)
    except PathError as e:
        raise PageResolutionError(str(e), HTTPStatus.FORBIDDEN) from e

    relative = os.path.relpath(target, root)
    components = [] if relative == "." else relative.split(os.sep)

    candidate = root
    for i, component in enumerate(components):
        candidate = os.path.join(candidate, component)
        if os.path.isfile(candidate):
            page = os.path.realpath(candidate)
            if os.path.commonpath([root, page]) != root:
                raise PageResolutionError(f"{candidate} resolves outside {root}", HTTPStatus.FORBIDDEN)
            if not page.endswith(page_suffix):
                raise PageResolutionError(f"{candidate} is not a {page_suffix} page")
            rest = components[i + 1:]
            path_info = "/" + "/".join(rest) if rest else ""
            if url_path.endswith("/") and rest:
                path_info += "/"
            return page, path_info
        if not os.path.isdir(candidate):
            break

    raise PageResolutionError(f"No page found for {url_path}")


def build_context(request: HTTPRequest, page_path: str, path_info: str) -> RequestContext:
    """Collect what the worker needs to know about one request."""
    return RequestContext(
        local_hostname=request.host or None,
        query_args=request.query_string,
        path_info=path_info,
        uri=request.path,
        remote_hostname=request.client_address[0] if request.client_address else None,
        page_path=page_path,
    )


class BridgeServer:
    """
    Threaded HTTP front end for page workers.

    Usage:
        server = BridgeServer(BridgeConfig.from_env())
        server.run()  # Blocks until SIGINT/SIGTERM or shutdown()
    """

    def __init__(self, config: Optional[BridgeConfig] = None,
                 orchestrator: Optional[RequestOrchestrator] = None):
        self.config = config or BridgeConfig()
        self.config.validate()

        self._socket_server = SocketServer(self.config)
        self._parser = RequestParser(max_request_size=self.config.max_request_size)
        self._orchestrator = orchestrator or RequestOrchestrator(self.config)
        self._executor: Optional[ThreadPoolExecutor] = None
        self._running = False

    @property
    def address(self) -> tuple[str, int]:
        return self._socket_server.address

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        return self._socket_server.wait_until_ready(timeout)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def run(self):
        """Start serving. Blocks until shutdown."""
        self._setup_logging()
        self._running = True
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix="pagebridge",
        )
        logger.info(
            f"Starting {self.config.server_name} on {self.config.host}:{self.config.port} "
            f"(doc root {self.config.doc_root}, work dir {self.config.work_dir})"
        )
        try:
            self._socket_server.start(self._handle_connection)
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            self._shutdown()

    def shutdown(self):
        """Ask a running server to stop. Safe from any thread."""
        self._running = False
        self._socket_server.shutdown()

    def _setup_logging(self):
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)
        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        logging.getLogger("pagebridge").setLevel(level)

    def _shutdown(self):
        logger.info("Shutting down server...")
        self._running = False
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        logger.info("Server stopped")

    # =========================================================================
    # CONNECTIONS
    # =========================================================================

    def _handle_connection(self, conn: Connection):
        """Called by SocketServer for each accepted client."""
        try:
            self._executor.submit(self._process_connection, conn)
        except RuntimeError:
            # Executor already shut down
            logger.warning(f"[{conn.id}] Server shutting down, rejecting connection")
            self._send_error(conn, HTTPStatus.SERVICE_UNAVAILABLE, "Server shutting down")
            conn.close()

    def _process_connection(self, conn: Connection):
        """Keep-alive loop for one client (runs in a pool thread)."""
        with conn:
            while self._running:
                try:
                    raw_request = conn.read_request()
                    if raw_request is None:
                        break

                    try:
                        request = self._parser.parse(raw_request, conn.address)
                    except HTTPParseError as e:
                        self._send_error(conn, e.status_code, str(e))
                        break

                    started = time.monotonic()
                    response = self.handle_request(request)
                    keep_alive = request.is_keep_alive and self.config.keep_alive

                    if keep_alive:
                        response.headers.setdefault("Connection", "keep-alive")
                        response.headers.setdefault(
                            "Keep-Alive", f"timeout={int(self.config.keep_alive_timeout)}"
                        )
                    else:
                        response.headers["Connection"] = "close"

                    sent = conn.send_response(response.to_bytes(
                        self.config.server_name,
                        include_body=request.method != "HEAD",
                    ))
                    self._log_access(request, response, started)

                    if not sent or not keep_alive:
                        break

                except TimeoutError:
                    self._send_error(conn, HTTPStatus.REQUEST_TIMEOUT, "Request timeout")
                    break
                except RequestTooLarge as e:
                    self._send_error(conn, HTTPStatus.PAYLOAD_TOO_LARGE, str(e))
                    break
                except Exception as e:
                    logger.exception(f"[{conn.id}] Connection error: {e}")
                    break

    def handle_request(self, request: HTTPRequest) -> HTTPResponse:
        """Resolve the page for request and serve it through its worker."""
        try:
            page_path, path_info = resolve_page(
                self.config.doc_root, request.path, self.config.page_suffix
            )
        except PageResolutionError as e:
            logger.debug(f"{request.path}: {e}")
            if e.status_code == HTTPStatus.FORBIDDEN:
                return forbidden()
            return not_found()

        return self._orchestrator.handle(build_context(request, page_path, path_info))

    def _send_error(self, conn: Connection, status: int, message: str):
        response = (ResponseBuilder()
            .status(status)
            .json({"error": message})
            .close_connection()
            .build())
        conn.send_response(response.to_bytes(self.config.server_name))

    def _log_access(self, request: HTTPRequest, response: HTTPResponse, started: float):
        duration_ms = (time.monotonic() - started) * 1000
        access_logger.info(
            f'{request.client_address[0]} "{request.method} {request.uri}" '
            f"{int(response.status)} {len(response.body)} {duration_ms:.1f}ms"
        )
