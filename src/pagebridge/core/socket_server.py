"""
=============================================================================
FRONT-END SOCKET SERVER
=============================================================================

Owns the TCP listener that browsers connect to. Every accepted client is
wrapped in a Connection and passed to the callback given to start().

=============================================================================
LISTENER SETUP
=============================================================================

    AF_INET stream socket
      ├── SO_REUSEADDR   rebind right after a restart (TIME_WAIT)
      ├── TCP_NODELAY    page replies are small; skip Nagle
      └── 1s accept timeout, so a stopped flag is seen without traffic

Binding to port 0 picks a free port; `address` reports the real one once
the listener is up.

=============================================================================
SIGNALS
=============================================================================

SIGTERM and SIGINT stop the listener. Python only allows signal handlers
on the main thread, so a server run elsewhere is stopped with shutdown().

=============================================================================
"""

import socket
import signal
import logging
import threading
from typing import Callable, Dict, Optional, Tuple

from ..config import BridgeConfig
from .connection import Connection


logger = logging.getLogger(__name__)

ConnectionHandler = Callable[[Connection], None]

STOP_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class SocketServer:
    """
    Accept loop for the bridge's HTTP side.

        listener = SocketServer(config)
        listener.start(on_connection)   # returns after shutdown()
    """

    def __init__(self, config: BridgeConfig):
        self.config = config
        self._listener: Optional[socket.socket] = None
        self._stopping = threading.Event()
        self._listening = threading.Event()
        self._saved_handlers: Dict[int, object] = {}
        self._local_address: Optional[Tuple[str, int]] = None

    @property
    def address(self) -> Tuple[str, int]:
        """(host, port) of the listener, or the configured pair before bind."""
        if self._local_address is not None:
            return self._local_address
        return (self.config.host, self.config.port)

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Wait for the listener to come up."""
        return self._listening.wait(timeout)

    def start(self, on_connection: ConnectionHandler):
        """
        Bind and serve until shutdown() is called.

        Raises:
            OSError: The configured address could not be bound.
        """
        self._listener = self._open_listener()
        self._local_address = self._listener.getsockname()[:2]
        self._stopping.clear()
        self._install_signal_handlers()
        self._listening.set()

        host, port = self._local_address
        logger.info(f"Listening on {host}:{port}")

        try:
            while not self._stopping.is_set():
                client = self._next_client()
                if client is None:
                    continue
                on_connection(client)
        except OSError as e:
            if not self._stopping.is_set():
                logger.error(f"Listener failed: {e}")
        finally:
            self._teardown()

    def shutdown(self):
        """Ask the accept loop to stop. Idempotent; callable from any thread."""
        if not self._stopping.is_set():
            logger.info("Stopping listener")
        self._stopping.set()

    def _open_listener(self) -> socket.socket:
        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        listener.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        listener.settimeout(1.0)

        target = (self.config.host, self.config.port)
        try:
            listener.bind(target)
            listener.listen(self.config.backlog)
        except OSError as e:
            logger.error(f"Cannot listen on {target[0]}:{target[1]}: {e}")
            listener.close()
            raise
        return listener

    def _next_client(self) -> Optional[Connection]:
        """Accept one client, or None when the accept timed out."""
        try:
            client_socket, client_address = self._listener.accept()
        except socket.timeout:
            return None

        logger.debug(f"Client connected from {client_address[0]}:{client_address[1]}")
        return Connection(
            socket=client_socket,
            address=client_address,
            buffer_size=self.config.buffer_size,
            timeout=self.config.timeout,
            keep_alive_timeout=self.config.keep_alive_timeout,
            max_request_size=self.config.max_request_size,
        )

    def _install_signal_handlers(self):
        if threading.current_thread() is not threading.main_thread():
            return

        def on_signal(signum, frame):
            logger.info(f"Got {signal.Signals(signum).name}, shutting down")
            self.shutdown()

        for signum in STOP_SIGNALS:
            self._saved_handlers[signum] = signal.signal(signum, on_signal)

    def _teardown(self):
        while self._saved_handlers:
            signum, previous = self._saved_handlers.popitem()
            signal.signal(signum, previous)

        if self._listener is not None:
            try:
                self._listener.close()
            except OSError:
                pass
            self._listener = None
        self._listening.clear()
        logger.info("Listener closed")
