"""
=============================================================================
PAGEBRIDGE
=============================================================================

An HTTP front end that serves dynamic pages through long-running worker
processes, one per page, each listening on its own Unix-domain socket.

    ┌──────────┐   HTTP   ┌──────────────┐  Unix socket  ┌──────────────┐
    │  Client  │ ───────► │ BridgeServer │ ────────────► │ Page worker  │
    └──────────┘          │              │ ◄──────────── │ (one / page) │
                          └──────────────┘               └──────────────┘

Workers are launched on first use, relaunched when they hang, and shut
down gracefully (then forcibly) on request. One host-wide lock keeps
concurrent front-end threads and processes from launching duplicates.

=============================================================================
"""

__version__ = "1.0.0"

from .config import BridgeConfig
from .orchestrator import RequestOrchestrator
from .server import BridgeServer
from .status import StatusOutcome

__all__ = ["BridgeConfig", "BridgeServer", "RequestOrchestrator", "StatusOutcome", "__version__"]
