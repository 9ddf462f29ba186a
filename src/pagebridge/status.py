"""
=============================================================================
OUTCOMES AND ERRORS
=============================================================================

Every step of talking to a page worker ends in one of three outcomes:

    ┌─────────────┬───────────────────────────────────────────────────────┐
    │  OK         │ The step succeeded, carry on.                         │
    ├─────────────┼───────────────────────────────────────────────────────┤
    │  NEED_ACTION│ The worker is absent or hung. Take corrective action  │
    │             │ (launch or relaunch it) ONCE, then retry.             │
    ├─────────────┼───────────────────────────────────────────────────────┤
    │  FAIL       │ Unrecoverable for this request. Log it, answer 500.   │
    └─────────────┴───────────────────────────────────────────────────────┘

Low-level components (connector, decoder, lock) raise exceptions that carry
their outcome. The lifecycle controller and the orchestrator catch them and
turn them back into StatusOutcome values.

=============================================================================
"""

from enum import Enum


class StatusOutcome(Enum):
    """Tri-state result of a bridge operation."""
    OK = "ok"
    FAIL = "fail"
    NEED_ACTION = "need_action"


class BridgeError(Exception):
    """
    Base class for every error raised by the bridge.

    Carries the outcome the caller should act on, so handlers can write:

        except BridgeError as e:
            return e.outcome
    """

    outcome = StatusOutcome.FAIL

    def __init__(self, message: str, path: str = ""):
        super().__init__(message)
        self.path = path  # Socket or page path involved, for logging


class WorkerUnavailable(BridgeError):
    """The worker did not answer. Relaunching it may help."""
    outcome = StatusOutcome.NEED_ACTION


class WorkerNotRunning(WorkerUnavailable):
    """Nothing is listening on the worker's socket."""


class WorkerTimeout(WorkerUnavailable):
    """The worker accepted the request but went quiet for too long."""


class PathError(BridgeError):
    """A path could not be built inside its root, or could not be stat'ed."""


class LockError(BridgeError):
    """The global lock could not be acquired or released."""


class ProtocolError(BridgeError):
    """The worker sent a response we are not willing to interpret."""
