"""Error taxonomy for the job engine.

Only ``ValidationError`` reaches end users synchronously (creation requests).
Everything raised inside a unit of work is turned into a ``failed`` write or
logged and discarded by the worker/poller frameworks.
"""

from typing import Optional


class EngineError(Exception):
    reason = "engine_error"

    def __init__(self, message: str, reason: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if reason:
            self.reason = reason


class ValidationError(EngineError):
    """Malformed creation request or malformed intermediate payload."""

    reason = "invalid_request"


class NotFoundError(EngineError):
    reason = "not_found"


class ConflictError(EngineError):
    """Write attempted against a terminal job, or a job that moved on."""

    reason = "conflict"


class VendorError(EngineError):
    """External service reported failure or returned something unusable."""

    reason = "vendor_error"


class JobTimeoutError(EngineError):
    """Watchdog gave up on a stalled job."""

    reason = "timeout"


class TransientDispatchError(EngineError):
    """The invoker could not reach its target. Healed by the next sweep."""

    reason = "dispatch_failed"
