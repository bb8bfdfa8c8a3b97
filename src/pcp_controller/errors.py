"""
PCP controller error types.

ConnectionError and TimeoutError shadow the builtins; import them from this
module rather than relying on the builtin names.
"""

from typing import Any, Optional


class PCPControllerError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.details = details


class ConnectionError(PCPControllerError):
    """Handshake or association with the broker failed; the connection is unusable."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("connection_error", message, details)


class TimeoutError(PCPControllerError):
    """A deadline passed before the completion predicate held."""

    def __init__(
        self,
        message: str,
        targets: Optional[list[str]] = None,
        missing: Optional[list[str]] = None,
        responses: Optional[dict[str, Any]] = None,
        elapsed: Optional[float] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.targets = list(targets or [])
        self.missing = list(missing or [])
        self.responses = dict(responses or {})
        self.elapsed = elapsed
        merged = {
            "targets": self.targets,
            "missing": self.missing,
            "received": sorted(self.responses),
            "elapsed": elapsed,
        }
        merged.update(details or {})
        super().__init__("timeout", message, merged)


class ProtocolError(PCPControllerError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("protocol_error", message, details)


class ActionError(PCPControllerError):
    """A target reported a terminal status saying the remote action failed."""

    def __init__(self, message: str, transaction: Any = None, outcome: Optional[dict[str, Any]] = None):
        super().__init__("action_failed", message, {"outcome": outcome})
        self.transaction = transaction
        self.outcome = outcome
