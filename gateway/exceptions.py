"""Gateway error taxonomy."""
from typing import Any, Dict, Optional


class GatewayError(Exception):
    """Base class for every error the gateway raises on purpose."""


class InvalidRequestError(GatewayError):
    """The client sent something unusable; nothing was sent upstream."""


class UpstreamError(GatewayError):
    """A daemon or pool endpoint could not be reached or answered badly."""

    def __init__(self, origin: str, message: str, method: Optional[str] = None):
        self.origin = origin
        self.method = method
        self.message = message
        super().__init__(f"{origin}: {message}")


class CircuitOpenError(UpstreamError):
    """The node's circuit breaker is open, so the call was not attempted."""

    def __init__(self, origin: str):
        super().__init__(origin, "circuit open, too many recent failures")


class MirrorError(GatewayError):
    """The local mirror could not answer; callers fall back to a live node."""

    reason = "error"


class MirrorNotReadyError(MirrorError):
    reason = "not_ready"


class MirrorNotFoundError(MirrorError):
    reason = "not_found"


class StaleMirrorError(MirrorError):
    """The mirror disagrees with the network consensus by too much."""

    reason = "stale"


class SourceUnavailableError(GatewayError):
    """Both the mirror and the live fallback failed."""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"no source available for {operation}")


def error_payload(error: Exception, origin: Any) -> Dict[str, Any]:
    """The JSON shape single-node endpoints return instead of raising."""
    message = error.message if isinstance(error, UpstreamError) else str(error)
    return {"error": message, "node": origin}
