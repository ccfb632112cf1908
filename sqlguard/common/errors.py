"""
Error taxonomy shared by every SQLGuard component.

Only InputError is ever surfaced to callers of the analysis API; everything
else is absorbed at the ServiceClient / orchestrator boundary and turned into
a degraded result.
"""

from typing import Optional


class SQLGuardError(Exception):
    """Base class for all SQLGuard errors."""
    pass


class InputError(SQLGuardError):
    """Malformed or oversized query, rejected before Tier 1."""
    pass


class ProviderUnavailable(SQLGuardError):
    """Embedding provider, model provider, store or peer is unreachable."""
    pass


class CallTimeout(SQLGuardError):
    """A remote call exceeded its wall-clock budget."""
    pass


class CircuitOpenError(ProviderUnavailable):
    """The endpoint's circuit is open; the call was short-circuited."""

    def __init__(self, endpoint: str):
        super().__init__(f"Circuit open for endpoint '{endpoint}'")
        self.endpoint = endpoint


class PeerValidationError(SQLGuardError):
    """A peer rejected the request with a 4xx status. Never retried."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class InternalInconsistency(SQLGuardError):
    """Data that should agree does not (e.g. embedding dimension mismatch)."""
    pass


class StoreUnavailableError(SQLGuardError):
    """The document store is disabled by configuration."""
    pass
