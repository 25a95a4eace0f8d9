"""brer_invoker.errors — Exception taxonomy shared by the invoker adapters.

Adapters (store, Kubernetes, key import) translate library-specific failures
into these types so the reconciliation pass only branches on known kinds.
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "ConfigurationError",
    "InvokerError",
    "OrchestratorUnavailable",
    "StoreUnavailable",
    "StoreUpdateFailed",
]


class InvokerError(Exception):
    """Base class for every error raised by the invoker."""


class ConfigurationError(InvokerError):
    """Raised at startup when settings or the signing key are unusable."""


class StoreUnavailable(InvokerError):
    """Raised when the active Invocations list cannot be read."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class StoreUpdateFailed(InvokerError):
    """Raised when the timeout update for one Invocation was not accepted."""

    def __init__(self, ulid: str, message: str, status_code: Optional[int] = None):
        self.ulid = ulid
        self.status_code = status_code
        super().__init__(message)

    @property
    def conflict(self) -> bool:
        # 409/412: the Invocation changed since it was listed
        return self.status_code in (409, 412)


class OrchestratorUnavailable(InvokerError):
    """Raised for any Kubernetes API failure other than 404 on read / 409 on create."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)
