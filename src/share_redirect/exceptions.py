"""
Exception classes for the share redirect control plane.

All exceptions inherit from ShareRedirectError and provide structured
error information with codes, messages, and optional details. The
hierarchy mirrors the failure classes the mount tooling distinguishes
when choosing between retry and abort.
"""

from typing import Optional


class ShareRedirectError(Exception):
    """Base exception for all share redirect errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ResolutionError(ShareRedirectError):
    """Raised when a hostname cannot be resolved to an IPv4 address."""

    pass


class TransientNetworkError(ResolutionError):
    """Raised for retryable DNS or network failures (timeouts, bad responses)."""

    pass


class NameNotFoundError(ResolutionError):
    """Raised when DNS definitively reports that the name does not exist."""

    pass


class StaticHostsOverrideError(ResolutionError):
    """Raised when the hosts file pins a hostname that must be resolved dynamically."""

    pass


class ValidationError(ShareRedirectError):
    """Raised when an address or hostname is malformed."""

    pass


class ConcurrencyConflictError(ShareRedirectError):
    """Raised when the mountmap changed under an optimistic-concurrency guard."""

    pass


class LockAcquisitionError(ShareRedirectError):
    """Raised when an exclusive file lock cannot be taken."""

    pass


class RuleMutationError(ShareRedirectError):
    """Raised when a DNAT rule cannot be added or deleted."""

    pass


class PartialMutationError(ShareRedirectError):
    """Raised when a mountmap update failed but was rolled back cleanly."""

    pass


class FatalInconsistencyError(PartialMutationError):
    """Raised when rollback failed and mountmap and DNAT rules may disagree."""

    pass


class PersistenceError(ShareRedirectError):
    """Raised when persistence operations fail (file I/O)."""

    pass


class ResourceUnavailableError(ShareRedirectError):
    """Raised when a required file, directory or binary is missing."""

    pass
